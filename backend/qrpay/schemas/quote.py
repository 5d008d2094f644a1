"""Price oracle response schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from qrpay.services.price_oracle_service import QuoteSource


class ConversionQuoteResponse(BaseModel):
    """Conversion preview of a fiat amount."""

    source_amount: Decimal
    target_amount: Decimal
    rate: Decimal
    source: QuoteSource
    pair: str
    obtained_at: datetime
    stale: bool = False
    warning: Optional[str] = Field(
        None,
        description="Set when the rate is a fallback or stale value"
    )

    model_config = {"from_attributes": True}


class OracleStatusResponse(BaseModel):
    pair: str
    is_active: bool
    current_rate: Optional[Decimal]
    obtained_at: Optional[datetime]
    age_seconds: Optional[float]
    fallback_rate: Optional[Decimal]
    oracle_address: Optional[str]
    refresher_running: bool
    last_refresh_at: Optional[datetime]
    last_error: Optional[str]


class PriceHistoryResponse(BaseModel):
    id: str
    base_currency: str
    quote_currency: str
    rate: Decimal
    source: str
    oracle_address: Optional[str]
    obtained_at: datetime

    model_config = {"from_attributes": True}
