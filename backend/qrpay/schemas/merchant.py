"""Pydantic schemas for Merchant validation."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class MerchantCreate(BaseModel):
    """Schema for registering a merchant."""
    name: str = Field(..., min_length=1, max_length=120)
    wallet_address: Optional[str] = Field(
        None,
        description="Starknet settlement address (0x + up to 64 hex chars)"
    )


class MerchantResponse(BaseModel):
    id: str
    name: str
    wallet_address: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class MerchantStats(BaseModel):
    """Aggregated payment statistics for one merchant."""
    merchant_id: str
    total_payments: int
    pending_payments: int
    paid_payments: int
    expired_payments: int
    total_fiat_paid: Decimal
    total_crypto_settled: Decimal
    fiat_currency: str
    crypto_currency: str
    success_rate: float = Field(..., description="Percentage of payments that were paid")
