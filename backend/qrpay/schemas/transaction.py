"""Pydantic schemas for Transaction validation."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from qrpay.models.transaction import TransactionStatus


class TransactionConfirm(BaseModel):
    """Schema for confirming a payment with its settlement proof."""
    payment_id: str = Field(..., description="Payment id or session id")
    settlement_proof: str = Field(..., description="Starknet transaction hash of the transfer")


class TransactionResponse(BaseModel):
    id: str
    payment_id: str
    source_amount: Decimal
    source_currency: str
    exchange_rate: Decimal
    quote_source: str
    target_amount: Decimal
    target_currency: str
    status: TransactionStatus
    settlement_ref: Optional[str]
    confirmation_count: int
    required_confirmations: int
    wallet_address: str
    failure_reason: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
