"""Pydantic schemas for payment sessions and QR scans."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from qrpay.models.payment import PaymentStatus


class PaymentCreate(BaseModel):
    """Schema for creating a payment session."""
    merchant_id: str
    amount: Decimal = Field(..., description="Charge in whole fiat units")
    concept: str = Field(..., min_length=1, max_length=255)
    order_id: Optional[str] = Field(None, max_length=64)

    @field_validator("concept")
    @classmethod
    def strip_concept(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Concept must not be blank")
        return v


class PaymentResponse(BaseModel):
    """Full payment response, including the QR payload to render."""
    id: str
    session_id: str
    merchant_id: str
    merchant_address: str
    amount: Decimal
    currency: str
    concept: str
    order_id: Optional[str]
    qr_payload: str
    qr_version: int
    status: PaymentStatus
    version: int
    expires_at: datetime
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ScanRequest(BaseModel):
    qr_payload: str = Field(..., min_length=1, max_length=1024)


class DecodedQR(BaseModel):
    """Typed fields read from a scanned QR."""
    merchant_address: str
    amount: int
    session_id: str
    target_symbol: Optional[str] = None
    target_amount: Optional[Decimal] = None
    exchange_rate: Optional[Decimal] = None
    issued_at: Optional[int] = None

    model_config = {"from_attributes": True}


class ScanResponse(BaseModel):
    qr: DecodedQR
    payment: PaymentResponse
