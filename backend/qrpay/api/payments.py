"""Payments API router: QR payment sessions."""

import logging
from typing import Optional, List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from qrpay.api.deps import get_db, get_session_service
from qrpay.models.payment import PaymentStatus
from qrpay.schemas.payment import (
    PaymentCreate,
    PaymentResponse,
    ScanRequest,
    ScanResponse,
    DecodedQR,
)
from qrpay.services.session_service import PaymentSessionService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/payments", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    payment_data: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    sessions: PaymentSessionService = Depends(get_session_service)
):
    """
    Create a payment session and its QR payload.

    The session is PENDING for 30 minutes. The QR carries the merchant's
    settlement address, the fiat amount and the session id, plus an
    indicative crypto amount at the current rate.

    **Errors:**
    - 400 VALIDATION_ERROR: Bad amount, or merchant without wallet
    - 404 NOT_FOUND: Unknown merchant
    """
    return await sessions.create_session(
        db,
        merchant_id=payment_data.merchant_id,
        amount=payment_data.amount,
        concept=payment_data.concept,
        order_id=payment_data.order_id,
    )


@router.get("/payments", response_model=List[PaymentResponse])
async def list_payments(
    merchant_id: str = Query(..., description="Merchant whose payments to list"),
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    sessions: PaymentSessionService = Depends(get_session_service)
):
    """Merchant payment history, newest first."""
    return await sessions.list_payments(
        db,
        merchant_id=merchant_id,
        status_filter=status_filter,
        limit=limit,
        offset=offset,
    )


@router.post("/payments:scan", response_model=ScanResponse)
async def scan_payment(
    scan_data: ScanRequest,
    db: AsyncSession = Depends(get_db),
    sessions: PaymentSessionService = Depends(get_session_service)
):
    """
    Resolve a scanned QR to its payment.

    **Errors:**
    - 400 MALFORMED_PAYLOAD: Checksum or structure invalid
    - 400 VALIDATION_ERROR: QR does not match the stored payment
    - 404 NOT_FOUND: Unknown session
    """
    payment, qr = await sessions.scan(db, scan_data.qr_payload)
    return ScanResponse(
        qr=DecodedQR.model_validate(qr),
        payment=PaymentResponse.model_validate(payment),
    )


@router.get("/payments/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: str,
    db: AsyncSession = Depends(get_db),
    sessions: PaymentSessionService = Depends(get_session_service)
):
    """Get a payment by payment id or session id; expiry is applied on read."""
    return await sessions.lookup(db, payment_id)


@router.post("/payments/{payment_id}/qr:regenerate", response_model=PaymentResponse)
async def regenerate_qr(
    payment_id: str,
    db: AsyncSession = Depends(get_db),
    sessions: PaymentSessionService = Depends(get_session_service)
):
    """
    Re-render the QR of a pending payment with a fresh quote.

    The expiry time is unchanged.

    **Errors:**
    - 409 ALREADY_PROCESSED: Payment already paid
    - 410 PAYMENT_EXPIRED: Payment expired, create a new one
    """
    return await sessions.regenerate(db, payment_id)
