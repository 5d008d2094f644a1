"""Transactions API router: payment confirmation."""

import logging
from typing import Optional, List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from qrpay.api.deps import get_db, get_transaction_processor
from qrpay.models.transaction import TransactionStatus
from qrpay.schemas.transaction import TransactionConfirm, TransactionResponse
from qrpay.services.transaction_service import TransactionProcessor

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/transactions:confirm",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED
)
async def confirm_transaction(
    confirm_data: TransactionConfirm,
    db: AsyncSession = Depends(get_db),
    processor: TransactionProcessor = Depends(get_transaction_processor)
):
    """
    Confirm a payment with the settlement transaction hash.

    A payment is confirmed at most once; repeated or concurrent
    confirmations are rejected.

    **Errors:**
    - 404 NOT_FOUND: Unknown payment
    - 409 ALREADY_PROCESSED: Payment already paid
    - 410 PAYMENT_EXPIRED: Payment expired before settlement
    - 422 SETTLEMENT_PROOF_INVALID: Malformed or reused transaction hash
    - 503 PRICING_UNAVAILABLE: No exchange rate available
    """
    return await processor.confirm(db, confirm_data.payment_id, confirm_data.settlement_proof)


@router.get("/transactions", response_model=List[TransactionResponse])
async def list_transactions(
    payment_id: Optional[str] = Query(None),
    status_filter: Optional[TransactionStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    processor: TransactionProcessor = Depends(get_transaction_processor)
):
    return await processor.list_transactions(
        db,
        payment_id=payment_id,
        status_filter=status_filter,
        limit=limit,
        offset=offset,
    )


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    transaction_id: str,
    db: AsyncSession = Depends(get_db),
    processor: TransactionProcessor = Depends(get_transaction_processor)
):
    return await processor.get_transaction(db, transaction_id)
