"""Merchants API router."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from qrpay.api.deps import get_db, get_session_service
from qrpay.core.errors import NotFoundError
from qrpay.schemas.merchant import MerchantCreate, MerchantResponse, MerchantStats
from qrpay.services import merchant_service
from qrpay.services.session_service import PaymentSessionService

router = APIRouter()


@router.post("", response_model=MerchantResponse, status_code=status.HTTP_201_CREATED)
async def register_merchant(
    merchant_data: MerchantCreate,
    db: AsyncSession = Depends(get_db)
):
    """
    Register a merchant and the Starknet address its payments settle to.

    The wallet address is embedded in every QR the merchant issues, so a
    merchant without one cannot create payment sessions.
    """
    return await merchant_service.create_merchant(
        db,
        name=merchant_data.name,
        wallet_address=merchant_data.wallet_address,
    )


@router.get("/{merchant_id}", response_model=MerchantResponse)
async def get_merchant(merchant_id: str, db: AsyncSession = Depends(get_db)):
    merchant = await merchant_service.get_merchant_by_id(db, merchant_id)
    if not merchant:
        raise NotFoundError(f"Merchant {merchant_id} not found", merchant_id=merchant_id)
    return merchant


@router.get("/{merchant_id}/stats", response_model=MerchantStats)
async def get_merchant_stats(
    merchant_id: str,
    db: AsyncSession = Depends(get_db),
    sessions: PaymentSessionService = Depends(get_session_service)
):
    """Payment counts, settled totals and success rate for a merchant."""
    return await sessions.merchant_stats(db, merchant_id)
