"""Price oracle API router."""

from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from qrpay.api.deps import get_db, get_price_oracle
from qrpay.schemas.quote import (
    ConversionQuoteResponse,
    OracleStatusResponse,
    PriceHistoryResponse,
)
from qrpay.services.price_oracle_service import PriceOracleService

router = APIRouter()


@router.get("/quote", response_model=ConversionQuoteResponse)
async def get_quote(
    amount: Decimal = Query(..., gt=0, description="Fiat amount to convert"),
    oracle: PriceOracleService = Depends(get_price_oracle)
):
    """
    Preview the crypto amount for a fiat charge.

    ``source`` is LIVE, CACHED or FALLBACK; fallback and stale rates come
    with a ``warning``.
    """
    quote = await oracle.quote(amount)

    warning = None
    if quote.is_fallback:
        warning = "Oracle unavailable, using the configured fallback rate"
    elif quote.stale:
        warning = "Oracle unavailable, using the last known rate"

    return ConversionQuoteResponse(
        source_amount=quote.source_amount,
        target_amount=quote.target_amount,
        rate=quote.rate,
        source=quote.source,
        pair=quote.pair,
        obtained_at=quote.obtained_at,
        stale=quote.stale,
        warning=warning,
    )


@router.get("/status", response_model=OracleStatusResponse)
async def get_oracle_status(oracle: PriceOracleService = Depends(get_price_oracle)):
    return oracle.status()


@router.get("/history", response_model=List[PriceHistoryResponse])
async def get_price_history(
    hours: int = Query(24, ge=1, le=720),
    limit: int = Query(100, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    oracle: PriceOracleService = Depends(get_price_oracle)
):
    """Rates fetched from the oracle over the last ``hours``, newest first."""
    return await oracle.get_price_history(db, hours=hours, limit=limit)
