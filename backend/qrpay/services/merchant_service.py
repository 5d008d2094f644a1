"""Merchant directory: the settlement address behind each QR."""

import logging
import re
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from qrpay.core.errors import NotFoundError, ValidationError
from qrpay.models.merchant import Merchant

logger = logging.getLogger(__name__)

# Starknet contract address: felt252 in hex
STARKNET_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{1,64}$")


def normalize_wallet_address(address: str) -> str:
    """
    Validate a Starknet wallet address and return it lowercased.

    Raises:
        ValidationError: If the address is not 0x followed by 1-64 hex digits
    """
    address = address.strip()
    if not STARKNET_ADDRESS_RE.match(address):
        raise ValidationError(
            "Wallet address must be 0x followed by up to 64 hex characters",
            wallet_address=address,
        )
    return address.lower()


async def create_merchant(
    db: AsyncSession,
    name: str,
    wallet_address: Optional[str] = None
) -> Merchant:
    """Register a merchant, optionally with its settlement wallet."""
    merchant = Merchant(
        name=name,
        wallet_address=normalize_wallet_address(wallet_address) if wallet_address else None,
    )
    db.add(merchant)
    await db.commit()
    await db.refresh(merchant)

    logger.info(f"Merchant registered: id={merchant.id}, wallet={merchant.wallet_address}")
    return merchant


async def get_merchant_by_id(db: AsyncSession, merchant_id: str) -> Optional[Merchant]:
    result = await db.execute(select(Merchant).where(Merchant.id == merchant_id))
    return result.scalar_one_or_none()


async def get_settlement_address(db: AsyncSession, merchant_id: str) -> str:
    """
    Resolve the wallet a merchant is paid at.

    Raises:
        NotFoundError: If the merchant does not exist
        ValidationError: If the merchant has no wallet yet
    """
    merchant = await get_merchant_by_id(db, merchant_id)
    if not merchant:
        raise NotFoundError(f"Merchant {merchant_id} not found", merchant_id=merchant_id)
    if not merchant.wallet_address:
        raise ValidationError(
            "Merchant wallet not found. Please create a wallet first.",
            merchant_id=merchant_id,
        )
    return merchant.wallet_address
