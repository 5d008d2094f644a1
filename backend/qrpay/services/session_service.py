"""Payment session lifecycle: creation, lookup, expiry and QR regeneration."""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, or_

from qrpay.config import settings
from qrpay.core.clock import Clock, utcnow
from qrpay.core.errors import (
    AlreadyProcessedError,
    ExpiredError,
    NotFoundError,
    PricingUnavailableError,
    ValidationError,
)
from qrpay.core.events import EventBus, event_bus
from qrpay.core.tlv import QRPayload
from qrpay.models.payment import Payment, PaymentStatus
from qrpay.models.transaction import Transaction, TransactionStatus
from qrpay.services.merchant_service import get_merchant_by_id, get_settlement_address
from qrpay.services.price_oracle_service import PriceOracleService

logger = logging.getLogger(__name__)


def epoch_seconds(moment: datetime) -> int:
    """Epoch seconds for a naive UTC timestamp."""
    return int(moment.replace(tzinfo=timezone.utc).timestamp())


def ensure_payable(payment: Payment, now: datetime) -> None:
    """
    Raise the status error that stops a payment from being settled.

    Raises:
        AlreadyProcessedError: If the payment is already PAID
        ExpiredError: If the payment is EXPIRED or past its expiry time
    """
    if payment.status == PaymentStatus.PAID:
        raise AlreadyProcessedError(
            f"Payment {payment.session_id} has already been paid",
            payment_id=payment.id,
        )
    if payment.status == PaymentStatus.EXPIRED or payment.is_past_expiry(now):
        raise ExpiredError(
            f"Payment {payment.session_id} expired at {payment.expires_at.isoformat()}",
            payment_id=payment.id,
        )


class PaymentSessionService:
    """Creates payment sessions and keeps their expiry state authoritative on read."""

    def __init__(
        self,
        price_oracle: Optional[PriceOracleService] = None,
        *,
        clock: Clock = utcnow,
        ttl_seconds: Optional[int] = None,
        bus: EventBus = event_bus,
    ):
        self.price_oracle = price_oracle
        self.clock = clock
        self.ttl = timedelta(seconds=ttl_seconds or settings.PAYMENT_SESSION_TTL_SECONDS)
        self.currency = settings.BASE_FIAT_CURRENCY
        self.target_currency = settings.TARGET_CRYPTO_CURRENCY
        self.max_amount = settings.MAX_PAYMENT_AMOUNT
        self.bus = bus

    def generate_session_id(self) -> str:
        """Unique session identifier: pay_<epoch ms>_<8 hex>."""
        millis = int(self.clock().replace(tzinfo=timezone.utc).timestamp() * 1000)
        return f"pay_{millis}_{secrets.token_hex(4)}"

    def validate_amount(self, amount: Any) -> Decimal:
        """
        Validate a charge amount.

        The QR carries whole fiat units, so fractional amounts are rejected
        rather than rounded.
        """
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Amount is not a number: {amount!r}")

        if not value.is_finite() or value <= 0:
            raise ValidationError("Amount must be greater than 0", amount=str(amount))
        if value > self.max_amount:
            raise ValidationError(
                f"Amount exceeds the maximum of {self.max_amount}",
                amount=str(amount),
            )
        if value != value.to_integral_value():
            raise ValidationError(
                f"Amount must be in whole {self.currency} units",
                amount=str(amount),
            )
        return value

    async def _render_qr(
        self,
        merchant_address: str,
        amount: Decimal,
        session_id: str,
        now: datetime
    ) -> str:
        """Build the TLV payload; the price preview tags are best-effort."""
        preview = None
        if self.price_oracle is not None:
            try:
                preview = await self.price_oracle.quote(amount)
            except PricingUnavailableError as e:
                logger.warning(f"QR for {session_id} rendered without price preview: {e}")

        if preview is not None and preview.is_fallback:
            logger.warning(f"⚠️ QR for {session_id} shows a FALLBACK rate preview ({preview.rate})")

        payload = QRPayload(
            merchant_address=merchant_address,
            amount=int(amount),
            session_id=session_id,
            target_symbol=self.target_currency if preview else None,
            target_amount=preview.target_amount if preview else None,
            exchange_rate=preview.rate if preview else None,
            issued_at=epoch_seconds(now),
        )
        return payload.encode()

    async def create_session(
        self,
        db: AsyncSession,
        merchant_id: str,
        amount: Any,
        concept: str,
        order_id: Optional[str] = None
    ) -> Payment:
        """
        Create a PENDING payment and render its QR.

        Args:
            db: Database session
            merchant_id: Merchant receiving the settlement
            amount: Charge in whole fiat units
            concept: Free-text description shown to the payer
            order_id: Optional merchant reference

        Returns:
            Persisted Payment with its QR payload

        Raises:
            ValidationError: Bad amount/concept, or merchant without wallet
            NotFoundError: Unknown merchant
        """
        value = self.validate_amount(amount)
        concept = (concept or "").strip()
        if not concept:
            raise ValidationError("Concept is required")

        merchant_address = await get_settlement_address(db, merchant_id)

        now = self.clock()
        session_id = self.generate_session_id()
        qr_payload = await self._render_qr(merchant_address, value, session_id, now)

        payment = Payment(
            session_id=session_id,
            merchant_id=merchant_id,
            merchant_address=merchant_address,
            amount=value,
            currency=self.currency,
            concept=concept,
            order_id=order_id,
            qr_payload=qr_payload,
            qr_version=1,
            status=PaymentStatus.PENDING,
            version=1,
            expires_at=now + self.ttl,
            created_at=now,
            updated_at=now,
        )
        db.add(payment)
        await db.commit()
        await db.refresh(payment)

        logger.info(
            f"✅ Payment session created: {session_id} for merchant {merchant_id}, "
            f"{value} {self.currency}, expires {payment.expires_at.isoformat()}"
        )

        await self.bus.publish("payment_created", {
            "payment_id": payment.id,
            "session_id": session_id,
            "merchant_id": merchant_id,
            "amount": str(value),
            "expires_at": payment.expires_at.isoformat(),
        })
        return payment

    async def _find(self, db: AsyncSession, identifier: str) -> Optional[Payment]:
        # Exact match only; prefixes of a session id never resolve
        result = await db.execute(
            select(Payment).where(
                or_(Payment.session_id == identifier, Payment.id == identifier)
            )
        )
        return result.scalar_one_or_none()

    async def lookup(self, db: AsyncSession, identifier: str) -> Payment:
        """
        Fetch a payment by session id or payment id with expiry applied.

        A PENDING payment past ``expires_at`` is moved to EXPIRED and the change
        is committed before it is returned.

        Raises:
            NotFoundError: If no payment matches exactly
        """
        payment = await self._find(db, identifier)
        if not payment:
            raise NotFoundError(f"Payment {identifier} not found", identifier=identifier)

        return await self.expire_if_overdue(db, payment)

    async def expire_if_overdue(self, db: AsyncSession, payment: Payment) -> Payment:
        """Persist PENDING -> EXPIRED for an overdue payment and return it refreshed."""
        now = self.clock()
        if payment.status != PaymentStatus.PENDING or not payment.is_past_expiry(now):
            return payment

        result = await db.execute(
            update(Payment)
            .where(
                Payment.id == payment.id,
                Payment.status == PaymentStatus.PENDING,
                Payment.expires_at < now,
            )
            .values(
                status=PaymentStatus.EXPIRED,
                version=Payment.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(payment)

        if result.rowcount == 1:
            logger.info(f"Payment {payment.session_id} expired")
            await self.bus.publish("payment_expired", {
                "payment_id": payment.id,
                "session_id": payment.session_id,
            })
        return payment

    async def expire_overdue(self, db: AsyncSession, merchant_id: Optional[str] = None) -> int:
        """Expire every overdue PENDING payment, optionally for one merchant."""
        now = self.clock()
        stmt = (
            update(Payment)
            .where(
                Payment.status == PaymentStatus.PENDING,
                Payment.expires_at < now,
            )
            .values(
                status=PaymentStatus.EXPIRED,
                version=Payment.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if merchant_id:
            stmt = stmt.where(Payment.merchant_id == merchant_id)

        result = await db.execute(stmt)
        await db.commit()

        if result.rowcount:
            logger.info(f"Expired {result.rowcount} overdue payment(s)")
        return result.rowcount or 0

    async def regenerate(self, db: AsyncSession, identifier: str) -> Payment:
        """
        Re-render the QR for a PENDING payment without extending its expiry.

        Raises:
            NotFoundError: Unknown payment
            ExpiredError: Payment expired
            AlreadyProcessedError: Payment already paid
        """
        payment = await self.lookup(db, identifier)
        ensure_payable(payment, self.clock())

        current_version = payment.qr_version
        now = self.clock()
        qr_payload = await self._render_qr(
            payment.merchant_address, payment.amount, payment.session_id, now
        )

        result = await db.execute(
            update(Payment)
            .where(
                Payment.id == payment.id,
                Payment.status == PaymentStatus.PENDING,
                Payment.qr_version == current_version,
            )
            .values(
                qr_payload=qr_payload,
                qr_version=current_version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(payment)

        if result.rowcount != 1:
            # Settled meanwhile, or another regeneration won the race
            ensure_payable(payment, self.clock())
            return payment

        logger.info(f"QR regenerated for {payment.session_id} (version {payment.qr_version})")
        await self.bus.publish("payment_qr_regenerated", {
            "payment_id": payment.id,
            "session_id": payment.session_id,
            "qr_version": payment.qr_version,
        })
        return payment

    async def scan(self, db: AsyncSession, qr_payload: str) -> Tuple[Payment, QRPayload]:
        """
        Decode a scanned QR and resolve the payment it refers to.

        Raises:
            MalformedPayload: If the QR fails TLV or checksum validation
            NotFoundError: If the session does not exist
            ValidationError: If the QR's merchant or amount differ from the payment
        """
        qr = QRPayload.decode(qr_payload.strip())
        payment = await self.lookup(db, qr.session_id)

        if qr.merchant_address.lower() != payment.merchant_address.lower():
            raise ValidationError(
                "QR merchant address does not match the payment",
                session_id=qr.session_id,
            )
        if Decimal(qr.amount) != payment.amount:
            raise ValidationError(
                "QR amount does not match the payment",
                session_id=qr.session_id,
            )
        return payment, qr

    async def list_payments(
        self,
        db: AsyncSession,
        merchant_id: str,
        status_filter: Optional[PaymentStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> list[Payment]:
        """Merchant payment history, newest first, with expiry applied."""
        await self.expire_overdue(db, merchant_id)

        query = select(Payment).where(Payment.merchant_id == merchant_id)
        if status_filter:
            query = query.where(Payment.status == status_filter)
        query = query.order_by(Payment.created_at.desc()).offset(offset).limit(limit)

        result = await db.execute(query)
        return list(result.scalars().all())

    async def merchant_stats(self, db: AsyncSession, merchant_id: str) -> Dict[str, Any]:
        """
        Aggregate a merchant's payments.

        Raises:
            NotFoundError: If the merchant does not exist
        """
        if not await get_merchant_by_id(db, merchant_id):
            raise NotFoundError(f"Merchant {merchant_id} not found", merchant_id=merchant_id)

        await self.expire_overdue(db, merchant_id)

        result = await db.execute(
            select(Payment.status, func.count(Payment.id), func.sum(Payment.amount))
            .where(Payment.merchant_id == merchant_id)
            .group_by(Payment.status)
        )
        counts = {status: 0 for status in PaymentStatus}
        paid_amount = Decimal("0")
        for status, count, amount_sum in result.all():
            counts[PaymentStatus(status)] = count
            if status == PaymentStatus.PAID and amount_sum is not None:
                paid_amount = Decimal(str(amount_sum))

        crypto_result = await db.execute(
            select(func.sum(Transaction.target_amount))
            .join(Payment, Transaction.payment_id == Payment.id)
            .where(
                Payment.merchant_id == merchant_id,
                Transaction.status == TransactionStatus.CONFIRMED,
            )
        )
        crypto_total = crypto_result.scalar()

        total = sum(counts.values())
        paid = counts[PaymentStatus.PAID]
        return {
            "merchant_id": merchant_id,
            "total_payments": total,
            "pending_payments": counts[PaymentStatus.PENDING],
            "paid_payments": paid,
            "expired_payments": counts[PaymentStatus.EXPIRED],
            "total_fiat_paid": paid_amount,
            "total_crypto_settled": Decimal(str(crypto_total)) if crypto_total is not None else Decimal("0"),
            "fiat_currency": self.currency,
            "crypto_currency": self.target_currency,
            "success_rate": round(paid / total * 100, 2) if total else 0.0,
        }
