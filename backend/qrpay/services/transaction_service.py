"""Transaction processor: prices and settles a payment exactly once."""

import logging
import re
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from qrpay.config import settings
from qrpay.core.clock import Clock, utcnow
from qrpay.core.errors import (
    AlreadyProcessedError,
    NotFoundError,
    SettlementProofInvalid,
)
from qrpay.core.events import EventBus, event_bus
from qrpay.models.payment import Payment, PaymentStatus
from qrpay.models.transaction import Transaction, TransactionStatus
from qrpay.services.price_oracle_service import ConversionQuote, PriceOracleService
from qrpay.services.session_service import PaymentSessionService, ensure_payable
from qrpay.services.settlement_notifier import SettlementNotice, SettlementNotifier

logger = logging.getLogger(__name__)

# Starknet transaction hash: a felt in hex
SETTLEMENT_PROOF_RE = re.compile(r"^0x[0-9a-f]{1,64}$")


def normalize_settlement_proof(proof: Optional[str]) -> Optional[str]:
    """Lowercased proof, or None when it is not a well-formed transaction hash."""
    if not proof:
        return None
    proof = proof.strip().lower()
    if not proof.startswith("0x"):
        proof = f"0x{proof}"
    return proof if SETTLEMENT_PROOF_RE.match(proof) else None


class TransactionProcessor:
    """
    Confirms payments against a settlement proof.

    The PENDING -> PAID flip and the CONFIRMED transaction insert happen in one
    database transaction guarded by a conditional UPDATE, so at most one of any
    number of concurrent confirmations succeeds. The oracle and the notifier
    are awaited outside that transaction.
    """

    def __init__(
        self,
        sessions: PaymentSessionService,
        price_oracle: PriceOracleService,
        notifier: SettlementNotifier,
        *,
        clock: Clock = utcnow,
        required_confirmations: Optional[int] = None,
        bus: EventBus = event_bus,
    ):
        self.sessions = sessions
        self.price_oracle = price_oracle
        self.notifier = notifier
        self.clock = clock
        self.required_confirmations = required_confirmations or settings.REQUIRED_CONFIRMATIONS
        self.bus = bus

    async def confirm(
        self,
        db: AsyncSession,
        payment_identifier: str,
        settlement_proof: str
    ) -> Transaction:
        """
        Settle a payment.

        Args:
            db: Database session
            payment_identifier: Session id or payment id
            settlement_proof: Starknet transaction hash of the transfer

        Returns:
            The CONFIRMED Transaction

        Raises:
            NotFoundError: Unknown payment
            ExpiredError: Payment expired before it could be settled
            AlreadyProcessedError: Payment already paid (or lost a concurrent race)
            PricingUnavailableError: No rate at all could be obtained
            SettlementProofInvalid: Malformed or already used settlement proof
        """
        payment = await self.sessions.lookup(db, payment_identifier)
        ensure_payable(payment, self.clock())

        quote = await self.price_oracle.quote(payment.amount)
        if quote.is_fallback or quote.stale:
            logger.warning(
                f"⚠️ Settling {payment.session_id} with a {quote.source.value}"
                f"{' (stale)' if quote.stale else ''} rate of {quote.rate}"
            )

        proof = normalize_settlement_proof(settlement_proof)
        if proof is None:
            await self._record_failure(
                db, payment, quote, settlement_proof,
                "Settlement proof must be 0x followed by 1-64 hex characters",
            )

        existing = await self._get_confirmed_by_ref(db, proof)
        if existing is not None and existing.payment_id == payment.id:
            raise AlreadyProcessedError(
                f"Payment {payment.session_id} has already been paid",
                payment_id=payment.id,
            )
        if existing is not None:
            logger.warning(
                f"Replay attempt: settlement_ref={proof} already settled payment {existing.payment_id}"
            )
            await self._record_failure(
                db, payment, quote, proof,
                f"Settlement proof already used for payment {existing.payment_id}",
            )

        now = self.clock()
        result = await db.execute(
            update(Payment)
            .where(
                Payment.id == payment.id,
                Payment.status == PaymentStatus.PENDING,
                Payment.expires_at >= now,
            )
            .values(
                status=PaymentStatus.PAID,
                version=Payment.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            await db.rollback()
            await db.refresh(payment)
            payment = await self.sessions.expire_if_overdue(db, payment)
            ensure_payable(payment, now)
            raise AlreadyProcessedError(
                f"Payment {payment.session_id} is no longer pending",
                payment_id=payment.id,
            )

        transaction = self._build_transaction(payment, quote, TransactionStatus.CONFIRMED)
        transaction.settlement_ref = proof
        transaction.confirmation_count = self.required_confirmations
        db.add(transaction)

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            await db.refresh(payment)
            if payment.status == PaymentStatus.PAID:
                raise AlreadyProcessedError(
                    f"Payment {payment.session_id} has already been paid",
                    payment_id=payment.id,
                )
            raise SettlementProofInvalid(
                "Settlement proof already used for another payment",
                settlement_ref=proof,
            )

        await db.refresh(payment)
        logger.info(
            f"✅ Payment {payment.session_id} PAID: {transaction.source_amount} "
            f"{transaction.source_currency} -> {transaction.target_amount} "
            f"{transaction.target_currency} at {transaction.exchange_rate} ({transaction.quote_source})"
        )

        await self._notify(transaction)
        await self.bus.publish("payment_paid", {
            "payment_id": payment.id,
            "session_id": payment.session_id,
            "transaction_id": transaction.id,
            "target_amount": str(transaction.target_amount),
            "quote_source": transaction.quote_source,
        })
        return transaction

    def _build_transaction(
        self,
        payment: Payment,
        quote: ConversionQuote,
        status: TransactionStatus
    ) -> Transaction:
        now = self.clock()
        return Transaction(
            payment_id=payment.id,
            source_amount=payment.amount,
            source_currency=payment.currency,
            exchange_rate=quote.rate,
            quote_source=quote.source.value,
            target_amount=quote.target_amount,
            target_currency=self.price_oracle.target_currency,
            status=status,
            required_confirmations=self.required_confirmations,
            confirmation_count=0,
            wallet_address=payment.merchant_address,
            created_at=now,
            updated_at=now,
        )

    async def _record_failure(
        self,
        db: AsyncSession,
        payment: Payment,
        quote: ConversionQuote,
        settlement_ref: Optional[str],
        reason: str
    ) -> None:
        """Persist a FAILED transaction for a rejected proof, then raise."""
        transaction = self._build_transaction(payment, quote, TransactionStatus.FAILED)
        transaction.settlement_ref = (settlement_ref or "")[:130] or None
        transaction.failure_reason = reason
        db.add(transaction)
        await db.commit()

        logger.warning(f"❌ Settlement rejected for {payment.session_id}: {reason}")
        raise SettlementProofInvalid(reason, payment_id=payment.id, transaction_id=transaction.id)

    async def _get_confirmed_by_ref(
        self,
        db: AsyncSession,
        settlement_ref: str
    ) -> Optional[Transaction]:
        result = await db.execute(
            select(Transaction).where(
                Transaction.settlement_ref == settlement_ref,
                Transaction.status == TransactionStatus.CONFIRMED,
            )
        )
        return result.scalar_one_or_none()

    async def _notify(self, transaction: Transaction) -> None:
        # The payment is settled whatever the notifier says
        try:
            await self.notifier.notify(SettlementNotice.from_transaction(transaction))
        except Exception as e:
            logger.error(
                f"Settlement notification failed for transaction {transaction.id}: {e}",
                exc_info=True,
            )

    async def get_transaction(self, db: AsyncSession, transaction_id: str) -> Transaction:
        result = await db.execute(select(Transaction).where(Transaction.id == transaction_id))
        transaction = result.scalar_one_or_none()
        if not transaction:
            raise NotFoundError(
                f"Transaction {transaction_id} not found",
                transaction_id=transaction_id,
            )
        return transaction

    async def list_transactions(
        self,
        db: AsyncSession,
        payment_id: Optional[str] = None,
        status_filter: Optional[TransactionStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> list[Transaction]:
        """Transactions newest first, optionally for one payment or status."""
        query = select(Transaction)
        if payment_id:
            query = query.where(Transaction.payment_id == payment_id)
        if status_filter:
            query = query.where(Transaction.status == status_filter)
        query = query.order_by(Transaction.created_at.desc()).offset(offset).limit(limit)

        result = await db.execute(query)
        return list(result.scalars().all())
