"""Transaction model for priced, settlement-attempted transfers."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
import uuid

from sqlalchemy import (
    String,
    Text,
    Integer,
    Numeric,
    ForeignKey,
    Index,
    TIMESTAMP,
    Enum as SQLEnum,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from qrpay.core.clock import utcnow
from qrpay.database import Base


class TransactionStatus(str, Enum):
    """Transaction status enum. CONFIRMED and FAILED are terminal."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class Transaction(Base):
    """Crypto transfer priced from an oracle quote and tied to one payment."""

    __tablename__ = "transactions"
    __table_args__ = (
        # At most one confirmed settlement per payment
        Index(
            "uq_transactions_confirmed_payment",
            "payment_id",
            unique=True,
            sqlite_where=text("status = 'CONFIRMED'"),
            postgresql_where=text("status = 'CONFIRMED'"),
        ),
        # A settlement reference settles at most one payment
        Index(
            "uq_transactions_confirmed_settlement_ref",
            "settlement_ref",
            unique=True,
            sqlite_where=text("status = 'CONFIRMED'"),
            postgresql_where=text("status = 'CONFIRMED'"),
        ),
    )

    # Primary Key
    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    payment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("payments.id"),
        nullable=False,
        index=True
    )

    # Fiat side
    source_amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    source_currency: Mapped[str] = mapped_column(String(10), nullable=False, default="ARS")

    # Pricing
    exchange_rate: Mapped[Decimal] = mapped_column(Numeric(30, 12), nullable=False)
    quote_source: Mapped[str] = mapped_column(String(10), nullable=False)  # LIVE|CACHED|FALLBACK

    # Crypto side
    target_amount: Mapped[Decimal] = mapped_column(Numeric(30, 12), nullable=False)
    target_currency: Mapped[str] = mapped_column(String(10), nullable=False, default="USDT")

    # Status
    status: Mapped[TransactionStatus] = mapped_column(
        SQLEnum(TransactionStatus),
        nullable=False,
        default=TransactionStatus.PENDING,
        index=True
    )

    # Settlement
    settlement_ref: Mapped[str | None] = mapped_column(String(130), nullable=True, index=True)
    confirmation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    required_confirmations: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    wallet_address: Mapped[str] = mapped_column(String(66), nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=utcnow,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=utcnow
    )

    payment: Mapped["Payment"] = relationship("Payment", back_populates="transactions")

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, payment_id={self.payment_id}, "
            f"target_amount={self.target_amount}, status={self.status})>"
        )
