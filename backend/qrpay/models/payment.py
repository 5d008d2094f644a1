"""Payment session model for merchant QR charges."""

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
    TIMESTAMP,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from qrpay.core.clock import utcnow
from qrpay.database import Base


class PaymentStatus(str, Enum):
    """Payment status enum. PAID and EXPIRED are terminal."""
    PENDING = "PENDING"
    PAID = "PAID"
    EXPIRED = "EXPIRED"


class Payment(Base):
    """A fiat charge presented to the payer as a QR code."""

    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("merchant_id", "session_id", name="uq_payments_merchant_session"),
    )

    # Primary Key
    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    # Session identity carried in the QR (tag 03)
    session_id: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True
    )

    merchant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("merchants.id"),
        nullable=False,
        index=True
    )
    merchant_address: Mapped[str] = mapped_column(String(66), nullable=False)

    # Charge
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="ARS")
    concept: Mapped[str] = mapped_column(String(255), nullable=False)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # QR artifact
    qr_payload: Mapped[str] = mapped_column(Text, nullable=False)
    qr_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Status
    status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)  # Bumped on every status change

    # Timestamps
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False, index=True)
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

    # Relationships
    merchant: Mapped["Merchant"] = relationship("Merchant", back_populates="payments")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="payment",
        order_by="Transaction.created_at"
    )

    def is_past_expiry(self, now: datetime) -> bool:
        return now > self.expires_at

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, session_id={self.session_id}, amount={self.amount}, status={self.status})>"
