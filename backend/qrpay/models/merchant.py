"""Merchant database model."""

from datetime import datetime
import uuid

from sqlalchemy import String, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column, relationship

from qrpay.core.clock import utcnow
from qrpay.database import Base


class Merchant(Base):
    """Merchant that receives settlements at a single wallet address."""

    __tablename__ = "merchants"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)

    # Settlement wallet embedded in every QR (Starknet address, 0x + up to 64 hex)
    wallet_address: Mapped[str | None] = mapped_column(String(66), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=utcnow
    )

    payments: Mapped[list["Payment"]] = relationship(
        "Payment",
        back_populates="merchant"
    )

    def __repr__(self) -> str:
        return f"<Merchant(id={self.id}, name={self.name})>"
