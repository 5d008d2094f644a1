"""Append-only audit trail of oracle rates."""

from datetime import datetime
from decimal import Decimal
import uuid

from sqlalchemy import String, Numeric, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from qrpay.core.clock import utcnow
from qrpay.database import Base


class PriceHistory(Base):
    """One row per live oracle observation. Never updated or deleted."""

    __tablename__ = "price_history"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    # Pair, e.g. USDT priced in ARS
    base_currency: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    quote_currency: Mapped[str] = mapped_column(String(10), nullable=False, index=True)

    rate: Mapped[Decimal] = mapped_column(Numeric(30, 12), nullable=False)  # Fiat per crypto unit
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    oracle_address: Mapped[str | None] = mapped_column(String(66), nullable=True)

    obtained_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=utcnow,
        index=True
    )

    def __repr__(self) -> str:
        return f"<PriceHistory({self.quote_currency}/{self.base_currency}={self.rate} from {self.source})>"
