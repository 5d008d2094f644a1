"""Settlement notification boundary towards the external ledger."""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

import httpx

from qrpay.core.errors import UpstreamError, UpstreamTimeoutError
from qrpay.core.events import EventBus, event_bus
from qrpay.models.transaction import Transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementNotice:
    """
    Immutable snapshot of a settled transaction.

    Notifiers receive this rather than the ORM row so that a notice can be
    queued, serialized or retried after the database session is gone.
    """

    transaction_id: str
    payment_id: str
    status: str
    source_amount: Decimal
    source_currency: str
    target_amount: Decimal
    target_currency: str
    exchange_rate: Decimal
    quote_source: str
    settlement_ref: Optional[str]
    wallet_address: str
    created_at: datetime

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> "SettlementNotice":
        status = transaction.status
        return cls(
            transaction_id=transaction.id,
            payment_id=transaction.payment_id,
            status=status.value if hasattr(status, "value") else str(status),
            source_amount=transaction.source_amount,
            source_currency=transaction.source_currency,
            target_amount=transaction.target_amount,
            target_currency=transaction.target_currency,
            exchange_rate=transaction.exchange_rate,
            quote_source=transaction.quote_source,
            settlement_ref=transaction.settlement_ref,
            wallet_address=transaction.wallet_address,
            created_at=transaction.created_at,
        )

    def to_json(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Decimal):
                data[key] = str(value)
            elif isinstance(value, datetime):
                data[key] = value.isoformat()
        return data


class SettlementNotifier(Protocol):
    """One-shot delivery of a settlement outcome. Raises UpstreamError on failure."""

    async def notify(self, notice: SettlementNotice) -> None:
        ...


class LoggingSettlementNotifier:
    """Default notifier: logs the settlement and publishes it on the event bus."""

    def __init__(self, bus: EventBus = event_bus):
        self.bus = bus

    async def notify(self, notice: SettlementNotice) -> None:
        logger.info(
            f"💰 Settlement recorded: {notice.source_amount} {notice.source_currency} -> "
            f"{notice.target_amount} {notice.target_currency} to {notice.wallet_address} "
            f"(tx={notice.transaction_id}, ref={notice.settlement_ref}, quote={notice.quote_source})"
        )
        await self.bus.publish("settlement_recorded", notice.to_json())


class WebhookSettlementNotifier:
    """POSTs the settlement notice as JSON to an external ledger endpoint."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def notify(self, notice: SettlementNotice) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.url, json=notice.to_json())
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(
                f"Settlement webhook timed out after {self.timeout}s",
                transaction_id=notice.transaction_id,
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(
                f"Settlement webhook failed: {e}",
                transaction_id=notice.transaction_id,
            ) from e

        if resp.status_code >= 400:
            raise UpstreamError(
                f"Settlement webhook answered {resp.status_code}",
                transaction_id=notice.transaction_id,
            )

        logger.info(f"Settlement {notice.transaction_id} delivered to {self.url}")


def build_settlement_notifier(url: str, timeout: float) -> SettlementNotifier:
    """Webhook notifier when a URL is configured, log-only otherwise."""
    if url:
        return WebhookSettlementNotifier(url, timeout=timeout)
    return LoggingSettlementNotifier()
