"""API dependencies for database access and service wiring."""

from fastapi import Depends, Request

from qrpay.database import get_db
from qrpay.core.clock import Clock, utcnow
from qrpay.services.price_oracle_service import PriceOracleService
from qrpay.services.session_service import PaymentSessionService
from qrpay.services.settlement_notifier import SettlementNotifier
from qrpay.services.transaction_service import TransactionProcessor

__all__ = [
    "get_db",
    "get_clock",
    "get_price_oracle",
    "get_notifier",
    "get_session_service",
    "get_transaction_processor",
]


def get_clock() -> Clock:
    """Time source for request handling; overridden in tests."""
    return utcnow


def get_price_oracle(request: Request) -> PriceOracleService:
    """The oracle service owned by the application lifecycle."""
    return request.app.state.price_oracle


def get_notifier(request: Request) -> SettlementNotifier:
    return request.app.state.settlement_notifier


def get_session_service(
    price_oracle: PriceOracleService = Depends(get_price_oracle),
    clock: Clock = Depends(get_clock)
) -> PaymentSessionService:
    return PaymentSessionService(price_oracle, clock=clock)


def get_transaction_processor(
    sessions: PaymentSessionService = Depends(get_session_service),
    price_oracle: PriceOracleService = Depends(get_price_oracle),
    notifier: SettlementNotifier = Depends(get_notifier),
    clock: Clock = Depends(get_clock)
) -> TransactionProcessor:
    return TransactionProcessor(sessions, price_oracle, notifier, clock=clock)
