"""Business logic services package."""

from qrpay.services.merchant_service import (
    create_merchant,
    get_merchant_by_id,
    get_settlement_address,
)
from qrpay.services.oracle_client import StarknetOracleClient
from qrpay.services.price_oracle_service import (
    PriceOracleService,
    OracleQuote,
    ConversionQuote,
    QuoteSource,
)
from qrpay.services.session_service import PaymentSessionService
from qrpay.services.transaction_service import TransactionProcessor
from qrpay.services.settlement_notifier import (
    SettlementNotice,
    LoggingSettlementNotifier,
    WebhookSettlementNotifier,
    build_settlement_notifier,
)

__all__ = [
    # Merchant service
    "create_merchant",
    "get_merchant_by_id",
    "get_settlement_address",
    # Price oracle
    "StarknetOracleClient",
    "PriceOracleService",
    "OracleQuote",
    "ConversionQuote",
    "QuoteSource",
    # Payments
    "PaymentSessionService",
    "TransactionProcessor",
    # Settlement
    "SettlementNotice",
    "LoggingSettlementNotifier",
    "WebhookSettlementNotifier",
    "build_settlement_notifier",
]
