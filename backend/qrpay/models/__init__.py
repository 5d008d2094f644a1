"""Database models package."""

from qrpay.models.merchant import Merchant
from qrpay.models.payment import Payment, PaymentStatus
from qrpay.models.transaction import Transaction, TransactionStatus
from qrpay.models.price_history import PriceHistory

__all__ = [
    "Merchant",
    "Payment",
    "PaymentStatus",
    "Transaction",
    "TransactionStatus",
    "PriceHistory",
]
