"""Pydantic schemas package."""

from qrpay.schemas.merchant import MerchantCreate, MerchantResponse, MerchantStats
from qrpay.schemas.payment import (
    PaymentCreate,
    PaymentResponse,
    ScanRequest,
    DecodedQR,
    ScanResponse,
)
from qrpay.schemas.transaction import TransactionConfirm, TransactionResponse
from qrpay.schemas.quote import (
    ConversionQuoteResponse,
    OracleStatusResponse,
    PriceHistoryResponse,
)

__all__ = [
    "MerchantCreate",
    "MerchantResponse",
    "MerchantStats",
    "PaymentCreate",
    "PaymentResponse",
    "ScanRequest",
    "DecodedQR",
    "ScanResponse",
    "TransactionConfirm",
    "TransactionResponse",
    "ConversionQuoteResponse",
    "OracleStatusResponse",
    "PriceHistoryResponse",
]
