"""API routers package."""

from qrpay.api import merchants, payments, transactions, oracle, events, deps

__all__ = [
    "merchants",
    "payments",
    "transactions",
    "oracle",
    "events",
    "deps",
]
