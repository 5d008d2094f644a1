"""Domain error taxonomy for the payment engine.

Every error carries a machine readable ``code`` and the HTTP status the API
layer renders it with. Services raise these; routers never translate them by
hand (see the exception handler in ``qrpay.main``).
"""

from typing import Any, Dict


class PaymentError(Exception):
    """Base class for all payment engine errors."""

    code: str = "PAYMENT_ERROR"
    status_code: int = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            detail["details"] = self.details
        return detail


class ValidationError(PaymentError):
    """Malformed request data."""

    code = "VALIDATION_ERROR"
    status_code = 400


class MalformedPayload(ValidationError):
    """QR payload that fails TLV structure or checksum validation."""

    code = "MALFORMED_PAYLOAD"


class NotFoundError(PaymentError):
    code = "NOT_FOUND"
    status_code = 404


class ExpiredError(PaymentError):
    """Payment session is past its TTL; the client should regenerate a QR."""

    code = "PAYMENT_EXPIRED"
    status_code = 410


class AlreadyProcessedError(PaymentError):
    """Payment already settled; the client should treat the charge as done."""

    code = "ALREADY_PROCESSED"
    status_code = 409


class PricingUnavailableError(PaymentError):
    """No live, cached or fallback rate is available."""

    code = "PRICING_UNAVAILABLE"
    status_code = 503


class SettlementProofInvalid(PaymentError):
    code = "SETTLEMENT_PROOF_INVALID"
    status_code = 422


class UpstreamError(PaymentError):
    """An external collaborator (oracle RPC, settlement sink) failed."""

    code = "UPSTREAM_ERROR"
    status_code = 502


class UpstreamTimeoutError(UpstreamError):
    code = "UPSTREAM_TIMEOUT"
    status_code = 504
