"""Payment failure taxonomy. Hard failures are exceptions; non-fatal issues are PartialSettlementWarning."""
from dataclasses import dataclass


class PaymentError(Exception):
    code = "payment_error"
    status_code = 400

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class Unauthorized(PaymentError):
    code = "unauthorized"
    status_code = 401


class MalformedPayload(PaymentError):
    code = "malformed_payload"
    status_code = 400


class ProviderVerificationFailed(PaymentError):
    code = "provider_verification_failed"
    status_code = 400


class NoMatchingOrder(PaymentError):
    code = "no_matching_order"
    status_code = 404

    def __init__(self, message: str = "No matching order found for this payment. Please contact support."):
        super().__init__(message)


class SettlementFailed(PaymentError):
    code = "settlement_failed"
    status_code = 500


class CheckoutError(PaymentError):
    code = "checkout_error"
    status_code = 400


@dataclass(frozen=True)
class PartialSettlementWarning:
    """Non-fatal issue: signature mismatch, amount mismatch or a per-order write failure. Logged, never raised."""

    kind: str  # "signature_mismatch" | "amount_mismatch" | "order_write_failed"
    message: str
    order_id: str | None = None

    def __str__(self) -> str:
        return self.message
