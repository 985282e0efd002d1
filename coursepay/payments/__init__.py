from .commission import calculate_commission, get_platform_commission, set_platform_commission, split_for_order
from .errors import (
    CheckoutError,
    MalformedPayload,
    NoMatchingOrder,
    PartialSettlementWarning,
    PaymentError,
    ProviderVerificationFailed,
    SettlementFailed,
    Unauthorized,
)
from .khalti import KhaltiClient
from .reconciler import reconcile
from .resolver import resolve_orders
from .service import grant_orders, normalize_redirect_params, verify_payment
from .types import RecoveryContext, VerificationResult, VerifiedPayment

__all__ = [
    "CheckoutError",
    "KhaltiClient",
    "MalformedPayload",
    "NoMatchingOrder",
    "PartialSettlementWarning",
    "PaymentError",
    "ProviderVerificationFailed",
    "RecoveryContext",
    "SettlementFailed",
    "Unauthorized",
    "VerificationResult",
    "VerifiedPayment",
    "calculate_commission",
    "get_platform_commission",
    "grant_orders",
    "normalize_redirect_params",
    "reconcile",
    "resolve_orders",
    "set_platform_commission",
    "split_for_order",
    "verify_payment",
]
