from .payment import (
    CommissionSettingRequest,
    CommissionSettingResponse,
    EsewaCallbackPayload,
    EsewaCheckoutRequest,
    EsewaCheckoutResponse,
    GrantPaymentRequest,
    InstructorEarningsResponse,
    KhaltiCheckoutRequest,
    KhaltiCheckoutResponse,
    KhaltiInitiateResponse,
    KhaltiLookupResponse,
    OrderResponse,
    RecoveryContextIn,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)

__all__ = [
    "CommissionSettingRequest",
    "CommissionSettingResponse",
    "EsewaCallbackPayload",
    "EsewaCheckoutRequest",
    "EsewaCheckoutResponse",
    "GrantPaymentRequest",
    "InstructorEarningsResponse",
    "KhaltiCheckoutRequest",
    "KhaltiCheckoutResponse",
    "KhaltiInitiateResponse",
    "KhaltiLookupResponse",
    "OrderResponse",
    "RecoveryContextIn",
    "VerifyPaymentRequest",
    "VerifyPaymentResponse",
]
