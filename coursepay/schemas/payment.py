from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


# ---------- Provider payloads (validated at the adapter boundary) ----------
class EsewaCallbackPayload(BaseModel):
    """Decoded `data` parameter of the eSewa success redirect."""

    transaction_uuid: str = Field(min_length=1)
    status: str = Field(min_length=1)
    total_amount: str = Field(min_length=1)
    transaction_code: str = Field(min_length=1)
    signature: str = Field(min_length=1)
    product_code: str | None = None
    signed_field_names: str | None = None

    @field_validator("total_amount", mode="before")
    @classmethod
    def amount_as_text(cls, v: Any) -> Any:
        # eSewa sends "1500.0" or "1,500.0"; numbers keep their text form for the signature message
        if isinstance(v, bool):
            raise ValueError("total_amount must be a number")
        if isinstance(v, (int, float, Decimal)):
            return str(v)
        return v

    @field_validator("total_amount")
    @classmethod
    def amount_is_numeric(cls, v: str) -> str:
        try:
            value = Decimal(v.replace(",", ""))
        except InvalidOperation:
            raise ValueError("total_amount must be a number")
        if not value.is_finite() or value < 0:
            raise ValueError("total_amount must be a positive number")
        return v

    @property
    def amount(self) -> Decimal:
        return Decimal(self.total_amount.replace(",", ""))


class KhaltiLookupResponse(BaseModel):
    pidx: str
    status: str
    total_amount: int | None = None  # paisa
    transaction_id: str | None = None
    fee: int | None = None
    refunded: bool | None = None


class KhaltiInitiateResponse(BaseModel):
    pidx: str = Field(min_length=1)
    payment_url: str
    expires_at: str | None = None
    expires_in: int | None = None


# ---------- API ----------
class RecoveryContextIn(BaseModel):
    """Session storage the browser kept before the provider redirect."""

    payment_method: Literal["esewa", "khalti"] | None = None
    khalti_pidx: str | None = None
    pending_course_ids: list[str] = []


class VerifyPaymentRequest(BaseModel):
    """
    Either `method` + `data` as the success page parsed them, or the raw
    `redirect_params` (query string of the provider redirect) to be normalized server side.
    """

    method: str | None = None
    data: str | dict[str, Any] | None = None
    redirect_params: dict[str, str] | None = None
    recovery: RecoveryContextIn | None = None


class VerifyPaymentResponse(BaseModel):
    success: bool
    course_ids: list[str] = []
    message: str | None = None
    error: str | None = None


class CheckoutRequest(BaseModel):
    course_ids: list[str] = Field(min_length=1)


class EsewaCheckoutRequest(CheckoutRequest):
    success_url: str | None = None
    failure_url: str | None = None


class KhaltiCheckoutRequest(CheckoutRequest):
    return_url: str | None = None
    website_url: str | None = None
    purchase_order_name: str | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None


class EsewaCheckoutResponse(BaseModel):
    success: bool = True
    order_ids: list[str]
    transaction_uuid: str
    payment_url: str
    form_data: dict[str, str]


class KhaltiCheckoutResponse(BaseModel):
    success: bool = True
    order_ids: list[str]
    transaction_uuid: str
    pidx: str
    payment_url: str


class OrderResponse(BaseModel):
    id: str
    course_id: str
    amount: Decimal
    commission_percentage: Decimal | None = None
    payment_method: str
    payment_reference: str | None = None
    transaction_uuid: str | None = None
    status: str
    created_at: datetime


class GrantPaymentRequest(BaseModel):
    """Support: "I paid but was not enrolled". Settles by batch key or a single order id."""

    transaction_uuid: str | None = None
    order_id: str | None = None
    provider_reference: str | None = None


class CommissionSettingRequest(BaseModel):
    commission_percentage: Decimal = Field(ge=0, le=100)


class CommissionSettingResponse(BaseModel):
    commission_percentage: Decimal


class InstructorEarningsResponse(BaseModel):
    instructor_id: str
    order_count: int
    total_earned: Decimal
    commission_paid: Decimal
    net_earnings: Decimal
