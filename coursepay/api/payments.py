from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session, col, select

from coursepay.api.deps import get_current_user_id, get_khalti_client
from coursepay.core.config import is_esewa_configured, is_khalti_configured, settings
from coursepay.core.database import get_db
from coursepay.core.rate_limit import limiter
from coursepay.models import CourseOrder
from coursepay.payments import checkout
from coursepay.payments.khalti import KhaltiClient
from coursepay.payments.service import normalize_redirect_params, verify_payment
from coursepay.payments.types import RecoveryContext
from coursepay.schemas import (
    EsewaCheckoutRequest,
    EsewaCheckoutResponse,
    KhaltiCheckoutRequest,
    KhaltiCheckoutResponse,
    OrderResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)

router = APIRouter(prefix="/payments", tags=["payments"])
_CHECKOUT_LIMIT = f"{settings.rate_limit_per_minute}/minute"
_VERIFY_LIMIT = f"{settings.rate_limit_verify_per_minute}/minute"


@router.post("/esewa/initiate", response_model=EsewaCheckoutResponse)
@limiter.limit(_CHECKOUT_LIMIT)
def esewa_initiate(
    request: Request,
    body: EsewaCheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Pending orders + signed form; the browser POSTs form_data to payment_url."""
    if not is_esewa_configured():
        raise HTTPException(status_code=503, detail="eSewa payments are not configured.")
    return checkout.initiate_esewa_checkout(
        db,
        user_id,
        body.course_ids,
        success_url=body.success_url,
        failure_url=body.failure_url,
    )


@router.post("/khalti/initiate", response_model=KhaltiCheckoutResponse)
@limiter.limit(_CHECKOUT_LIMIT)
async def khalti_initiate(
    request: Request,
    body: KhaltiCheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    client: KhaltiClient = Depends(get_khalti_client),
):
    """Pending orders + Khalti initiate; keep `pidx` in session storage for the recovery context."""
    if not is_khalti_configured():
        raise HTTPException(status_code=503, detail="Khalti payments are not configured.")
    return await checkout.initiate_khalti_checkout(
        db,
        user_id,
        body.course_ids,
        client,
        return_url=body.return_url,
        website_url=body.website_url,
        purchase_order_name=body.purchase_order_name,
        customer_name=body.customer_name,
        customer_email=body.customer_email,
        customer_phone=body.customer_phone,
    )


@router.post("/verify", response_model=VerifyPaymentResponse)
@limiter.limit(_VERIFY_LIMIT)
async def verify(
    request: Request,
    body: VerifyPaymentRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    client: KhaltiClient = Depends(get_khalti_client),
):
    """Success page callback. Safe to repeat; failures come back as {success: false, error}."""
    method, raw_data = body.method, body.data
    if body.redirect_params:
        redirect_method, redirect_data = normalize_redirect_params(body.redirect_params)
        method = method or redirect_method
        raw_data = raw_data if raw_data is not None else redirect_data
    recovery = None
    if body.recovery:
        recovery = RecoveryContext(
            payment_method=body.recovery.payment_method,
            khalti_pidx=body.recovery.khalti_pidx,
            pending_course_ids=list(body.recovery.pending_course_ids),
        )
    result = await verify_payment(db, user_id, method, raw_data, recovery=recovery, khalti_client=client)
    return VerifyPaymentResponse(success=result.success, course_ids=result.course_ids, message=result.message)


@router.get("/orders", response_model=list[OrderResponse])
def my_orders(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    status: str | None = None,
):
    stmt = select(CourseOrder).where(CourseOrder.user_id == user_id)
    if status:
        stmt = stmt.where(CourseOrder.status == status)
    orders = db.exec(stmt.order_by(col(CourseOrder.created_at).desc()).limit(200)).all()
    return [OrderResponse.model_validate(o, from_attributes=True) for o in orders]
