"""Checkout initiation: one pending order per course, all sharing a batch transaction_uuid."""
import logging
import time
import uuid
from decimal import Decimal

from sqlalchemy import update
from sqlmodel import Session, col, select

from coursepay.core.config import settings
from coursepay.models import Course, CourseOrder, OrderStatus
from coursepay.schemas.payment import EsewaCheckoutResponse, KhaltiCheckoutResponse

from . import esewa
from .commission import get_platform_commission
from .errors import CheckoutError, ProviderVerificationFailed
from .khalti import KhaltiClient
from .types import Provider, to_paisa

log = logging.getLogger("coursepay.checkout")


def new_transaction_uuid() -> str:
    """<epoch ms>-<8 hex>; unique per checkout, used as eSewa transaction_uuid and Khalti purchase_order_id."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def create_pending_orders(
    db: Session,
    user_id: str,
    course_ids: list[str],
    method: Provider,
) -> list[CourseOrder]:
    ids = list(dict.fromkeys(c for c in course_ids if c))
    if not ids:
        raise CheckoutError("Cart is empty.")
    courses = {c.id: c for c in db.exec(select(Course).where(col(Course.id).in_(ids))).all()}
    missing = [c for c in ids if c not in courses]
    if missing:
        raise CheckoutError(f"Course not found: {', '.join(missing)}")
    if sum(courses[c].price for c in ids) <= 0:
        raise CheckoutError("Nothing to pay for.")

    # Frozen on every order so later rate changes do not rewrite past settlements
    commission = get_platform_commission(db)
    transaction_uuid = new_transaction_uuid()
    orders = [
        CourseOrder(
            user_id=user_id,
            course_id=course_id,
            amount=courses[course_id].price,
            commission_percentage=commission,
            payment_method=method,
            status=OrderStatus.pending.value,
            transaction_uuid=transaction_uuid,
        )
        for course_id in ids
    ]
    db.add_all(orders)
    db.commit()
    for order in orders:
        db.refresh(order)
    log.info(
        "Created %s pending %s orders: user_id=%s transaction_uuid=%s",
        len(orders),
        method,
        user_id,
        transaction_uuid,
    )
    return orders


def _total(orders: list[CourseOrder]) -> Decimal:
    return sum((o.amount for o in orders), Decimal("0"))


def initiate_esewa_checkout(
    db: Session,
    user_id: str,
    course_ids: list[str],
    *,
    success_url: str | None = None,
    failure_url: str | None = None,
) -> EsewaCheckoutResponse:
    orders = create_pending_orders(db, user_id, course_ids, "esewa")
    transaction_uuid = orders[0].transaction_uuid or ""
    base = settings.frontend_url.rstrip("/")
    form = esewa.build_form(
        total_amount=_total(orders),
        transaction_uuid=transaction_uuid,
        success_url=(success_url or "").strip() or f"{base}/payment/success?method=esewa",
        failure_url=(failure_url or "").strip() or f"{base}/payment/failure?method=esewa",
    )
    return EsewaCheckoutResponse(
        order_ids=[o.id for o in orders],
        transaction_uuid=transaction_uuid,
        payment_url=settings.esewa_payment_url,
        form_data=form,
    )


async def initiate_khalti_checkout(
    db: Session,
    user_id: str,
    course_ids: list[str],
    client: KhaltiClient,
    *,
    return_url: str | None = None,
    website_url: str | None = None,
    purchase_order_name: str | None = None,
    customer_name: str | None = None,
    customer_email: str | None = None,
    customer_phone: str | None = None,
) -> KhaltiCheckoutResponse:
    orders = create_pending_orders(db, user_id, course_ids, "khalti")
    transaction_uuid = orders[0].transaction_uuid or ""
    order_ids = [o.id for o in orders]
    base = settings.frontend_url.rstrip("/")
    payload = {
        "return_url": (return_url or "").strip() or f"{base}/payment/success?method=khalti",
        "website_url": (website_url or "").strip() or base,
        "amount": to_paisa(_total(orders)),
        "purchase_order_id": transaction_uuid,
        "purchase_order_name": (purchase_order_name or "").strip() or "Course Purchase",
    }
    customer_info = {
        k: v.strip()
        for k, v in (("name", customer_name), ("email", customer_email), ("phone", customer_phone))
        if v and v.strip()
    }
    if customer_info:
        payload["customer_info"] = customer_info

    try:
        initiated = await client.initiate(payload)
    except ProviderVerificationFailed:
        # The user never reached Khalti: keep these rows out of the pending fallback
        db.exec(
            update(CourseOrder)
            .where(col(CourseOrder.id).in_(order_ids), CourseOrder.status == OrderStatus.pending.value)
            .values(status=OrderStatus.failed.value)
        )
        db.commit()
        raise

    db.exec(
        update(CourseOrder)
        .where(col(CourseOrder.id).in_(order_ids))
        .values(payment_reference=initiated.pidx)
    )
    db.commit()
    log.info("Khalti payment initiated: transaction_uuid=%s pidx=%s", transaction_uuid, initiated.pidx)
    return KhaltiCheckoutResponse(
        order_ids=order_ids,
        transaction_uuid=transaction_uuid,
        pidx=initiated.pidx,
        payment_url=initiated.payment_url,
    )
