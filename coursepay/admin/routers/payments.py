"""Sales & payments: order listing and manual settlement for "paid but not enrolled" tickets."""
from fastapi import APIRouter, Depends
from sqlmodel import Session, col, select

from coursepay.admin.deps import require_admin
from coursepay.core.database import get_db
from coursepay.models import CourseOrder, OrderStatus
from coursepay.payments.service import grant_orders
from coursepay.schemas import GrantPaymentRequest, OrderResponse

router = APIRouter()


@router.get("", response_model=list[OrderResponse])
def payments_list(
    _=Depends(require_admin),
    db: Session = Depends(get_db),
    status_filter: str | None = None,
):
    stmt = select(CourseOrder).order_by(col(CourseOrder.created_at).desc()).limit(200)
    if status_filter and status_filter in {s.value for s in OrderStatus}:
        stmt = stmt.where(CourseOrder.status == status_filter)
    return [OrderResponse.model_validate(o, from_attributes=True) for o in db.exec(stmt).all()]


@router.post("/grant")
def payment_grant(
    body: GrantPaymentRequest,
    _=Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Settle by transaction_uuid (whole checkout) or order_id through the same reconciler as /payments/verify."""
    result = grant_orders(
        db,
        transaction_uuid=body.transaction_uuid,
        order_id=body.order_id,
        provider_reference=body.provider_reference,
    )
    if result.course_ids and result.newly_completed == 0:
        message = "Orders were already settled."
    elif result.course_ids:
        message = "Enrollment granted."
    else:
        message = "No order could be settled."
    return {
        "ok": bool(result.course_ids),
        "message": message,
        "course_ids": result.course_ids,
        "enrolled_count": result.enrolled_count,
        "settlements": [
            {"order_id": s.order_id, "course_id": s.course_id, "outcome": s.outcome, "error": s.error}
            for s in result.settlements
        ],
    }
