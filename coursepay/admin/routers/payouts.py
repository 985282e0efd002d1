"""Instructor earnings from completed orders, each at its own commission snapshot."""
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select

from coursepay.admin.deps import require_admin
from coursepay.core.database import get_db
from coursepay.models import Course, CourseOrder, OrderStatus
from coursepay.payments.commission import get_platform_commission, summarize_instructor_earnings
from coursepay.schemas import InstructorEarningsResponse

router = APIRouter()


@router.get("/earnings", response_model=list[InstructorEarningsResponse])
def instructor_earnings(
    _=Depends(require_admin),
    db: Session = Depends(get_db),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    instructor_id: str | None = Query(None),
):
    stmt = (
        select(CourseOrder, Course.instructor_id)
        .join(Course, Course.id == CourseOrder.course_id)
        .where(CourseOrder.status == OrderStatus.completed.value)
    )
    if date_from:
        stmt = stmt.where(CourseOrder.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        stmt = stmt.where(CourseOrder.created_at <= datetime.combine(date_to, time.max))
    if instructor_id:
        stmt = stmt.where(Course.instructor_id == instructor_id)
    rows = db.exec(stmt).all()
    summary = summarize_instructor_earnings(rows, get_platform_commission(db))
    return [
        InstructorEarningsResponse(
            instructor_id=e.instructor_id,
            order_count=e.order_count,
            total_earned=e.total_earned,
            commission_paid=e.commission_paid,
            net_earnings=e.net_earnings,
        )
        for e in summary
    ]
