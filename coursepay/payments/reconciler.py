"""
Order state machine: pending -> completed, at most once per order.

Every step is a conditional write, so replays and concurrent verifications of
the same payment converge on the same rows without in-process locks:

- the order UPDATE only matches while status is still pending
- enrollments are inserted only when absent, backed by a unique (user_id, course_id)
- cart rows are deleted only when present

Orders are folded one by one; a database error on one order is rolled back,
reported as a failed settlement and does not stop the others.
"""
import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from coursepay.models import CartItem, CourseOrder, Enrollment, OrderStatus

from .errors import PartialSettlementWarning, ProviderVerificationFailed
from .types import OrderSettlement, ReconcileResult, VerifiedPayment

log = logging.getLogger("coursepay.reconciler")


def _transition_order(db: Session, order_id: str, provider_reference: str) -> bool:
    """Compare-and-set pending -> completed. False when another writer got there first."""
    stmt = (
        update(CourseOrder)
        .where(CourseOrder.id == order_id, CourseOrder.status == OrderStatus.pending.value)
        .values(
            status=OrderStatus.completed.value,
            payment_reference=provider_reference,
            updated_at=datetime.utcnow(),
        )
    )
    return db.exec(stmt).rowcount > 0


def _current_status(db: Session, order_id: str) -> str | None:
    return db.exec(select(CourseOrder.status).where(CourseOrder.id == order_id)).first()


def _has_enrollment(db: Session, user_id: str, course_id: str) -> bool:
    stmt = select(Enrollment.id).where(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
    return db.exec(stmt).first() is not None


def _remove_from_cart(db: Session, user_id: str, course_id: str) -> bool:
    stmt = select(CartItem).where(CartItem.user_id == user_id, CartItem.course_id == course_id)
    items = list(db.exec(stmt).all())
    if not items:
        return False
    for item in items:
        db.delete(item)
    db.commit()
    return True


def _settle_order(
    db: Session,
    user_id: str,
    order_id: str,
    course_id: str,
    status: str,
    provider_reference: str,
    warnings: list[PartialSettlementWarning],
) -> OrderSettlement:
    transitioned = False
    if status != OrderStatus.completed.value:
        transitioned = _transition_order(db, order_id, provider_reference)
        if not transitioned:
            status = _current_status(db, order_id)
            if status != OrderStatus.completed.value:
                db.rollback()
                return OrderSettlement(order_id, course_id, "failed", error=f"order is {status or 'missing'}")

    # Also repairs an enrollment missing from an earlier, partially failed run
    enrolled = False
    if not _has_enrollment(db, user_id, course_id):
        db.add(Enrollment(user_id=user_id, course_id=course_id))
        enrolled = True
    try:
        db.commit()
    except IntegrityError:
        # A concurrent verification inserted the enrollment first; keep its row, redo our transition
        db.rollback()
        enrolled = False
        if transitioned:
            transitioned = _transition_order(db, order_id, provider_reference)
            db.commit()

    # The order is settled at this point; a cart failure must not undo that
    try:
        _remove_from_cart(db, user_id, course_id)
    except SQLAlchemyError as e:
        db.rollback()
        message = f"Cart item for course {course_id} could not be removed: {e.__class__.__name__}"
        log.warning("%s (user_id=%s order_id=%s): %s", message, user_id, order_id, e)
        warnings.append(PartialSettlementWarning(kind="order_write_failed", message=message, order_id=order_id))
    return OrderSettlement(
        order_id,
        course_id,
        "completed" if transitioned else "already_completed",
        enrolled=enrolled,
    )


def reconcile(
    db: Session,
    user_id: str,
    payment: VerifiedPayment,
    orders: list[CourseOrder],
) -> ReconcileResult:
    """Settle every resolved order independently. Safe to call again with the same inputs."""
    if not payment.is_completed:
        log.warning(
            "Refusing to settle %s payment %s with status=%s", payment.provider, payment.provider_reference, payment.status
        )
        raise ProviderVerificationFailed("Payment not completed")
    result = ReconcileResult()
    # Plain values up front: commits below expire the ORM instances
    snapshot = [(o.id, o.course_id, o.status) for o in orders]
    for order_id, course_id, status in snapshot:
        try:
            settlement = _settle_order(
                db, user_id, order_id, course_id, status, payment.provider_reference, result.warnings
            )
        except SQLAlchemyError as e:
            db.rollback()
            message = f"Order {order_id} could not be settled: {e.__class__.__name__}"
            log.warning("%s (user_id=%s course_id=%s): %s", message, user_id, course_id, e)
            result.warnings.append(
                PartialSettlementWarning(kind="order_write_failed", message=message, order_id=order_id)
            )
            settlement = OrderSettlement(order_id, course_id, "failed", error=str(e)[:200])

        result.settlements.append(settlement)
        if not settlement.settled:
            continue
        if settlement.enrolled:
            result.enrolled_count += 1
        if course_id not in result.course_ids:
            result.course_ids.append(course_id)

    log.info(
        "Reconciled %s payment %s: user_id=%s completed=%s already=%s failed=%s enrolled=%s",
        payment.provider,
        payment.provider_reference,
        user_id,
        result.newly_completed,
        sum(1 for s in result.settlements if s.outcome == "already_completed"),
        sum(1 for s in result.settlements if not s.settled),
        result.enrolled_count,
    )
    return result
