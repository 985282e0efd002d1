"""Map a verified payment back to the ledger rows it pays for."""
import logging
from dataclasses import dataclass, field

from sqlmodel import Session, col, select

from coursepay.core.config import settings
from coursepay.models import CourseOrder, OrderStatus

from .errors import NoMatchingOrder, PartialSettlementWarning, ProviderVerificationFailed
from .types import RecoveryContext, VerifiedPayment, to_paisa

log = logging.getLogger("coursepay.resolver")

STRATEGY_BATCH_KEY = "batch_key"
STRATEGY_PAYMENT_REFERENCE = "payment_reference"
STRATEGY_PENDING_FALLBACK = "pending_fallback"


@dataclass
class Resolution:
    orders: list[CourseOrder]
    strategy: str
    warnings: list[PartialSettlementWarning] = field(default_factory=list)

    @property
    def total_paisa(self) -> int:
        return sum(to_paisa(o.amount) for o in self.orders)


def _by_batch_key(db: Session, user_id: str, payment: VerifiedPayment) -> list[CourseOrder]:
    key = payment.batch_key or payment.correlation_key
    stmt = (
        select(CourseOrder)
        .where(CourseOrder.transaction_uuid == key, CourseOrder.user_id == user_id)
        .order_by(col(CourseOrder.created_at))
    )
    return list(db.exec(stmt).all())


def _by_payment_reference(db: Session, user_id: str, payment: VerifiedPayment) -> list[CourseOrder]:
    # pidx stored at initiation; after a completion the provider reference replaced it
    refs = {payment.correlation_key, payment.provider_reference}
    stmt = (
        select(CourseOrder)
        .where(col(CourseOrder.payment_reference).in_(refs), CourseOrder.user_id == user_id)
        .order_by(col(CourseOrder.created_at))
    )
    return list(db.exec(stmt).all())


def _pending_fallback(
    db: Session,
    user_id: str,
    payment: VerifiedPayment,
    recovery: RecoveryContext | None,
) -> list[CourseOrder]:
    stmt = (
        select(CourseOrder)
        .where(
            CourseOrder.user_id == user_id,
            CourseOrder.status == OrderStatus.pending.value,
            CourseOrder.payment_method == payment.provider,
        )
        .order_by(col(CourseOrder.created_at).desc())
    )
    if recovery and recovery.pending_course_ids:
        stmt = stmt.where(col(CourseOrder.course_id).in_(recovery.pending_course_ids))
    return list(db.exec(stmt).all())


def check_amount(
    resolution: Resolution,
    payment: VerifiedPayment,
    tolerance_paisa: int,
    strict: bool,
) -> PartialSettlementWarning | None:
    if payment.amount is None:
        return None
    expected = resolution.total_paisa
    if abs(expected - payment.amount) <= tolerance_paisa:
        return None
    message = (
        f"Amount mismatch for {payment.provider} payment {payment.provider_reference}: "
        f"orders total {expected} paisa, provider reported {payment.amount} paisa"
    )
    log.warning("%s (strategy=%s)", message, resolution.strategy)
    if strict:
        raise ProviderVerificationFailed("Paid amount does not match the order total")
    return PartialSettlementWarning(kind="amount_mismatch", message=message)


def resolve_orders(
    db: Session,
    user_id: str,
    payment: VerifiedPayment,
    *,
    recovery: RecoveryContext | None = None,
    tolerance_paisa: int | None = None,
    strict: bool | None = None,
) -> Resolution:
    """
    Find the orders settled by `payment`, first non-empty strategy wins:

    1. transaction_uuid equals the batch key (eSewa transaction_uuid, Khalti purchase_order_id)
    2. payment_reference equals the pidx or the provider transaction reference
    3. the caller's pending orders for this provider, newest first

    Raises NoMatchingOrder when all three come back empty.
    """
    tolerance_paisa = settings.amount_tolerance_paisa if tolerance_paisa is None else tolerance_paisa
    strict = settings.payment_strict_verification if strict is None else strict

    resolution = None
    for strategy, finder in (
        (STRATEGY_BATCH_KEY, lambda: _by_batch_key(db, user_id, payment)),
        (STRATEGY_PAYMENT_REFERENCE, lambda: _by_payment_reference(db, user_id, payment)),
        (STRATEGY_PENDING_FALLBACK, lambda: _pending_fallback(db, user_id, payment, recovery)),
    ):
        orders = finder()
        if orders:
            resolution = Resolution(orders=orders, strategy=strategy)
            break
    if resolution is None:
        log.warning(
            "No order for %s payment: user_id=%s correlation_key=%s reference=%s",
            payment.provider,
            user_id,
            payment.correlation_key,
            payment.provider_reference,
        )
        raise NoMatchingOrder()

    if resolution.strategy == STRATEGY_PENDING_FALLBACK:
        log.info(
            "Resolved %s payment by pending fallback: user_id=%s orders=%s",
            payment.provider,
            user_id,
            [o.id for o in resolution.orders],
        )
    warning = check_amount(resolution, payment, tolerance_paisa, strict)
    if warning:
        resolution.warnings.append(warning)
    return resolution
