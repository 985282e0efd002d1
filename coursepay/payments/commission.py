"""Platform commission vs instructor net, always at the rate captured on the order."""
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlmodel import Session, select

from coursepay.core.config import settings
from coursepay.models import COMMISSION_PERCENTAGE_KEY, CourseOrder, PlatformSetting

log = logging.getLogger("coursepay.commission")

_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class CommissionSplit:
    amount: Decimal
    percentage: Decimal
    commission: Decimal
    instructor_net: Decimal


@dataclass
class InstructorEarnings:
    instructor_id: str
    order_count: int = 0
    total_earned: Decimal = Decimal("0")
    commission_paid: Decimal = Decimal("0")

    @property
    def net_earnings(self) -> Decimal:
        return self.total_earned - self.commission_paid


def calculate_commission(
    amount: Decimal | int | str,
    commission_percentage: Decimal | int | str | None,
    platform_default: Decimal | int | str,
) -> CommissionSplit:
    """commission = amount * pct / 100; the order's own rate wins over the platform default."""
    amount = Decimal(str(amount))
    pct = Decimal(str(commission_percentage if commission_percentage is not None else platform_default))
    commission = (amount * pct / 100).quantize(_CENTS, rounding=ROUND_HALF_UP)
    return CommissionSplit(
        amount=amount,
        percentage=pct,
        commission=commission,
        instructor_net=amount - commission,
    )


def split_for_order(order: CourseOrder, platform_default: Decimal | int | str) -> CommissionSplit:
    return calculate_commission(order.amount, order.commission_percentage, platform_default)


def get_platform_commission(db: Session) -> Decimal:
    """Live platform rate; settings.default_commission_percentage when unset or unreadable."""
    row = db.exec(select(PlatformSetting).where(PlatformSetting.setting_key == COMMISSION_PERCENTAGE_KEY)).first()
    if row is None:
        return Decimal(settings.default_commission_percentage)
    try:
        return Decimal(row.setting_value)
    except InvalidOperation:
        log.warning("Invalid platform commission_percentage=%r, using default", row.setting_value)
        return Decimal(settings.default_commission_percentage)


def set_platform_commission(db: Session, percentage: Decimal, updated_by: str | None = None) -> Decimal:
    """Changes the rate for future orders only; existing orders keep their snapshot."""
    percentage = Decimal(str(percentage))
    if not (Decimal("0") <= percentage <= Decimal("100")):
        raise ValueError("Commission percentage must be between 0 and 100.")
    row = db.exec(select(PlatformSetting).where(PlatformSetting.setting_key == COMMISSION_PERCENTAGE_KEY)).first()
    if row is None:
        row = PlatformSetting(setting_key=COMMISSION_PERCENTAGE_KEY, setting_value=str(percentage))
    row.setting_value = str(percentage)
    row.updated_at = datetime.utcnow()
    row.updated_by = updated_by
    db.add(row)
    db.commit()
    return percentage


def summarize_instructor_earnings(
    rows: Iterable[tuple[CourseOrder, str]],
    platform_default: Decimal | int | str,
) -> list[InstructorEarnings]:
    """(order, instructor_id) pairs of completed orders -> per-instructor totals, highest earner first."""
    by_instructor: dict[str, InstructorEarnings] = {}
    for order, instructor_id in rows:
        split = split_for_order(order, platform_default)
        earnings = by_instructor.setdefault(instructor_id, InstructorEarnings(instructor_id=instructor_id))
        earnings.order_count += 1
        earnings.total_earned += split.amount
        earnings.commission_paid += split.commission
    return sorted(by_instructor.values(), key=lambda e: e.total_earned, reverse=True)
