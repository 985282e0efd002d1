from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal

from .errors import PartialSettlementWarning

Provider = Literal["esewa", "khalti"]

PAYMENT_COMPLETED = "completed"


def to_paisa(amount: Decimal | int | float | str) -> int:
    """NPR -> paisa, rounded half up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class VerifiedPayment:
    """Provider response after decoding and verification; built per call, never persisted."""

    provider: Provider
    status: str
    amount: int | None  # paisa; None when the provider did not report it
    provider_reference: str
    correlation_key: str
    batch_key: str | None = None
    signature_valid: bool | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == PAYMENT_COMPLETED


@dataclass
class RecoveryContext:
    """What the browser kept in session storage before leaving for the provider."""

    payment_method: Provider | None = None
    khalti_pidx: str | None = None
    pending_course_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class OrderSettlement:
    order_id: str
    course_id: str
    outcome: Literal["completed", "already_completed", "failed"]
    enrolled: bool = False
    error: str | None = None

    @property
    def settled(self) -> bool:
        return self.outcome != "failed"


@dataclass
class ReconcileResult:
    course_ids: list[str] = field(default_factory=list)
    enrolled_count: int = 0
    settlements: list[OrderSettlement] = field(default_factory=list)
    warnings: list[PartialSettlementWarning] = field(default_factory=list)

    @property
    def newly_completed(self) -> int:
        return sum(1 for s in self.settlements if s.outcome == "completed")


@dataclass
class VerificationResult:
    success: bool
    course_ids: list[str] = field(default_factory=list)
    message: str | None = None
    error: str | None = None
    warnings: list[PartialSettlementWarning] = field(default_factory=list)
