import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlmodel import Field, SQLModel


class OrderStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


class CourseOrder(SQLModel, table=True):
    """One course in one checkout. Rows of the same checkout share transaction_uuid."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    course_id: str = Field(index=True)
    amount: Decimal = Field(max_digits=12, decimal_places=2)  # NPR, price at time of order
    # Platform rate snapshot at sale time; None -> current platformsetting applies
    commission_percentage: Decimal | None = Field(default=None, max_digits=5, decimal_places=2)
    payment_method: str  # "esewa" | "khalti"
    # Khalti pidx after initiation, provider transaction reference after completion
    payment_reference: str | None = Field(default=None, index=True)
    transaction_uuid: str | None = Field(default=None, index=True)
    status: str = Field(default=OrderStatus.pending.value, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
