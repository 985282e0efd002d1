from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class Enrollment(SQLModel, table=True):
    """Course access. The unique constraint is what keeps concurrent verifications from double-enrolling."""

    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_enrollment_user_course"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    course_id: str = Field(index=True)
    enrolled_at: datetime = Field(default_factory=datetime.utcnow)
