from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class CartItem(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_cartitem_user_course"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    course_id: str
    added_at: datetime = Field(default_factory=datetime.utcnow)
