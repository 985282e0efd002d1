import uuid
from datetime import datetime
from decimal import Decimal

from sqlmodel import Field, SQLModel


class Course(SQLModel, table=True):
    """Catalog row, owned by the course editor. Read here for checkout pricing and instructor attribution."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    title: str = ""
    price: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)  # live (possibly dynamic) price, NPR
    instructor_id: str = Field(index=True)
    created_at: datetime | None = Field(default_factory=datetime.utcnow)
