from datetime import datetime

from sqlmodel import Field, SQLModel

COMMISSION_PERCENTAGE_KEY = "commission_percentage"


class PlatformSetting(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    setting_key: str = Field(unique=True, index=True, max_length=64)
    setting_value: str
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    updated_by: str | None = None
