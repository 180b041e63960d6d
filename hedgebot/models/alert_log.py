"""AlertLog model: one row per fired alert."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class AlertLog(SQLModel, table=True):
    __tablename__ = "alert_log"

    id: int | None = Field(default=None, primary_key=True)
    position_id: str = Field(index=True)
    user_handle: str = Field(index=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    kind: str  # "price", "percent_change"
    observed_price: float
    percent_change: float | None = None
    message: str | None = None
