"""TraderUser model: one row per messaging handle that owns positions."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class TraderUser(SQLModel, table=True):
    __tablename__ = "trader_user"

    id: int | None = Field(default=None, primary_key=True)
    user_handle: str = Field(unique=True, index=True)  # Telegram chat id as text
    username: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
