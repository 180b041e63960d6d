"""TrackedPosition model: a user's saved option with its alert configuration."""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlmodel import SQLModel, Field

from hedgebot.utils.constants import CALL_MARKER, PUT_MARKER


class OptionKind(str, Enum):
    CALL = "Call"
    PUT = "Put"

    @property
    def marker(self) -> str:
        return PUT_MARKER if self is OptionKind.PUT else CALL_MARKER


def _new_position_id() -> str:
    return uuid.uuid4().hex


class TrackedPosition(SQLModel, table=True):
    __tablename__ = "tracked_position"

    id: str = Field(default_factory=_new_position_id, primary_key=True)
    user_handle: str = Field(foreign_key="trader_user.user_handle", index=True)

    # Instrument identity, fixed at creation
    asset: str  # "BTC" / "ETH"
    expiry: str  # venue token, e.g. "27DEC24"
    strike: float
    option_kind: OptionKind = OptionKind.PUT

    # Prices in USD
    reference_price: float = 0.0
    last_observed_price: float = 0.0  # 0 = never observed / unpriceable

    # Alert configuration; all zero = alert-inactive
    alert_price_threshold: float = 0.0
    alert_percent_change: float = 0.0
    alert_time_window_minutes: float = 0.0
    alert_pending: bool = False

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def instrument_name(self) -> str:
        from hedgebot.services.deribit_client import build_instrument_name
        return build_instrument_name(self.asset, self.expiry, self.strike, self.option_kind)

    @property
    def is_alert_active(self) -> bool:
        return (
            self.alert_price_threshold > 0
            or self.alert_percent_change > 0
            or self.alert_time_window_minutes > 0
        )

    @property
    def has_percent_alert(self) -> bool:
        return self.alert_percent_change > 0 or self.alert_time_window_minutes > 0
