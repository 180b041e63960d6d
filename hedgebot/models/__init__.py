"""Database models."""

from hedgebot.models.user import TraderUser
from hedgebot.models.position import OptionKind, TrackedPosition
from hedgebot.models.alert_log import AlertLog

__all__ = [
    "TraderUser",
    "OptionKind",
    "TrackedPosition",
    "AlertLog",
]
