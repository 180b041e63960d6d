"""Alert action commands and their compact callback payload encoding.

Callback payloads look like ``keep:<position_id>`` or
``save:<bucket>:<index>`` and must stay under Telegram's 64-byte limit.
"""

from dataclasses import dataclass

from hedgebot.utils.constants import (
    ACTION_EDIT,
    ACTION_KEEP,
    ACTION_REMOVE_CHANGE,
    ACTION_REMOVE_PRICE,
    ACTION_SAVE_SUGGESTION,
)

ACK_ACTIONS = frozenset({ACTION_KEEP, ACTION_REMOVE_PRICE, ACTION_REMOVE_CHANGE, ACTION_EDIT})
KNOWN_ACTIONS = ACK_ACTIONS | {ACTION_SAVE_SUGGESTION}
MAX_CALLBACK_BYTES = 64


@dataclass(frozen=True)
class AlertCommand:
    action: str
    position_id: str
    value: str | None = None


def encode_callback(action: str, position_id: str, value: str | None = None) -> str:
    if action not in KNOWN_ACTIONS:
        raise ValueError(f"Unknown action: {action}")
    parts = [action, position_id] if value is None else [action, position_id, value]
    payload = ":".join(parts)
    if len(payload.encode("utf-8")) > MAX_CALLBACK_BYTES:
        raise ValueError(f"Callback payload too long: {payload}")
    return payload


def decode_callback(payload: str) -> AlertCommand | None:
    """Parse a callback payload; None for anything malformed or unknown."""
    parts = payload.split(":")
    if len(parts) not in (2, 3) or parts[0] not in KNOWN_ACTIONS or not parts[1]:
        return None
    value = parts[2] if len(parts) == 3 else None
    return AlertCommand(action=parts[0], position_id=parts[1], value=value)


def alert_buttons(position_id: str, remove_action: str) -> list[tuple[str, str]]:
    """(label, payload) pairs attached to an alert message."""
    return [
        ("♻️ Keep", encode_callback(ACTION_KEEP, position_id)),
        ("🗑 Remove", encode_callback(remove_action, position_id)),
        ("✏️ Edit", encode_callback(ACTION_EDIT, position_id)),
    ]
