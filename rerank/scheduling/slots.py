"""
Cron slot assignment.

Spreads per-user cron work across the day: each user hashes to a fixed
hour-of-day slot and is processed when the UTC hour matches.
"""

from datetime import datetime, timezone
from typing import Optional

DEFAULT_SLOTS = 24
JST_OFFSET_HOURS = 9


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def hash_string(value: str) -> int:
    """Stable non-negative 32-bit string hash (h * 31 + c, wrapped)."""
    h = 0
    for char in value:
        h = _to_int32((h << 5) - h + ord(char))
    return abs(h)


def get_user_slot(user_id: str, slots: int = DEFAULT_SLOTS) -> int:
    return hash_string(str(user_id)) % slots


def get_current_slot(now: Optional[datetime] = None, slots: int = DEFAULT_SLOTS) -> int:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.hour % slots


def is_user_slot(user_id: str, now: Optional[datetime] = None, slots: int = DEFAULT_SLOTS) -> bool:
    return get_user_slot(user_id, slots) == get_current_slot(now, slots)


def utc_to_jst_hour(hour: int) -> int:
    return (hour + JST_OFFSET_HOURS) % 24
