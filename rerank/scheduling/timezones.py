"""
Notification time checks in the user's timezone.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


def parse_time_of_day(value: str) -> Optional[Tuple[int, int]]:
    """Parse HH:MM or HH:MM:SS into (hour, minute); None when invalid."""
    parts = value.split(":")
    if len(parts) < 2:
        return None
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute


def _local_now(tz_name: str, now: Optional[datetime]) -> datetime:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name))


def is_notification_time(
    tz_name: str,
    notification_time: str,
    tolerance_minutes: int = 5,
    now: Optional[datetime] = None,
) -> bool:
    """True when local time is within tolerance of notification_time (wraps at midnight)."""
    parsed = parse_time_of_day(notification_time)
    if parsed is None:
        logger.error(f"Invalid notification time: {notification_time}")
        return False

    try:
        local = _local_now(tz_name, now)
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.error(f"Invalid timezone {tz_name}: {e}")
        return False

    current = local.hour * 60 + local.minute
    target = parsed[0] * 60 + parsed[1]
    diff = abs(current - target)
    return min(diff, MINUTES_PER_DAY - diff) <= tolerance_minutes


def get_current_time_in_timezone(tz_name: str, now: Optional[datetime] = None) -> str:
    try:
        local = _local_now(tz_name, now)
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.error(f"Invalid timezone {tz_name}: {e}")
        return "00:00"
    return local.strftime("%H:%M")
