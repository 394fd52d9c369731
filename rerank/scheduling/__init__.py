"""Cron scheduling helpers: user slots and timezone windows."""

from .slots import hash_string, get_user_slot, get_current_slot, is_user_slot, utc_to_jst_hour
from .timezones import is_notification_time, get_current_time_in_timezone, parse_time_of_day

__all__ = [
    "hash_string",
    "get_user_slot",
    "get_current_slot",
    "is_user_slot",
    "utc_to_jst_hour",
    "is_notification_time",
    "get_current_time_in_timezone",
    "parse_time_of_day",
]
