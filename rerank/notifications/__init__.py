"""
Notifications

- checker: should this article notify now (thresholds, cooldown, consecutive drop)
- email: Resend delivery
- slack_format: Block Kit messages
- jobs: check-rank and send-notifications cron jobs
"""

from .checker import CheckResult, NotificationChecker, resolve_thresholds, count_consecutive_drops
from .email import EmailNotifier, EmailResult
from .items import NotificationItem, item_from_drop, item_from_rise
from .slack_format import format_rank_drop_message, format_bulk_message
from .jobs import (
    NotificationSender,
    RankCheckJob,
    check_rank,
    send_notifications,
    frequency_allows,
)

__all__ = [
    "CheckResult",
    "NotificationChecker",
    "resolve_thresholds",
    "count_consecutive_drops",
    "EmailNotifier",
    "EmailResult",
    "NotificationItem",
    "item_from_drop",
    "item_from_rise",
    "format_rank_drop_message",
    "format_bulk_message",
    "NotificationSender",
    "RankCheckJob",
    "check_rank",
    "send_notifications",
    "frequency_allows",
]
