"""
Notification Checker

Decides whether a monitored article should produce a notification right now.
Thresholds come from the database, never from code: article settings win over
user-level settings, which win over the account alert settings.

Reasons are i18n keys under "notification.checker." with format params.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from rerank.analysis.rank_drop import DATA_LAG_DAYS, RankDropDetector, RankDropResult, RankRiseResult
from rerank.database import repository
from rerank.database.models import Article, NotificationSetting, NotificationType
from rerank.integrations.gsc import GSCClient, days_ago

logger = logging.getLogger(__name__)

REASON_PREFIX = "notification.checker."
CONSECUTIVE_WINDOW_PADDING = 5

DEFAULT_THRESHOLDS: Dict[str, Any] = {
    "drop_threshold": 2.0,
    "keyword_drop_threshold": 10,
    "comparison_days": 7,
    "consecutive_drop_days": 3,
    "min_impressions": 100,
    "notification_cooldown_days": 7,
}

# Alert settings use different column names for the same thresholds
ALERT_SETTING_KEYS = {
    "drop_threshold": "position_drop_threshold",
    "keyword_drop_threshold": "keyword_drop_threshold",
    "comparison_days": "comparison_days",
    "consecutive_drop_days": "consecutive_drop_days",
    "min_impressions": "min_impressions",
    "notification_cooldown_days": "notification_cooldown_days",
}


@dataclass
class CheckResult:
    should_notify: bool
    reason_key: str
    reason_params: Dict[str, Any] = field(default_factory=dict)
    settings: Dict[str, Any] = field(default_factory=dict)
    rank_drop_result: Optional[RankDropResult] = None
    rank_rise_result: Optional[RankRiseResult] = None

    @property
    def notification_type(self) -> NotificationType:
        if self.rank_rise_result is not None and self.rank_rise_result.has_rise:
            return NotificationType.RANK_RISE
        return NotificationType.RANK_DROP

    def to_dict(self) -> Dict[str, Any]:
        return {
            "should_notify": self.should_notify,
            "reason": {"key": self.reason_key, "params": self.reason_params},
            "notification_type": self.notification_type.value,
            "settings": self.settings,
            "rank_drop_result": self.rank_drop_result.to_dict() if self.rank_drop_result else None,
            "rank_rise_result": self.rank_rise_result.to_dict() if self.rank_rise_result else None,
        }


def _first_setting(settings: List[NotificationSetting]) -> Optional[NotificationSetting]:
    """Prefer the email row, it carries the thresholds the UI edits."""
    for setting in settings:
        if setting.channel.value == "email":
            return setting
    return settings[0] if settings else None


def resolve_thresholds(
    article_setting: Optional[NotificationSetting],
    user_setting: Optional[NotificationSetting],
    alert_settings: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    """Each threshold from the first source that has a non-NULL value."""
    resolved = {}
    for key, default in DEFAULT_THRESHOLDS.items():
        value = None
        for setting in (article_setting, user_setting):
            if setting is not None and getattr(setting, key) is not None:
                value = getattr(setting, key)
                break
        if value is None and alert_settings:
            value = alert_settings.get(ALERT_SETTING_KEYS[key])
        resolved[key] = default if value is None else value
    return resolved


def days_since(when: datetime, now: datetime) -> int:
    return int((now - when).total_seconds() // 86400)


def count_consecutive_drops(positions: List[float], days: int, threshold: float) -> int:
    """
    Count days in the last `days` rows that sit more than `threshold` below
    the first of them. Any day back within the threshold resets the count.
    """
    recent = positions[-days:]
    base = recent[0]
    count = 0
    for position in recent:
        if position > base + threshold:
            count += 1
        else:
            count = 0
    return count


class NotificationChecker:
    """
    Usage:
        checker = NotificationChecker(gsc_client)
        result = await checker.check_notification_needed(db, user.id, article, site.site_url)
        if result.should_notify:
            ...
    """

    def __init__(self, client: GSCClient):
        self.client = client
        self.detector = RankDropDetector(client)

    def load_settings(self, db: Session, user_id: UUID, article: Article) -> Dict[str, Any]:
        article_setting = _first_setting(
            repository.get_notification_settings(db, user_id, article_id=article.id, enabled_only=True)
        )
        user_setting = _first_setting(
            repository.get_notification_settings(db, user_id, enabled_only=True)
        )
        alert_settings = repository.get_alert_settings(db, user_id)

        thresholds = resolve_thresholds(article_setting, user_setting, alert_settings)
        thresholds["notify_rank_rise"] = bool(alert_settings.get("notify_rank_rise"))
        return thresholds

    async def check_notification_needed(
        self,
        db: Session,
        user_id: UUID,
        article: Article,
        site_url: str,
        now: Optional[datetime] = None,
    ) -> CheckResult:
        now = now or datetime.utcnow()
        settings = self.load_settings(db, user_id, article)
        cooldown = settings["notification_cooldown_days"]

        def skip(reason: str, **params) -> CheckResult:
            return CheckResult(False, REASON_PREFIX + reason, params, settings)

        if article.is_fixed and article.fixed_at:
            if days_since(article.fixed_at, now) < cooldown:
                return skip("fixedArticle", days=cooldown)

        if article.last_notification_sent_at:
            days_ago_sent = days_since(article.last_notification_sent_at, now)
            if days_ago_sent < cooldown:
                return skip("recentNotification", days=cooldown, daysAgo=days_ago_sent)

        today = now.date()
        drop = await self.detector.detect_rank_drop(
            site_url,
            article.url,
            comparison_days=settings["comparison_days"],
            drop_threshold=settings["drop_threshold"],
            keyword_drop_threshold=settings["keyword_drop_threshold"],
            today=today,
        )

        if not drop.has_drop:
            if settings["notify_rank_rise"]:
                rise = await self.detector.detect_rank_rise(
                    site_url,
                    article.url,
                    comparison_days=settings["comparison_days"],
                    rise_threshold=settings["drop_threshold"],
                    today=today,
                )
                if rise.has_rise:
                    return CheckResult(
                        should_notify=True,
                        reason_key=REASON_PREFIX + "rankRiseDetected",
                        reason_params={
                            "from": f"{rise.base_average_position:.1f}",
                            "to": f"{rise.current_average_position:.1f}",
                            "rise": f"{rise.rise_amount:.1f}",
                        },
                        settings=settings,
                        rank_drop_result=drop,
                        rank_rise_result=rise,
                    )
            result = skip("noRankDrop")
            result.rank_drop_result = drop
            return result

        consecutive_days = settings["consecutive_drop_days"]
        if not await self.has_consecutive_drop(
            site_url, article.url, consecutive_days, settings["drop_threshold"], today
        ):
            result = skip("noConsecutiveDrop", days=consecutive_days)
            result.rank_drop_result = drop
            return result

        min_impressions = settings["min_impressions"]
        if drop.dropped_keywords and not any(
            kw.impressions >= min_impressions for kw in drop.dropped_keywords
        ):
            result = skip("noValidKeywords", min=min_impressions)
            result.rank_drop_result = drop
            return result

        logger.info(
            f"Rank drop for {article.url}: "
            f"{drop.base_average_position:.1f} -> {drop.current_average_position:.1f}"
        )
        return CheckResult(
            should_notify=True,
            reason_key=REASON_PREFIX + "rankDropDetected",
            reason_params={
                "from": f"{drop.base_average_position:.1f}",
                "to": f"{drop.current_average_position:.1f}",
                "drop": f"{drop.drop_amount:.1f}",
            },
            settings=settings,
            rank_drop_result=drop,
        )

    async def has_consecutive_drop(
        self,
        site_url: str,
        page_url: str,
        consecutive_days: int,
        threshold: float,
        today=None,
    ) -> bool:
        if consecutive_days <= 0:
            return True

        start_date = days_ago(consecutive_days + CONSECUTIVE_WINDOW_PADDING, today)
        end_date = days_ago(DATA_LAG_DAYS, today)
        rows = await self.client.get_page_time_series(site_url, page_url, start_date, end_date)

        if len(rows) < consecutive_days:
            return False

        count = count_consecutive_drops(
            [row.get("position", 0.0) for row in rows], consecutive_days, threshold
        )
        return count >= consecutive_days - 1
