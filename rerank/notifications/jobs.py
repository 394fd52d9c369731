"""
Notification Cron Jobs

Two jobs, run by the scheduler through /api/cron/*:

1. check_rank: run the notification checker for every monitored article
   and queue notification rows (sent_at NULL).
2. send_notifications: deliver queued rows per user at the user's
   notification time (email digest + Slack digest).

Search Console data updates daily, so check_rank runs once a day and
send_notifications runs every few minutes.
"""

import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from rerank.database import repository
from rerank.database.models import (
    Article,
    Notification,
    NotificationChannel,
    NotificationFrequency,
    NotificationType,
    Site,
    SlackIntegration,
    SlackTargetType,
)
from rerank.integrations.gsc import GSCClient, GSCError, refresh_access_token
from rerank.integrations.slack import SlackError, send_slack_message
from rerank.scheduling import is_notification_time, is_user_slot
from .checker import NotificationChecker
from .email import EmailNotifier
from .items import NotificationItem, item_from_drop, item_from_rise
from .slack_format import format_bulk_message

logger = logging.getLogger(__name__)

TOKEN_REFRESH_MARGIN = timedelta(minutes=10)
AUTH_ERROR_EMAIL_INTERVAL = timedelta(hours=24)
DEFAULT_NOTIFICATION_TIME = "09:00"
NOTIFICATION_TOLERANCE_MINUTES = 5
MONDAY = 0

SUBJECTS = {
    NotificationType.RANK_DROP: "【ReRank AI】順位下落を検知しました",
    NotificationType.RANK_RISE: "【ReRank AI】順位上昇を検知しました",
}
SUMMARIES = {
    NotificationType.RANK_DROP: "順位下落が検知されました（{count}件の記事）",
    NotificationType.RANK_RISE: "順位上昇が検知されました（{count}件の記事）",
}


class TokenRefreshError(Exception):
    """The site's Search Console token could not be refreshed."""
    pass


# =============================================================================
# HELPERS
# =============================================================================

def frequency_allows(frequency: Optional[str], now: datetime) -> bool:
    """'none' never sends, 'weekly' sends on Mondays (UTC), anything else daily."""
    if frequency == NotificationFrequency.NONE.value:
        return False
    if frequency == NotificationFrequency.WEEKLY.value:
        return now.weekday() == MONDAY
    return True


def notification_subject(notification_type: NotificationType, count: int) -> str:
    subject = SUBJECTS[notification_type]
    return subject if count == 1 else f"{subject}（{count}件の記事）"


def slack_target(
    integration: Optional[SlackIntegration],
    user_setting_recipient: Optional[str] = None,
) -> Optional[str]:
    """Channel id (or user id for DMs) to post to, None without an integration."""
    if integration is None or not integration.slack_bot_token:
        return None
    if user_setting_recipient:
        return user_setting_recipient
    if integration.slack_notification_type == SlackTargetType.DM:
        return integration.slack_user_id
    return integration.slack_channel_id


def _user_slack_recipient(db: Session, user_id: UUID) -> Optional[str]:
    for setting in repository.get_notification_settings(db, user_id, enabled_only=True):
        if setting.channel == NotificationChannel.SLACK and setting.recipient:
            return setting.recipient
    return None


def needs_token_refresh(site: Site, now: datetime) -> bool:
    if site.gsc_token_expires_at is None:
        return site.gsc_refresh_token is not None
    return now >= site.gsc_token_expires_at - TOKEN_REFRESH_MARGIN


# =============================================================================
# RANK CHECK
# =============================================================================

class RankCheckJob:
    """
    Usage:
        with get_db_context() as db:
            result = await RankCheckJob().run(db)
    """

    def __init__(
        self,
        gsc_factory: Callable[[str], GSCClient] = GSCClient,
        token_refresher: Callable = refresh_access_token,
        email_notifier: Optional[EmailNotifier] = None,
    ):
        self.gsc_factory = gsc_factory
        self.token_refresher = token_refresher
        self.email = email_notifier

    def _email(self) -> EmailNotifier:
        if self.email is None:
            self.email = EmailNotifier()
        return self.email

    async def refresh_site_token(self, db: Session, site: Site) -> str:
        if not site.gsc_refresh_token:
            raise TokenRefreshError(f"No refresh token for site {site.id}")
        try:
            access_token, expires_at, new_refresh = await self.token_refresher(site.gsc_refresh_token)
        except GSCError as e:
            raise TokenRefreshError(str(e)) from e

        repository.update_site_tokens(db, site, access_token, expires_at, new_refresh)
        logger.info(f"Refreshed GSC access token for site {site.id}")
        return access_token

    async def handle_auth_failure(self, db: Session, site: Site, user, now: datetime) -> None:
        """Record the auth error; email the user at most once per 24h."""
        previous = site.auth_error_at
        if previous is not None and now - previous <= AUTH_ERROR_EMAIL_INTERVAL:
            logger.info(f"Auth error email for site {site.id} already sent within 24h")
            return

        repository.mark_site_auth_error(db, site, now)
        if user is not None and user.email:
            await self._email().send_auth_error_notification(user.email, site.site_url, user.locale or "ja")
            logger.info(f"Auth error notification sent for site {site.id}")

    async def check_article(self, db: Session, article: Article, site: Site, user, now: datetime):
        access_token = site.gsc_access_token

        if needs_token_refresh(site, now):
            try:
                access_token = await self.refresh_site_token(db, site)
            except TokenRefreshError as e:
                logger.error(f"Token refresh failed for site {site.id}, skipping article {article.id}: {e}")
                await self.handle_auth_failure(db, site, user, now)
                return None

        try:
            return await self._run_checker(db, access_token, article, site, now)
        except GSCError as e:
            if not e.is_auth_error:
                raise

        logger.warning(f"GSC 401 for site {site.id}, refreshing token and retrying")
        try:
            access_token = await self.refresh_site_token(db, site)
        except TokenRefreshError as e:
            logger.error(f"Token refresh after 401 failed for site {site.id}: {e}")
            await self.handle_auth_failure(db, site, user, now)
            return None
        return await self._run_checker(db, access_token, article, site, now)

    async def _run_checker(self, db: Session, access_token: str, article: Article, site: Site, now: datetime):
        async with self.gsc_factory(access_token) as client:
            checker = NotificationChecker(client)
            return await checker.check_notification_needed(db, article.user_id, article, site.site_url, now=now)

    async def run(self, db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()
        articles = repository.get_monitoring_articles(db)
        logger.info(f"Rank check: {len(articles)} monitoring articles")

        by_user: "OrderedDict[UUID, Tuple[Any, List[Tuple[Article, NotificationItem]]]]" = OrderedDict()
        errors = 0

        for article in articles:
            user = repository.get_user(db, article.user_id)
            if user is None or not user.email:
                logger.warning(f"User missing for article {article.id}")
                continue

            site = repository.get_site(db, article.site_id) if article.site_id else None
            if site is None or not site.is_active or not site.gsc_access_token:
                logger.warning(f"No active connected site for article {article.id}")
                continue

            try:
                result = await self.check_article(db, article, site, user, now)
            except Exception as e:
                errors += 1
                logger.error(f"Rank check failed for article {article.id}: {e}")
                continue

            if result is None:
                continue
            if not result.should_notify:
                logger.debug(f"No notification for article {article.id}: {result.reason_key}")
                continue

            if result.notification_type == NotificationType.RANK_RISE:
                item = item_from_rise(article, result.rank_rise_result)
            else:
                item = item_from_drop(article, result.rank_drop_result)
            by_user.setdefault(user.id, (user, []))[1].append((article, item))

        users_queued = 0
        for user_id, (user, entries) in by_user.items():
            try:
                if self.queue_user_notifications(db, user, entries, now):
                    users_queued += 1
            except Exception as e:
                db.rollback()
                errors += 1
                logger.error(f"Failed to queue notifications for user {user_id}: {e}")

        result = {
            "articles_checked": len(articles),
            "users_queued": users_queued,
            "errors": errors,
            "total_notifications": sum(len(entries) for _, entries in by_user.values()),
        }
        logger.info(f"Rank check completed: {result}")
        return result

    def queue_user_notifications(
        self,
        db: Session,
        user,
        entries: List[Tuple[Article, NotificationItem]],
        now: datetime,
    ) -> bool:
        alert_settings = repository.get_alert_settings(db, user.id)
        if not frequency_allows(alert_settings.get("notification_frequency"), now):
            logger.info(f"Skipping user {user.id}: frequency {alert_settings.get('notification_frequency')}")
            return False

        target = slack_target(
            repository.get_slack_integration(db, user.id),
            _user_slack_recipient(db, user.id),
        )
        count = len(entries)

        for article, item in entries:
            notification_type = NotificationType(item.notification_type)
            common = dict(
                notification_type=notification_type,
                article_id=article.id,
                subject=notification_subject(notification_type, count),
                summary=SUMMARIES[notification_type].format(count=count),
                notification_data=item.to_dict(),
            )
            repository.create_notification(db, user.id, NotificationChannel.EMAIL, user.email, **common)
            if target:
                repository.create_notification(db, user.id, NotificationChannel.SLACK, target, **common)

            if notification_type == NotificationType.RANK_DROP:
                repository.record_rank_drop(db, article, now)

        logger.info(f"Queued {count} notifications for user {user.id}")
        return True


async def check_rank(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    return await RankCheckJob().run(db, now=now)


# =============================================================================
# SEND NOTIFICATIONS
# =============================================================================

def user_notification_window(user, alert_settings: Dict[str, Any]) -> Tuple[str, str]:
    """(timezone, "HH:MM"); empty time means the user's hourly slot is used instead."""
    tz_name = alert_settings.get("timezone") or getattr(user, "timezone", None) or "UTC"
    raw_time = alert_settings.get("notification_time")
    if raw_time is None:
        raw_time = DEFAULT_NOTIFICATION_TIME
    return tz_name, str(raw_time)[:5]


def is_due(user, tz_name: str, time_of_day: str, now: datetime) -> bool:
    if not time_of_day:
        return is_user_slot(str(user.id), now)
    return is_notification_time(tz_name, time_of_day, NOTIFICATION_TOLERANCE_MINUTES, now=now)


class NotificationSender:
    """
    Usage:
        with get_db_context() as db:
            result = await NotificationSender().run(db)
    """

    def __init__(
        self,
        email_notifier: Optional[EmailNotifier] = None,
        slack_sender: Callable = send_slack_message,
    ):
        self.email = email_notifier
        self.slack_sender = slack_sender

    def _email(self) -> EmailNotifier:
        if self.email is None:
            self.email = EmailNotifier()
        return self.email

    async def run(self, db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()
        pending = repository.get_pending_notifications(db)

        grouped: "OrderedDict[UUID, List[Notification]]" = OrderedDict()
        for notification in pending:
            grouped.setdefault(notification.user_id, []).append(notification)

        counts = {"users_processed": 0, "emails_sent": 0, "slack_sent": 0, "skipped": 0, "errors": 0}
        logger.info(f"Sending notifications: {len(pending)} pending for {len(grouped)} users")

        for user_id, notifications in grouped.items():
            user = repository.get_user(db, user_id)
            if user is None:
                counts["skipped"] += 1
                continue

            alert_settings = repository.get_alert_settings(db, user_id)
            if not frequency_allows(alert_settings.get("notification_frequency"), now):
                counts["skipped"] += 1
                continue

            tz_name, time_of_day = user_notification_window(user, alert_settings)
            if not is_due(user, tz_name, time_of_day, now):
                logger.debug(f"Not notification time for user {user_id} ({tz_name} {time_of_day})")
                counts["skipped"] += 1
                continue

            try:
                await self.send_user(db, user, notifications, now, counts)
                counts["users_processed"] += 1
            except Exception as e:
                db.rollback()
                counts["errors"] += 1
                logger.error(f"Failed to send notifications to user {user_id}: {e}")

        logger.info(f"Send notifications completed: {counts}")
        return counts

    async def send_user(
        self,
        db: Session,
        user,
        notifications: List[Notification],
        now: datetime,
        counts: Dict[str, int],
    ) -> None:
        locale = user.locale or "ja"
        email_rows = [n for n in notifications if n.channel == NotificationChannel.EMAIL]
        slack_rows = [n for n in notifications if n.channel == NotificationChannel.SLACK]
        delivered: List[Notification] = []

        if email_rows:
            items = [NotificationItem.from_dict(n.notification_data or {}) for n in email_rows]
            result = await self._email().send_bulk_notification(email_rows[0].recipient, items, locale)
            if result.success:
                counts["emails_sent"] += 1
                delivered.extend(email_rows)
            else:
                logger.warning(f"Email not sent to user {user.id}: {result.error}")

        if slack_rows:
            integration = repository.get_slack_integration(db, user.id)
            channel = slack_rows[0].recipient or slack_target(integration)
            if integration is None or not channel:
                logger.warning(f"Slack rows pending for user {user.id} without an integration")
            else:
                items = [NotificationItem.from_dict(n.notification_data or {}) for n in slack_rows]
                try:
                    await self.slack_sender(integration.slack_bot_token, channel, format_bulk_message(items, locale))
                    counts["slack_sent"] += 1
                    delivered.extend(slack_rows)
                except SlackError as e:
                    counts["errors"] += 1
                    logger.error(f"Slack delivery failed for user {user.id}: {e}")

        if not delivered:
            return

        repository.mark_notifications_sent(db, delivered, now)

        article_ids = {n.article_id for n in delivered if n.article_id is not None}
        for article_id in article_ids:
            article = repository.get_article(db, article_id)
            if article is not None:
                repository.record_notification_sent(db, article, now)


async def send_notifications(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    return await NotificationSender().run(db, now=now)
