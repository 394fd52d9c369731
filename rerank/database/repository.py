"""
Repository Layer - Clean Interface for Data Operations

Provides simple functions to store and retrieve records. Every function takes
the caller's session; write helpers commit so API routes and cron jobs stay
short.
"""

import logging
from datetime import datetime
from typing import List, Dict, Any, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from .models import (
    Plan, Site, Article, AnalysisRun, AnalysisResult, ArticleSuggestion,
    Notification, NotificationSetting, UserAlertSettings, SlackIntegration,
    AnalysisStatus, AnalysisTrigger, NotificationChannel, NotificationFrequency,
    NotificationType, SlackTargetType, SuggestionStatus,
)

logger = logging.getLogger(__name__)


# =============================================================================
# PLANS
# =============================================================================

DEFAULT_PLANS: List[Dict[str, Any]] = [
    {
        "name": "free",
        "display_name": "Free",
        "base_price_usd": 0,
        "max_articles": 3,
        "max_analyses_per_month": 5,
        "max_sites": 1,
        "max_concurrent_analyses": 1,
        "max_article_suggestions_per_month": 1,
        "analysis_history_days": 30,
        "features": {"slack": False, "email": True},
        "sort_order": 0,
    },
    {
        "name": "starter",
        "display_name": "Starter",
        "base_price_usd": 2900,
        "max_articles": 20,
        "max_analyses_per_month": 50,
        "max_sites": 3,
        "max_concurrent_analyses": 2,
        "max_article_suggestions_per_month": 10,
        "analysis_history_days": 90,
        "features": {"slack": True, "email": True},
        "sort_order": 1,
    },
    {
        "name": "standard",
        "display_name": "Standard",
        "base_price_usd": 7900,
        "max_articles": 100,
        "max_analyses_per_month": 200,
        "max_sites": 10,
        "max_concurrent_analyses": 3,
        "max_article_suggestions_per_month": 50,
        "analysis_history_days": 365,
        "features": {"slack": True, "email": True},
        "sort_order": 2,
    },
    {
        "name": "business",
        "display_name": "Business",
        "base_price_usd": 19900,
        "max_articles": None,
        "max_analyses_per_month": None,
        "max_sites": None,
        "max_concurrent_analyses": 5,
        "max_article_suggestions_per_month": None,
        "analysis_history_days": None,
        "features": {"slack": True, "email": True, "priority_support": True},
        "sort_order": 3,
    },
]


def seed_default_plans(db: Session) -> int:
    """Insert the default plans when the plans table is empty. Returns rows added."""
    if db.query(Plan).count() > 0:
        return 0

    for values in DEFAULT_PLANS:
        db.add(Plan(**values))
    db.flush()
    return len(DEFAULT_PLANS)


def get_plan_by_name(db: Session, name: str) -> Optional[Plan]:
    return db.query(Plan).filter(Plan.name == name).first()


def get_plan_by_id(db: Session, plan_id: UUID) -> Optional[Plan]:
    return db.query(Plan).filter(Plan.id == plan_id).first()


def get_active_plans(db: Session) -> List[Plan]:
    return (
        db.query(Plan)
        .filter(Plan.is_active.is_(True))
        .order_by(Plan.sort_order, Plan.base_price_usd)
        .all()
    )


# =============================================================================
# USERS
# =============================================================================

def _user_model():
    # Imported lazily: rerank.auth imports this package
    from rerank.auth.models import User
    return User


def get_user(db: Session, user_id: UUID):
    User = _user_model()
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_stripe_customer(db: Session, customer_id: str):
    User = _user_model()
    return db.query(User).filter(User.stripe_customer_id == customer_id).first()


def update_user_locale(db: Session, user, locale: str):
    user.locale = locale
    db.commit()
    return user


def update_user_timezone(db: Session, user, timezone: Optional[str]):
    user.timezone = timezone
    db.commit()
    return user


def update_user_plan(
    db: Session,
    user,
    plan: Plan,
    started_at: Optional[datetime] = None,
    ends_at: Optional[datetime] = None,
):
    """Switch a user to a plan. ends_at None means open-ended."""
    user.plan_id = plan.id
    user.plan_started_at = started_at or datetime.utcnow()
    user.plan_ends_at = ends_at
    db.commit()
    logger.info(f"User {user.id} moved to plan {plan.name}")
    return user


def update_stripe_customer_id(db: Session, user, customer_id: str):
    user.stripe_customer_id = customer_id
    db.commit()
    return user


def update_stripe_subscription_id(db: Session, user, subscription_id: Optional[str]):
    user.stripe_subscription_id = subscription_id
    db.commit()
    return user


# =============================================================================
# SITES
# =============================================================================

def save_or_update_site(
    db: Session,
    user_id: UUID,
    site_url: str,
    access_token: Optional[str] = None,
    refresh_token: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    display_name: Optional[str] = None,
) -> Site:
    """Upsert by (user, site_url); saving always re-activates the site."""
    site = (
        db.query(Site)
        .filter(Site.user_id == user_id, Site.site_url == site_url)
        .first()
    )

    if site is None:
        site = Site(user_id=user_id, site_url=site_url)
        db.add(site)

    if access_token:
        site.gsc_access_token = access_token
        site.auth_error_at = None
    if refresh_token:
        site.gsc_refresh_token = refresh_token
    if expires_at:
        site.gsc_token_expires_at = expires_at
    if display_name:
        site.display_name = display_name
    site.is_active = True

    db.commit()
    db.refresh(site)
    return site


def get_sites(db: Session, user_id: UUID, active_only: bool = True) -> List[Site]:
    query = db.query(Site).filter(Site.user_id == user_id)
    if active_only:
        query = query.filter(Site.is_active.is_(True))
    return query.order_by(Site.created_at.desc()).all()


def get_site(db: Session, site_id: UUID) -> Optional[Site]:
    return db.query(Site).filter(Site.id == site_id).first()


def get_connected_site(db: Session, user_id: UUID, site_id: Optional[UUID] = None) -> Optional[Site]:
    """Active site with a stored access token; a specific one when site_id is given."""
    query = db.query(Site).filter(
        Site.user_id == user_id,
        Site.is_active.is_(True),
        Site.gsc_access_token.isnot(None),
    )
    if site_id is not None:
        query = query.filter(Site.id == site_id)
    return query.order_by(Site.updated_at.desc()).first()


def deactivate_site(db: Session, site: Site) -> Site:
    site.is_active = False
    db.commit()
    return site


def update_site_tokens(
    db: Session,
    site: Site,
    access_token: str,
    expires_at: datetime,
    refresh_token: Optional[str] = None,
) -> Site:
    """Store refreshed tokens and clear any earlier auth error."""
    site.gsc_access_token = access_token
    site.gsc_token_expires_at = expires_at
    if refresh_token:
        site.gsc_refresh_token = refresh_token
    site.auth_error_at = None
    db.commit()
    return site


def mark_site_auth_error(db: Session, site: Site, when: Optional[datetime] = None) -> Site:
    site.auth_error_at = when or datetime.utcnow()
    db.commit()
    return site


def convert_url_property_to_domain_property(db: Session, site: Site) -> Site:
    """Rewrite "https://example.com/" to "sc-domain:example.com"."""
    if site.site_url.startswith("sc-domain:"):
        return site

    host = urlsplit(site.site_url).netloc or site.site_url
    host = host.split(":")[0]
    if host.startswith("www."):
        host = host[4:]
    site.site_url = f"sc-domain:{host}"
    db.commit()
    logger.info(f"Site {site.id} converted to domain property {site.site_url}")
    return site


# =============================================================================
# ARTICLES
# =============================================================================

ARTICLE_FILTERS = ("all", "monitoring", "fixed")
ARTICLE_SORTS = ("date", "title", "created")


def normalize_article_url(url: str) -> str:
    """Drop the #fragment so the same page is stored once."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url.split("#", 1)[0]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, ""))


def _live_articles(db: Session, user_id: UUID):
    return db.query(Article).filter(Article.user_id == user_id, Article.deleted_at.is_(None))


def get_article(db: Session, article_id: UUID) -> Optional[Article]:
    return (
        db.query(Article)
        .filter(Article.id == article_id, Article.deleted_at.is_(None))
        .first()
    )


def get_article_by_url(db: Session, user_id: UUID, url: str) -> Optional[Article]:
    return (
        _live_articles(db, user_id)
        .filter(Article.url == normalize_article_url(url))
        .first()
    )


def save_or_update_article(
    db: Session,
    user_id: UUID,
    url: str,
    site_id: Optional[UUID] = None,
    title: Optional[str] = None,
    keywords: Optional[List[str]] = None,
) -> Article:
    """Upsert by (user, normalized url). New articles start monitored daily."""
    article = get_article_by_url(db, user_id, url)

    if article is not None:
        article.site_id = site_id or article.site_id
        article.title = title or article.title
        article.keywords = keywords or article.keywords
    else:
        article = Article(
            user_id=user_id,
            site_id=site_id,
            url=normalize_article_url(url),
            title=title,
            keywords=keywords,
            is_monitoring=True,
            monitoring_frequency="daily",
        )
        db.add(article)

    db.commit()
    db.refresh(article)
    return article


def list_articles(
    db: Session,
    user_id: UUID,
    filter: str = "all",
    sort_by: str = "date",
    page: int = 1,
    page_size: int = 20,
) -> Dict[str, Any]:
    """Paginated article list with filter (all|monitoring|fixed) and sort (date|title|created)."""
    query = _live_articles(db, user_id)
    if filter == "monitoring":
        query = query.filter(Article.is_monitoring.is_(True))
    elif filter == "fixed":
        query = query.filter(Article.is_fixed.is_(True))

    total = query.count()

    if sort_by == "title":
        query = query.order_by(Article.title.is_(None), Article.title.asc())
    elif sort_by == "created":
        query = query.order_by(Article.created_at.desc())
    else:
        query = query.order_by(Article.last_analyzed_at.is_(None), Article.last_analyzed_at.desc())

    page = max(1, page)
    articles = query.offset((page - 1) * page_size).limit(page_size).all()

    return {
        "articles": articles,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": (total + page_size - 1) // page_size,
    }


def get_article_stats(db: Session, user_id: UUID) -> Dict[str, int]:
    base = _live_articles(db, user_id)
    return {
        "total_articles": base.count(),
        "monitoring_articles": base.filter(Article.is_monitoring.is_(True)).count(),
    }


def get_all_articles(db: Session, user_id: UUID, site_id: Optional[UUID] = None) -> List[Article]:
    query = _live_articles(db, user_id)
    if site_id is not None:
        query = query.filter(Article.site_id == site_id)
    return query.order_by(Article.created_at.desc()).all()


def get_monitoring_articles(db: Session) -> List[Article]:
    """Monitoring articles, least recently analyzed first (cron order)."""
    return (
        db.query(Article)
        .filter(Article.is_monitoring.is_(True), Article.deleted_at.is_(None))
        .order_by(Article.last_analyzed_at.isnot(None), Article.last_analyzed_at.asc())
        .all()
    )


def set_article_monitoring(db: Session, article: Article, is_monitoring: bool) -> Article:
    article.is_monitoring = is_monitoring
    db.commit()
    return article


def mark_article_fixed(db: Session, article: Article, when: Optional[datetime] = None) -> Article:
    article.is_fixed = True
    article.fixed_at = when or datetime.utcnow()
    db.commit()
    return article


def soft_delete_article(db: Session, article: Article) -> Article:
    article.deleted_at = datetime.utcnow()
    article.is_monitoring = False
    db.commit()
    return article


def update_article_analysis(
    db: Session,
    article: Article,
    average_position: Optional[float],
    previous_average_position: Optional[float] = None,
) -> Article:
    article.current_average_position = average_position
    article.last_analyzed_at = datetime.utcnow()
    if previous_average_position is not None:
        article.previous_average_position = previous_average_position
    db.commit()
    return article


def record_rank_drop(db: Session, article: Article, when: Optional[datetime] = None) -> Article:
    article.last_rank_drop_at = when or datetime.utcnow()
    db.commit()
    return article


def record_notification_sent(db: Session, article: Article, when: Optional[datetime] = None) -> Article:
    article.last_notification_sent_at = when or datetime.utcnow()
    article.notification_count_last_7_days = (article.notification_count_last_7_days or 0) + 1
    db.commit()
    return article


# =============================================================================
# ANALYSIS RUNS & RESULTS
# =============================================================================

def create_analysis_run(
    db: Session,
    article_id: UUID,
    trigger: AnalysisTrigger = AnalysisTrigger.MANUAL,
) -> AnalysisRun:
    run = AnalysisRun(
        article_id=article_id,
        trigger_type=trigger,
        status=AnalysisStatus.RUNNING,
        started_at=datetime.utcnow(),
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    logger.info(f"Created analysis run {run.id} for article {article_id}")
    return run


def complete_analysis_run(db: Session, run: AnalysisRun) -> AnalysisRun:
    run.status = AnalysisStatus.COMPLETED
    run.completed_at = datetime.utcnow()
    db.commit()
    return run


def fail_analysis_run(db: Session, run: AnalysisRun, error_message: str) -> AnalysisRun:
    run.status = AnalysisStatus.FAILED
    run.error_message = error_message[:2000]
    run.completed_at = datetime.utcnow()
    db.commit()
    logger.error(f"Analysis run {run.id} failed: {error_message}")
    return run


def store_analysis_result(db: Session, run: AnalysisRun, **values: Any) -> AnalysisResult:
    result = AnalysisResult(
        analysis_run_id=run.id,
        article_id=run.article_id,
        **values,
    )
    db.add(result)
    db.commit()
    db.refresh(result)
    return result


def get_analysis_result(db: Session, result_id: UUID) -> Optional[AnalysisResult]:
    return db.query(AnalysisResult).filter(AnalysisResult.id == result_id).first()


def get_latest_analysis_result(db: Session, article_id: UUID) -> Optional[AnalysisResult]:
    return (
        db.query(AnalysisResult)
        .filter(AnalysisResult.article_id == article_id)
        .order_by(AnalysisResult.created_at.desc())
        .first()
    )


def get_previous_analysis_result(db: Session, article_id: UUID) -> Optional[AnalysisResult]:
    """Second most recent result, used for position comparisons."""
    return (
        db.query(AnalysisResult)
        .filter(AnalysisResult.article_id == article_id)
        .order_by(AnalysisResult.created_at.desc())
        .offset(1)
        .first()
    )


def list_analysis_results(db: Session, article_id: UUID, limit: int = 20) -> List[AnalysisResult]:
    return (
        db.query(AnalysisResult)
        .filter(AnalysisResult.article_id == article_id)
        .order_by(AnalysisResult.created_at.desc())
        .limit(limit)
        .all()
    )


def get_recent_analysis_results(
    db: Session,
    article_ids: List[UUID],
    per_article: int = 2,
) -> Dict[UUID, List[AnalysisResult]]:
    """Newest results per article (latest first), loaded in one query."""
    if not article_ids:
        return {}

    rank = func.row_number().over(
        partition_by=AnalysisResult.article_id,
        order_by=AnalysisResult.created_at.desc(),
    ).label("rank")
    ranked = (
        db.query(AnalysisResult.id, rank)
        .filter(AnalysisResult.article_id.in_(article_ids))
        .subquery()
    )
    results = (
        db.query(AnalysisResult)
        .join(ranked, AnalysisResult.id == ranked.c.id)
        .filter(ranked.c.rank <= per_article)
        .order_by(AnalysisResult.article_id, AnalysisResult.created_at.desc())
        .all()
    )

    grouped: Dict[UUID, List[AnalysisResult]] = {}
    for result in results:
        grouped.setdefault(result.article_id, []).append(result)
    return grouped


def count_analysis_results(db: Session, article_ids: List[UUID]) -> int:
    if not article_ids:
        return 0
    return (
        db.query(func.count(AnalysisResult.id))
        .filter(AnalysisResult.article_id.in_(article_ids))
        .scalar()
        or 0
    )


def count_running_analyses(db: Session, user_id: UUID) -> int:
    return (
        db.query(AnalysisRun)
        .join(Article, AnalysisRun.article_id == Article.id)
        .filter(Article.user_id == user_id, AnalysisRun.status == AnalysisStatus.RUNNING)
        .count()
    )


def count_analyses_since(db: Session, user_id: UUID, since: datetime) -> int:
    return (
        db.query(AnalysisRun)
        .join(Article, AnalysisRun.article_id == Article.id)
        .filter(Article.user_id == user_id, AnalysisRun.created_at >= since)
        .count()
    )


# =============================================================================
# NOTIFICATIONS
# =============================================================================

def create_notification(
    db: Session,
    user_id: UUID,
    channel: NotificationChannel,
    recipient: str,
    notification_type: NotificationType = NotificationType.RANK_DROP,
    article_id: Optional[UUID] = None,
    subject: Optional[str] = None,
    summary: Optional[str] = None,
    notification_data: Optional[Dict[str, Any]] = None,
) -> Notification:
    """Queue a notification (sent_at stays NULL until delivery)."""
    notification = Notification(
        user_id=user_id,
        article_id=article_id,
        notification_type=notification_type,
        channel=channel,
        recipient=recipient,
        subject=subject,
        summary=summary,
        notification_data=notification_data,
    )
    db.add(notification)
    db.commit()
    return notification


def list_notifications(
    db: Session,
    user_id: UUID,
    is_read: Optional[bool] = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[Notification], int]:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if is_read is True:
        query = query.filter(Notification.read_at.isnot(None))
    elif is_read is False:
        query = query.filter(Notification.read_at.is_(None))

    total = query.count()
    items = query.order_by(Notification.created_at.desc()).offset(offset).limit(limit).all()
    return items, total


def mark_notification_read(db: Session, user_id: UUID, notification_id: UUID) -> Optional[Notification]:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if notification is None:
        return None
    if notification.read_at is None:
        notification.read_at = datetime.utcnow()
        db.commit()
    return notification


def get_pending_notifications(db: Session) -> List[Notification]:
    return (
        db.query(Notification)
        .filter(Notification.sent_at.is_(None))
        .order_by(Notification.created_at.asc())
        .all()
    )


def mark_notifications_sent(db: Session, notifications: List[Notification], when: Optional[datetime] = None) -> int:
    sent_at = when or datetime.utcnow()
    for notification in notifications:
        notification.sent_at = sent_at
    db.commit()
    return len(notifications)


# =============================================================================
# NOTIFICATION SETTINGS
# =============================================================================

def get_notification_settings(
    db: Session,
    user_id: UUID,
    article_id: Optional[UUID] = None,
    enabled_only: bool = False,
) -> List[NotificationSetting]:
    """Article-specific settings when article_id is given, user-level ones otherwise."""
    query = db.query(NotificationSetting).filter(NotificationSetting.user_id == user_id)
    if article_id is None:
        query = query.filter(NotificationSetting.article_id.is_(None))
    else:
        query = query.filter(NotificationSetting.article_id == article_id)
    if enabled_only:
        query = query.filter(NotificationSetting.is_enabled.is_(True))
    return query.all()


def get_notification_settings_for_articles(
    db: Session,
    user_id: UUID,
    article_ids: List[UUID],
) -> Dict[UUID, Dict[str, Optional[NotificationSetting]]]:
    """{article_id: {"email": setting|None, "slack": setting|None}} for the dashboard."""
    status = {article_id: {"email": None, "slack": None} for article_id in article_ids}
    if not article_ids:
        return status

    rows = (
        db.query(NotificationSetting)
        .filter(
            NotificationSetting.user_id == user_id,
            NotificationSetting.article_id.in_(article_ids),
            NotificationSetting.notification_type == NotificationType.RANK_DROP,
        )
        .all()
    )
    for row in rows:
        status[row.article_id][row.channel.value] = row
    return status


def upsert_notification_setting(
    db: Session,
    user_id: UUID,
    channel: NotificationChannel,
    recipient: str,
    article_id: Optional[UUID] = None,
    notification_type: NotificationType = NotificationType.RANK_DROP,
    **values: Any,
) -> NotificationSetting:
    """Upsert by (user, article, type, channel)."""
    query = db.query(NotificationSetting).filter(
        NotificationSetting.user_id == user_id,
        NotificationSetting.notification_type == notification_type,
        NotificationSetting.channel == channel,
    )
    if article_id is None:
        query = query.filter(NotificationSetting.article_id.is_(None))
    else:
        query = query.filter(NotificationSetting.article_id == article_id)

    setting = query.first()
    if setting is None:
        setting = NotificationSetting(
            user_id=user_id,
            article_id=article_id,
            notification_type=notification_type,
            channel=channel,
        )
        db.add(setting)

    setting.recipient = recipient
    for key, value in values.items():
        if value is not None and hasattr(setting, key):
            setattr(setting, key, value)

    db.commit()
    db.refresh(setting)
    return setting


# =============================================================================
# ALERT SETTINGS
# =============================================================================

DEFAULT_ALERT_SETTINGS: Dict[str, Any] = {
    "position_drop_threshold": 0.1,
    "keyword_drop_threshold": 1,
    "comparison_days": 7,
    "consecutive_drop_days": 1,
    "min_impressions": 1,
    "notification_cooldown_days": 0,
    "notification_frequency": "daily",
    "notification_time": "09:00:00",
    "timezone": None,
    "notify_rank_rise": False,
}


def get_alert_settings_row(db: Session, user_id: UUID) -> Optional[UserAlertSettings]:
    return db.query(UserAlertSettings).filter(UserAlertSettings.user_id == user_id).first()


def get_alert_settings(db: Session, user_id: UUID) -> Dict[str, Any]:
    """Alert settings as a dict; NULL columns and missing rows fall back to defaults."""
    row = get_alert_settings_row(db, user_id)
    if row is None:
        return dict(DEFAULT_ALERT_SETTINGS)

    settings = {}
    for key, default in DEFAULT_ALERT_SETTINGS.items():
        value = getattr(row, key)
        if isinstance(value, NotificationFrequency):
            value = value.value
        settings[key] = default if value is None else value
    return settings


def save_alert_settings(db: Session, user_id: UUID, updates: Dict[str, Any]) -> Dict[str, Any]:
    """Partial upsert: keys missing from updates keep their stored (or default) value."""
    row = get_alert_settings_row(db, user_id)
    if row is None:
        row = UserAlertSettings(user_id=user_id)
        for key, default in DEFAULT_ALERT_SETTINGS.items():
            if key == "notification_frequency":
                default = NotificationFrequency(default)
            setattr(row, key, default)
        db.add(row)

    for key, value in updates.items():
        if key not in DEFAULT_ALERT_SETTINGS or value is None:
            continue
        if key == "notification_frequency":
            value = NotificationFrequency(value)
        setattr(row, key, value)

    db.commit()
    return get_alert_settings(db, user_id)


# =============================================================================
# SLACK INTEGRATIONS
# =============================================================================

def get_slack_integration(db: Session, user_id: UUID) -> Optional[SlackIntegration]:
    return db.query(SlackIntegration).filter(SlackIntegration.user_id == user_id).first()


def save_slack_integration(
    db: Session,
    user_id: UUID,
    bot_token: str,
    team_id: str,
    team_name: Optional[str] = None,
    slack_user_id: Optional[str] = None,
    channel_id: Optional[str] = None,
    target_type: SlackTargetType = SlackTargetType.CHANNEL,
) -> SlackIntegration:
    integration = get_slack_integration(db, user_id)
    if integration is None:
        integration = SlackIntegration(user_id=user_id)
        db.add(integration)

    integration.slack_bot_token = bot_token
    integration.slack_team_id = team_id
    integration.slack_team_name = team_name
    integration.slack_user_id = slack_user_id
    if channel_id:
        integration.slack_channel_id = channel_id
    integration.slack_notification_type = target_type

    db.commit()
    db.refresh(integration)
    return integration


def update_slack_channel(
    db: Session,
    integration: SlackIntegration,
    channel_id: str,
    target_type: SlackTargetType,
) -> SlackIntegration:
    integration.slack_channel_id = channel_id
    integration.slack_notification_type = target_type
    db.commit()
    return integration


def delete_slack_integration(db: Session, user_id: UUID) -> bool:
    deleted = db.query(SlackIntegration).filter(SlackIntegration.user_id == user_id).delete()
    db.commit()
    return deleted > 0


# =============================================================================
# ARTICLE SUGGESTIONS
# =============================================================================

def save_article_suggestions(
    db: Session,
    user_id: UUID,
    site_id: UUID,
    suggestions: List[Dict[str, Any]],
) -> List[ArticleSuggestion]:
    rows = [
        ArticleSuggestion(
            user_id=user_id,
            site_id=site_id,
            title=s["title"],
            keywords=s.get("keywords", []),
            outline=s.get("outline"),
            reason=s.get("reason"),
            estimated_impressions=s.get("estimated_impressions"),
            priority=s.get("priority", 0),
        )
        for s in suggestions
    ]
    db.add_all(rows)
    db.commit()
    return rows


def list_article_suggestions(
    db: Session,
    user_id: UUID,
    site_id: Optional[UUID] = None,
    status: Optional[SuggestionStatus] = None,
) -> List[ArticleSuggestion]:
    query = db.query(ArticleSuggestion).filter(ArticleSuggestion.user_id == user_id)
    if site_id is not None:
        query = query.filter(ArticleSuggestion.site_id == site_id)
    if status is not None:
        query = query.filter(ArticleSuggestion.status == status)
    return query.order_by(ArticleSuggestion.priority.desc(), ArticleSuggestion.created_at.desc()).all()


def update_suggestion_status(
    db: Session,
    user_id: UUID,
    suggestion_id: UUID,
    status: SuggestionStatus,
) -> Optional[ArticleSuggestion]:
    suggestion = (
        db.query(ArticleSuggestion)
        .filter(ArticleSuggestion.id == suggestion_id, ArticleSuggestion.user_id == user_id)
        .first()
    )
    if suggestion is None:
        return None

    suggestion.status = status
    suggestion.completed_at = datetime.utcnow() if status == SuggestionStatus.COMPLETED else None
    db.commit()
    return suggestion


def count_suggestions_since(db: Session, user_id: UUID, since: datetime) -> int:
    return (
        db.query(func.count(ArticleSuggestion.id))
        .filter(ArticleSuggestion.user_id == user_id, ArticleSuggestion.created_at >= since)
        .scalar()
        or 0
    )


# =============================================================================
# HELPERS
# =============================================================================

def month_start(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.utcnow()
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
