"""
SQLAlchemy Models for ReRank

Tables:
1. plans - billing plans and their limits
2. sites - connected Search Console properties (with OAuth tokens)
3. articles - monitored pages
4. analysis_runs / analysis_results - competitor analysis history
5. notifications - queued and sent notifications
6. notification_settings / user_alert_settings - detection thresholds
7. slack_integrations - Slack bot installs
8. rate_limits - fixed window counters
9. article_suggestions - new article ideas from keyword gaps

Users live in rerank.auth.models (synced from Supabase).
"""

import enum
from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Text,
    ForeignKey, Enum, Index, UniqueConstraint, JSON,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite dev/test databases)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# =============================================================================
# ENUMS
# =============================================================================

class AnalysisTrigger(enum.Enum):
    """What started an analysis run"""
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    RANK_DROP = "rank_drop"


class AnalysisStatus(enum.Enum):
    """Status of an analysis run"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class NotificationType(enum.Enum):
    RANK_DROP = "rank_drop"
    RANK_RISE = "rank_rise"


class NotificationChannel(enum.Enum):
    EMAIL = "email"
    SLACK = "slack"


class NotificationFrequency(enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    NONE = "none"


class SlackTargetType(enum.Enum):
    CHANNEL = "channel"
    DM = "dm"


class SuggestionStatus(enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


# =============================================================================
# BILLING
# =============================================================================

class Plan(Base):
    """
    Subscription plan.

    Limits set to NULL mean unlimited. Prices are USD cents; other currencies
    are derived through exchange_rates or mapped via stripe_price_ids.
    """
    __tablename__ = "plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(50), unique=True, nullable=False)  # free, starter, standard, business
    display_name = Column(String(100), nullable=False)
    base_price_usd = Column(Integer, default=0, nullable=False)

    max_articles = Column(Integer)
    max_analyses_per_month = Column(Integer)
    max_sites = Column(Integer)
    max_concurrent_analyses = Column(Integer)
    max_article_suggestions_per_month = Column(Integer)
    analysis_history_days = Column(Integer)

    features = Column(JSONType, default=dict)
    stripe_price_ids = Column(JSONType, default=dict)  # {"usd": "price_...", "jpy": "price_..."}
    exchange_rates = Column(JSONType, default=dict)

    is_active = Column(Boolean, default=True, nullable=False)
    sort_order = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Plan {self.name}>"


# =============================================================================
# SITES & ARTICLES
# =============================================================================

class Site(Base):
    """
    A Search Console property connected by a user.

    site_url is either "sc-domain:example.com" or "https://example.com/".
    """
    __tablename__ = "sites"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    site_url = Column(String(500), nullable=False)
    display_name = Column(String(255))

    gsc_access_token = Column(Text)
    gsc_refresh_token = Column(Text)
    gsc_token_expires_at = Column(DateTime)
    auth_error_at = Column(DateTime)  # Set when token refresh fails

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    articles = relationship("Article", back_populates="site")

    __table_args__ = (
        UniqueConstraint("user_id", "site_url", name="uq_site_user_url"),
        Index("idx_site_user", "user_id"),
    )

    def __repr__(self):
        return f"<Site {self.site_url}>"


class Article(Base):
    """A page whose rankings are monitored."""
    __tablename__ = "articles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    site_id = Column(UUID(as_uuid=True), ForeignKey("sites.id", ondelete="SET NULL"))

    url = Column(String(2000), nullable=False)
    title = Column(String(500))
    keywords = Column(JSONType)  # Manually selected keywords

    is_monitoring = Column(Boolean, default=True, nullable=False)
    monitoring_frequency = Column(String(20), default="daily")

    last_analyzed_at = Column(DateTime)
    last_rank_drop_at = Column(DateTime)
    current_average_position = Column(Float)
    previous_average_position = Column(Float)

    # "Fixed" articles are quiet for the cooldown period
    is_fixed = Column(Boolean, default=False)
    fixed_at = Column(DateTime)

    last_notification_sent_at = Column(DateTime)
    notification_count_last_7_days = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime)

    site = relationship("Site", back_populates="articles")
    analysis_runs = relationship("AnalysisRun", back_populates="article", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_article_user", "user_id"),
        Index("idx_article_user_url", "user_id", "url"),
        Index("idx_article_monitoring", "is_monitoring"),
    )

    def __repr__(self):
        return f"<Article {self.url}>"


# =============================================================================
# COMPETITOR ANALYSIS
# =============================================================================

class AnalysisRun(Base):
    """One execution of the competitor analysis pipeline."""
    __tablename__ = "analysis_runs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    article_id = Column(UUID(as_uuid=True), ForeignKey("articles.id", ondelete="CASCADE"), nullable=False)
    trigger_type = Column(Enum(AnalysisTrigger), default=AnalysisTrigger.MANUAL, nullable=False)
    status = Column(Enum(AnalysisStatus), default=AnalysisStatus.PENDING, nullable=False)
    error_message = Column(Text)

    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)

    article = relationship("Article", back_populates="analysis_runs")
    result = relationship("AnalysisResult", back_populates="run", uselist=False, cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_run_article", "article_id"),
        Index("idx_run_created", "created_at"),
    )


class AnalysisResult(Base):
    """Summary of a completed analysis run."""
    __tablename__ = "analysis_results"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    analysis_run_id = Column(UUID(as_uuid=True), ForeignKey("analysis_runs.id", ondelete="CASCADE"), nullable=False)
    article_id = Column(UUID(as_uuid=True), ForeignKey("articles.id", ondelete="CASCADE"), nullable=False)

    average_position = Column(Float)
    previous_average_position = Column(Float)
    position_change = Column(Float)

    analyzed_keywords = Column(JSONType, default=list)
    dropped_keywords = Column(JSONType)
    top_keywords = Column(JSONType)
    recommended_additions = Column(JSONType)
    missing_content_summary = Column(Text)

    competitor_count = Column(Integer)
    analysis_duration_seconds = Column(Float)

    # Full pipeline output for the detail view
    detailed_result = Column(JSONType)

    created_at = Column(DateTime, default=datetime.utcnow)

    run = relationship("AnalysisRun", back_populates="result")

    __table_args__ = (
        Index("idx_result_article_created", "article_id", "created_at"),
    )


class ArticleSuggestion(Base):
    """A proposed new article built from uncovered Search Console keywords."""
    __tablename__ = "article_suggestions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    site_id = Column(UUID(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)

    title = Column(String(500), nullable=False)
    keywords = Column(JSONType, default=list)
    outline = Column(JSONType)
    reason = Column(Text)
    estimated_impressions = Column(Integer)
    priority = Column(Integer, default=0)
    status = Column(Enum(SuggestionStatus), default=SuggestionStatus.PENDING, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime)

    __table_args__ = (
        Index("idx_suggestion_user_site", "user_id", "site_id"),
    )


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class Notification(Base):
    """
    Queued or sent notification.

    The rank check cron inserts rows with sent_at NULL; the send cron delivers
    them at the user's preferred time.
    """
    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    article_id = Column(UUID(as_uuid=True), ForeignKey("articles.id", ondelete="SET NULL"))
    analysis_result_id = Column(UUID(as_uuid=True), ForeignKey("analysis_results.id", ondelete="SET NULL"))

    notification_type = Column(Enum(NotificationType), default=NotificationType.RANK_DROP, nullable=False)
    channel = Column(Enum(NotificationChannel), nullable=False)
    recipient = Column(String(255), nullable=False)  # email address or Slack channel/user id
    subject = Column(String(500))
    summary = Column(Text)
    notification_data = Column(JSONType)

    sent_at = Column(DateTime)
    read_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)

    article = relationship("Article")

    __table_args__ = (
        Index("idx_notification_user", "user_id"),
        Index("idx_notification_pending", "sent_at"),
    )


class NotificationSetting(Base):
    """Per-user (article_id NULL) or per-article notification thresholds."""
    __tablename__ = "notification_settings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    article_id = Column(UUID(as_uuid=True), ForeignKey("articles.id", ondelete="CASCADE"))

    notification_type = Column(Enum(NotificationType), default=NotificationType.RANK_DROP, nullable=False)
    channel = Column(Enum(NotificationChannel), default=NotificationChannel.EMAIL, nullable=False)
    recipient = Column(String(255), nullable=False)
    is_enabled = Column(Boolean, default=True, nullable=False)

    drop_threshold = Column(Float, default=2.0)
    keyword_drop_threshold = Column(Float, default=10.0)
    comparison_days = Column(Integer, default=7)
    consecutive_drop_days = Column(Integer, default=3)
    min_impressions = Column(Integer, default=100)
    notification_cooldown_days = Column(Integer, default=7)
    notification_time = Column(String(8), default="09:00:00")
    timezone = Column(String(64))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_notification_setting_user_article", "user_id", "article_id"),
    )


class UserAlertSettings(Base):
    """Account-wide alert thresholds and delivery preferences."""
    __tablename__ = "user_alert_settings"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)

    position_drop_threshold = Column(Float)
    keyword_drop_threshold = Column(Float)
    comparison_days = Column(Integer)
    consecutive_drop_days = Column(Integer)
    min_impressions = Column(Integer)
    notification_cooldown_days = Column(Integer)
    notification_frequency = Column(Enum(NotificationFrequency), default=NotificationFrequency.DAILY)
    notification_time = Column(String(8), default="09:00:00")
    timezone = Column(String(64))
    notify_rank_rise = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SlackIntegration(Base):
    """Slack bot installation for a user (one per user)."""
    __tablename__ = "slack_integrations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    slack_bot_token = Column(Text, nullable=False)
    slack_user_id = Column(String(50))
    slack_team_id = Column(String(50), nullable=False)
    slack_team_name = Column(String(255))
    slack_channel_id = Column(String(50))
    slack_notification_type = Column(Enum(SlackTargetType), default=SlackTargetType.CHANNEL)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# =============================================================================
# RATE LIMITING
# =============================================================================

class RateLimit(Base):
    """Fixed window request counter keyed by identifier (IP/email) and action."""
    __tablename__ = "rate_limits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    identifier = Column(String(255), nullable=False)
    action = Column(String(50), nullable=False)
    window_start = Column(DateTime, nullable=False)
    count = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("identifier", "action", "window_start", name="uq_rate_limit_window"),
        Index("idx_rate_limit_window", "window_start"),
    )
