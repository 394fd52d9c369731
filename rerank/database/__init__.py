"""
ReRank Database Layer

Usage:
    from rerank.database import init_db, get_db, get_db_context, Article

    init_db()

    with get_db_context() as db:
        articles = get_monitoring_articles(db)
"""

# Models
from .models import (
    Base,
    Plan,
    Site,
    Article,
    AnalysisRun,
    AnalysisResult,
    ArticleSuggestion,
    Notification,
    NotificationSetting,
    UserAlertSettings,
    SlackIntegration,
    RateLimit,
    # Enums
    AnalysisTrigger,
    AnalysisStatus,
    NotificationType,
    NotificationChannel,
    NotificationFrequency,
    SlackTargetType,
    SuggestionStatus,
)

# Session management
from .session import (
    get_db,
    get_db_context,
    init_db,
    check_db_connection,
    configure_engine,
    get_engine,
    get_db_info,
)

__all__ = [
    # Models
    "Base",
    "Plan",
    "Site",
    "Article",
    "AnalysisRun",
    "AnalysisResult",
    "ArticleSuggestion",
    "Notification",
    "NotificationSetting",
    "UserAlertSettings",
    "SlackIntegration",
    "RateLimit",
    # Enums
    "AnalysisTrigger",
    "AnalysisStatus",
    "NotificationType",
    "NotificationChannel",
    "NotificationFrequency",
    "SlackTargetType",
    "SuggestionStatus",
    # Session
    "get_db",
    "get_db_context",
    "init_db",
    "check_db_connection",
    "configure_engine",
    "get_engine",
    "get_db_info",
]
