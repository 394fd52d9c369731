"""
Dashboard API

One call for the dashboard page: articles with their latest and previous
analysis and notification settings, the unread notification feed and
account stats.

Filter and sort run over all of the user's articles before pagination so
that "position" sorting sees every article's latest analysis.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from rerank.auth.dependencies import get_current_user
from rerank.auth.models import User
from rerank.database import repository
from rerank.database.models import AnalysisResult, Article, NotificationSetting
from rerank.database.session import get_db
from .articles import article_response
from .notifications import notification_response

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/dashboard",
    tags=["Dashboard"],
    dependencies=[Depends(get_current_user)],
)

UNREAD_LIMIT = 10
MISSING_POSITION = 999.0


# =============================================================================
# HELPERS
# =============================================================================

def analysis_summary(result: Optional[AnalysisResult]) -> Optional[Dict[str, Any]]:
    if result is None:
        return None
    return {
        "id": str(result.id),
        "average_position": result.average_position,
        "previous_average_position": result.previous_average_position,
        "position_change": result.position_change,
        "analyzed_keywords": result.analyzed_keywords or [],
        "dropped_keywords": result.dropped_keywords or [],
        "recommended_additions": result.recommended_additions or [],
        "competitor_count": result.competitor_count,
        "created_at": result.created_at.isoformat() if result.created_at else None,
    }


def setting_status(setting: Optional[NotificationSetting]) -> Optional[Dict[str, Any]]:
    if setting is None:
        return None
    return {
        "is_enabled": setting.is_enabled,
        "recipient": setting.recipient,
        "drop_threshold": setting.drop_threshold,
    }


def sort_entries(entries: List[Dict[str, Any]], sort_by: str) -> List[Dict[str, Any]]:
    """date: newest analysis first; position: best latest position first; title: A-Z (url as fallback)."""
    if sort_by == "position":
        def position(entry):
            latest = entry["latest_analysis"]
            value = latest["average_position"] if latest else None
            return MISSING_POSITION if value is None else value
        return sorted(entries, key=position)

    if sort_by == "title":
        return sorted(entries, key=lambda e: (e["article"].title or e["article"].url).lower())

    return sorted(
        entries,
        key=lambda e: e["article"].last_analyzed_at.timestamp() if e["article"].last_analyzed_at else 0,
        reverse=True,
    )


def filter_articles(articles: List[Article], filter: str) -> List[Article]:
    if filter == "monitoring":
        return [a for a in articles if a.is_monitoring]
    if filter == "fixed":
        return [a for a in articles if a.is_fixed]
    return list(articles)


# =============================================================================
# ENDPOINT
# =============================================================================

@router.get("/data")
def get_dashboard_data(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    filter: str = Query("all", pattern="^(all|monitoring|fixed)$"),
    sort_by: str = Query("date", pattern="^(date|position|title)$"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    articles = repository.get_all_articles(db, current_user.id)
    article_ids = [a.id for a in articles]
    notification_status = repository.get_notification_settings_for_articles(db, current_user.id, article_ids)
    recent = repository.get_recent_analysis_results(db, article_ids)

    entries = []
    for article in filter_articles(articles, filter):
        results = recent.get(article.id, [])
        status = notification_status.get(article.id, {})
        entries.append({
            "article": article,
            "latest_analysis": analysis_summary(results[0] if results else None),
            "previous_analysis": analysis_summary(results[1] if len(results) > 1 else None),
            "notification_status": {
                "email": setting_status(status.get("email")),
                "slack": setting_status(status.get("slack")),
            },
        })

    entries = sort_entries(entries, sort_by)
    total = len(entries)
    start = (page - 1) * page_size
    page_entries = entries[start:start + page_size]

    unread, _ = repository.list_notifications(db, current_user.id, is_read=False, limit=UNREAD_LIMIT)

    return {
        "articles": [
            {
                **article_response(entry["article"]).model_dump(mode="json"),
                "latest_analysis": entry["latest_analysis"],
                "previous_analysis": entry["previous_analysis"],
                "notification_status": entry["notification_status"],
            }
            for entry in page_entries
        ],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": (total + page_size - 1) // page_size,
        "unread_notifications": [notification_response(n) for n in unread],
        "stats": {
            "total_articles": len(articles),
            "monitoring_articles": sum(1 for a in articles if a.is_monitoring),
            "total_analyses": repository.count_analysis_results(db, article_ids),
        },
    }
