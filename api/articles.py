"""
Articles API

Endpoints:
- POST /api/articles/create-or-get - Register a page for monitoring
- GET /api/articles - Paginated list with stats
- GET /api/articles/fetch-title - Read a page's <title> (scraper)
- GET /api/articles/{article_id} - Article detail
- DELETE /api/articles/{article_id} - Soft delete
- PATCH /api/articles/{article_id}/monitoring - Toggle monitoring
- POST /api/articles/{article_id}/mark-as-fixed - Suppress notifications for the cooldown
- PUT /api/articles/{article_id}/notification - Per-article notification thresholds
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from rerank.auth.dependencies import get_current_user, get_owned_article
from rerank.auth.models import User
from rerank.database import repository
from rerank.database.models import Article, NotificationChannel
from rerank.database.session import get_db
from rerank.integrations.scraper import ArticleScraper, ScraperError
from .common import check_plan_limit

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/articles",
    tags=["Articles"],
    dependencies=[Depends(get_current_user)],
)


# =============================================================================
# MODELS
# =============================================================================

class ArticleResponse(BaseModel):
    id: UUID
    site_id: Optional[UUID]
    url: str
    title: Optional[str]
    keywords: List[str] = []
    is_monitoring: bool
    is_fixed: bool
    fixed_at: Optional[datetime]
    current_average_position: Optional[float]
    previous_average_position: Optional[float]
    last_analyzed_at: Optional[datetime]
    last_rank_drop_at: Optional[datetime]
    last_notification_sent_at: Optional[datetime]
    created_at: Optional[datetime]


class CreateArticleRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=2000)
    site_id: Optional[UUID] = None
    title: Optional[str] = None
    keywords: Optional[List[str]] = None


class MonitoringRequest(BaseModel):
    is_monitoring: bool


class ArticleNotificationRequest(BaseModel):
    channel: str = Field("email", pattern="^(email|slack)$")
    recipient: Optional[str] = None
    is_enabled: Optional[bool] = None
    drop_threshold: Optional[float] = Field(None, gt=0)
    keyword_drop_threshold: Optional[float] = Field(None, gt=0)
    comparison_days: Optional[int] = Field(None, ge=1, le=90)
    consecutive_drop_days: Optional[int] = Field(None, ge=0, le=30)
    min_impressions: Optional[int] = Field(None, ge=0)
    notification_cooldown_days: Optional[int] = Field(None, ge=0, le=90)


def article_response(article: Article) -> ArticleResponse:
    return ArticleResponse(
        id=article.id,
        site_id=article.site_id,
        url=article.url,
        title=article.title,
        keywords=article.keywords or [],
        is_monitoring=article.is_monitoring,
        is_fixed=article.is_fixed,
        fixed_at=article.fixed_at,
        current_average_position=article.current_average_position,
        previous_average_position=article.previous_average_position,
        last_analyzed_at=article.last_analyzed_at,
        last_rank_drop_at=article.last_rank_drop_at,
        last_notification_sent_at=article.last_notification_sent_at,
        created_at=article.created_at,
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/create-or-get", response_model=ArticleResponse)
def create_or_get_article(
    request: CreateArticleRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Existing article for the URL, or a new monitored one (plan-limited)."""
    existing = repository.get_article_by_url(db, current_user.id, request.url)
    if existing is None:
        check_plan_limit(db, current_user, "articles")

    site_id = request.site_id
    if site_id is not None:
        site = repository.get_site(db, site_id)
        if site is None or site.user_id != current_user.id:
            raise HTTPException(status_code=404, detail="Site not found")

    article = repository.save_or_update_article(
        db,
        current_user.id,
        request.url,
        site_id=site_id,
        title=request.title,
        keywords=request.keywords,
    )
    return article_response(article)


@router.get("")
def list_articles(
    filter: str = Query("all", pattern="^(all|monitoring|fixed)$"),
    sort_by: str = Query("date", pattern="^(date|title|created)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = repository.list_articles(db, current_user.id, filter, sort_by, page, page_size)
    return {
        "articles": [article_response(a) for a in result["articles"]],
        "total": result["total"],
        "page": result["page"],
        "page_size": result["page_size"],
        "total_pages": result["total_pages"],
        "stats": repository.get_article_stats(db, current_user.id),
    }


@router.get("/fetch-title")
async def fetch_title(url: str = Query(..., min_length=1)):
    async with ArticleScraper(retry_count=1) as scraper:
        try:
            article = await scraper.scrape_article(url)
        except ScraperError as e:
            raise HTTPException(status_code=400, detail=f"Failed to fetch page: {e}")
    return {"url": url, "title": article.title or None}


@router.get("/{article_id}", response_model=ArticleResponse)
def get_article(article: Article = Depends(get_owned_article)):
    return article_response(article)


@router.delete("/{article_id}")
def delete_article(
    article: Article = Depends(get_owned_article),
    db: Session = Depends(get_db),
):
    repository.soft_delete_article(db, article)
    return {"success": True}


@router.patch("/{article_id}/monitoring", response_model=ArticleResponse)
def update_monitoring(
    request: MonitoringRequest,
    article: Article = Depends(get_owned_article),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if request.is_monitoring and not article.is_monitoring:
        check_plan_limit(db, current_user, "articles")
    repository.set_article_monitoring(db, article, request.is_monitoring)
    return article_response(article)


@router.post("/{article_id}/mark-as-fixed", response_model=ArticleResponse)
def mark_as_fixed(
    article: Article = Depends(get_owned_article),
    db: Session = Depends(get_db),
):
    repository.mark_article_fixed(db, article)
    logger.info(f"Article {article.id} marked as fixed")
    return article_response(article)


@router.put("/{article_id}/notification")
def update_article_notification(
    request: ArticleNotificationRequest,
    article: Article = Depends(get_owned_article),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    values = request.model_dump(exclude={"channel", "recipient"}, exclude_none=True)
    setting = repository.upsert_notification_setting(
        db,
        current_user.id,
        NotificationChannel(request.channel),
        request.recipient or current_user.email,
        article_id=article.id,
        **values,
    )
    return {
        "id": str(setting.id),
        "article_id": str(article.id),
        "channel": setting.channel.value,
        "recipient": setting.recipient,
        "is_enabled": setting.is_enabled,
        "drop_threshold": setting.drop_threshold,
        "keyword_drop_threshold": setting.keyword_drop_threshold,
        "comparison_days": setting.comparison_days,
        "consecutive_drop_days": setting.consecutive_drop_days,
        "min_impressions": setting.min_impressions,
        "notification_cooldown_days": setting.notification_cooldown_days,
    }
