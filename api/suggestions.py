"""
Article Suggestions API

Endpoints:
- POST /api/article-suggestions/generate - New article ideas from uncovered keywords
- GET /api/article-suggestions - Saved suggestions
- PATCH /api/article-suggestions/{suggestion_id}/status - pending/in_progress/completed/skipped
"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from rerank.analysis import ArticleSuggestionGenerator
from rerank.auth.dependencies import get_current_user
from rerank.auth.models import User
from rerank.database import repository
from rerank.database.models import ArticleSuggestion, SuggestionStatus
from rerank.database.session import get_db
from rerank.integrations.gsc import GSCError
from .common import check_plan_limit, connected_site, gsc_client_for, gsc_http_error

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/article-suggestions",
    tags=["Article Suggestions"],
    dependencies=[Depends(get_current_user)],
)


class GenerateRequest(BaseModel):
    site_id: Optional[UUID] = None


class StatusRequest(BaseModel):
    status: str = Field(..., pattern="^(pending|in_progress|completed|skipped)$")


def suggestion_response(suggestion: ArticleSuggestion) -> Dict[str, Any]:
    return {
        "id": str(suggestion.id),
        "site_id": str(suggestion.site_id),
        "title": suggestion.title,
        "keywords": suggestion.keywords or [],
        "outline": suggestion.outline,
        "reason": suggestion.reason,
        "estimated_impressions": suggestion.estimated_impressions,
        "priority": suggestion.priority,
        "status": suggestion.status.value,
        "created_at": suggestion.created_at.isoformat() if suggestion.created_at else None,
        "completed_at": suggestion.completed_at.isoformat() if suggestion.completed_at else None,
    }


@router.post("/generate")
async def generate_suggestions(
    request: GenerateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    check_plan_limit(db, current_user, "article_suggestions")
    site = connected_site(db, current_user, request.site_id)
    articles = repository.get_all_articles(db, current_user.id, site.id)

    try:
        async with await gsc_client_for(db, site) as gsc:
            suggestions = await ArticleSuggestionGenerator(gsc).generate(site.site_url, articles)
    except GSCError as e:
        raise gsc_http_error(e)

    saved = repository.save_article_suggestions(
        db, current_user.id, site.id, [s.to_dict() for s in suggestions]
    )
    logger.info(f"Generated {len(saved)} article suggestions for site {site.site_url}")
    return {"suggestions": [suggestion_response(s) for s in saved], "count": len(saved)}


@router.get("")
def list_suggestions(
    site_id: Optional[UUID] = None,
    status: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        status_filter = SuggestionStatus(status) if status else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status}")

    suggestions = repository.list_article_suggestions(db, current_user.id, site_id, status_filter)
    return {"suggestions": [suggestion_response(s) for s in suggestions]}


@router.patch("/{suggestion_id}/status")
def update_status(
    suggestion_id: UUID,
    request: StatusRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    suggestion = repository.update_suggestion_status(
        db, current_user.id, suggestion_id, SuggestionStatus(request.status)
    )
    if suggestion is None:
        raise HTTPException(status_code=404, detail="Suggestion not found")
    return suggestion_response(suggestion)
