"""
Article Improvement API

Endpoints:
- POST /api/article-improvement/generate - Markdown sections to add, built
  from a saved analysis result's recommended additions
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from rerank.analysis.improvement import (
    ArticleImprovementGenerator,
    ImprovementError,
    check_aio,
    missing_aio_elements,
)
from rerank.auth.dependencies import get_current_user
from rerank.auth.models import User
from rerank.database import repository
from rerank.database.session import get_db
from rerank.integrations.scraper import ArticleScraper, ScraperError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/article-improvement",
    tags=["Article Improvement"],
    dependencies=[Depends(get_current_user)],
)


class ImprovementRequest(BaseModel):
    analysis_result_id: UUID
    locale: Optional[str] = None


@router.post("/generate")
async def generate_improvement(
    request: ImprovementRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not ArticleImprovementGenerator.is_available():
        raise HTTPException(status_code=503, detail="Article improvement is not configured")

    result = repository.get_analysis_result(db, request.analysis_result_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Analysis result not found")

    article = repository.get_article(db, result.article_id)
    if article is None or (article.user_id != current_user.id and not current_user.is_admin):
        raise HTTPException(status_code=403, detail="Access denied to this analysis result")

    semantic = (result.detailed_result or {}).get("semantic_analysis") or {}
    additions = semantic.get("recommended_additions") or result.recommended_additions or []
    if not additions:
        raise HTTPException(status_code=404, detail="No recommended additions in this analysis")

    async with ArticleScraper(retry_count=1) as scraper:
        try:
            own = await scraper.scrape_article(article.url)
        except ScraperError as e:
            logger.warning(f"Could not fetch {article.url} for improvement: {e}")
            raise HTTPException(status_code=502, detail=f"Failed to fetch the article: {e}")

    locale = request.locale or current_user.locale or "ja"
    missing = missing_aio_elements(check_aio(own), locale)

    try:
        improvement = await ArticleImprovementGenerator().generate(
            article.url,
            own,
            semantic.get("why_competitors_rank_higher", ""),
            additions,
            missing,
            locale,
        )
    except ImprovementError as e:
        raise HTTPException(status_code=502, detail=f"Improvement generation failed: {e}")

    return {"improvement": improvement.to_dict(), "missing_aio_elements": missing}
