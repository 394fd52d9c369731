"""
Competitor Analysis API

The three steps can be called one by one (the UI shows progress between
them) or together through /analyze, which also persists the result.

Endpoints:
- POST /api/competitors/analyze/step1 - Keyword selection
- POST /api/competitors/analyze/step2 - SERP competitors per keyword
- POST /api/competitors/analyze/step3 - Content diff + semantic analysis
- POST /api/competitors/analyze - Full run, plan-limited, saved
- GET /api/competitors/analysis/latest - Latest saved result for an article
- GET /api/competitors/analysis/history - Saved results for an article
- POST /api/rank-drop/detect - Rank drop detection for one page
"""

import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from rerank.analysis import AnalysisError, CompetitorAnalysisPipeline, RankDropDetector, run_and_save
from rerank.analysis.pipeline import KeywordCompetitors
from rerank.analysis.prioritizer import PrioritizedKeyword
from rerank.auth.dependencies import get_current_user
from rerank.auth.models import User
from rerank.database import repository
from rerank.database.models import AnalysisResult, AnalysisTrigger, Article
from rerank.database.session import get_db
from rerank.integrations.gsc import GSCError
from rerank.integrations.serper import SearchResult, SerperClient, SerperError
from .common import check_plan_limit, connected_site, gsc_client_for, gsc_http_error

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/competitors",
    tags=["Competitor Analysis"],
    dependencies=[Depends(get_current_user)],
)
rank_drop_router = APIRouter(
    prefix="/api/rank-drop",
    tags=["Rank Drop"],
    dependencies=[Depends(get_current_user)],
)


# =============================================================================
# MODELS
# =============================================================================

class KeywordInput(BaseModel):
    keyword: str
    priority: float = 100
    impressions: int = 0
    clicks: int = 0
    position: float = 0.0
    ctr: float = 0.0


class CompetitorInput(BaseModel):
    url: str
    title: str = ""
    position: int


class KeywordCompetitorsInput(BaseModel):
    keyword: str
    competitors: List[CompetitorInput] = []
    own_position: Optional[float] = None
    total_results: int = 0
    error: Optional[str] = None


class Step1Request(BaseModel):
    page_url: str
    site_id: Optional[UUID] = None
    article_title: Optional[str] = None
    max_keywords: int = Field(3, ge=1, le=10)
    min_impressions: int = Field(0, ge=0)
    selected_keywords: Optional[List[KeywordInput]] = None


class Step2Request(BaseModel):
    page_url: str
    site_id: Optional[UUID] = None
    keywords: List[KeywordInput] = Field(..., min_length=1)


class Step3Request(BaseModel):
    page_url: str
    site_id: Optional[UUID] = None
    keywords: List[KeywordInput]
    competitor_results: List[KeywordCompetitorsInput]
    skip_llm: bool = False


class AnalyzeRequest(BaseModel):
    article_id: UUID
    max_keywords: int = Field(3, ge=1, le=10)
    selected_keywords: Optional[List[KeywordInput]] = None
    skip_llm: bool = False


class RankDropRequest(BaseModel):
    page_url: str
    site_id: Optional[UUID] = None
    comparison_days: int = Field(7, ge=1, le=90)
    drop_threshold: float = Field(2, gt=0)
    keyword_drop_threshold: float = Field(10, gt=0)


def _prioritized(keywords: List[KeywordInput]) -> List[PrioritizedKeyword]:
    return [PrioritizedKeyword(**kw.model_dump()) for kw in keywords]


def _keyword_competitors(results: List[KeywordCompetitorsInput]) -> List[KeywordCompetitors]:
    return [
        KeywordCompetitors(
            keyword=r.keyword,
            competitors=[SearchResult(**c.model_dump()) for c in r.competitors],
            own_position=r.own_position,
            total_results=r.total_results,
            error=r.error,
        )
        for r in results
    ]


def _owned_article(db: Session, user: User, article_id: UUID) -> Article:
    article = repository.get_article(db, article_id)
    if article is None:
        raise HTTPException(status_code=404, detail="Article not found")
    if article.user_id != user.id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Access denied to this article")
    return article


def result_response(result: AnalysisResult) -> Dict[str, Any]:
    return {
        "id": str(result.id),
        "analysis_run_id": str(result.analysis_run_id),
        "article_id": str(result.article_id),
        "average_position": result.average_position,
        "previous_average_position": result.previous_average_position,
        "position_change": result.position_change,
        "analyzed_keywords": result.analyzed_keywords or [],
        "dropped_keywords": result.dropped_keywords or [],
        "top_keywords": result.top_keywords or [],
        "recommended_additions": result.recommended_additions or [],
        "missing_content_summary": result.missing_content_summary,
        "competitor_count": result.competitor_count,
        "analysis_duration_seconds": result.analysis_duration_seconds,
        "detailed_result": result.detailed_result,
        "created_at": result.created_at.isoformat() if result.created_at else None,
    }


# =============================================================================
# STEPS
# =============================================================================

@router.post("/analyze/step1")
async def analyze_step1(
    request: Step1Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    site = connected_site(db, current_user, request.site_id)
    try:
        async with await gsc_client_for(db, site) as gsc:
            pipeline = CompetitorAnalysisPipeline(gsc, locale=current_user.locale or "ja")
            selection = await pipeline.select_keywords(
                site.site_url,
                request.page_url,
                max_keywords=request.max_keywords,
                selected_keywords=[kw.model_dump() for kw in request.selected_keywords or []] or None,
                article_title=request.article_title,
                min_impressions=request.min_impressions,
            )
    except GSCError as e:
        raise gsc_http_error(e)
    except AnalysisError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return asdict(selection)


@router.post("/analyze/step2")
async def analyze_step2(
    request: Step2Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    site = connected_site(db, current_user, request.site_id)
    if not SerperClient.is_available():
        raise HTTPException(status_code=503, detail="SERP lookup is not configured")

    async with await gsc_client_for(db, site) as gsc:
        pipeline = CompetitorAnalysisPipeline(gsc, locale=current_user.locale or "ja")
        collection = await pipeline.collect_competitors(
            site.site_url, request.page_url, _prioritized(request.keywords)
        )
    return asdict(collection)


@router.post("/analyze/step3")
async def analyze_step3(
    request: Step3Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    site = connected_site(db, current_user, request.site_id)
    async with await gsc_client_for(db, site) as gsc:
        pipeline = CompetitorAnalysisPipeline(gsc, locale=current_user.locale or "ja")
        try:
            content = await pipeline.analyze_content(
                site.site_url,
                request.page_url,
                _prioritized(request.keywords),
                _keyword_competitors(request.competitor_results),
                skip_llm=request.skip_llm,
            )
        except AnalysisError as e:
            raise HTTPException(status_code=400, detail=str(e))
    return asdict(content)


@router.post("/analyze")
async def analyze(
    request: AnalyzeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Full analysis for a saved article. Counts against the monthly analyses limit."""
    article = _owned_article(db, current_user, request.article_id)
    check_plan_limit(db, current_user, "analyses")
    check_plan_limit(db, current_user, "concurrent_analyses")

    site = connected_site(db, current_user, article.site_id)
    try:
        async with await gsc_client_for(db, site) as gsc:
            pipeline = CompetitorAnalysisPipeline(gsc, locale=current_user.locale or "ja")
            summary, result = await run_and_save(
                db,
                pipeline,
                article,
                site.site_url,
                AnalysisTrigger.MANUAL,
                max_keywords=request.max_keywords,
                selected_keywords=[kw.model_dump() for kw in request.selected_keywords or []] or None,
                skip_llm=request.skip_llm,
            )
    except GSCError as e:
        raise gsc_http_error(e)
    except SerperError as e:
        raise HTTPException(status_code=502, detail=f"SERP lookup failed: {e}")
    except AnalysisError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Analysis saved for article {article.id}: {result.id}")
    return {"analysis_result_id": str(result.id), "summary": summary.to_dict()}


@router.get("/analysis/latest")
def latest_analysis(
    article_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    article = _owned_article(db, current_user, article_id)
    result = repository.get_latest_analysis_result(db, article.id)
    return {"result": result_response(result) if result else None}


@router.get("/analysis/history")
def analysis_history(
    article_id: UUID,
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    article = _owned_article(db, current_user, article_id)
    results = repository.list_analysis_results(db, article.id, limit)
    return {"results": [result_response(r) for r in results]}


# =============================================================================
# RANK DROP
# =============================================================================

@rank_drop_router.post("/detect")
async def detect_rank_drop(
    request: RankDropRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    site = connected_site(db, current_user, request.site_id)
    try:
        async with await gsc_client_for(db, site) as gsc:
            result = await RankDropDetector(gsc).detect_rank_drop(
                site.site_url,
                request.page_url,
                comparison_days=request.comparison_days,
                drop_threshold=request.drop_threshold,
                keyword_drop_threshold=request.keyword_drop_threshold,
            )
    except GSCError as e:
        raise gsc_http_error(e)
    return result.to_dict()
