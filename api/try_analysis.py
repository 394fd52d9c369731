"""
Try Analysis API (no login)

Looks up where an article ranks for a few keywords via Serper and gives one
hint from a content diff against the top competitor. Rate-limited per IP.

Endpoints:
- POST /api/try-analysis
"""

import asyncio
import logging
from typing import List, Optional
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from rerank.analysis.diff import DiffAnalyzer
from rerank.auth.rate_limit import check_rate_limit, get_client_ip
from rerank.database.session import get_db
from rerank.integrations.scraper import ArticleScraper
from rerank.integrations.serper import SearchResult, SerperClient, SerperError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/try-analysis", tags=["Try Analysis"])

MAX_KEYWORDS = 5
MAX_KEYWORD_INPUT = 500
SEARCH_DEPTH = 20
RATE_LIMIT_ACTION = "try_analysis"


class TryAnalysisRequest(BaseModel):
    article_url: str = Field(..., min_length=1, max_length=2000)
    keyword: str = Field(..., min_length=1)


def normalize_url(url: str) -> str:
    """scheme://host/path, dropping query and fragment."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.hostname:
        return url
    return f"{parts.scheme}://{parts.hostname}{parts.path}"


def split_keywords(value: str) -> List[str]:
    return [k.strip() for k in value.split(",") if k.strip()][:MAX_KEYWORDS]


def position_label(position: Optional[int]) -> str:
    return f"{position}位" if position is not None else f"{SEARCH_DEPTH}位以下"


def find_position(results: List[SearchResult], article_url: str) -> Optional[int]:
    target = normalize_url(article_url)
    for result in results:
        if normalize_url(result.url) == target:
            return result.position
    return None


async def competitor_hint(article_url: str, results: List[SearchResult]) -> Optional[str]:
    """First diff recommendation against the best-ranked other page, or None."""
    target = normalize_url(article_url)
    competitor = next((r for r in results if normalize_url(r.url) != target), None)
    if competitor is None:
        return None

    async with ArticleScraper(retry_count=1) as scraper:
        own, other = await asyncio.gather(
            scraper.scrape_article(article_url, raise_on_error=False),
            scraper.scrape_article(competitor.url, raise_on_error=False),
        )
    if own is None or other is None:
        return None

    diff = DiffAnalyzer().analyze(own, [other])
    return diff.recommendations[0] if diff.recommendations else None


@router.post("")
async def try_analysis(
    body: TryAnalysisRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    ip = get_client_ip(request.headers) or "unknown"
    limit = check_rate_limit(db, ip, RATE_LIMIT_ACTION)
    if not limit.allowed:
        return JSONResponse(
            status_code=429,
            content={
                "error": "rate_limit",
                "message": "Too many attempts. Please try again later.",
                "reset_at": limit.reset_at.isoformat(),
            },
            headers={"X-RateLimit-Remaining": "0"},
        )

    keyword_input = body.keyword.strip()
    keywords = split_keywords(keyword_input)
    article_url = body.article_url.strip()
    if not article_url or not keywords:
        raise HTTPException(status_code=400, detail="Missing article_url or keyword")
    if len(keyword_input) > MAX_KEYWORD_INPUT:
        raise HTTPException(status_code=400, detail="Keyword too long")

    parts = urlsplit(article_url)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise HTTPException(status_code=400, detail="Invalid article URL")

    if not SerperClient.is_available():
        raise HTTPException(status_code=503, detail="Service temporarily unavailable")

    results = []
    first_results: List[SearchResult] = []
    try:
        async with SerperClient() as client:
            for index, keyword in enumerate(keywords):
                search_results = await client.search(keyword, num=SEARCH_DEPTH)
                if index == 0:
                    first_results = search_results
                position = find_position(search_results, article_url)
                results.append({
                    "keyword": keyword,
                    "position": position,
                    "position_label": position_label(position),
                })
    except SerperError as e:
        logger.error(f"Try analysis search failed: {e}")
        raise HTTPException(status_code=502, detail="Analysis failed. Please try again.")

    hint = await competitor_hint(article_url, first_results) if first_results else None

    response.headers["X-RateLimit-Remaining"] = str(limit.remaining)
    return {
        "results": results,
        "hint": hint,
        "cta_message": "full_analysis_after_signup",
    }
