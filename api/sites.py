"""
Sites & Search Console API

Endpoints:
- GET /api/sites - List connected sites
- POST /api/sites - Connect (or reconnect) a Search Console property
- DELETE /api/sites/{site_id} - Deactivate a site
- POST /api/sites/{site_id}/tokens - Store refreshed OAuth tokens
- GET /api/gsc/properties - Properties the Google account can access (cached)
- GET /api/gsc/rank-data - Page time series and keywords for one article
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from rerank.auth.dependencies import get_current_user, get_owned_site
from rerank.auth.models import User
from rerank.cache import cache_key, get_cache
from rerank.database import repository
from rerank.database.models import Site
from rerank.database.session import get_db
from rerank.integrations.gsc import GSCError, days_ago, normalize_site_url
from .common import check_plan_limit, connected_site, gsc_client_for, gsc_http_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sites", tags=["Sites"])
gsc_router = APIRouter(prefix="/api/gsc", tags=["Search Console"])

PROPERTIES_TTL = timedelta(minutes=10)
RANK_DATA_DAYS = 30


# =============================================================================
# MODELS
# =============================================================================

class SiteResponse(BaseModel):
    id: UUID
    site_url: str
    display_name: Optional[str]
    is_active: bool
    has_auth_error: bool
    token_expires_at: Optional[datetime]
    created_at: Optional[datetime]


class SaveSiteRequest(BaseModel):
    site_url: str = Field(..., min_length=1, max_length=500)
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    display_name: Optional[str] = None


class TokenRequest(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: datetime


def site_response(site: Site) -> SiteResponse:
    return SiteResponse(
        id=site.id,
        site_url=site.site_url,
        display_name=site.display_name,
        is_active=site.is_active,
        has_auth_error=site.auth_error_at is not None,
        token_expires_at=site.gsc_token_expires_at,
        created_at=site.created_at,
    )


# =============================================================================
# SITES
# =============================================================================

@router.get("", response_model=List[SiteResponse])
def list_sites(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [site_response(site) for site in repository.get_sites(db, current_user.id)]


@router.post("", response_model=SiteResponse)
async def save_site(
    request: SaveSiteRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Connect a property. Reconnecting an existing one does not count against the plan."""
    site_url = normalize_site_url(request.site_url)
    existing = [s for s in repository.get_sites(db, current_user.id) if s.site_url == site_url]
    if not existing:
        check_plan_limit(db, current_user, "sites")

    site = repository.save_or_update_site(
        db,
        current_user.id,
        site_url,
        access_token=request.access_token,
        refresh_token=request.refresh_token,
        expires_at=request.expires_at,
        display_name=request.display_name,
    )
    await get_cache().invalidate("gsc-properties", current_user.id)
    logger.info(f"Site {site.site_url} saved for user {current_user.id}")
    return site_response(site)


@router.delete("/{site_id}")
async def delete_site(
    site: Site = Depends(get_owned_site),
    db: Session = Depends(get_db),
):
    repository.deactivate_site(db, site)
    await get_cache().invalidate("gsc-properties", site.user_id)
    return {"success": True}


@router.post("/{site_id}/tokens", response_model=SiteResponse)
async def update_tokens(
    request: TokenRequest,
    site: Site = Depends(get_owned_site),
    db: Session = Depends(get_db),
):
    repository.update_site_tokens(db, site, request.access_token, request.expires_at, request.refresh_token)
    await get_cache().invalidate("gsc-properties", site.user_id)
    return site_response(site)


# =============================================================================
# SEARCH CONSOLE
# =============================================================================

@gsc_router.get("/properties")
async def list_properties(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Properties visible to the connected Google account."""
    cache = get_cache()
    key = cache_key("gsc-properties", current_user.id)
    cached = await cache.get(key)
    if cached is not None:
        return {"properties": cached, "from_cache": True}

    site = connected_site(db, current_user)
    try:
        async with await gsc_client_for(db, site) as client:
            entries = await client.list_sites()
    except GSCError as e:
        raise gsc_http_error(e)

    properties = [
        {"site_url": entry.get("siteUrl"), "permission_level": entry.get("permissionLevel")}
        for entry in entries
    ]
    await cache.set(key, properties, ttl=PROPERTIES_TTL)
    return {"properties": properties, "from_cache": False}


@gsc_router.get("/rank-data")
async def rank_data(
    page_url: str = Query(..., min_length=1),
    site_id: Optional[UUID] = None,
    days: int = Query(RANK_DATA_DAYS, ge=1, le=480),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Daily average position plus per-keyword rows for a page."""
    site = connected_site(db, current_user, site_id)
    start_date, end_date = days_ago(days + 2), days_ago(2)

    try:
        async with await gsc_client_for(db, site) as client:
            time_series = await client.get_page_time_series(site.site_url, page_url, start_date, end_date)
            keywords = await client.get_keyword_data(site.site_url, page_url, start_date, end_date)
    except GSCError as e:
        raise gsc_http_error(e)

    return {
        "site_url": site.site_url,
        "page_url": page_url,
        "start_date": start_date,
        "end_date": end_date,
        "time_series": [
            {
                "date": row["keys"][0],
                "position": row.get("position"),
                "impressions": row.get("impressions", 0),
                "clicks": row.get("clicks", 0),
                "ctr": row.get("ctr", 0.0),
            }
            for row in time_series
        ],
        "keywords": sorted(
            (
                {
                    "keyword": row["keys"][0],
                    "position": row.get("position"),
                    "impressions": row.get("impressions", 0),
                    "clicks": row.get("clicks", 0),
                }
                for row in keywords
            ),
            key=lambda kw: kw["impressions"],
            reverse=True,
        ),
    }
