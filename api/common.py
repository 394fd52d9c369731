"""
Shared router helpers: site lookup, fresh GSC clients and error mapping.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from rerank.auth.models import User
from rerank.billing import PlanLimitError, enforce_plan_limit
from rerank.database import repository
from rerank.database.models import Site
from rerank.integrations.gsc import GSCClient, GSCError, refresh_access_token

logger = logging.getLogger(__name__)

TOKEN_REFRESH_MARGIN = timedelta(minutes=10)


def connected_site(db: Session, user: User, site_id: Optional[UUID] = None) -> Site:
    """The user's active site (a specific one when site_id is given) or 404."""
    site = repository.get_connected_site(db, user.id, site_id)
    if site is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No connected Search Console site",
        )
    if not site.gsc_access_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Search Console is not connected for this site",
        )
    return site


async def fresh_access_token(db: Session, site: Site, now: Optional[datetime] = None) -> str:
    """Refresh the site's token when it expires within 10 minutes."""
    now = now or datetime.utcnow()
    expires_at = site.gsc_token_expires_at
    if expires_at is not None and now < expires_at - TOKEN_REFRESH_MARGIN:
        return site.gsc_access_token
    if not site.gsc_refresh_token:
        return site.gsc_access_token

    try:
        access_token, new_expiry, new_refresh = await refresh_access_token(site.gsc_refresh_token)
    except GSCError as e:
        logger.error(f"Token refresh failed for site {site.id}: {e}")
        repository.mark_site_auth_error(db, site, now)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Search Console authorization expired. Please reconnect.",
        )

    repository.update_site_tokens(db, site, access_token, new_expiry, new_refresh)
    return access_token


async def gsc_client_for(db: Session, site: Site) -> GSCClient:
    return GSCClient(await fresh_access_token(db, site))


def gsc_http_error(e: GSCError) -> HTTPException:
    if e.is_auth_error:
        return HTTPException(status_code=401, detail="Search Console authorization expired. Please reconnect.")
    if e.status_code == 403:
        return HTTPException(status_code=403, detail="No permission for this Search Console property")
    return HTTPException(status_code=502, detail=f"Search Console error: {e}")


def check_plan_limit(db: Session, user: User, limit_type: str) -> None:
    """403 with the i18n message key when the plan limit is reached."""
    try:
        enforce_plan_limit(db, user, limit_type)
    except PlanLimitError as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": e.message_key,
                "limit_type": e.limit_type,
                "current_usage": e.current_usage,
                "limit": e.limit,
            },
        )
