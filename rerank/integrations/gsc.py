"""
Google Search Console API Client

Async HTTP client with:
- Search Analytics queries (date, query, date+query, page dimensions)
- Automatic retry with exponential backoff on transient failures
- 401 surfaced as GSCError(status_code=401) so callers can refresh and retry
- OAuth refresh-token exchange
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, date
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from rerank.config import get_settings

logger = logging.getLogger(__name__)

API_BASE = "https://www.googleapis.com/webmasters/v3"
TOKEN_URL = "https://oauth2.googleapis.com/token"


# =============================================================================
# HELPERS
# =============================================================================

def days_ago(days: int, today: Optional[date] = None) -> str:
    """Date `days` before today as YYYY-MM-DD."""
    today = today or datetime.utcnow().date()
    return (today - timedelta(days=days)).isoformat()


def normalize_site_url(site_url: str) -> str:
    """
    Domain properties never end with "/", URL properties always do.

    sc-domain:example.com/  -> sc-domain:example.com
    https://example.com     -> https://example.com/
    """
    if site_url.startswith("sc-domain:"):
        return site_url.rstrip("/")
    return site_url if site_url.endswith("/") else f"{site_url}/"


def to_absolute_page_url(site_url: str, page_url: str) -> str:
    """Resolve a relative page path against the property."""
    if not page_url.startswith("/"):
        return page_url

    site_url = normalize_site_url(site_url)
    if site_url.startswith("sc-domain:"):
        return f"https://{site_url[len('sc-domain:'):]}{page_url}"
    return f"{site_url.rstrip('/')}{page_url}"


def alternate_property_format(site_url: str) -> Optional[str]:
    """https://example.com/ <-> sc-domain:example.com (None for paths under a domain)."""
    if site_url.startswith("sc-domain:"):
        return f"https://{site_url[len('sc-domain:'):].rstrip('/')}/"

    host = site_url.split("://", 1)[-1].rstrip("/")
    if "/" in host:
        return None
    if host.startswith("www."):
        host = host[4:]
    return f"sc-domain:{host}"


# =============================================================================
# ERRORS & RETRY
# =============================================================================

@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    exponential_base: float = 2.0
    retryable_status_codes: tuple = (429, 500, 502, 503, 504)


class GSCError(Exception):
    """Search Console API or OAuth failure."""
    def __init__(self, message: str, status_code: int = None, response: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response

    @property
    def is_auth_error(self) -> bool:
        return self.status_code == 401


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


# =============================================================================
# CLIENT
# =============================================================================

class GSCClient:
    """
    Async client for the Search Console API.

    Usage:
        async with GSCClient(access_token) as client:
            rows = await client.get_keyword_data(site_url, page_url, days_ago(32), days_ago(2))
    """

    def __init__(
        self,
        access_token: str,
        retry_config: Optional[RetryConfig] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.retry_config = retry_config or RetryConfig()
        self._client = httpx.AsyncClient(
            base_url=API_BASE,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self._closed = False

    # -------------------------------------------------------------------------
    # Search Analytics
    # -------------------------------------------------------------------------

    async def get_page_time_series(
        self, site_url: str, page_url: str, start_date: str, end_date: str
    ) -> List[Dict[str, Any]]:
        """Daily rows (keys=[date]) for one page."""
        return await self.query(site_url, start_date, end_date, ["date"], page_url=page_url)

    async def get_keyword_data(
        self, site_url: str, page_url: str, start_date: str, end_date: str
    ) -> List[Dict[str, Any]]:
        """Per-query rows (keys=[query]) for one page."""
        return await self.query(site_url, start_date, end_date, ["query"], page_url=page_url)

    async def get_keyword_time_series(
        self,
        site_url: str,
        page_url: str,
        start_date: str,
        end_date: str,
        keywords: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        """Rows keyed [date, query], optionally restricted to some keywords."""
        extra_groups = None
        if keywords:
            extra_groups = [{
                "filters": [
                    {"dimension": "query", "operator": "equals", "expression": kw}
                    for kw in keywords
                ],
                "groupType": "or",
            }]
        return await self.query(
            site_url, start_date, end_date, ["date", "query"],
            page_url=page_url, row_limit=10000, extra_filter_groups=extra_groups,
        )

    async def get_page_urls(
        self, site_url: str, start_date: str, end_date: str, row_limit: int = 1000
    ) -> List[Dict[str, Any]]:
        """Pages that appeared in search results."""
        return await self.query(site_url, start_date, end_date, ["page"], row_limit=row_limit)

    async def get_all_keywords(
        self,
        site_url: str,
        start_date: str,
        end_date: str,
        row_limit: int = 25000,
        start_row: int = 0,
    ) -> List[Dict[str, Any]]:
        """Site-wide query rows, one page of results."""
        return await self.query(
            site_url, start_date, end_date, ["query"], row_limit=row_limit, start_row=start_row,
        )

    async def query(
        self,
        site_url: str,
        start_date: str,
        end_date: str,
        dimensions: List[str],
        page_url: Optional[str] = None,
        row_limit: int = 1000,
        start_row: int = 0,
        extra_filter_groups: Optional[List[Dict]] = None,
    ) -> List[Dict[str, Any]]:
        """
        POST sites/{site}/searchAnalytics/query.

        Returns:
            Rows of {keys, clicks, impressions, ctr, position}

        Raises:
            GSCError: On API error (status_code=401 for expired tokens)
        """
        site_url = normalize_site_url(site_url)
        body: Dict[str, Any] = {
            "startDate": start_date,
            "endDate": end_date,
            "dimensions": dimensions,
            "rowLimit": row_limit,
        }
        if start_row > 0:
            body["startRow"] = start_row

        groups = []
        if page_url:
            groups.append({
                "filters": [{
                    "dimension": "page",
                    "operator": "equals",
                    "expression": to_absolute_page_url(site_url, page_url),
                }],
            })
        if extra_filter_groups:
            groups.extend(extra_filter_groups)
        if groups:
            body["dimensionFilterGroups"] = groups

        path = f"/sites/{quote(site_url, safe='')}/searchAnalytics/query"
        data = await self._request_with_retry("POST", path, json=body)
        rows = data.get("rows") or []
        logger.debug(f"GSC {dimensions} query for {site_url}: {len(rows)} rows")
        return rows

    async def list_sites(self) -> List[Dict[str, Any]]:
        """Properties the token can read: [{siteUrl, permissionLevel}]."""
        data = await self._request_with_retry("GET", "/sites")
        return data.get("siteEntry") or []

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _make_request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        if self._closed:
            raise GSCError("Client is closed")

        response = await self._client.request(method, path, **kwargs)
        if response.status_code != 200:
            raise GSCError(
                f"GSC API error: {response.status_code}",
                status_code=response.status_code,
                response=_error_body(response),
            )
        return response.json() if response.content else {}

    async def _request_with_retry(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        last_exception = None
        delay = self.retry_config.initial_delay

        for attempt in range(self.retry_config.max_retries + 1):
            try:
                return await self._make_request(method, path, **kwargs)

            except GSCError as e:
                last_exception = e
                if e.status_code not in self.retry_config.retryable_status_codes:
                    raise

            except httpx.HTTPError as e:
                last_exception = GSCError(f"HTTP error: {e}")

            if attempt < self.retry_config.max_retries:
                logger.warning(
                    f"GSC request failed (attempt {attempt + 1}/{self.retry_config.max_retries + 1}): "
                    f"{last_exception}. Retrying in {delay}s..."
                )
                await asyncio.sleep(delay)
                delay = min(delay * self.retry_config.exponential_base, self.retry_config.max_delay)

        raise last_exception

    async def close(self):
        if not self._closed:
            await self._client.aclose()
            self._closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# =============================================================================
# OAUTH
# =============================================================================

async def refresh_access_token(
    refresh_token: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Tuple[str, datetime, Optional[str]]:
    """
    Exchange a refresh token for a new access token.

    Returns:
        (access_token, expires_at, new_refresh_token or None)

    Raises:
        GSCError: If Google credentials are missing or Google rejects the token
    """
    settings = get_settings()
    if not settings.GOOGLE_CLIENT_ID or not settings.GOOGLE_CLIENT_SECRET:
        raise GSCError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set")

    async with httpx.AsyncClient(timeout=httpx.Timeout(30.0), transport=transport) as client:
        response = await client.post(
            TOKEN_URL,
            data={
                "client_id": settings.GOOGLE_CLIENT_ID,
                "client_secret": settings.GOOGLE_CLIENT_SECRET,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )

    if response.status_code != 200:
        logger.error(f"Token refresh failed: {response.status_code} {response.text}")
        raise GSCError(
            f"Failed to refresh access token: {response.status_code}",
            status_code=response.status_code,
            response=_error_body(response),
        )

    tokens = response.json()
    expires_at = datetime.utcnow() + timedelta(seconds=int(tokens.get("expires_in", 3600)))
    return tokens["access_token"], expires_at, tokens.get("refresh_token")
