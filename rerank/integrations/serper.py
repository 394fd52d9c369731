"""
Serper API Client

Google SERP results (Japanese locale) for competitor discovery.
API: https://serper.dev
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from rerank.config import get_settings
from .gsc import RetryConfig

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    """One organic result; position is 1-based."""
    url: str
    title: str
    position: int

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "title": self.title, "position": self.position}


class SerperError(Exception):
    """Custom exception for Serper API errors."""

    def __init__(self, message: str, status_code: int = None, response: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class SerperClient:
    """
    Async client for the Serper search API.

    Usage:
        async with SerperClient() as client:
            results = await client.search("seo ツール", num=10)
    """

    SEARCH_URL = "https://google.serper.dev/search"

    def __init__(
        self,
        api_key: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or get_settings().SERPER_API_KEY
        if not self.api_key:
            raise SerperError("SERPER_API_KEY is not set")

        self.retry_config = retry_config or RetryConfig()
        self._client = httpx.AsyncClient(
            headers={
                "X-API-KEY": self.api_key,
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self._closed = False

    @staticmethod
    def is_available() -> bool:
        return bool(get_settings().SERPER_API_KEY)

    async def search(self, query: str, location: str = "Japan", num: int = 10) -> List[SearchResult]:
        """
        Run a Google search.

        Raises:
            SerperError: On API error after retries
        """
        payload = {"q": query, "location": location, "num": num, "hl": "ja", "gl": "jp"}
        data = await self._request_with_retry(payload)

        results = []
        for index, item in enumerate(data.get("organic") or []):
            url = item.get("link") or item.get("url")
            if not url:
                continue
            results.append(SearchResult(url=url, title=item.get("title", ""), position=index + 1))

        logger.debug(f"Serper '{query}': {len(results)} results")
        return results

    async def _make_request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._client.post(self.SEARCH_URL, json=payload)
        if response.status_code != 200:
            try:
                body = response.json()
            except ValueError:
                body = response.text
            raise SerperError(
                f"Serper API error: {response.status_code}",
                status_code=response.status_code,
                response=body,
            )
        return response.json()

    async def _request_with_retry(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        last_exception = None
        delay = self.retry_config.initial_delay

        for attempt in range(self.retry_config.max_retries + 1):
            try:
                return await self._make_request(payload)
            except SerperError as e:
                last_exception = e
                if e.status_code not in self.retry_config.retryable_status_codes:
                    raise
            except httpx.HTTPError as e:
                last_exception = SerperError(f"HTTP error: {e}")

            if attempt < self.retry_config.max_retries:
                logger.warning(
                    f"Serper request failed (attempt {attempt + 1}). Retrying in {delay}s..."
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
