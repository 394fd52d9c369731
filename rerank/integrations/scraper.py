"""
Article Scraper

Fetches a page with httpx and extracts the readable article structure with
BeautifulSoup: title, headings, paragraphs, list items and full text.
"""

import asyncio
import ipaddress
import logging
import re
import socket
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import httpx
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

REQUEST_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "ja-JP,ja;q=0.9,en-US;q=0.8,en;q=0.7",
}

# Page chrome removed before extraction
NOISE_SELECTORS = (
    "script, style, nav, header, footer, aside, "
    ".ad, .ads, .advertisement, .sidebar, .menu, .navigation"
)

MIN_PARAGRAPH_LENGTH = 20

Resolver = Callable[[str], Awaitable[List[str]]]


class ScraperError(Exception):
    """Page could not be fetched."""

    def __init__(self, message: str, status_code: int = None, response: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class UnsafeURLError(ScraperError):
    """URL points at a non-public address (loopback, private, link-local, ...)."""
    pass


async def resolve_host(host: str) -> List[str]:
    """All addresses a hostname resolves to."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


def is_public_address(address: str) -> bool:
    ip = ipaddress.ip_address(address.split("%")[0])
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped:
        ip = ip.ipv4_mapped
    return not (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


async def ensure_public_url(url: str, resolve: Resolver = resolve_host) -> None:
    """
    Refuse URLs the server must not fetch on a user's behalf.

    Raises:
        UnsafeURLError: Non-http(s) scheme, no host, unresolvable host, or any
            resolved address that is not public
    """
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise UnsafeURLError(f"Only public http(s) URLs can be fetched: {url}")

    host = parts.hostname
    try:
        addresses = [str(ipaddress.ip_address(host))]
    except ValueError:
        try:
            addresses = await resolve(host)
        except OSError as e:
            raise UnsafeURLError(f"Could not resolve {host}: {e}")

    if not addresses:
        raise UnsafeURLError(f"Could not resolve {host}")
    for address in addresses:
        if not is_public_address(address):
            logger.warning(f"Blocked fetch of {url}: {host} resolves to {address}")
            raise UnsafeURLError(f"{host} resolves to a non-public address")


@dataclass
class ScrapedArticle:
    url: str
    title: str
    headings: List[Tuple[int, str]] = field(default_factory=list)
    paragraphs: List[str] = field(default_factory=list)
    lists: List[List[str]] = field(default_factory=list)
    full_text: str = ""
    word_count: int = 0
    has_structured_data: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "headings": [{"level": level, "text": text} for level, text in self.headings],
            "paragraphs": self.paragraphs,
            "lists": self.lists,
            "word_count": self.word_count,
            "has_structured_data": self.has_structured_data,
        }


def _clean(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def parse_article(html: str, url: str) -> ScrapedArticle:
    """Extract the article structure from raw HTML."""
    soup = BeautifulSoup(html, "html.parser")

    title = ""
    if soup.title and soup.title.get_text(strip=True):
        title = soup.title.get_text(strip=True)
    elif soup.find("h1") and soup.find("h1").get_text(strip=True):
        title = soup.find("h1").get_text(strip=True)
    else:
        og_title = soup.find("meta", attrs={"property": "og:title"})
        if og_title and og_title.get("content"):
            title = og_title["content"].strip()

    has_structured_data = soup.find("script", attrs={"type": "application/ld+json"}) is not None

    for element in soup.select(NOISE_SELECTORS):
        element.decompose()

    main = soup.find("article") or soup.find("main") or soup.body or soup

    headings = []
    for heading in main.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]):
        text = _clean(heading.get_text(" "))
        if text:
            headings.append((int(heading.name[1]), text))

    paragraphs = []
    for p in main.find_all("p"):
        text = _clean(p.get_text(" "))
        if len(text) > MIN_PARAGRAPH_LENGTH:
            paragraphs.append(text)

    lists = []
    for lst in main.find_all(["ul", "ol"]):
        items = [_clean(li.get_text(" ")) for li in lst.find_all("li")]
        items = [item for item in items if item]
        if items:
            lists.append(items)

    full_text = _clean(main.get_text(" "))

    return ScrapedArticle(
        url=url,
        title=title,
        headings=headings,
        paragraphs=paragraphs,
        lists=lists,
        full_text=full_text,
        word_count=len(full_text.split()),
        has_structured_data=has_structured_data,
    )


class ArticleScraper:
    """
    Async page fetcher with retries.

    Every request, redirects included, is checked with ensure_public_url
    before it is sent.

    Usage:
        async with ArticleScraper() as scraper:
            article = await scraper.scrape_article(url)
    """

    def __init__(
        self,
        timeout: float = 30.0,
        retry_count: int = 3,
        retry_delay: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        resolver: Resolver = resolve_host,
    ):
        self.retry_count = retry_count
        self.retry_delay = retry_delay
        self._resolve = resolver
        self._client = httpx.AsyncClient(
            headers=REQUEST_HEADERS,
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            transport=transport,
            event_hooks={"request": [self._check_request]},
        )

    async def _check_request(self, request: httpx.Request) -> None:
        await ensure_public_url(str(request.url), self._resolve)

    async def fetch_html(self, url: str) -> str:
        last_error = None
        for attempt in range(self.retry_count):
            try:
                response = await self._client.get(url)
                if response.status_code != 200:
                    raise ScraperError(
                        f"HTTP {response.status_code} for {url}",
                        status_code=response.status_code,
                    )
                return response.text
            except UnsafeURLError:
                raise
            except (ScraperError, httpx.HTTPError) as e:
                last_error = e
                if attempt < self.retry_count - 1:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))

        raise ScraperError(
            f"Failed to fetch {url} after {self.retry_count} attempts: {last_error}",
            status_code=getattr(last_error, "status_code", None),
        )

    async def scrape_article(self, url: str, raise_on_error: bool = True) -> Optional[ScrapedArticle]:
        """
        Fetch and parse a page.

        Returns None instead of raising when raise_on_error is False.
        """
        try:
            html = await self.fetch_html(url)
        except ScraperError as e:
            if raise_on_error:
                raise
            logger.warning(f"Scrape failed for {url}: {e}")
            return None
        return parse_article(html, url)

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
