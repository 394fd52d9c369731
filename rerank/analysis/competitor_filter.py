"""
Competitor Filtering

Decides which SERP results are real competitors for an article. Platforms
the user could never out-write (encyclopedias, social networks, video sites,
search engines) are always excluded; large marketplaces are excluded by
default; users can add their own domains.
"""

import logging
from typing import Dict, List, Optional, Set
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)


# =============================================================================
# EXCLUDED DOMAINS
# =============================================================================

# Reference
ENCYCLOPEDIAS = {
    "wikipedia.org",
    "wikipedia.com",
}

# Social Media Platforms
SOCIAL_MEDIA = {
    "twitter.com", "x.com",
    "facebook.com",
    "instagram.com",
    "linkedin.com",
    "tiktok.com",
    "pinterest.com",
}

# Video & Media Platforms
VIDEO_PLATFORMS = {
    "youtube.com", "youtu.be",
    "vimeo.com",
    "dailymotion.com",
}

# Search Engines
SEARCH_ENGINES = {
    "google.com", "google.co.jp",
    "bing.com",
    "yahoo.co.jp", "yahoo.com",
}

# Image Hosts
IMAGE_SITES = {
    "imgur.com",
    "flickr.com",
}

# Always excluded, not configurable
GLOBAL_EXCLUDED_DOMAINS: Set[str] = (
    ENCYCLOPEDIAS |
    SOCIAL_MEDIA |
    VIDEO_PLATFORMS |
    SEARCH_ENGINES |
    IMAGE_SITES
)

# Excluded unless the user opts out (large e-commerce)
DEFAULT_EXCLUDED_DOMAINS: Set[str] = {
    "amazon.co.jp", "amazon.com",
    "rakuten.co.jp", "rakuten.com",
    "yahoo.co.jp",
}

EXCLUSION_MESSAGES = {
    "ja": {
        "global": "システム除外（Wikipedia、ソーシャルメディア、動画サイト等）",
        "default": "デフォルト除外（大手ECサイト等）",
        "custom": "ユーザー設定による除外",
        "own_site": "自社サイトのため除外",
    },
    "en": {
        "global": "System exclusion (Wikipedia, social media, video sites, etc.)",
        "default": "Default exclusion (major e-commerce sites, etc.)",
        "custom": "Excluded by user settings",
        "own_site": "Excluded (own site)",
    },
}


def extract_domain(url: str) -> str:
    """Hostname without "www."; bare domains are accepted."""
    target = url if url.startswith("http") else f"https://{url}"
    try:
        host = urlsplit(target).hostname
    except ValueError:
        return url
    if not host:
        return url
    return host[4:] if host.startswith("www.") else host


def is_domain_excluded(domain: str, excluded: Set[str]) -> bool:
    """
    Exact or parent-domain match.

    "shop.amazon.co.jp" matches "amazon.co.jp".
    """
    parts = domain.lower().split(".")
    return any(".".join(parts[i:]) in excluded for i in range(len(parts)))


def is_own_site(url: str, own_site_url: Optional[str]) -> bool:
    """True when either domain is the other or a subdomain of it."""
    if not own_site_url:
        return False

    if own_site_url.startswith("sc-domain:"):
        own_site_url = own_site_url[len("sc-domain:"):]

    competitor = extract_domain(url).split(".")
    own = extract_domain(own_site_url).split(".")

    if competitor == own:
        return True
    if len(competitor) > len(own) and competitor[-len(own):] == own:
        return True
    if len(own) > len(competitor) and own[-len(competitor):] == competitor:
        return True
    return False


def _exclusion_reason(
    url: str,
    domain: str,
    own_site_url: Optional[str],
    custom: Set[str],
    use_global: bool,
    use_default: bool,
) -> Optional[str]:
    if use_global and is_domain_excluded(domain, GLOBAL_EXCLUDED_DOMAINS):
        return "global"
    if use_default and is_domain_excluded(domain, DEFAULT_EXCLUDED_DOMAINS):
        return "default"
    if custom and is_domain_excluded(domain, custom):
        return "custom"
    if is_own_site(url, own_site_url):
        return "own_site"
    return None


def filter_competitor_urls(
    urls: List[str],
    own_site_url: Optional[str] = None,
    custom_excluded: Optional[List[str]] = None,
    use_default: bool = True,
    use_global: bool = True,
) -> Dict[str, List]:
    """
    Split SERP URLs into competitors and exclusions.

    Returns:
        {"filtered": [url, ...], "excluded": [{url, domain, reason}, ...]}
        reason is one of global, default, custom, own_site
    """
    custom = {d.lower().strip() for d in (custom_excluded or []) if d.strip()}

    filtered = []
    excluded = []
    for url in urls:
        domain = extract_domain(url)
        reason = _exclusion_reason(url, domain, own_site_url, custom, use_global, use_default)
        if reason:
            excluded.append({"url": url, "domain": domain, "reason": reason})
        else:
            filtered.append(url)

    if excluded:
        logger.debug(f"Excluded {len(excluded)} of {len(urls)} SERP URLs")

    return {"filtered": filtered, "excluded": excluded}


def exclusion_reason_message(reason: str, locale: str = "ja") -> str:
    messages = EXCLUSION_MESSAGES.get(locale, EXCLUSION_MESSAGES["ja"])
    return messages[reason]
