"""
External API Integrations

Clients for the third-party services ReRank is built on:
- Google Search Console: rankings, impressions, clicks per page and query
- Serper: Google SERP results for competitor discovery
- Scraper: article fetch and HTML extraction
- Slack: bot messaging and OAuth install
- Stripe: subscription billing
"""

from .gsc import (
    GSCClient,
    GSCError,
    RetryConfig,
    days_ago,
    normalize_site_url,
    to_absolute_page_url,
    alternate_property_format,
    refresh_access_token,
)
from .serper import SerperClient, SerperError, SearchResult
from .scraper import ArticleScraper, ScraperError, ScrapedArticle, UnsafeURLError, ensure_public_url, parse_article
from .slack import (
    SlackError,
    SlackChannel,
    SlackOAuthTokens,
    send_slack_message,
    list_channels,
    build_oauth_url,
    exchange_code,
)
from .stripe_client import StripeNotConfiguredError, get_stripe

__all__ = [
    # Search Console
    "GSCClient",
    "GSCError",
    "RetryConfig",
    "days_ago",
    "normalize_site_url",
    "to_absolute_page_url",
    "alternate_property_format",
    "refresh_access_token",
    # Serper
    "SerperClient",
    "SerperError",
    "SearchResult",
    # Scraper
    "ArticleScraper",
    "ScraperError",
    "ScrapedArticle",
    "parse_article",
    "UnsafeURLError",
    "ensure_public_url",
    # Slack
    "SlackError",
    "SlackChannel",
    "SlackOAuthTokens",
    "send_slack_message",
    "list_channels",
    "build_oauth_url",
    "exchange_code",
    # Stripe
    "StripeNotConfiguredError",
    "get_stripe",
]
