"""
Integration Client Tests

Search Console, Serper, Slack and Stripe helpers, driven through
httpx.MockTransport so no request leaves the process.
"""

import json
import pytest
from datetime import date, datetime
from urllib.parse import parse_qs, urlsplit

import httpx

from rerank.integrations.gsc import (
    GSCClient,
    GSCError,
    RetryConfig,
    alternate_property_format,
    days_ago,
    normalize_site_url,
    refresh_access_token,
    to_absolute_page_url,
)
from rerank.integrations.serper import SerperClient, SerperError
from rerank.integrations.slack import (
    SlackError,
    build_oauth_url,
    exchange_code,
    list_channels,
    resolve_redirect_uri,
    send_slack_message,
)
from rerank.integrations.stripe_client import (
    StripeNotConfiguredError,
    from_timestamp,
    get_field,
    get_stripe,
    subscription_period,
)

NO_WAIT = RetryConfig(initial_delay=0, max_delay=0)


def recording_transport(handler):
    """MockTransport that also keeps the requests it saw."""
    requests = []

    def _handle(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    transport = httpx.MockTransport(_handle)
    transport.requests = requests
    return transport


# =============================================================================
# SEARCH CONSOLE
# =============================================================================

class TestSiteUrlHelpers:

    def test_normalize_site_url(self):
        assert normalize_site_url("https://example.com") == "https://example.com/"
        assert normalize_site_url("https://example.com/") == "https://example.com/"
        assert normalize_site_url("sc-domain:example.com/") == "sc-domain:example.com"

    def test_to_absolute_page_url(self):
        assert to_absolute_page_url("https://example.com/", "/post") == "https://example.com/post"
        assert to_absolute_page_url("sc-domain:example.com", "/post") == "https://example.com/post"
        assert to_absolute_page_url("https://example.com/", "https://other.com/a") == "https://other.com/a"

    def test_alternate_property_format(self):
        assert alternate_property_format("https://www.example.com/") == "sc-domain:example.com"
        assert alternate_property_format("sc-domain:example.com") == "https://example.com/"
        assert alternate_property_format("https://example.com/blog/") is None

    def test_days_ago(self):
        assert days_ago(2, date(2025, 3, 1)) == "2025-02-27"


@pytest.mark.asyncio
class TestGSCClient:

    async def test_keyword_query_body(self):
        transport = recording_transport(
            lambda request: httpx.Response(200, json={"rows": [{"keys": ["seo"], "position": 3.0}]})
        )
        async with GSCClient("token", transport=transport) as client:
            rows = await client.get_keyword_data("https://example.com", "/post", "2025-01-01", "2025-01-31")

        assert rows == [{"keys": ["seo"], "position": 3.0}]
        request = transport.requests[0]
        assert request.headers["Authorization"] == "Bearer token"
        assert request.url.raw_path.endswith(b"/searchAnalytics/query")
        assert b"example.com" in request.url.raw_path

        body = json.loads(request.content)
        assert body["dimensions"] == ["query"]
        assert body["dimensionFilterGroups"][0]["filters"][0]["expression"] == "https://example.com/post"

    async def test_keyword_time_series_adds_or_group(self):
        transport = recording_transport(lambda request: httpx.Response(200, json={}))
        async with GSCClient("token", transport=transport) as client:
            rows = await client.get_keyword_time_series(
                "sc-domain:example.com", "/post", "2025-01-01", "2025-01-31", keywords=["a", "b"]
            )

        assert rows == []
        groups = json.loads(transport.requests[0].content)["dimensionFilterGroups"]
        assert groups[1]["groupType"] == "or"
        assert [f["expression"] for f in groups[1]["filters"]] == ["a", "b"]

    async def test_page_urls_and_site_keywords_have_no_page_filter(self):
        transport = recording_transport(lambda request: httpx.Response(200, json={"rows": []}))
        async with GSCClient("token", transport=transport) as client:
            await client.get_page_urls("https://example.com/", "2025-01-01", "2025-01-31")
            await client.get_all_keywords("https://example.com/", "2025-01-01", "2025-01-31", start_row=25000)

        pages, keywords = [json.loads(r.content) for r in transport.requests]
        assert pages["dimensions"] == ["page"]
        assert "dimensionFilterGroups" not in pages
        assert keywords["dimensions"] == ["query"]
        assert keywords["rowLimit"] == 25000
        assert keywords["startRow"] == 25000

    async def test_auth_error_is_not_retried(self):
        transport = recording_transport(lambda request: httpx.Response(401, json={"error": "expired"}))
        async with GSCClient("token", retry_config=NO_WAIT, transport=transport) as client:
            with pytest.raises(GSCError) as exc:
                await client.list_sites()

        assert exc.value.is_auth_error
        assert len(transport.requests) == 1

    async def test_server_error_is_retried(self):
        responses = iter([httpx.Response(503), httpx.Response(200, json={"siteEntry": [{"siteUrl": "x"}]})])
        transport = recording_transport(lambda request: next(responses))
        async with GSCClient("token", retry_config=NO_WAIT, transport=transport) as client:
            sites = await client.list_sites()

        assert sites == [{"siteUrl": "x"}]
        assert len(transport.requests) == 2


@pytest.mark.asyncio
class TestRefreshAccessToken:

    async def test_refresh(self, configure):
        configure(GOOGLE_CLIENT_ID="client", GOOGLE_CLIENT_SECRET="secret")
        transport = recording_transport(
            lambda request: httpx.Response(200, json={"access_token": "new", "expires_in": 60})
        )

        access_token, expires_at, refresh_token = await refresh_access_token("refresh", transport=transport)

        assert access_token == "new"
        assert refresh_token is None
        assert expires_at > datetime.utcnow()
        form = parse_qs(transport.requests[0].content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["refresh"]

    async def test_rejected_refresh(self, configure):
        configure(GOOGLE_CLIENT_ID="client", GOOGLE_CLIENT_SECRET="secret")
        transport = httpx.MockTransport(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))

        with pytest.raises(GSCError) as exc:
            await refresh_access_token("refresh", transport=transport)
        assert exc.value.status_code == 400

    async def test_missing_credentials(self, configure):
        configure(GOOGLE_CLIENT_ID=None, GOOGLE_CLIENT_SECRET=None)
        with pytest.raises(GSCError):
            await refresh_access_token("refresh")


# =============================================================================
# SERPER
# =============================================================================

@pytest.mark.asyncio
class TestSerperClient:

    async def test_search_results(self):
        organic = [
            {"link": "https://a.example/", "title": "A"},
            {"title": "no link"},
            {"link": "https://c.example/", "title": "C"},
        ]
        transport = recording_transport(lambda request: httpx.Response(200, json={"organic": organic}))
        async with SerperClient(api_key="key", transport=transport) as client:
            results = await client.search("seo ツール", num=20)

        assert [(r.url, r.position) for r in results] == [
            ("https://a.example/", 1),
            ("https://c.example/", 3),
        ]
        request = transport.requests[0]
        assert request.headers["X-API-KEY"] == "key"
        assert json.loads(request.content)["num"] == 20

    async def test_client_error_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(403, json={"message": "bad key"}))
        async with SerperClient(api_key="key", retry_config=NO_WAIT, transport=transport) as client:
            with pytest.raises(SerperError) as exc:
                await client.search("seo")
        assert exc.value.status_code == 403

    async def test_missing_api_key(self, configure):
        configure(SERPER_API_KEY=None)
        assert SerperClient.is_available() is False
        with pytest.raises(SerperError):
            SerperClient()


# =============================================================================
# SLACK
# =============================================================================

class TestSlackOAuth:

    def test_redirect_uri_for_https_origin(self, configure):
        configure(SLACK_REDIRECT_BASE_URL="https://rerank.example")
        assert resolve_redirect_uri("https://app.example.com/settings") == (
            "https://app.example.com/api/auth/slack/callback"
        )

    def test_redirect_uri_falls_back_for_localhost(self, configure):
        configure(SLACK_REDIRECT_BASE_URL="https://rerank.example/")
        expected = "https://rerank.example/api/auth/slack/callback"
        assert resolve_redirect_uri("http://localhost:3000") == expected
        assert resolve_redirect_uri(None) == expected

    def test_build_oauth_url(self, configure):
        configure(SLACK_CLIENT_ID="cid", SLACK_REDIRECT_BASE_URL="https://rerank.example")
        parts = urlsplit(build_oauth_url("state-token"))
        params = parse_qs(parts.query)

        assert parts.netloc == "slack.com"
        assert params["client_id"] == ["cid"]
        assert params["state"] == ["state-token"]
        assert "chat:write" in params["scope"][0].split(",")

    def test_build_oauth_url_requires_client_id(self, configure):
        configure(SLACK_CLIENT_ID=None)
        with pytest.raises(SlackError):
            build_oauth_url("state")


@pytest.mark.asyncio
class TestSlackApi:

    async def test_send_message(self):
        transport = recording_transport(lambda request: httpx.Response(200, json={"ok": True, "ts": "1.0"}))

        data = await send_slack_message("xoxb", "C123", {"text": "hi", "blocks": []}, transport=transport)

        assert data["ts"] == "1.0"
        request = transport.requests[0]
        assert request.url.path == "/api/chat.postMessage"
        assert request.headers["Authorization"] == "Bearer xoxb"
        assert json.loads(request.content)["channel"] == "C123"

    async def test_not_ok_raises(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"ok": False, "error": "channel_not_found"})
        )
        with pytest.raises(SlackError, match="channel_not_found"):
            await send_slack_message("xoxb", "C404", {"text": "hi"}, transport=transport)

    async def test_list_channels(self):
        channels = [
            {"id": "C2", "name": "seo", "is_private": True},
            {"id": "C3", "name": "old", "is_archived": True},
            {"id": "C1", "name": "general", "is_member": True},
        ]
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": True, "channels": channels}))

        result = await list_channels("xoxb", transport=transport)

        assert [c.id for c in result] == ["C1", "C2"]
        assert result[1].is_private is True

    async def test_exchange_code(self, configure):
        configure(SLACK_CLIENT_ID="cid", SLACK_CLIENT_SECRET="secret")
        payload = {
            "ok": True,
            "access_token": "xoxb-new",
            "team": {"id": "T1", "name": "Team"},
            "authed_user": {"id": "U1"},
        }
        transport = recording_transport(lambda request: httpx.Response(200, json=payload))

        tokens = await exchange_code("code", transport=transport)

        assert (tokens.bot_token, tokens.team_id, tokens.team_name, tokens.user_id) == (
            "xoxb-new", "T1", "Team", "U1"
        )
        form = parse_qs(transport.requests[0].content.decode())
        assert form["code"] == ["code"]


# =============================================================================
# STRIPE
# =============================================================================

class TestStripeHelpers:

    def test_get_stripe_requires_key(self, configure):
        configure(STRIPE_SECRET_KEY=None)
        with pytest.raises(StripeNotConfiguredError):
            get_stripe()

    def test_get_stripe_sets_key(self, configure):
        configure(STRIPE_SECRET_KEY="sk_test_123")
        assert get_stripe().api_key == "sk_test_123"

    def test_from_timestamp(self):
        assert from_timestamp(None) is None
        assert from_timestamp(0) is None
        assert from_timestamp(86400) == datetime(1970, 1, 2)

    def test_get_field(self):
        class Obj:
            status = "active"

        assert get_field({"status": "trialing"}, "status") == "trialing"
        assert get_field(Obj(), "status") == "active"
        assert get_field(None, "status") is None

    def test_subscription_period_from_items(self):
        subscription = {"items": {"data": [{"current_period_start": 3600, "current_period_end": 86400}]}}
        start, end = subscription_period(subscription)

        assert start == datetime(1970, 1, 1, 1)
        assert end == datetime(1970, 1, 2)
