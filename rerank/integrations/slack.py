"""
Slack Web API Client

Bot-token messaging, OAuth v2 install flow and channel listing.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode, urlsplit

import httpx

from rerank.config import get_settings

logger = logging.getLogger(__name__)

SLACK_API = "https://slack.com/api"
AUTHORIZE_URL = "https://slack.com/oauth/v2/authorize"
CALLBACK_PATH = "/api/auth/slack/callback"

OAUTH_SCOPES = [
    "chat:write",
    "chat:write.public",  # post to public channels the bot has not joined
    "users:read",
    "im:write",
    "channels:read",
    "groups:read",
]


class SlackError(Exception):
    """Slack API returned an HTTP error or ok=false."""

    def __init__(self, message: str, status_code: int = None, response: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


@dataclass
class SlackOAuthTokens:
    bot_token: str
    user_id: Optional[str]
    team_id: str
    team_name: Optional[str] = None


@dataclass
class SlackChannel:
    id: str
    name: str
    is_private: bool = False
    is_member: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "is_private": self.is_private,
            "is_member": self.is_member,
        }


def _parse(response: httpx.Response, method: str) -> Dict[str, Any]:
    if response.status_code != 200:
        raise SlackError(
            f"Slack {method} failed: HTTP {response.status_code}",
            status_code=response.status_code,
            response=response.text,
        )
    data = response.json()
    if not data.get("ok"):
        raise SlackError(f"Slack API error: {data.get('error')}", status_code=200, response=data)
    return data


async def _call(
    method: str,
    bot_token: Optional[str] = None,
    json: Optional[Dict] = None,
    form: Optional[Dict] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    headers = {"Authorization": f"Bearer {bot_token}"} if bot_token else {}
    async with httpx.AsyncClient(timeout=httpx.Timeout(30.0), transport=transport) as client:
        response = await client.post(f"{SLACK_API}/{method}", headers=headers, json=json, data=form)
    return _parse(response, method)


# =============================================================================
# MESSAGING
# =============================================================================

async def send_slack_message(
    bot_token: str,
    channel: str,
    payload: Dict[str, Any],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """
    chat.postMessage to a channel id or a user id (DM).

    Args:
        payload: {"text": fallback, "blocks": [...]}

    Raises:
        SlackError: When Slack rejects the message
    """
    body = {"channel": channel, "text": payload.get("text", ""), "blocks": payload.get("blocks")}
    data = await _call("chat.postMessage", bot_token=bot_token, json=body, transport=transport)
    logger.info(f"Slack message sent to {channel} (ts={data.get('ts')})")
    return data


async def list_channels(
    bot_token: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[SlackChannel]:
    """Public and private channels, archived excluded, sorted by name."""
    data = await _call(
        "conversations.list",
        bot_token=bot_token,
        form={"types": "public_channel,private_channel", "exclude_archived": "true", "limit": "1000"},
        transport=transport,
    )
    channels = [
        SlackChannel(
            id=c["id"],
            name=c.get("name", ""),
            is_private=bool(c.get("is_private")),
            is_member=c.get("is_member"),
        )
        for c in data.get("channels") or []
        if not c.get("is_archived")
    ]
    return sorted(channels, key=lambda c: c.name)


# =============================================================================
# OAUTH
# =============================================================================

def resolve_redirect_uri(request_origin: Optional[str]) -> str:
    """
    Callback URL for the OAuth flow.

    Slack only accepts https redirects, so localhost and plain http origins
    use SLACK_REDIRECT_BASE_URL instead.
    """
    base = get_settings().SLACK_REDIRECT_BASE_URL.rstrip("/")
    if not request_origin:
        return f"{base}{CALLBACK_PATH}"

    parts = urlsplit(request_origin)
    if not parts.scheme or not parts.hostname:
        return f"{base}{CALLBACK_PATH}"
    if parts.hostname in ("localhost", "127.0.0.1") or parts.scheme == "http":
        return f"{base}{CALLBACK_PATH}"
    return f"{parts.scheme}://{parts.netloc}{CALLBACK_PATH}"


def build_oauth_url(state: str, request_origin: Optional[str] = None) -> str:
    settings = get_settings()
    if not settings.SLACK_CLIENT_ID:
        raise SlackError("SLACK_CLIENT_ID is not set")

    params = {
        "client_id": settings.SLACK_CLIENT_ID,
        "scope": ",".join(OAUTH_SCOPES),
        "redirect_uri": resolve_redirect_uri(request_origin),
        "state": state or "",
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


async def exchange_code(
    code: str,
    request_url: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SlackOAuthTokens:
    """oauth.v2.access: trade the callback code for a bot token."""
    settings = get_settings()
    if not settings.SLACK_CLIENT_ID or not settings.SLACK_CLIENT_SECRET:
        raise SlackError("SLACK_CLIENT_ID and SLACK_CLIENT_SECRET must be set")

    data = await _call(
        "oauth.v2.access",
        form={
            "client_id": settings.SLACK_CLIENT_ID,
            "client_secret": settings.SLACK_CLIENT_SECRET,
            "code": code,
            "redirect_uri": resolve_redirect_uri(request_url),
        },
        transport=transport,
    )

    team = data.get("team") or {}
    authed_user = data.get("authed_user") or {}
    return SlackOAuthTokens(
        bot_token=data["access_token"],
        user_id=authed_user.get("id"),
        team_id=team.get("id", ""),
        team_name=team.get("name"),
    )


def is_configured() -> bool:
    settings = get_settings()
    return bool(settings.SLACK_CLIENT_ID and settings.SLACK_CLIENT_SECRET)
