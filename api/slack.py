"""
Slack Integration API

The OAuth callback is hit by the browser coming back from Slack, so it
carries no bearer token. The user is recovered from the signed `state`
issued by /authorize.

Endpoints:
- GET /api/auth/slack/authorize - OAuth URL with a signed state
- GET /api/auth/slack/callback - Exchange the code, store the bot token, redirect
- GET /api/slack/integration - Current integration (without the token)
- GET /api/slack/channels - Channels visible to the bot
- PUT /api/slack/channel - Choose the notification target
- DELETE /api/slack/integration - Disconnect
"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import urlencode
from uuid import UUID

import jwt
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from rerank.auth.dependencies import get_current_user
from rerank.auth.models import User
from rerank.config import get_settings
from rerank.database import repository
from rerank.database.models import NotificationChannel, SlackTargetType
from rerank.database.session import get_db
from rerank.integrations import slack

logger = logging.getLogger(__name__)

oauth_router = APIRouter(prefix="/api/auth/slack", tags=["Slack"])
router = APIRouter(
    prefix="/api/slack",
    tags=["Slack"],
    dependencies=[Depends(get_current_user)],
)

STATE_TTL = timedelta(minutes=10)
STATE_ALGORITHM = "HS256"


class ChannelRequest(BaseModel):
    channel_id: str = Field(..., min_length=1)
    target_type: str = Field("channel", pattern="^(channel|dm)$")


# =============================================================================
# STATE
# =============================================================================

def _state_secret() -> str:
    secret = get_settings().SLACK_CLIENT_SECRET
    if not secret:
        raise HTTPException(status_code=503, detail="Slack is not configured")
    return secret


def encode_state(user_id: UUID, now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    payload = {"sub": str(user_id), "iat": now, "exp": now + STATE_TTL}
    return jwt.encode(payload, _state_secret(), algorithm=STATE_ALGORITHM)


def decode_state(state: str) -> UUID:
    """User id from a state token. Raises jwt.InvalidTokenError when forged or expired."""
    payload = jwt.decode(state, _state_secret(), algorithms=[STATE_ALGORITHM])
    return UUID(payload["sub"])


def _settings_redirect(**params: str) -> RedirectResponse:
    base = get_settings().APP_URL.rstrip("/")
    return RedirectResponse(f"{base}/dashboard/settings?{urlencode(params)}", status_code=302)


# =============================================================================
# OAUTH
# =============================================================================

@oauth_router.get("/authorize")
def authorize(
    request: Request,
    current_user: User = Depends(get_current_user),
):
    """OAuth URL for the frontend to open. The callback host follows the request origin."""
    if not slack.is_configured():
        raise HTTPException(status_code=503, detail="Slack is not configured")

    origin = request.headers.get("origin") or f"{request.url.scheme}://{request.url.netloc}"
    try:
        url = slack.build_oauth_url(encode_state(current_user.id), origin)
    except slack.SlackError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"url": url}


@oauth_router.get("/callback")
async def callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_db),
):
    if error:
        logger.warning(f"Slack OAuth denied: {error}")
        return _settings_redirect(error="slack_oauth_error", message=error)
    if not code or not state:
        return _settings_redirect(error="slack_oauth_error", message="missing_code")

    try:
        user_id = decode_state(state)
    except (jwt.InvalidTokenError, KeyError, ValueError) as e:
        logger.warning(f"Slack OAuth state rejected: {e}")
        return _settings_redirect(error="slack_oauth_error", message="invalid_state")

    user = repository.get_user(db, user_id)
    if user is None:
        return _settings_redirect(error="slack_oauth_error", message="unknown_user")

    try:
        tokens = await slack.exchange_code(code, str(request.url))
    except slack.SlackError as e:
        logger.error(f"Slack token exchange failed: {e}")
        return _settings_redirect(error="slack_oauth_error", message="token_exchange_failed")

    # DM to the installing user until a channel is picked
    repository.save_slack_integration(
        db,
        user.id,
        bot_token=tokens.bot_token,
        team_id=tokens.team_id,
        team_name=tokens.team_name,
        slack_user_id=tokens.user_id,
        target_type=SlackTargetType.DM,
    )
    if tokens.user_id:
        repository.upsert_notification_setting(db, user.id, NotificationChannel.SLACK, tokens.user_id)

    logger.info(f"Slack connected for user {user.id} (team {tokens.team_id})")
    return _settings_redirect(slack_connected="true")


# =============================================================================
# INTEGRATION
# =============================================================================

def _integration_or_404(db: Session, user: User):
    integration = repository.get_slack_integration(db, user.id)
    if integration is None:
        raise HTTPException(status_code=404, detail="Slack is not connected")
    return integration


@router.get("/integration")
def get_integration(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    integration = repository.get_slack_integration(db, current_user.id)
    if integration is None:
        return {"connected": False}
    return {
        "connected": True,
        "team_id": integration.slack_team_id,
        "team_name": integration.slack_team_name,
        "slack_user_id": integration.slack_user_id,
        "channel_id": integration.slack_channel_id,
        "target_type": integration.slack_notification_type.value,
    }


@router.get("/channels")
async def get_channels(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    integration = _integration_or_404(db, current_user)
    try:
        channels = await slack.list_channels(integration.slack_bot_token)
    except slack.SlackError as e:
        raise HTTPException(status_code=502, detail=f"Slack API error: {e}")
    return {"channels": [c.to_dict() for c in channels]}


@router.put("/channel")
def set_channel(
    request: ChannelRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    integration = _integration_or_404(db, current_user)
    target_type = SlackTargetType(request.target_type)
    repository.update_slack_channel(db, integration, request.channel_id, target_type)
    repository.upsert_notification_setting(db, current_user.id, NotificationChannel.SLACK, request.channel_id)
    return {"channel_id": request.channel_id, "target_type": target_type.value}


@router.delete("/integration")
def disconnect(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    deleted = repository.delete_slack_integration(db, current_user.id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Slack is not connected")
    for setting in repository.get_notification_settings(db, current_user.id):
        if setting.channel == NotificationChannel.SLACK:
            repository.upsert_notification_setting(
                db, current_user.id, NotificationChannel.SLACK, setting.recipient, is_enabled=False
            )
    return {"success": True}
