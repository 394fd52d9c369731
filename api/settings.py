"""
Alert & Notification Settings API

Endpoints:
- GET /api/alert-settings - Account-wide alert thresholds and delivery time
- PUT /api/alert-settings - Partial update
- GET /api/notification-settings - User-level notification settings per channel
- PUT /api/notification-settings - Upsert a user-level setting
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from rerank.auth.dependencies import get_current_user
from rerank.auth.models import User
from rerank.database import repository
from rerank.database.models import NotificationChannel, NotificationSetting
from rerank.database.session import get_db
from rerank.scheduling import parse_time_of_day

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["Settings"],
    dependencies=[Depends(get_current_user)],
)


class AlertSettingsRequest(BaseModel):
    position_drop_threshold: Optional[float] = Field(None, gt=0)
    keyword_drop_threshold: Optional[float] = Field(None, gt=0)
    comparison_days: Optional[int] = Field(None, ge=1, le=90)
    consecutive_drop_days: Optional[int] = Field(None, ge=0, le=30)
    min_impressions: Optional[int] = Field(None, ge=0)
    notification_cooldown_days: Optional[int] = Field(None, ge=0, le=90)
    notification_frequency: Optional[str] = Field(None, pattern="^(daily|weekly|none)$")
    notification_time: Optional[str] = None
    timezone: Optional[str] = Field(None, max_length=64)
    notify_rank_rise: Optional[bool] = None

    @field_validator("notification_time")
    @classmethod
    def validate_time(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        parsed = parse_time_of_day(value)
        if parsed is None:
            raise ValueError("notification_time must be HH:MM or HH:MM:SS")
        return f"{parsed[0]:02d}:{parsed[1]:02d}:00"


class NotificationSettingRequest(BaseModel):
    channel: str = Field("email", pattern="^(email|slack)$")
    recipient: Optional[str] = None
    is_enabled: Optional[bool] = None
    drop_threshold: Optional[float] = Field(None, gt=0)
    keyword_drop_threshold: Optional[float] = Field(None, gt=0)
    comparison_days: Optional[int] = Field(None, ge=1, le=90)
    consecutive_drop_days: Optional[int] = Field(None, ge=0, le=30)
    min_impressions: Optional[int] = Field(None, ge=0)
    notification_cooldown_days: Optional[int] = Field(None, ge=0, le=90)
    notification_time: Optional[str] = None
    timezone: Optional[str] = None


def setting_response(setting: NotificationSetting) -> Dict[str, Any]:
    return {
        "id": str(setting.id),
        "article_id": str(setting.article_id) if setting.article_id else None,
        "notification_type": setting.notification_type.value,
        "channel": setting.channel.value,
        "recipient": setting.recipient,
        "is_enabled": setting.is_enabled,
        "drop_threshold": setting.drop_threshold,
        "keyword_drop_threshold": setting.keyword_drop_threshold,
        "comparison_days": setting.comparison_days,
        "consecutive_drop_days": setting.consecutive_drop_days,
        "min_impressions": setting.min_impressions,
        "notification_cooldown_days": setting.notification_cooldown_days,
        "notification_time": setting.notification_time,
        "timezone": setting.timezone,
    }


@router.get("/alert-settings")
def get_alert_settings(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return repository.get_alert_settings(db, current_user.id)


@router.put("/alert-settings")
def update_alert_settings(
    request: AlertSettingsRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    settings = repository.save_alert_settings(db, current_user.id, request.model_dump(exclude_none=True))
    logger.info(f"Alert settings updated for user {current_user.id}")
    return settings


@router.get("/notification-settings")
def get_notification_settings(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    settings = repository.get_notification_settings(db, current_user.id)
    return {"settings": [setting_response(s) for s in settings]}


@router.put("/notification-settings")
def update_notification_settings(
    request: NotificationSettingRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    channel = NotificationChannel(request.channel)
    recipient = request.recipient
    if channel == NotificationChannel.EMAIL:
        recipient = recipient or current_user.email
    elif not recipient:
        integration = repository.get_slack_integration(db, current_user.id)
        if integration is None:
            raise HTTPException(status_code=400, detail="Slack is not connected")
        recipient = integration.slack_channel_id or integration.slack_user_id
        if not recipient:
            raise HTTPException(status_code=400, detail="Select a Slack channel first")

    values = request.model_dump(exclude={"channel", "recipient"}, exclude_none=True)
    setting = repository.upsert_notification_setting(db, current_user.id, channel, recipient, **values)
    return setting_response(setting)
