"""
User Profile API

Endpoints:
- GET /api/users/me - Current user profile with plan
- PUT /api/users/me/locale - Preferred language (ja|en)
- PUT /api/users/me/timezone - IANA timezone for notification delivery
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from rerank.auth.dependencies import get_current_user
from rerank.auth.models import User
from rerank.database import repository
from rerank.database.session import get_db

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/users",
    tags=["Users"],
    dependencies=[Depends(get_current_user)],  # All endpoints require authentication
)


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class UserResponse(BaseModel):
    """User profile response."""
    id: UUID
    email: str
    full_name: Optional[str]
    avatar_url: Optional[str]
    role: str
    is_active: bool
    locale: Optional[str]
    timezone: Optional[str]
    plan_name: Optional[str]
    plan_ends_at: Optional[datetime]
    trial_ends_at: Optional[datetime]
    created_at: Optional[datetime]
    last_sign_in_at: Optional[datetime]

    class Config:
        from_attributes = True


class LocaleRequest(BaseModel):
    locale: str = Field(..., pattern="^(ja|en)$")


class TimezoneRequest(BaseModel):
    timezone: Optional[str] = Field(None, max_length=64)


def user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        avatar_url=user.avatar_url,
        role=user.role.value,
        is_active=user.is_active,
        locale=user.locale,
        timezone=user.timezone,
        plan_name=user.plan.name if user.plan else None,
        plan_ends_at=user.plan_ends_at,
        trial_ends_at=user.trial_ends_at,
        created_at=user.created_at,
        last_sign_in_at=user.last_sign_in_at,
    )


# =============================================================================
# USER PROFILE ENDPOINTS
# =============================================================================

@router.get("/me", response_model=UserResponse)
def get_current_user_profile(current_user: User = Depends(get_current_user)):
    return user_response(current_user)


@router.put("/me/locale", response_model=UserResponse)
def update_locale(
    request: LocaleRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    repository.update_user_locale(db, current_user, request.locale)
    return user_response(current_user)


@router.put("/me/timezone", response_model=UserResponse)
def update_timezone(
    request: TimezoneRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Set (or clear with null) the timezone. Unknown zone names are rejected."""
    if request.timezone:
        try:
            ZoneInfo(request.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown timezone: {request.timezone}",
            )

    repository.update_user_timezone(db, current_user, request.timezone or None)
    logger.info(f"User {current_user.id} timezone set to {request.timezone}")
    return user_response(current_user)
