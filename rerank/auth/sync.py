"""
User Synchronization from Supabase

Creates the local user on first access (free plan, 7 day trial) and keeps
profile fields in step on later requests.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Any
from uuid import UUID

from sqlalchemy.orm import Session

from rerank.auth.models import User, UserRole
from rerank.auth.config import get_auth_config
from rerank.auth.jwt import extract_user_info
from rerank.database.models import Plan

logger = logging.getLogger(__name__)

TRIAL_DAYS = 7
DEFAULT_LOCALE = "ja"


def sync_user_from_supabase(
    db: Session,
    jwt_payload: Dict[str, Any],
) -> User:
    """
    Sync user from a verified Supabase JWT payload to the local database.

    Args:
        db: Database session
        jwt_payload: Verified JWT payload

    Returns:
        Local User record (created or updated)
    """
    user_info = extract_user_info(jwt_payload)
    user_id = UUID(user_info["id"])
    config = get_auth_config()
    now = datetime.utcnow()

    user = db.query(User).filter(User.id == user_id).first()

    if user is None:
        logger.info(f"Creating new user: {user_info['email']}")

        role = UserRole.USER
        if user_info["email"] in config.admin_emails:
            role = UserRole.ADMIN
            logger.info(f"Auto-promoting {user_info['email']} to admin")

        free_plan = db.query(Plan).filter(Plan.name == "free").first()
        if free_plan is None:
            logger.warning("Free plan not found; new user has no plan")

        user = User(
            id=user_id,
            email=user_info["email"],
            full_name=user_info.get("full_name"),
            avatar_url=user_info.get("avatar_url"),
            provider=user_info.get("provider"),
            locale=user_info.get("locale") or DEFAULT_LOCALE,
            role=role,
            is_active=True,
            plan_id=free_plan.id if free_plan else None,
            plan_started_at=now,
            trial_ends_at=now + timedelta(days=TRIAL_DAYS),
            last_sign_in_at=now,
            synced_at=now,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    user.email = user_info["email"]
    user.full_name = user_info.get("full_name") or user.full_name
    user.avatar_url = user_info.get("avatar_url") or user.avatar_url
    user.last_sign_in_at = now
    user.synced_at = now

    if user_info["email"] in config.admin_emails and user.role != UserRole.ADMIN:
        logger.info(f"Promoting {user_info['email']} to admin")
        user.role = UserRole.ADMIN

    db.commit()
    db.refresh(user)
    return user
