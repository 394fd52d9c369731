"""
Database-backed Rate Limiting

Fixed window counters shared by every app instance (login attempts, public
trial analysis, ...). Each (identifier, action, window_start) row counts the
requests seen in that window.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rerank.database.models import RateLimit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    max_attempts: int
    window_minutes: int = 60


RATE_LIMITS = {
    "login": RateLimitRule(max_attempts=10),
    "register": RateLimitRule(max_attempts=5),
    "password_reset": RateLimitRule(max_attempts=5),
    "email_verification": RateLimitRule(max_attempts=10),
    "try_analysis": RateLimitRule(max_attempts=5),
}

# Rows older than this are purged on every check
RETENTION = timedelta(hours=2)


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime


def window_start_for(now: datetime, window_minutes: int) -> datetime:
    """Floor a timestamp to the start of its window (aligned to midnight)."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed = int((now - midnight).total_seconds() // 60)
    return midnight + timedelta(minutes=elapsed - elapsed % window_minutes)


def _window_filter(identifier: str, action: str, window_start: datetime):
    return (
        RateLimit.identifier == identifier,
        RateLimit.action == action,
        RateLimit.window_start == window_start,
    )


def check_rate_limit(
    db: Session,
    identifier: str,
    action: str,
    now: Optional[datetime] = None,
) -> RateLimitResult:
    """
    Count one request for (identifier, action) and decide whether it is allowed.

    The counter is incremented in SQL so concurrent requests never lose a hit.

    Raises:
        KeyError: For an unknown action
    """
    rule = RATE_LIMITS[action]
    now = now or datetime.utcnow()
    window_start = window_start_for(now, rule.window_minutes)
    reset_at = window_start + timedelta(minutes=rule.window_minutes)
    window = _window_filter(identifier, action, window_start)

    db.query(RateLimit).filter(RateLimit.window_start < now - RETENTION).delete(
        synchronize_session=False
    )

    updated = db.query(RateLimit).filter(*window).update(
        {RateLimit.count: RateLimit.count + 1}, synchronize_session=False
    )

    if not updated:
        try:
            db.add(RateLimit(identifier=identifier, action=action, window_start=window_start, count=1))
            db.commit()
            return RateLimitResult(allowed=True, remaining=rule.max_attempts - 1, reset_at=reset_at)
        except IntegrityError:
            # Another request created the window row first
            db.rollback()
            db.query(RateLimit).filter(*window).update(
                {RateLimit.count: RateLimit.count + 1}, synchronize_session=False
            )

    db.commit()
    count = db.query(RateLimit.count).filter(*window).scalar()

    allowed = count <= rule.max_attempts
    if not allowed:
        logger.warning(f"Rate limit hit: {action} for {identifier} ({count}/{rule.max_attempts})")

    return RateLimitResult(
        allowed=allowed,
        remaining=max(0, rule.max_attempts - count),
        reset_at=reset_at,
    )


def get_client_ip(headers: Mapping[str, str]) -> Optional[str]:
    """Client address from proxy headers (x-forwarded-for, x-real-ip, cf-connecting-ip)."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return headers.get("x-real-ip") or headers.get("cf-connecting-ip")
