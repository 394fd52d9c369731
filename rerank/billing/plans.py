"""
Plan limits and subscription state.

Limit checks only run with ENABLE_PLAN_LIMITS=true; otherwise every check
is allowed.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from rerank.config import get_settings
from rerank.database import repository
from rerank.database.models import Article, Plan, Site

logger = logging.getLogger(__name__)

LIMIT_COLUMNS = {
    "articles": "max_articles",
    "analyses": "max_analyses_per_month",
    "sites": "max_sites",
    "concurrent_analyses": "max_concurrent_analyses",
    "article_suggestions": "max_article_suggestions_per_month",
}


class PlanLimitError(Exception):
    """A plan limit blocks the requested action."""

    def __init__(self, message_key: str, limit_type: str, current_usage: int = 0, limit: Optional[int] = None):
        super().__init__(message_key)
        self.message_key = message_key
        self.limit_type = limit_type
        self.current_usage = current_usage
        self.limit = limit


@dataclass
class PlanLimitCheck:
    allowed: bool
    current_usage: int = 0
    limit: Optional[int] = None
    message_key: Optional[str] = None
    limit_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def plan_limit(plan: Plan, limit_type: str) -> Optional[int]:
    return getattr(plan, LIMIT_COLUMNS[limit_type])


def is_limit_exceeded(plan: Plan, limit_type: str, usage: int) -> bool:
    limit = plan_limit(plan, limit_type)
    return limit is not None and usage >= limit


def current_usage(db: Session, user_id, limit_type: str, now: Optional[datetime] = None) -> int:
    if limit_type == "articles":
        return (
            db.query(Article)
            .filter(Article.user_id == user_id, Article.is_monitoring.is_(True), Article.deleted_at.is_(None))
            .count()
        )
    if limit_type == "sites":
        return db.query(Site).filter(Site.user_id == user_id, Site.is_active.is_(True)).count()
    if limit_type == "analyses":
        return repository.count_analyses_since(db, user_id, repository.month_start(now))
    if limit_type == "article_suggestions":
        return repository.count_suggestions_since(db, user_id, repository.month_start(now))
    if limit_type == "concurrent_analyses":
        return repository.count_running_analyses(db, user_id)
    raise ValueError(f"Unknown limit type: {limit_type}")


def check_user_plan_limit(db: Session, user, limit_type: str) -> PlanLimitCheck:
    if limit_type not in LIMIT_COLUMNS:
        raise ValueError(f"Unknown limit type: {limit_type}")

    if not get_settings().ENABLE_PLAN_LIMITS:
        return PlanLimitCheck(allowed=True, limit_type=limit_type)

    if user is None or not user.plan_id:
        return PlanLimitCheck(allowed=False, message_key="errors.planNotSet", limit_type=limit_type)

    plan = repository.get_plan_by_id(db, user.plan_id)
    if plan is None:
        return PlanLimitCheck(allowed=False, message_key="errors.planNotFound", limit_type=limit_type)

    usage = current_usage(db, user.id, limit_type)
    exceeded = is_limit_exceeded(plan, limit_type, usage)
    if exceeded:
        logger.info(f"User {user.id} hit {limit_type} limit on plan {plan.name} ({usage})")

    return PlanLimitCheck(
        allowed=not exceeded,
        current_usage=usage,
        limit=plan_limit(plan, limit_type),
        message_key="errors.limitExceeded" if exceeded else None,
        limit_type=limit_type,
    )


def enforce_plan_limit(db: Session, user, limit_type: str) -> PlanLimitCheck:
    """check_user_plan_limit, raising PlanLimitError when not allowed."""
    check = check_user_plan_limit(db, user, limit_type)
    if not check.allowed:
        raise PlanLimitError(check.message_key, limit_type, check.current_usage, check.limit)
    return check


def is_trial_active(db: Session, user, now: Optional[datetime] = None) -> bool:
    """Trials only apply to paid plans."""
    if user is None or not user.plan_id:
        return False
    plan = repository.get_plan_by_id(db, user.plan_id)
    if plan is not None and plan.name == "free":
        return False
    if not user.trial_ends_at:
        return False
    return user.trial_ends_at > (now or datetime.utcnow())


def has_active_subscription(db: Session, user) -> bool:
    if user is None or not user.plan_id:
        return False
    plan = repository.get_plan_by_id(db, user.plan_id)
    return plan is not None and plan.name != "free"


def usage_summary(db: Session, user) -> Dict[str, Any]:
    """Usage against every limit for the billing page."""
    plan = repository.get_plan_by_id(db, user.plan_id) if user.plan_id else None
    usage = {}
    for limit_type in LIMIT_COLUMNS:
        usage[limit_type] = {
            "current": current_usage(db, user.id, limit_type),
            "limit": plan_limit(plan, limit_type) if plan else None,
        }
    return {
        "plan": plan.name if plan else None,
        "usage": usage,
        "is_trial_active": is_trial_active(db, user),
        "trial_ends_at": user.trial_ends_at.isoformat() if user.trial_ends_at else None,
        "has_active_subscription": has_active_subscription(db, user),
    }
