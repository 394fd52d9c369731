"""
Admin API

Endpoints (admin role only):
- GET /api/admin/stats - Platform totals
- GET /api/admin/users - Paginated user list with plan and usage
- PUT /api/admin/users/{user_id}/plan - Move a user to a plan
- GET /api/admin/dashboard/trends - Sign-ups, analyses and MRR over time
- GET /api/admin/analyses - Paginated analysis run history
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from rerank.auth.dependencies import require_admin
from rerank.auth.models import User, UserRole
from rerank.database import repository
from rerank.database.models import AnalysisResult, AnalysisRun, Article, Notification, Plan, Site
from rerank.database.session import get_db

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/admin",
    tags=["Admin"],
    dependencies=[Depends(require_admin)],
)


# =============================================================================
# MODELS
# =============================================================================

class AdminUserResponse(BaseModel):
    id: UUID
    email: str
    full_name: Optional[str]
    role: str
    is_active: bool
    plan_name: Optional[str]
    plan_started_at: Optional[datetime]
    plan_ends_at: Optional[datetime]
    trial_ends_at: Optional[datetime]
    article_count: int = 0
    site_count: int = 0
    created_at: Optional[datetime]
    last_sign_in_at: Optional[datetime]


class AdminUserListResponse(BaseModel):
    users: List[AdminUserResponse]
    total: int
    page: int
    page_size: int


class UpdatePlanRequest(BaseModel):
    plan_name: str = Field(..., min_length=1, max_length=50)
    plan_ends_at: Optional[datetime] = None


def admin_user_response(db: Session, user: User) -> AdminUserResponse:
    article_count = (
        db.query(func.count(Article.id))
        .filter(Article.user_id == user.id, Article.deleted_at.is_(None))
        .scalar()
    )
    site_count = (
        db.query(func.count(Site.id))
        .filter(Site.user_id == user.id, Site.is_active.is_(True))
        .scalar()
    )
    return AdminUserResponse(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        role=user.role.value,
        is_active=user.is_active,
        plan_name=user.plan.name if user.plan else None,
        plan_started_at=user.plan_started_at,
        plan_ends_at=user.plan_ends_at,
        trial_ends_at=user.trial_ends_at,
        article_count=article_count or 0,
        site_count=site_count or 0,
        created_at=user.created_at,
        last_sign_in_at=user.last_sign_in_at,
    )


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/stats")
def get_stats(db: Session = Depends(get_db)):
    users_by_plan = dict(
        db.query(Plan.name, func.count(User.id))
        .outerjoin(User, User.plan_id == Plan.id)
        .group_by(Plan.name)
        .all()
    )
    return {
        "total_users": db.query(func.count(User.id)).filter(User.deleted_at.is_(None)).scalar() or 0,
        "total_sites": db.query(func.count(Site.id)).filter(Site.is_active.is_(True)).scalar() or 0,
        "total_articles": db.query(func.count(Article.id)).filter(Article.deleted_at.is_(None)).scalar() or 0,
        "monitoring_articles": (
            db.query(func.count(Article.id))
            .filter(Article.deleted_at.is_(None), Article.is_monitoring.is_(True))
            .scalar()
            or 0
        ),
        "total_analyses": db.query(func.count(AnalysisResult.id)).scalar() or 0,
        "analyses_this_month": (
            db.query(func.count(AnalysisResult.id))
            .filter(AnalysisResult.created_at >= repository.month_start())
            .scalar()
            or 0
        ),
        "pending_notifications": (
            db.query(func.count(Notification.id)).filter(Notification.sent_at.is_(None)).scalar() or 0
        ),
        "users_by_plan": users_by_plan,
    }


@router.get("/users", response_model=AdminUserListResponse)
def list_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    role: Optional[str] = Query(None, pattern="^(user|admin)$"),
    search: Optional[str] = Query(None, max_length=100),
    db: Session = Depends(get_db),
):
    """Supports filtering by role and searching by email/name."""
    query = db.query(User).filter(User.deleted_at.is_(None))

    if role:
        query = query.filter(User.role == UserRole(role))

    if search:
        search_term = f"%{search}%"
        query = query.filter(
            (User.email.ilike(search_term)) |
            (User.full_name.ilike(search_term))
        )

    total = query.count()
    users = query.order_by(User.created_at.desc()).offset((page - 1) * page_size).limit(page_size).all()

    return AdminUserListResponse(
        users=[admin_user_response(db, user) for user in users],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.put("/users/{user_id}/plan", response_model=AdminUserResponse)
def update_user_plan(
    user_id: UUID,
    request: UpdatePlanRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = repository.get_user(db, user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    plan = repository.get_plan_by_name(db, request.plan_name)
    if not plan:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Plan not found: {request.plan_name}",
        )

    repository.update_user_plan(db, user, plan, ends_at=request.plan_ends_at)
    db.refresh(user)
    logger.info(f"Admin {admin.email} moved user {user.email} to plan {plan.name}")
    return admin_user_response(db, user)


# =============================================================================
# ANALYSES & TRENDS
# =============================================================================

TREND_POINTS = {"daily": 30, "weekly": 12, "monthly": 12}


def _add_months(value: datetime, months: int) -> datetime:
    index = value.year * 12 + value.month - 1 + months
    return value.replace(year=index // 12, month=index % 12 + 1, day=1)


def trend_periods(period: str, now: datetime) -> List[Tuple[str, datetime, datetime]]:
    """
    (label, start, end) buckets, oldest first, the current one last.

    Days are labelled YYYY-MM-DD, weeks by their Monday, months YYYY-MM.
    """
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    count = TREND_POINTS[period]
    buckets = []

    for i in range(count - 1, -1, -1):
        if period == "daily":
            start = today - timedelta(days=i)
            end = start + timedelta(days=1)
            label = start.strftime("%Y-%m-%d")
        elif period == "weekly":
            start = today - timedelta(days=today.weekday(), weeks=i)
            end = start + timedelta(weeks=1)
            label = start.strftime("%Y-%m-%d")
        else:
            start = _add_months(today, -i)
            end = _add_months(start, 1)
            label = start.strftime("%Y-%m")
        buckets.append((label, start, end))

    return buckets


@router.get("/dashboard/trends")
def get_trends(
    period: str = Query("daily", pattern="^(daily|weekly|monthly)$"),
    db: Session = Depends(get_db),
):
    """Sign-ups, analysis runs and MRR (USD cents) per day, week or month."""
    buckets = trend_periods(period, datetime.utcnow())
    first_start = buckets[0][1]

    cumulative_users = (
        db.query(func.count(User.id))
        .filter(User.deleted_at.is_(None), User.created_at < first_start)
        .scalar()
        or 0
    )
    paid = (
        db.query(User.plan_started_at, User.plan_ends_at, Plan.base_price_usd)
        .join(Plan, User.plan_id == Plan.id)
        .filter(User.deleted_at.is_(None), Plan.name != "free", Plan.base_price_usd > 0)
        .all()
    )

    users, analyses, mrr = [], [], []
    for label, start, end in buckets:
        signups = (
            db.query(func.count(User.id))
            .filter(User.deleted_at.is_(None), User.created_at >= start, User.created_at < end)
            .scalar()
            or 0
        )
        cumulative_users += signups
        users.append({"date": label, "count": signups, "cumulative": cumulative_users})

        runs = (
            db.query(func.count(AnalysisRun.id))
            .filter(AnalysisRun.created_at >= start, AnalysisRun.created_at < end)
            .scalar()
            or 0
        )
        analyses.append({"date": label, "count": runs})

        active = [
            (started, price) for started, ends, price in paid
            if (started is None or started < end) and (ends is None or ends >= end)
        ]
        mrr.append({
            "date": label,
            "mrr": sum(price for started, price in active if started is not None and started >= start),
            "cumulative": sum(price for _, price in active),
        })

    return {"period": period, "trends": {"users": users, "analyses": analyses, "mrr": mrr}}


@router.get("/analyses")
def list_analyses(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Every analysis run, newest first, with its article and owner."""
    query = (
        db.query(AnalysisRun, Article, User.email)
        .join(Article, AnalysisRun.article_id == Article.id)
        .join(User, Article.user_id == User.id)
    )
    total = query.count()
    rows = (
        query.order_by(AnalysisRun.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )

    return {
        "analyses": [
            {
                "id": str(run.id),
                "status": run.status.value,
                "trigger_type": run.trigger_type.value,
                "error_message": run.error_message,
                "created_at": run.created_at.isoformat() if run.created_at else None,
                "completed_at": run.completed_at.isoformat() if run.completed_at else None,
                "article": {
                    "id": str(article.id),
                    "url": article.url,
                    "title": article.title,
                    "user_id": str(article.user_id),
                    "user_email": email,
                },
            }
            for run, article, email in rows
        ],
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": (total + page_size - 1) // page_size,
    }
