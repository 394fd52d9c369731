"""
FastAPI Authentication Dependencies

Provides dependency injection for authentication, ownership checks and
cron route protection.
"""

import hmac
import logging
from typing import Optional
from uuid import UUID, uuid4

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from rerank.database.session import get_db
from rerank.database.models import Article, Site
from rerank.auth.models import User, UserRole
from rerank.auth.jwt import verify_supabase_token, JWTError
from rerank.auth.sync import sync_user_from_supabase
from rerank.auth.config import get_auth_config

logger = logging.getLogger(__name__)

# HTTP Bearer token extraction
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """
    Get the current authenticated user.

    Validates JWT, syncs user to local DB, returns User object.

    Raises:
        HTTPException 401: If not authenticated
        HTTPException 403: If user is disabled
    """
    config = get_auth_config()

    if not config.auth_enabled:
        return _get_dev_user(db)

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = verify_supabase_token(credentials.credentials)
    except JWTError as e:
        logger.warning(f"JWT validation failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = sync_user_from_supabase(db, payload)
    if not user.is_active or user.deleted_at is not None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )
    return user


async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """Current user if a valid token was sent, None otherwise."""
    config = get_auth_config()

    if not config.auth_enabled:
        return _get_dev_user(db)

    if not credentials:
        return None

    try:
        payload = verify_supabase_token(credentials.credentials)
    except JWTError:
        return None
    user = sync_user_from_supabase(db, payload)
    return user if user.is_active else None


async def require_admin(
    current_user: User = Depends(get_current_user),
) -> User:
    """
    Require the current user to be an admin.

    Raises:
        HTTPException 403: If user is not an admin
    """
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


async def verify_cron_secret(
    authorization: Optional[str] = Header(default=None),
) -> None:
    """
    Protect scheduler routes with "Authorization: Bearer <CRON_SECRET>".

    An unset CRON_SECRET rejects every call.
    """
    secret = get_auth_config().cron_secret
    expected = f"Bearer {secret}"
    if not secret or not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


class OwnedRecordChecker:
    """
    Dependency class that loads a record by path id and enforces ownership.

    Usage:
        @router.get("/articles/{article_id}")
        def get_article(article: Article = Depends(get_owned_article)):
            ...
    """

    def __init__(self, model, label: str, allow_admin_access: bool = True):
        self.model = model
        self.label = label
        self.allow_admin_access = allow_admin_access

    def load(self, record_id: UUID, current_user: User, db: Session):
        query = db.query(self.model).filter(self.model.id == record_id)
        if hasattr(self.model, "deleted_at"):
            query = query.filter(self.model.deleted_at.is_(None))
        record = query.first()

        if not record:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"{self.label} not found",
            )

        if self.allow_admin_access and current_user.is_admin:
            return record

        if record.user_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied to this {self.label.lower()}",
            )
        return record


class _ArticleAccess(OwnedRecordChecker):
    async def __call__(
        self,
        article_id: UUID,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> Article:
        return self.load(article_id, current_user, db)


class _SiteAccess(OwnedRecordChecker):
    async def __call__(
        self,
        site_id: UUID,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> Site:
        return self.load(site_id, current_user, db)


# Pre-configured instances
get_owned_article = _ArticleAccess(Article, "Article")
get_owned_site = _SiteAccess(Site, "Site")


def _get_dev_user(db: Session) -> User:
    """
    Get or create a development user when auth is disabled.

    This allows local development without Supabase.
    """
    from rerank.database.models import Plan

    dev_email = "dev@rerank.local"
    user = db.query(User).filter(User.email == dev_email).first()

    if not user:
        free_plan = db.query(Plan).filter(Plan.name == "free").first()
        user = User(
            id=uuid4(),
            email=dev_email,
            full_name="Development User",
            role=UserRole.ADMIN,
            is_active=True,
            locale="ja",
            plan_id=free_plan.id if free_plan else None,
        )
        db.add(user)
        db.commit()
        db.refresh(user)

    return user
