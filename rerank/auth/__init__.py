"""
Authentication and Authorization Module

Supabase Integration:
- Users sign in through Supabase Auth (Google or email magic link)
- JWTs are validated against the Supabase JWT secret or project JWKS
- Users are synced to the local database on first access (free plan, trial)
- Role-based access control (user, admin)
- Article and site ownership enforcement

Scheduler routes are protected by a shared CRON_SECRET, and public routes
use the database-backed rate limiter.

Usage:
    @router.get("/articles")
    def list_articles(current_user: User = Depends(get_current_user)):
        ...

    @router.get("/admin/users")
    def list_users(admin: User = Depends(require_admin)):
        ...

    @router.get("/articles/{article_id}")
    def get_article(article: Article = Depends(get_owned_article)):
        ...
"""

from .config import AuthConfig, get_auth_config
from .jwt import verify_supabase_token, extract_user_info, JWTError
from .models import User, UserRole
from .sync import sync_user_from_supabase
from .rate_limit import RATE_LIMITS, RateLimitResult, check_rate_limit, get_client_ip
from .dependencies import (
    get_current_user,
    get_current_user_optional,
    require_admin,
    verify_cron_secret,
    get_owned_article,
    get_owned_site,
)

__all__ = [
    # Config
    "AuthConfig",
    "get_auth_config",
    # JWT validation
    "verify_supabase_token",
    "extract_user_info",
    "JWTError",
    # User model
    "User",
    "UserRole",
    "sync_user_from_supabase",
    # Rate limiting
    "RATE_LIMITS",
    "RateLimitResult",
    "check_rate_limit",
    "get_client_ip",
    # FastAPI dependencies
    "get_current_user",
    "get_current_user_optional",
    "require_admin",
    "verify_cron_secret",
    "get_owned_article",
    "get_owned_site",
]
