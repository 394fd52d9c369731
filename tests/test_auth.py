"""
Authentication Tests

Tests for Supabase JWT validation, user sync, cron protection and the
ownership dependencies.
"""

import pytest
from datetime import datetime, timedelta
from types import SimpleNamespace
from uuid import uuid4
from unittest.mock import patch

import jwt
from fastapi import HTTPException

from rerank.auth.config import AuthConfig
from rerank.auth.dependencies import (
    get_current_user,
    get_owned_article,
    require_admin,
    verify_cron_secret,
)
from rerank.auth.jwt import verify_supabase_token, JWTError, extract_user_info
from rerank.auth.models import User, UserRole
from rerank.auth.rate_limit import check_rate_limit, get_client_ip, window_start_for
from rerank.auth.sync import sync_user_from_supabase
from rerank.database.models import RateLimit
from rerank.database.session import get_session_factory


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def auth_config():
    """Create test auth config."""
    return AuthConfig(
        supabase_url="https://test.supabase.co",
        supabase_jwt_secret="super-secret-jwt-key-for-testing",
        jwt_algorithm="HS256",
        jwt_audience="authenticated",
        auth_enabled=True,
    )


@pytest.fixture
def valid_jwt_payload():
    """Create valid JWT payload."""
    return {
        "sub": str(uuid4()),
        "email": "user@test.com",
        "role": "authenticated",
        "aud": "authenticated",
        "user_metadata": {
            "full_name": "Test User",
            "avatar_url": "https://example.com/avatar.png",
        },
        "app_metadata": {
            "provider": "email",
        },
        "exp": int((datetime.utcnow() + timedelta(hours=1)).timestamp()),
        "iat": int(datetime.utcnow().timestamp()),
    }


@pytest.fixture
def create_test_token(auth_config):
    """Factory to create test JWT tokens."""
    def _create(payload: dict) -> str:
        return jwt.encode(
            payload,
            auth_config.supabase_jwt_secret,
            algorithm=auth_config.jwt_algorithm,
        )
    return _create


def admin_config(*emails):
    return SimpleNamespace(admin_emails=list(emails))


# =============================================================================
# JWT VALIDATION TESTS
# =============================================================================

class TestJWTValidation:
    """Tests for JWT token validation."""

    def test_valid_token(self, auth_config, valid_jwt_payload, create_test_token):
        with patch("rerank.auth.jwt.get_auth_config", return_value=auth_config):
            payload = verify_supabase_token(create_test_token(valid_jwt_payload))

        assert payload["sub"] == valid_jwt_payload["sub"]
        assert payload["email"] == valid_jwt_payload["email"]

    def test_expired_token(self, auth_config, valid_jwt_payload, create_test_token):
        valid_jwt_payload["exp"] = int((datetime.utcnow() - timedelta(hours=1)).timestamp())

        with patch("rerank.auth.jwt.get_auth_config", return_value=auth_config):
            with pytest.raises(JWTError, match="expired"):
                verify_supabase_token(create_test_token(valid_jwt_payload))

    def test_invalid_signature(self, auth_config, valid_jwt_payload):
        token = jwt.encode(valid_jwt_payload, "wrong-secret", algorithm="HS256")

        with patch("rerank.auth.jwt.get_auth_config", return_value=auth_config):
            with pytest.raises(JWTError, match="signature"):
                verify_supabase_token(token)

    def test_missing_sub_claim(self, auth_config, valid_jwt_payload, create_test_token):
        del valid_jwt_payload["sub"]

        with patch("rerank.auth.jwt.get_auth_config", return_value=auth_config):
            with pytest.raises(JWTError, match="sub"):
                verify_supabase_token(create_test_token(valid_jwt_payload))

    def test_invalid_audience(self, auth_config, valid_jwt_payload, create_test_token):
        valid_jwt_payload["aud"] = "wrong-audience"

        with patch("rerank.auth.jwt.get_auth_config", return_value=auth_config):
            with pytest.raises(JWTError, match="audience"):
                verify_supabase_token(create_test_token(valid_jwt_payload))

    def test_no_jwt_secret_configured(self):
        config = AuthConfig(supabase_jwt_secret="")

        with patch("rerank.auth.jwt.get_auth_config", return_value=config):
            with pytest.raises(JWTError, match="not configured"):
                verify_supabase_token("any-token")

    def test_asymmetric_algorithm_needs_project_url(self):
        config = AuthConfig(supabase_url="", jwt_algorithm="ES256")

        with patch("rerank.auth.jwt.get_auth_config", return_value=config):
            with pytest.raises(JWTError, match="SUPABASE_URL"):
                verify_supabase_token("any-token")


class TestExtractUserInfo:
    """Tests for extracting user info from JWT payload."""

    def test_extract_full_user_info(self, valid_jwt_payload):
        info = extract_user_info(valid_jwt_payload)

        assert info["id"] == valid_jwt_payload["sub"]
        assert info["email"] == valid_jwt_payload["email"]
        assert info["full_name"] == "Test User"
        assert info["avatar_url"] == "https://example.com/avatar.png"
        assert info["provider"] == "email"

    def test_extract_minimal_user_info(self):
        info = extract_user_info({"sub": "user-123", "email": "minimal@test.com"})

        assert info["id"] == "user-123"
        assert info["full_name"] is None
        assert info["avatar_url"] is None
        assert info["locale"] is None

    def test_google_oauth_metadata(self):
        """Google uses 'name' and 'picture'."""
        payload = {
            "sub": "user-123",
            "email": "user@gmail.com",
            "user_metadata": {
                "name": "Google User",
                "picture": "https://googleusercontent.com/avatar.png",
            },
            "app_metadata": {"provider": "google"},
        }
        info = extract_user_info(payload)

        assert info["full_name"] == "Google User"
        assert info["avatar_url"] == "https://googleusercontent.com/avatar.png"
        assert info["provider"] == "google"


# =============================================================================
# USER SYNC TESTS
# =============================================================================

class TestUserSync:
    """Tests for user synchronization."""

    def test_sync_creates_free_user_with_trial(self, db, valid_jwt_payload):
        with patch("rerank.auth.sync.get_auth_config", return_value=admin_config()):
            user = sync_user_from_supabase(db, valid_jwt_payload)

        assert str(user.id) == valid_jwt_payload["sub"]
        assert user.plan.name == "free"
        assert user.locale == "ja"
        assert user.role == UserRole.USER
        assert user.trial_ends_at - user.plan_started_at == timedelta(days=7)

    def test_sync_updates_existing_user(self, db, valid_jwt_payload):
        with patch("rerank.auth.sync.get_auth_config", return_value=admin_config()):
            first = sync_user_from_supabase(db, valid_jwt_payload)
            valid_jwt_payload["email"] = "renamed@test.com"
            second = sync_user_from_supabase(db, valid_jwt_payload)

        assert second.id == first.id
        assert second.email == "renamed@test.com"
        assert db.query(User).count() == 1

    def test_sync_auto_promotes_admin(self, db, valid_jwt_payload):
        valid_jwt_payload["email"] = "admin@test.com"

        with patch("rerank.auth.sync.get_auth_config", return_value=admin_config("admin@test.com")):
            user = sync_user_from_supabase(db, valid_jwt_payload)

        assert user.role == UserRole.ADMIN
        assert user.is_admin is True


# =============================================================================
# USER MODEL & CONFIG TESTS
# =============================================================================

class TestUserModel:

    def test_is_admin(self):
        assert User(id=uuid4(), email="a@test.com", role=UserRole.ADMIN).is_admin is True
        assert User(id=uuid4(), email="u@test.com", role=UserRole.USER).is_admin is False

    def test_user_repr(self):
        user = User(id=uuid4(), email="user@test.com", role=UserRole.USER, is_active=True)
        assert repr(user) == "<User user@test.com (user)>"


class TestAuthConfig:

    def test_supabase_project_ref(self, auth_config):
        assert auth_config.supabase_project_ref == "test"
        assert AuthConfig(supabase_url="").supabase_project_ref is None

    def test_admin_emails_from_env(self, configure):
        from rerank.auth.config import get_auth_config

        configure(ADMIN_EMAILS=" a@test.com, ,b@test.com ")
        assert get_auth_config().admin_emails == ["a@test.com", "b@test.com"]

    def test_reads_environment(self, configure):
        from rerank.auth.config import get_auth_config

        configure(SUPABASE_URL="https://proj.supabase.co", SUPABASE_JWT_SECRET="s3cret", AUTH_ENABLED="false", CRON_SECRET="c")
        config = get_auth_config()

        assert config.supabase_project_ref == "proj"
        assert config.supabase_jwt_secret == "s3cret"
        assert config.auth_enabled is False
        assert config.cron_secret == "c"

    def test_no_admin_emails_by_default(self, configure):
        from rerank.auth.config import get_auth_config

        configure(ADMIN_EMAILS=None)
        assert get_auth_config().admin_emails == []


# =============================================================================
# DEPENDENCIES
# =============================================================================

@pytest.mark.asyncio
class TestDependencies:

    async def test_cron_secret(self, configure):
        configure(CRON_SECRET="s3cret")

        await verify_cron_secret("Bearer s3cret")
        for header in (None, "Bearer wrong", "s3cret"):
            with pytest.raises(HTTPException) as exc:
                await verify_cron_secret(header)
            assert exc.value.status_code == 401

    async def test_empty_cron_secret_rejects(self, configure):
        configure(CRON_SECRET=None)

        with pytest.raises(HTTPException):
            await verify_cron_secret("Bearer ")

    async def test_missing_credentials(self, db, configure):
        configure(AUTH_ENABLED="true")

        with pytest.raises(HTTPException) as exc:
            await get_current_user(None, db)
        assert exc.value.status_code == 401

    async def test_dev_user_when_auth_disabled(self, db, configure):
        configure(AUTH_ENABLED="false")

        first = await get_current_user(None, db)
        second = await get_current_user(None, db)

        assert first.email == "dev@rerank.local"
        assert first.id == second.id
        assert first.is_admin

    async def test_require_admin(self, user, make_user):
        with pytest.raises(HTTPException) as exc:
            await require_admin(user)
        assert exc.value.status_code == 403

        admin = make_user(role=UserRole.ADMIN)
        assert await require_admin(admin) is admin

    async def test_owned_article(self, db, user, article, make_user):
        assert await get_owned_article(article.id, user, db) is article

        with pytest.raises(HTTPException) as exc:
            await get_owned_article(article.id, make_user(), db)
        assert exc.value.status_code == 403

        with pytest.raises(HTTPException) as exc:
            await get_owned_article(uuid4(), user, db)
        assert exc.value.status_code == 404


# =============================================================================
# RATE LIMITING
# =============================================================================

class TestRateLimit:

    NOW = datetime(2025, 3, 1, 10, 37)

    def test_window_alignment(self):
        assert window_start_for(self.NOW, 60) == datetime(2025, 3, 1, 10, 0)
        assert window_start_for(self.NOW, 15) == datetime(2025, 3, 1, 10, 30)

    def test_counts_within_window(self, db):
        results = [check_rate_limit(db, "1.2.3.4", "try_analysis", now=self.NOW) for _ in range(6)]

        assert [r.allowed for r in results] == [True] * 5 + [False]
        assert results[0].remaining == 4
        assert results[-1].remaining == 0
        assert results[0].reset_at == datetime(2025, 3, 1, 11, 0)

    def test_new_window_resets(self, db):
        for _ in range(5):
            check_rate_limit(db, "1.2.3.4", "try_analysis", now=self.NOW)

        later = check_rate_limit(db, "1.2.3.4", "try_analysis", now=self.NOW + timedelta(hours=1))
        assert later.allowed is True

    def test_identifiers_are_separate(self, db):
        for _ in range(5):
            check_rate_limit(db, "1.2.3.4", "try_analysis", now=self.NOW)
        assert check_rate_limit(db, "5.6.7.8", "try_analysis", now=self.NOW).allowed is True

    def test_concurrent_sessions_do_not_lose_hits(self, db):
        other = get_session_factory()()
        try:
            check_rate_limit(db, "1.2.3.4", "try_analysis", now=self.NOW)
            stale = other.query(RateLimit).filter(RateLimit.identifier == "1.2.3.4").one()
            assert stale.count == 1

            check_rate_limit(db, "1.2.3.4", "try_analysis", now=self.NOW)
            result = check_rate_limit(other, "1.2.3.4", "try_analysis", now=self.NOW)
        finally:
            other.close()

        assert result.remaining == 2
        assert db.query(RateLimit.count).filter(RateLimit.identifier == "1.2.3.4").scalar() == 3

    def test_unknown_action(self, db):
        with pytest.raises(KeyError):
            check_rate_limit(db, "1.2.3.4", "nope")

    def test_client_ip(self):
        assert get_client_ip({"x-forwarded-for": "9.9.9.9, 10.0.0.1"}) == "9.9.9.9"
        assert get_client_ip({"x-real-ip": "8.8.8.8"}) == "8.8.8.8"
        assert get_client_ip({}) is None
