"""
Pytest Configuration and Shared Fixtures

Provides an in-memory database, record factories and a fake Search Console
client shared by the test modules.
"""

import pytest
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from rerank.auth import models as auth_models
from rerank.auth.config import get_auth_config
from rerank.auth.models import User, UserRole
from rerank.config import get_settings
from rerank.database import repository
from rerank.database.models import Article, Base, Site
from rerank.database.session import configure_engine, get_session_factory


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    assert auth_models.User.__tablename__ == "users"
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    configure_engine(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = get_session_factory()()
    repository.seed_default_plans(session)
    session.commit()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def configure(monkeypatch):
    """Set environment variables and reload the cached settings."""
    def _configure(**values: Any):
        for key, value in values.items():
            if value is None:
                monkeypatch.delenv(key, raising=False)
            else:
                monkeypatch.setenv(key, str(value))
        get_settings.cache_clear()
        get_auth_config.cache_clear()
        return get_settings()

    yield _configure
    get_settings.cache_clear()
    get_auth_config.cache_clear()


# ============================================================================
# Record factories
# ============================================================================

@pytest.fixture
def make_user(db):
    def _make(
        email: Optional[str] = None,
        plan_name: str = "free",
        role: UserRole = UserRole.USER,
        **values: Any,
    ) -> User:
        plan = repository.get_plan_by_name(db, plan_name)
        user = User(
            id=uuid4(),
            email=email or f"user-{uuid4().hex[:8]}@example.com",
            role=role,
            is_active=True,
            locale=values.pop("locale", "ja"),
            plan_id=plan.id if plan else None,
            plan_started_at=datetime.utcnow(),
            **values,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def user(make_user):
    return make_user(email="owner@example.com")


@pytest.fixture
def make_site(db):
    def _make(user: User, site_url: str = "https://example.com/", **values: Any) -> Site:
        values.setdefault("access_token", "access-token")
        values.setdefault("refresh_token", "refresh-token")
        values.setdefault("expires_at", datetime.utcnow() + timedelta(hours=1))
        return repository.save_or_update_site(db, user.id, site_url, **values)
    return _make


@pytest.fixture
def site(make_site, user):
    return make_site(user)


@pytest.fixture
def make_article(db):
    def _make(user: User, site: Optional[Site] = None, url: str = "https://example.com/post", **values: Any) -> Article:
        article = repository.save_or_update_article(
            db,
            user.id,
            url,
            site_id=site.id if site else None,
            title=values.pop("title", "SEOツール比較"),
        )
        for key, value in values.items():
            setattr(article, key, value)
        db.commit()
        return article
    return _make


@pytest.fixture
def article(make_article, user, site):
    return make_article(user, site)


# ============================================================================
# Search Console fake
# ============================================================================

def gsc_row(key: str, position: float, impressions: int = 0, clicks: int = 0, ctr: float = 0.0) -> Dict[str, Any]:
    return {"keys": [key], "position": position, "impressions": impressions, "clicks": clicks, "ctr": ctr}


class FakeGSCClient:
    """
    Stands in for GSCClient. time_series rows are returned for every page
    time series call, keyword_rows for every keyword call.
    """

    def __init__(
        self,
        time_series: Optional[List[Dict[str, Any]]] = None,
        keyword_rows: Optional[List[Dict[str, Any]]] = None,
        consecutive_series: Optional[List[Dict[str, Any]]] = None,
    ):
        self.time_series = time_series or []
        self.keyword_rows = keyword_rows or []
        self.consecutive_series = consecutive_series
        self.calls: List[tuple] = []

    async def get_page_time_series(self, site_url, page_url, start_date, end_date):
        self.calls.append(("time_series", site_url, page_url, start_date, end_date))
        # The first call is the drop window; later calls are the consecutive check
        series_calls = [c for c in self.calls if c[0] == "time_series"]
        if self.consecutive_series is not None and len(series_calls) > 1:
            return self.consecutive_series
        return self.time_series

    async def get_keyword_data(self, site_url, page_url, start_date, end_date, row_limit=1000):
        self.calls.append(("keywords", site_url, page_url, start_date, end_date))
        return self.keyword_rows

    async def get_keyword_time_series(self, site_url, page_url, start_date, end_date, keywords=None):
        self.calls.append(("keyword_series", site_url, page_url, start_date, end_date))
        return []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None


@pytest.fixture
def fake_gsc():
    return FakeGSCClient


async def public_resolver(host: str) -> List[str]:
    """Resolves every hostname to a public address without touching DNS."""
    return ["93.184.216.34"]


# ============================================================================
# Test Markers
# ============================================================================

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
