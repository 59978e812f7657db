"""
Pytest configuration and fixtures.

Every test that needs a database gets a fresh SQLite file under tmp_path,
so sessions opened by background work (queue jobs, backfills) see the same
data as the test without sharing a connection.
"""

from datetime import datetime, timedelta
from typing import Callable

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import settings
from app.features.integrations import ConnectedAccount, reset_providers
from app.features.integrations.crypto import encrypt_token
from app.features.users import Profile
from app.shared.clock import utcnow
from app.models import register_models

Base = register_models()

ENCRYPTION_KEY = "0123456789abcdef" * 4


# =============================================================================
# Settings
# =============================================================================

@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Deterministic secrets; nothing from a local .env leaks into tests."""
    monkeypatch.setattr(settings, "integration_encryption_key", ENCRYPTION_KEY)
    monkeypatch.setattr(settings, "jwt_secret", "test-jwt-secret")
    monkeypatch.setattr(settings, "oauth_state_secret", "test-state-secret")
    monkeypatch.setattr(settings, "environment", "test")
    monkeypatch.setattr(settings, "api_url", "https://api.example.com")
    monkeypatch.setattr(settings, "web_url", "https://app.example.com")
    monkeypatch.setattr(settings, "strava_client_id", "strava-client")
    monkeypatch.setattr(settings, "strava_client_secret", "strava-secret")
    monkeypatch.setattr(settings, "strava_verify_token", "strava-verify")
    monkeypatch.setattr(settings, "polar_client_id", "polar-client")
    monkeypatch.setattr(settings, "polar_client_secret", "polar-secret")
    monkeypatch.setattr(settings, "polar_webhook_secret", "polar-webhook-secret")
    monkeypatch.setattr(settings, "wahoo_client_id", "wahoo-client")
    monkeypatch.setattr(settings, "wahoo_client_secret", "wahoo-secret")
    monkeypatch.setattr(settings, "wahoo_webhook_token", "wahoo-webhook-token")
    return settings


@pytest.fixture(autouse=True)
def fresh_provider_registry():
    """Adapters registered by a test never leak into the next one."""
    reset_providers()
    yield
    reset_providers()


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
async def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite database with all tables."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def profile(db) -> Profile:
    """Athlete with a club."""
    athlete = Profile(id="athlete-1", club_id="club-1", display_name="Test Athlete")
    db.add(athlete)
    await db.commit()
    return athlete


@pytest.fixture
def make_account(db):
    """Factory for connected accounts with encrypted tokens."""

    async def _make(
        provider: str = "STRAVA",
        athlete_id: str = "athlete-1",
        provider_uid: str = "12345",
        access_token: str = "access-token",
        refresh_token: str | None = "refresh-token",
        token_expires: datetime | None = None,
        club_id: str | None = "club-1",
        encrypted: bool = True,
    ) -> ConnectedAccount:
        account = ConnectedAccount(
            athlete_id=athlete_id,
            club_id=club_id,
            provider=provider,
            access_token=encrypt_token(access_token) if encrypted else access_token,
            refresh_token=(
                encrypt_token(refresh_token) if encrypted and refresh_token else refresh_token
            ),
            token_expires=token_expires or utcnow() + timedelta(hours=6),
            provider_uid=provider_uid,
            scopes=["read"],
        )
        db.add(account)
        await db.commit()
        return account

    return _make


# =============================================================================
# HTTP
# =============================================================================

@pytest.fixture
def mock_http():
    """
    Build an httpx.AsyncClient answering from a handler.

    Usage:
        client = mock_http(lambda request: httpx.Response(200, json={...}))
        adapter = StravaProvider(http_client=client)
    """
    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    """Retries back off instantly in tests."""
    async def _wait(_delay_ms):
        return None

    monkeypatch.setattr("app.shared.http._wait", _wait)
