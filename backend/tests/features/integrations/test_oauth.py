"""
Tests for IntegrationOAuthService: connect, backfill, manual sync, disconnect.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.features.integrations import (
    ConfigurationError,
    ConnectedAccount,
    IntegrationError,
    IntegrationOAuthService,
    OAuthStateError,
    OAuthTokens,
    Principal,
    ProviderNotConnectedError,
    SyncCooldown,
    SyncCooldownError,
    SyncHistory,
    Workout,
    register_provider,
    wait_for_backfills,
)
from app.features.integrations.crypto import decrypt_token, is_encrypted
from app.features.integrations.providers import StravaProvider
from app.features.integrations.repository import WorkoutRepository
from app.features.integrations.schemas import NormalizedActivity
from app.shared.clock import utcnow
from app.shared.constants import ActivityType, ProviderName


class FakeStrava(StravaProvider):
    """Strava adapter answering OAuth and activity calls locally."""

    def __init__(self, activities=None, revoke_error: Exception | None = None):
        super().__init__()
        self.activities = activities or []
        self.revoke_error = revoke_error
        self.exchanged: list[str] = []
        self.revoked: list[str] = []
        self.fetch_calls: list[tuple[datetime, int]] = []

    async def exchange_code(self, code: str) -> OAuthTokens:
        self.exchanged.append(code)
        return OAuthTokens(
            access_token=f"access-{code}",
            refresh_token=f"refresh-{code}",
            expires_at=utcnow() + timedelta(hours=6),
            provider_user_id="12345",
            scopes=["read", "activity:read_all"],
        )

    async def revoke_access(self, access_token: str) -> None:
        self.revoked.append(access_token)
        if self.revoke_error:
            raise self.revoke_error

    async def fetch_activities(self, access_token, since, limit=50):
        self.fetch_calls.append((since, limit))
        return list(self.activities)


def run(started_at: datetime) -> NormalizedActivity:
    return NormalizedActivity(
        activity_type=ActivityType.RUN,
        source=ProviderName.STRAVA,
        started_at=started_at,
        duration_s=1800,
        distance_m=5000.0,
    )


@pytest.fixture
def strava():
    adapter = FakeStrava(activities=[run(datetime(2026, 3, 1, 7)), run(datetime(2026, 3, 2, 7))])
    register_provider(adapter)
    return adapter


@pytest.fixture
def principal():
    return Principal(user_id="athlete-1", club_id="club-1")


async def accounts(db) -> list[ConnectedAccount]:
    result = await db.execute(select(ConnectedAccount).execution_options(populate_existing=True))
    return list(result.scalars().all())


# =============================================================================
# State
# =============================================================================

class TestCallbackState:
    """Authorization URL carries a state the callback can verify."""

    def test_state_round_trip(self, strava):
        url = IntegrationOAuthService.build_authorization_url(strava, "athlete-1")
        state = url.split("state=")[1].split("&")[0]

        assert IntegrationOAuthService.verify_callback_state(strava, state) == "athlete-1"

    @pytest.mark.parametrize("state", [None, "", "garbage", "a.b.c"])
    def test_bad_state(self, strava, state):
        with pytest.raises(OAuthStateError):
            IntegrationOAuthService.verify_callback_state(strava, state)


# =============================================================================
# Callback
# =============================================================================

class TestOAuthCallback:
    """Tests for handle_oauth_callback."""

    async def test_stores_encrypted_connection(self, db, profile, strava):
        result = await IntegrationOAuthService(db).handle_oauth_callback(strava, "abc", "athlete-1")

        assert result == {"success": True, "provider": "STRAVA"}
        rows = await accounts(db)
        assert len(rows) == 1
        account = rows[0]
        assert account.club_id == "club-1"
        assert account.provider_uid == "12345"
        assert is_encrypted(account.access_token)
        assert decrypt_token(account.access_token) == "access-abc"
        assert decrypt_token(account.refresh_token) == "refresh-abc"

    async def test_reconnect_overwrites(self, db, profile, strava):
        service = IntegrationOAuthService(db)
        await service.handle_oauth_callback(strava, "first", "athlete-1")
        await service.handle_oauth_callback(strava, "second", "athlete-1")

        rows = await accounts(db)
        assert len(rows) == 1
        assert decrypt_token(rows[0].access_token) == "access-second"

    async def test_unknown_athlete(self, db, strava):
        with pytest.raises(IntegrationError):
            await IntegrationOAuthService(db).handle_oauth_callback(strava, "abc", "nobody")

        assert await accounts(db) == []

    async def test_backfill_after_connect(self, db, session_factory, profile, strava):
        service = IntegrationOAuthService(db, session_factory=session_factory)
        await service.handle_oauth_callback(strava, "abc", "athlete-1")
        await wait_for_backfills()

        since, limit = strava.fetch_calls[0]
        assert abs(since - (utcnow() - timedelta(days=30))) < timedelta(minutes=1)
        assert limit == 200

        async with session_factory() as check:
            workouts = (await check.execute(select(Workout))).scalars().all()
            history = (await check.execute(select(SyncHistory))).scalars().all()
        assert len(workouts) == 2
        assert [(h.event_type, h.status, h.workouts_added) for h in history] == [("backfill", "success", 2)]


# =============================================================================
# Manual sync
# =============================================================================

class TestManualSync:
    """Tests for handle_provider_sync."""

    async def test_sync(self, db, make_account, strava, principal):
        await make_account()
        service = IntegrationOAuthService(db, cooldown=SyncCooldown(60))

        result = await service.handle_provider_sync(strava, principal)

        assert result == {
            "status": "synced",
            "workoutsInserted": 2,
            "workoutsSkipped": 0,
            "metricsInserted": 0,
        }
        since, limit = strava.fetch_calls[0]
        assert abs(since - (utcnow() - timedelta(days=7))) < timedelta(minutes=1)
        assert limit == 50

        history = (await db.execute(select(SyncHistory))).scalars().all()
        assert [(h.event_type, h.status) for h in history] == [("manual", "success")]

    async def test_cooldown(self, db, make_account, strava, principal):
        await make_account()
        service = IntegrationOAuthService(db, cooldown=SyncCooldown(60))
        await service.handle_provider_sync(strava, principal)

        with pytest.raises(SyncCooldownError) as exc:
            await service.handle_provider_sync(strava, principal)

        assert 1 <= exc.value.wait_seconds <= 60
        assert len(strava.fetch_calls) == 1

    async def test_not_connected_does_not_arm_cooldown(self, db, strava, principal):
        service = IntegrationOAuthService(db, cooldown=SyncCooldown(60))

        for _ in range(2):
            with pytest.raises(ProviderNotConnectedError):
                await service.handle_provider_sync(strava, principal)

    async def test_failure_recorded(self, db, make_account, principal):
        class BrokenStrava(FakeStrava):
            async def fetch_activities(self, access_token, since, limit=50):
                raise IntegrationError("STRAVA", "boom")

        adapter = BrokenStrava()
        register_provider(adapter)
        await make_account()

        with pytest.raises(IntegrationError):
            await IntegrationOAuthService(db, cooldown=SyncCooldown(60)).handle_provider_sync(adapter, principal)

        history = (await db.execute(select(SyncHistory))).scalars().all()
        assert [h.status for h in history] == ["failed"]
        assert "boom" in history[0].error_message

    async def test_insert_failures_counted_as_skipped(self, db, make_account, strava, principal, monkeypatch):
        async def broken_create(self, **kwargs):
            raise SQLAlchemyError("database is locked")

        monkeypatch.setattr(WorkoutRepository, "create", broken_create)
        await make_account()

        result = await IntegrationOAuthService(db, cooldown=SyncCooldown(60)).handle_provider_sync(strava, principal)

        assert result["workoutsInserted"] == 0
        assert result["workoutsSkipped"] == 2
        history = (await db.execute(select(SyncHistory))).scalars().all()
        assert [h.status for h in history] == ["success"]

    async def test_requires_injected_cooldown(self, db, make_account, strava, principal):
        await make_account()

        with pytest.raises(ConfigurationError):
            await IntegrationOAuthService(db).handle_provider_sync(strava, principal)

        assert strava.fetch_calls == []


class TestSyncCooldown:
    """Tests for the in-process cooldown."""

    async def test_acquire_and_wait(self):
        cooldown = SyncCooldown(60)

        assert await cooldown.acquire("a", "STRAVA") == 0
        assert 59 <= await cooldown.acquire("a", "STRAVA") <= 60

    async def test_keys_independent(self):
        cooldown = SyncCooldown(60)
        await cooldown.acquire("a", "STRAVA")

        assert await cooldown.acquire("a", "POLAR") == 0
        assert await cooldown.acquire("b", "STRAVA") == 0

    async def test_release(self):
        cooldown = SyncCooldown(60)
        await cooldown.acquire("a", "STRAVA")
        await cooldown.release("a", "STRAVA")

        assert await cooldown.acquire("a", "STRAVA") == 0


# =============================================================================
# Disconnect
# =============================================================================

class TestDisconnect:
    """Tests for disconnect_provider."""

    async def test_revokes_and_deletes(self, db, make_account, strava):
        await make_account()

        assert await IntegrationOAuthService(db).disconnect_provider(strava, "athlete-1") is True

        assert strava.revoked == ["access-token"]
        assert await accounts(db) == []

    async def test_revoke_failure_still_deletes(self, db, make_account):
        adapter = FakeStrava(revoke_error=RuntimeError("network down"))
        await make_account()

        assert await IntegrationOAuthService(db).disconnect_provider(adapter, "athlete-1") is True
        assert await accounts(db) == []

    async def test_not_connected(self, db, strava):
        assert await IntegrationOAuthService(db).disconnect_provider(strava, "athlete-1") is False
        assert strava.revoked == []
