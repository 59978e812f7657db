"""
Tests for TokenManager.
"""

from datetime import datetime, timedelta

import pytest

from app.features.integrations import (
    ConnectedAccount,
    OAuthTokens,
    TokenExpiredError,
    TokenManager,
    register_provider,
)
from app.features.integrations.crypto import decrypt_token, is_encrypted
from app.features.integrations.providers import StravaProvider
from app.shared.clock import utcnow


class RefreshingStrava(StravaProvider):
    """Strava adapter whose refresh answers locally and counts calls."""

    def __init__(self, new_refresh_token="new-refresh"):
        super().__init__()
        self.refresh_calls = []
        self.new_refresh_token = new_refresh_token

    async def refresh_token(self, refresh_token: str) -> OAuthTokens:
        self.refresh_calls.append(refresh_token)
        return OAuthTokens(
            access_token="new-access",
            refresh_token=self.new_refresh_token,
            expires_at=datetime(2030, 1, 1),
            provider_user_id="",
        )


@pytest.fixture
def strava():
    adapter = RefreshingStrava()
    register_provider(adapter)
    return adapter


class TestEnsureFreshToken:
    """Tests for ensure_fresh_token."""

    async def test_fresh_token_not_refreshed(self, db, make_account, strava):
        account = await make_account(token_expires=utcnow() + timedelta(hours=1))

        token = await TokenManager(db).ensure_fresh_token(strava, account)

        assert token == "access-token"
        assert strava.refresh_calls == []

    async def test_no_expiry_never_refreshed(self, db, make_account, strava):
        account = await make_account()
        account.token_expires = None

        assert await TokenManager(db).ensure_fresh_token(strava, account) == "access-token"
        assert strava.refresh_calls == []

    async def test_expiring_token_refreshed(self, db, make_account, strava):
        """Inside the 5 minute buffer the token is refreshed and persisted encrypted."""
        account = await make_account(token_expires=utcnow() + timedelta(minutes=2))

        token = await TokenManager(db).ensure_fresh_token(strava, account)

        assert token == "new-access"
        assert strava.refresh_calls == ["refresh-token"]

        stored = await db.get(ConnectedAccount, account.id, populate_existing=True)
        assert is_encrypted(stored.access_token)
        assert decrypt_token(stored.access_token) == "new-access"
        assert decrypt_token(stored.refresh_token) == "new-refresh"
        assert stored.token_expires == datetime(2030, 1, 1)

    async def test_expired_token_refreshed(self, db, make_account, strava):
        account = await make_account(token_expires=utcnow() - timedelta(hours=1))

        assert await TokenManager(db).ensure_fresh_token(strava, account) == "new-access"

    async def test_keeps_old_refresh_token_when_not_rotated(self, db, make_account):
        adapter = RefreshingStrava(new_refresh_token=None)
        account = await make_account(token_expires=utcnow())

        await TokenManager(db).ensure_fresh_token(adapter, account)

        stored = await db.get(ConnectedAccount, account.id, populate_existing=True)
        assert decrypt_token(stored.refresh_token) == "refresh-token"

    async def test_no_refresh_token(self, db, make_account, strava):
        account = await make_account(token_expires=utcnow(), refresh_token=None)

        with pytest.raises(TokenExpiredError) as exc:
            await TokenManager(db).ensure_fresh_token(strava, account)

        assert exc.value.provider == "STRAVA"
        assert strava.refresh_calls == []

    async def test_legacy_plaintext_tokens(self, db, make_account, strava):
        """Rows stored before encryption still work."""
        account = await make_account(
            access_token="legacy_plain-token.with.dots",
            refresh_token="legacy-refresh",
            token_expires=utcnow(),
            encrypted=False,
        )

        await TokenManager(db).ensure_fresh_token(strava, account)

        assert strava.refresh_calls == ["legacy-refresh"]
        stored = await db.get(ConnectedAccount, account.id, populate_existing=True)
        assert is_encrypted(stored.access_token)


class TestActiveConnection:
    """Tests for get_active_connection and the status summary."""

    async def test_not_connected(self, db, strava):
        assert await TokenManager(db).get_active_connection("STRAVA", "athlete-1") is None

    async def test_connected(self, db, make_account, strava):
        account = await make_account()

        connection = await TokenManager(db).get_active_connection("strava", "athlete-1")

        assert connection.account.id == account.id
        assert connection.access_token == "access-token"

    async def test_connected_accounts_summary(self, db, make_account):
        await make_account(provider="STRAVA")
        await make_account(provider="POLAR", provider_uid="p-1")

        summary = await TokenManager(db).get_connected_accounts("athlete-1")

        assert [s["provider"] for s in summary] == ["POLAR", "STRAVA"]
        assert summary[0]["providerUid"] == "p-1"
        assert summary[0]["lastSyncAt"] is None
        assert all("access_token" not in s for s in summary)
