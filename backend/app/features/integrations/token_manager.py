"""
Token manager.

Hands out usable plaintext access tokens for connected accounts, refreshing
them when they are about to expire.

There is no lock around refresh: two callers racing on a nearly expired
token may both refresh and the last write wins. Providers accept the
previous refresh token for a short grace period, so this is safe.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.clock import utcnow
from app.shared.constants import ProviderName
from .crypto import encrypt_token, reveal_token
from .errors import TokenExpiredError
from .models import ConnectedAccount
from .providers import ProviderAdapter
from .registry import get_provider
from .repository import ConnectedAccountRepository
from .config import SyncConfig

logger = logging.getLogger(__name__)


@dataclass
class ActiveConnection:
    """Connected account plus a usable plaintext access token."""
    account: ConnectedAccount
    access_token: str


class TokenManager:
    """
    Resolve fresh access tokens for connected accounts.

    Usage:
        manager = TokenManager(db)
        connection = await manager.get_active_connection("STRAVA", athlete_id)
        if connection:
            await adapter.fetch_activities(connection.access_token, since)
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.accounts = ConnectedAccountRepository(db)

    async def ensure_fresh_token(self, adapter: ProviderAdapter, account: ConnectedAccount) -> str:
        """
        Return a valid plaintext access token, refreshing it if needed.

        Args:
            adapter: Provider adapter for the account
            account: Stored connection (tokens encrypted or legacy plaintext)

        Returns:
            Plaintext access token

        Raises:
            TokenExpiredError: Token is expiring and there is no refresh token
            IntegrationError: Provider refresh failed
        """
        access_token = reveal_token(account.access_token)

        expires = account.token_expires
        if expires is None or expires > utcnow() + SyncConfig.TOKEN_REFRESH_BUFFER:
            return access_token

        refresh_token = reveal_token(account.refresh_token)
        if not refresh_token:
            raise TokenExpiredError(adapter.name.value)

        logger.info(f"Refreshing {adapter.name.value} token for athlete {account.athlete_id}")
        tokens = await adapter.refresh_token(refresh_token)

        await self.accounts.update_tokens(
            account,
            access_token=encrypt_token(tokens.access_token),
            refresh_token=encrypt_token(tokens.refresh_token or refresh_token),
            token_expires=tokens.expires_at,
        )
        await self.db.commit()

        return tokens.access_token

    async def get_active_connection(
        self,
        provider: str | ProviderName,
        athlete_id: str,
    ) -> Optional[ActiveConnection]:
        """
        Look up an athlete's connection and resolve a fresh token.

        Returns:
            ActiveConnection, or None when the athlete is not connected
        """
        adapter = get_provider(provider)
        account = await self.accounts.get_for_athlete(athlete_id, adapter.name.value)
        if not account:
            return None

        access_token = await self.ensure_fresh_token(adapter, account)
        return ActiveConnection(account=account, access_token=access_token)

    async def get_connected_accounts(self, athlete_id: str) -> list[dict]:
        """Connection summary for the status endpoint (no tokens)."""
        accounts = await self.accounts.list_for_athlete(athlete_id)
        return [
            {
                "provider": account.provider,
                "lastSyncAt": account.last_sync_at.isoformat() if account.last_sync_at else None,
                "providerUid": account.provider_uid,
            }
            for account in accounts
        ]
