"""
Integration OAuth orchestration.

Provider-agnostic connect / callback / manual sync / disconnect flows used
by the integrations routes.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.users import ProfileRepository
from app.shared.constants import SyncEventType
from .crypto import encrypt_token, reveal_token
from .errors import (
    ConfigurationError,
    IntegrationError,
    OAuthStateError,
    ProviderNotConnectedError,
    SyncCooldownError,
)
from .oauth_state import create_oauth_state, verify_oauth_state
from .providers import ProviderAdapter
from .registry import get_provider
from .repository import ConnectedAccountRepository
from .schemas import Principal
from .config import SyncConfig
from .sync.service import IntegrationSyncService, SyncCooldown
from .token_manager import TokenManager

logger = logging.getLogger(__name__)


# =============================================================================
# Backfill
# =============================================================================

# Keep strong references to detached backfill tasks to prevent GC
_backfill_tasks: set[asyncio.Task] = set()


async def run_backfill(session_factory, provider: str, athlete_id: str) -> None:
    """Pull the last BACKFILL_DAYS of history for a freshly connected account."""
    async with session_factory() as db:
        connection = await TokenManager(db).get_active_connection(provider, athlete_id)
        if connection is None:
            logger.warning(f"Backfill skipped: {provider} not connected for athlete {athlete_id}")
            return

        await IntegrationSyncService(db).sync_recent(
            get_provider(provider),
            connection.account,
            connection.access_token,
            days=SyncConfig.BACKFILL_DAYS,
            limit=SyncConfig.BACKFILL_ACTIVITY_LIMIT,
            event_type=SyncEventType.BACKFILL,
        )


def _on_backfill_done(task: asyncio.Task) -> None:
    _backfill_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Backfill task {task.get_name()} failed: {error}")


def dispatch_backfill(session_factory, provider: str, athlete_id: str) -> asyncio.Task:
    """
    Start a backfill without waiting for it.

    The callback response does not depend on the outcome; failures are
    logged and recorded in sync_history.
    """
    task = asyncio.create_task(
        run_backfill(session_factory, provider, athlete_id),
        name=f"backfill:{provider}:{athlete_id}",
    )
    _backfill_tasks.add(task)
    task.add_done_callback(_on_backfill_done)
    logger.info(f"Dispatched {provider} backfill for athlete {athlete_id}")
    return task


async def wait_for_backfills() -> None:
    """Wait for running backfills (shutdown, tests)."""
    if _backfill_tasks:
        await asyncio.gather(*list(_backfill_tasks), return_exceptions=True)


# =============================================================================
# OAuth Service
# =============================================================================

class IntegrationOAuthService:
    """
    OAuth and manual sync flows for any registered provider.

    Usage:
        service = IntegrationOAuthService(db, session_factory=AsyncSessionLocal)
        url = service.build_authorization_url(adapter, athlete_id)
        athlete_id = service.verify_callback_state(adapter, state)
        await service.handle_oauth_callback(adapter, code, athlete_id)
    """

    def __init__(
        self,
        db: AsyncSession,
        session_factory=None,
        cooldown: Optional[SyncCooldown] = None,
    ):
        self.db = db
        self.session_factory = session_factory
        self.cooldown = cooldown
        self.accounts = ConnectedAccountRepository(db)

    @staticmethod
    def build_authorization_url(adapter: ProviderAdapter, athlete_id: str) -> str:
        """Provider consent URL carrying a signed state for the athlete."""
        return adapter.build_auth_url(create_oauth_state(athlete_id))

    @staticmethod
    def verify_callback_state(adapter: ProviderAdapter, state: Optional[str]) -> str:
        """
        Check the state returned to the callback.

        Returns:
            Athlete id the flow was started for

        Raises:
            OAuthStateError: Tampered, malformed or expired state
        """
        verified = verify_oauth_state(state)
        if verified is None:
            raise OAuthStateError(adapter.name.value)
        return verified["athlete_id"]

    async def handle_oauth_callback(
        self,
        adapter: ProviderAdapter,
        code: str,
        athlete_id: str,
        club_id: Optional[str] = None,
    ) -> dict:
        """
        Exchange the code, store the connection and start a backfill.

        A repeated flow for the same athlete and provider overwrites the
        existing connection.

        Raises:
            IntegrationError: Exchange failed or the athlete has no profile
        """
        provider = adapter.name.value
        tokens = await adapter.exchange_code(code)

        if club_id is None:
            club_id = await ProfileRepository(self.db).get_club_id(athlete_id)
            if club_id is None:
                raise IntegrationError(provider, f"Athlete profile {athlete_id} not found")

        await self.accounts.upsert(
            athlete_id,
            provider,
            club_id=club_id,
            access_token=encrypt_token(tokens.access_token),
            refresh_token=encrypt_token(tokens.refresh_token) if tokens.refresh_token else None,
            token_expires=tokens.expires_at,
            provider_uid=tokens.provider_user_id,
            scopes=tokens.scopes,
        )
        await self.db.commit()
        logger.info(f"Connected {provider} for athlete {athlete_id} (uid={tokens.provider_user_id})")

        if self.session_factory is not None:
            dispatch_backfill(self.session_factory, provider, athlete_id)

        return {"success": True, "provider": provider}

    async def handle_provider_sync(self, adapter: ProviderAdapter, principal: Principal) -> dict:
        """
        Pull the last MANUAL_SYNC_DAYS of data for the caller.

        Raises:
            SyncCooldownError: Synced this provider too recently
            ProviderNotConnectedError: No connection for this provider
            ConfigurationError: Service built without a SyncCooldown
        """
        if self.cooldown is None:
            raise ConfigurationError("Manual sync requires the application SyncCooldown")

        provider = adapter.name.value
        wait_seconds = await self.cooldown.acquire(principal.user_id, provider)
        if wait_seconds:
            raise SyncCooldownError(provider, wait_seconds)

        connection = await TokenManager(self.db).get_active_connection(provider, principal.user_id)
        if connection is None:
            await self.cooldown.release(principal.user_id, provider)
            raise ProviderNotConnectedError(provider)

        result = await IntegrationSyncService(self.db).sync_recent(
            adapter,
            connection.account,
            connection.access_token,
            days=SyncConfig.MANUAL_SYNC_DAYS,
            limit=SyncConfig.MANUAL_SYNC_ACTIVITY_LIMIT,
            event_type=SyncEventType.MANUAL,
            club_id=principal.club_id,
        )

        return {
            "status": "synced",
            "workoutsInserted": result.workouts_inserted,
            "workoutsSkipped": result.workouts_skipped,
            "metricsInserted": result.metrics_inserted,
        }

    async def disconnect_provider(self, adapter: ProviderAdapter, athlete_id: str) -> bool:
        """
        Revoke access (best effort) and delete the stored connection.

        Returns:
            True if a connection existed
        """
        provider = adapter.name.value
        account = await self.accounts.get_for_athlete(athlete_id, provider)
        if account is None:
            return False

        try:
            await adapter.revoke_access(reveal_token(account.access_token))
        except Exception as e:
            logger.warning(f"{provider} revoke failed for athlete {athlete_id}: {e}")

        await self.accounts.delete(account)
        await self.db.commit()
        logger.info(f"Disconnected {provider} for athlete {athlete_id}")
        return True
