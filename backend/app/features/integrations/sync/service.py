"""
Integration sync service.

Fetch -> normalize -> store pipelines shared by the webhook queue, manual
sync and post-connect backfill.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.users import ProfileRepository
from app.shared.clock import utcnow
from app.shared.constants import SyncEventType, SyncStatus
from ..errors import IntegrationError
from ..models import ConnectedAccount
from ..normalizer import Normalizer
from ..providers import ProviderAdapter
from ..registry import get_provider
from ..repository import ConnectedAccountRepository, SyncHistoryRepository
from ..schemas import NormalizedHealthMetric, SyncResult
from ..token_manager import TokenManager

logger = logging.getLogger(__name__)


@dataclass
class JobOutcome:
    """What happened to one webhook event."""
    status: SyncStatus
    athlete_id: Optional[str] = None
    result: SyncResult = field(default_factory=SyncResult)
    reason: Optional[str] = None


def elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class IntegrationSyncService:
    """
    Sync orchestrator for one database session.

    Usage:
        service = IntegrationSyncService(db)
        outcome = await service.process_webhook_event("STRAVA", event)
        result = await service.sync_recent(adapter, account, access_token, days=7)
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.accounts = ConnectedAccountRepository(db)
        self.history = SyncHistoryRepository(db)
        self.tokens = TokenManager(db)
        self.normalizer = Normalizer(db)

    async def resolve_club_id(self, account: ConnectedAccount) -> str:
        """Club for the account's athlete, from the account or the profile."""
        if account.club_id:
            return account.club_id
        club_id = await ProfileRepository(self.db).get_club_id(account.athlete_id)
        if not club_id:
            raise IntegrationError(account.provider, f"Athlete profile {account.athlete_id} not found")
        return club_id

    async def fetch_health_safely(
        self,
        adapter: ProviderAdapter,
        access_token: str,
    ) -> list[NormalizedHealthMetric]:
        """Today's health data, or [] when unsupported or failing."""
        if not adapter.supports_health_data:
            return []
        try:
            return await adapter.fetch_health_data(access_token, utcnow().date())
        except Exception as e:
            logger.warning(f"{adapter.name.value} health data fetch failed: {e}")
            return []

    # -------------------------------------------------------------------------
    # Webhook events
    # -------------------------------------------------------------------------

    async def process_webhook_event(self, provider: str, event: Mapping[str, Any]) -> JobOutcome:
        """
        Ingest the activity referenced by a webhook event.

        A missing account is a skip, not a failure: the athlete may have
        disconnected after the provider emitted the event.

        Raises:
            Exception: Anything that should send the job down the retry path
        """
        adapter = get_provider(provider)
        owner_id = adapter.extract_owner_id(event)
        activity_id = adapter.extract_activity_id(event)

        account = await self.accounts.get_by_provider_uid(adapter.name.value, owner_id)
        if account is None:
            logger.info(f"{adapter.name.value} webhook for unknown owner {owner_id!r}, skipping")
            return JobOutcome(status=SyncStatus.SKIPPED, reason=f"No connected account for owner {owner_id}")

        if not activity_id:
            raise IntegrationError(adapter.name.value, "Webhook event has no activity id")

        access_token = await self.tokens.ensure_fresh_token(adapter, account)
        activity = await adapter.fetch_activity(access_token, activity_id)
        metrics = await self.fetch_health_safely(adapter, access_token)
        club_id = await self.resolve_club_id(account)

        account_id, athlete_id = account.id, account.athlete_id
        result = await self.normalizer.normalize_and_store([activity], metrics, athlete_id, club_id)
        await self.accounts.touch_last_sync(account_id)
        await self.db.commit()

        return JobOutcome(status=SyncStatus.SUCCESS, athlete_id=athlete_id, result=result)

    # -------------------------------------------------------------------------
    # Pulls (manual sync, backfill)
    # -------------------------------------------------------------------------

    async def sync_recent(
        self,
        adapter: ProviderAdapter,
        account: ConnectedAccount,
        access_token: str,
        days: int,
        limit: int,
        event_type: SyncEventType,
        club_id: Optional[str] = None,
    ) -> SyncResult:
        """
        Pull the last `days` of activities plus today's health data.

        Writes a sync_history row either way; errors are re-raised after
        being recorded.
        """
        started = time.monotonic()
        since: datetime = utcnow() - timedelta(days=days)
        account_id, athlete_id = account.id, account.athlete_id

        try:
            club_id = club_id or await self.resolve_club_id(account)
            activities = await adapter.fetch_activities(access_token, since, limit)
            metrics = await self.fetch_health_safely(adapter, access_token)
            result = await self.normalizer.normalize_and_store(activities, metrics, athlete_id, club_id)
            await self.accounts.touch_last_sync(account_id)
            await self.history.record(
                provider=adapter.name.value,
                event_type=event_type,
                status=SyncStatus.SUCCESS,
                athlete_id=athlete_id,
                workouts_added=result.workouts_inserted,
                metrics_added=result.metrics_inserted,
                duration_ms=elapsed_ms(started),
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            await self.history.record(
                provider=adapter.name.value,
                event_type=event_type,
                status=SyncStatus.FAILED,
                athlete_id=athlete_id,
                error_message=str(e),
                duration_ms=elapsed_ms(started),
            )
            await self.db.commit()
            raise

        logger.info(
            f"{event_type.value} sync {adapter.name.value} for athlete {athlete_id}: "
            f"{result.workouts_inserted} workouts, {result.metrics_inserted} metrics"
        )
        return result


# =============================================================================
# Manual sync cooldown
# =============================================================================

class SyncCooldown:
    """
    Per athlete+provider cooldown for manual syncs.

    In-process; one API instance per deployment.
    """

    def __init__(self, cooldown_seconds: float):
        self.cooldown_seconds = cooldown_seconds
        self._last_sync: dict[str, float] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(athlete_id: str, provider: str) -> str:
        return f"{athlete_id}:{provider}"

    async def acquire(self, athlete_id: str, provider: str) -> int:
        """
        Start a sync if the cooldown allows it.

        Returns:
            0 when the sync may proceed (and the cooldown is armed), otherwise
            the number of seconds to wait.
        """
        key = self._key(athlete_id, provider)
        async with self._lock:
            now = time.monotonic()
            last = self._last_sync.get(key)
            if last is not None and now - last < self.cooldown_seconds:
                remaining = self.cooldown_seconds - (now - last)
                return max(1, int(remaining + 0.999))
            self._last_sync[key] = now
            return 0

    async def release(self, athlete_id: str, provider: str) -> None:
        """Forget the last sync (used when the sync never started)."""
        async with self._lock:
            self._last_sync.pop(self._key(athlete_id, provider), None)
