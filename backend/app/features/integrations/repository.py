"""
Integration repositories.

Data access layer for connected accounts, normalized data, the webhook
queue and sync history. Repositories flush; callers commit.
"""

from datetime import date, datetime, timedelta
from typing import Any, Optional

from sqlalchemy import and_, desc, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.clock import utcnow
from app.shared.constants import SyncEventType, SyncStatus, WebhookJobStatus
from app.shared.repository import BaseRepository
from .models import ConnectedAccount, DailyLog, HealthMetric, SyncHistory, WebhookJob, Workout


class ConnectedAccountRepository(BaseRepository[ConnectedAccount]):
    """Repository for provider connections."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, ConnectedAccount)

    async def get_for_athlete(self, athlete_id: str, provider: str) -> ConnectedAccount | None:
        return await self.get_by(athlete_id=athlete_id, provider=provider)

    async def get_by_provider_uid(self, provider: str, provider_uid: str) -> ConnectedAccount | None:
        """
        Find the account a webhook event belongs to.

        Args:
            provider: Provider name
            provider_uid: Provider's user id from the event payload
        """
        if not provider_uid:
            return None
        return await self.get_by(provider=provider, provider_uid=provider_uid)

    async def list_for_athlete(self, athlete_id: str) -> list[ConnectedAccount]:
        result = await self.db.execute(
            select(ConnectedAccount)
            .where(ConnectedAccount.athlete_id == athlete_id)
            .order_by(ConnectedAccount.provider)
        )
        return list(result.scalars().all())

    async def upsert(self, athlete_id: str, provider: str, **fields) -> ConnectedAccount:
        """
        Create or overwrite the connection for (athlete, provider).

        A second OAuth round trip for the same pair replaces tokens in place.
        """
        existing = await self.get_for_athlete(athlete_id, provider)
        if existing:
            return await self.update(existing, updated_at=utcnow(), **fields)
        return await self.create(athlete_id=athlete_id, provider=provider, **fields)

    async def update_tokens(
        self,
        account: ConnectedAccount,
        access_token: str,
        refresh_token: Optional[str],
        token_expires: Optional[datetime],
    ) -> ConnectedAccount:
        """Store refreshed (already encrypted) tokens."""
        return await self.update(
            account,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires=token_expires,
            updated_at=utcnow(),
        )

    async def touch_last_sync(self, account_id: str, when: Optional[datetime] = None) -> None:
        await self.db.execute(
            update(ConnectedAccount)
            .where(ConnectedAccount.id == account_id)
            .values(last_sync_at=when or utcnow())
        )
        await self.db.flush()


class WorkoutRepository(BaseRepository[Workout]):
    """Repository for normalized workouts."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, Workout)

    async def find_near(
        self,
        athlete_id: str,
        source: str,
        started_at: datetime,
        window: timedelta,
    ) -> Workout | None:
        """
        Find a workout from the same source starting within +/- window.

        Used for deduplication: providers do not expose a uniform unique id.
        """
        result = await self.db.execute(
            select(Workout)
            .where(
                Workout.athlete_id == athlete_id,
                Workout.source == source,
                Workout.started_at >= started_at - window,
                Workout.started_at <= started_at + window,
            )
            .limit(1)
        )
        return result.scalars().first()


class HealthMetricRepository(BaseRepository[HealthMetric]):
    """Repository for wellness readings."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, HealthMetric)

    async def exists(self, athlete_id: str, metric_type: str, recorded_at: datetime) -> bool:
        count = await self.count(
            athlete_id=athlete_id,
            metric_type=metric_type,
            recorded_at=recorded_at,
        )
        return count > 0


class DailyLogRepository(BaseRepository[DailyLog]):
    """Repository for daily wellness logs."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, DailyLog)

    async def get_for_date(self, athlete_id: str, log_date: date) -> DailyLog | None:
        return await self.get_by(athlete_id=athlete_id, log_date=log_date)


class WebhookJobRepository(BaseRepository[WebhookJob]):
    """
    Repository for the webhook queue.

    Claiming is a conditional UPDATE so concurrent pollers (several
    processes on the same database) can never both win the same job.
    """

    def __init__(self, db: AsyncSession):
        super().__init__(db, WebhookJob)

    @staticmethod
    def _claimable(now: datetime):
        return or_(
            and_(
                WebhookJob.status == WebhookJobStatus.PENDING.value,
                WebhookJob.available_at <= now,
            ),
            and_(
                WebhookJob.status == WebhookJobStatus.PROCESSING.value,
                WebhookJob.locked_until < now,
            ),
        )

    async def enqueue(self, provider: str, event: dict[str, Any], max_attempts: int) -> WebhookJob:
        now = utcnow()
        return await self.create(
            provider=provider,
            event_data=event,
            status=WebhookJobStatus.PENDING.value,
            attempts=0,
            max_attempts=max_attempts,
            available_at=now,
            created_at=now,
        )

    async def claim_batch(self, limit: int, visibility_timeout: timedelta) -> list[WebhookJob]:
        """
        Claim up to `limit` jobs.

        Each candidate is claimed with its own conditional UPDATE; a
        candidate that another poller grabbed in between matches zero rows
        and is skipped. Claimed jobs get attempts += 1 and stay invisible
        until locked_until.
        """
        now = utcnow()
        result = await self.db.execute(
            select(WebhookJob.id)
            .where(self._claimable(now))
            .order_by(WebhookJob.available_at, WebhookJob.created_at)
            .limit(limit)
        )
        candidate_ids = list(result.scalars().all())

        claimed_ids = []
        for job_id in candidate_ids:
            claim = await self.db.execute(
                update(WebhookJob)
                .where(WebhookJob.id == job_id, self._claimable(now))
                .values(
                    status=WebhookJobStatus.PROCESSING.value,
                    attempts=WebhookJob.attempts + 1,
                    locked_until=now + visibility_timeout,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claim.rowcount == 1:
                claimed_ids.append(job_id)

        if not claimed_ids:
            return []

        jobs = await self.db.execute(
            select(WebhookJob)
            .where(WebhookJob.id.in_(claimed_ids))
            .execution_options(populate_existing=True)
        )
        return list(jobs.scalars().all())

    async def _set_status(self, job_id: str, **values) -> None:
        await self.db.execute(
            update(WebhookJob)
            .where(WebhookJob.id == job_id)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()

    async def mark_done(self, job_id: str) -> None:
        await self._set_status(job_id, status=WebhookJobStatus.DONE.value, locked_until=None)

    async def mark_retry(self, job_id: str, error: str, delay: timedelta) -> None:
        await self._set_status(
            job_id,
            status=WebhookJobStatus.PENDING.value,
            last_error=error,
            available_at=utcnow() + delay,
            locked_until=None,
        )

    async def mark_failed(self, job_id: str, error: str) -> None:
        await self._set_status(
            job_id,
            status=WebhookJobStatus.FAILED.value,
            last_error=error,
            locked_until=None,
        )

    async def depth(self) -> int:
        """Jobs waiting or in flight."""
        result = await self.db.execute(
            select(func.count())
            .select_from(WebhookJob)
            .where(WebhookJob.status.in_([
                WebhookJobStatus.PENDING.value,
                WebhookJobStatus.PROCESSING.value,
            ]))
        )
        return result.scalar() or 0


class SyncHistoryRepository(BaseRepository[SyncHistory]):
    """Repository for the sync audit log."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, SyncHistory)

    async def record(
        self,
        provider: str,
        event_type: SyncEventType,
        status: SyncStatus,
        athlete_id: Optional[str] = None,
        workouts_added: int = 0,
        metrics_added: int = 0,
        error_message: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> SyncHistory:
        return await self.create(
            athlete_id=athlete_id,
            provider=provider,
            event_type=event_type.value,
            status=status.value,
            workouts_added=workouts_added,
            metrics_added=metrics_added,
            error_message=error_message[:1000] if error_message else None,
            duration_ms=duration_ms,
        )

    async def recent(
        self,
        athlete_id: str,
        limit: int = 20,
        provider: Optional[str] = None,
    ) -> list[SyncHistory]:
        """Newest first."""
        query = (
            select(SyncHistory)
            .where(SyncHistory.athlete_id == athlete_id)
            .order_by(desc(SyncHistory.created_at))
            .limit(limit)
        )
        if provider:
            query = query.where(SyncHistory.provider == provider)
        result = await self.db.execute(query)
        return list(result.scalars().all())
