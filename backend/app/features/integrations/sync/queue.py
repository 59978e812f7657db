"""
Webhook queue runner.

Durable queue for incoming provider webhooks. The webhook endpoint only
enqueues; a background poller claims jobs from the database and runs them
through IntegrationSyncService.
"""

import asyncio
import logging
import time
from typing import Any, Optional

from app.shared.constants import SyncEventType, SyncStatus
from ..models import WebhookJob
from ..repository import SyncHistoryRepository, WebhookJobRepository
from ..config import SyncConfig
from .service import IntegrationSyncService, elapsed_ms

logger = logging.getLogger(__name__)


class WebhookQueue:
    """
    Background poller for the webhook_queue table.

    Call `start()` to begin polling.
    Call `stop()` to gracefully stop.

    Usage:
        queue = WebhookQueue()
        await queue.start(db_factory)
        await queue.enqueue("POLAR", event)
        # ... later ...
        await queue.stop()
    """

    def __init__(self, db_factory=None):
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._db_factory = db_factory

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, db_factory=None):
        """Start the poll loop."""
        if db_factory is not None:
            self._db_factory = db_factory
        if self._running:
            return
        if self._db_factory is None:
            raise RuntimeError("WebhookQueue needs a session factory")

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Webhook queue started")

    async def stop(self):
        """Stop the poll loop. In-flight jobs are reclaimed after their lock expires."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Webhook queue stopped")

    async def ensure_running(self):
        """Start polling if nobody has yet. Safe to call on every enqueue."""
        if not self._running:
            await self.start()

    async def enqueue(self, provider: str, event: dict[str, Any], db=None) -> str:
        """
        Durably store a webhook event and make sure it will be processed.

        Args:
            provider: Provider name (e.g. "POLAR")
            event: Parsed webhook body
            db: Session to insert with (defaults to a fresh one)

        Returns:
            Job id
        """
        if db is not None:
            job = await WebhookJobRepository(db).enqueue(provider, event, SyncConfig.QUEUE_MAX_ATTEMPTS)
            await db.commit()
        else:
            async with self._db_factory() as session:
                job = await WebhookJobRepository(session).enqueue(
                    provider, event, SyncConfig.QUEUE_MAX_ATTEMPTS
                )
                await session.commit()

        logger.debug(f"Enqueued {provider} webhook job {job.id}")
        await self.ensure_running()
        return job.id

    async def queue_depth(self) -> int:
        """Jobs pending or in flight."""
        async with self._db_factory() as db:
            return await WebhookJobRepository(db).depth()

    # =========================================================================
    # Processing
    # =========================================================================

    async def _run_loop(self):
        """Main poll loop."""
        while self._running:
            try:
                await self.process_pending()
            except Exception as e:
                logger.error(f"Webhook queue poll error: {e}")

            await asyncio.sleep(SyncConfig.QUEUE_POLL_INTERVAL_SECONDS)

    async def process_pending(self) -> int:
        """
        Claim one batch and process it concurrently.

        Returns:
            Number of jobs claimed
        """
        async with self._db_factory() as db:
            jobs = await WebhookJobRepository(db).claim_batch(
                SyncConfig.QUEUE_BATCH_SIZE,
                SyncConfig.QUEUE_VISIBILITY_TIMEOUT,
            )
            await db.commit()

        if not jobs:
            return 0

        logger.info(f"Processing {len(jobs)} webhook jobs")
        await asyncio.gather(*(self._process_job(job) for job in jobs))
        return len(jobs)

    async def _process_job(self, job: WebhookJob):
        """Run one claimed job and settle its status. Never raises."""
        started = time.monotonic()
        provider = job.provider

        if job.attempts > job.max_attempts:
            # Reclaimed after a worker died on its last attempt
            await self._settle_failure(job, provider, "Max attempts exceeded", started)
            return

        try:
            async with self._db_factory() as db:
                service = IntegrationSyncService(db)
                outcome = await service.process_webhook_event(job.provider, job.event_data)

                history = SyncHistoryRepository(db)
                if outcome.status == SyncStatus.SKIPPED:
                    await history.record(
                        provider=provider,
                        event_type=SyncEventType.WEBHOOK,
                        status=SyncStatus.SKIPPED,
                        error_message=outcome.reason,
                        duration_ms=elapsed_ms(started),
                    )
                else:
                    await history.record(
                        provider=provider,
                        event_type=SyncEventType.WEBHOOK,
                        status=SyncStatus.SUCCESS,
                        athlete_id=outcome.athlete_id,
                        workouts_added=outcome.result.workouts_inserted,
                        metrics_added=outcome.result.metrics_inserted,
                        duration_ms=elapsed_ms(started),
                    )
                await WebhookJobRepository(db).mark_done(job.id)
                await db.commit()

            logger.debug(f"Webhook job {job.id} {outcome.status.value}")

        except Exception as e:
            logger.error(f"Webhook job {job.id} attempt {job.attempts}/{job.max_attempts} failed: {e}")
            await self._settle_failure(job, provider, str(e), started)

    async def _settle_failure(self, job: WebhookJob, provider: str, error: str, started: float):
        try:
            async with self._db_factory() as db:
                jobs = WebhookJobRepository(db)
                if job.attempts < job.max_attempts:
                    await jobs.mark_retry(job.id, error, SyncConfig.QUEUE_RETRY_DELAY)
                else:
                    await jobs.mark_failed(job.id, error)
                    await SyncHistoryRepository(db).record(
                        provider=provider,
                        event_type=SyncEventType.WEBHOOK,
                        status=SyncStatus.FAILED,
                        error_message=error,
                        duration_ms=elapsed_ms(started),
                    )
                    logger.warning(f"Webhook job {job.id} failed permanently: {error}")
                await db.commit()
        except Exception as e:
            # Lock expiry makes the job claimable again
            logger.error(f"Could not settle webhook job {job.id}: {e}")
