"""
Normalizer / dedup store.

Persists normalized activities and health metrics idempotently:

- Workouts: a workout from the same source starting within +/- 5 minutes
  of an existing one is a duplicate
- Metrics: exact match on (athlete, metric type, recorded_at)
- Daily logs: HRV / resting HR / sleep hours are copied into the athlete's
  daily log for that date, filling only empty fields

Each row is written in its own savepoint and committed. A failing insert
only rolls back its savepoint, is counted as skipped and does not stop the
batch or expire the caller's objects; re-running the same input is safe.
"""

import logging
from collections import defaultdict
from datetime import date
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.constants import DAILY_LOG_METRIC_FIELDS
from .repository import DailyLogRepository, HealthMetricRepository, WorkoutRepository
from .schemas import NormalizedActivity, NormalizedHealthMetric, SyncResult
from .config import SyncConfig

logger = logging.getLogger(__name__)


class Normalizer:
    """
    Idempotent writer for normalized provider data.

    Usage:
        normalizer = Normalizer(db)
        result = await normalizer.normalize_and_store(activities, metrics, athlete_id, club_id)
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.workouts = WorkoutRepository(db)
        self.metrics = HealthMetricRepository(db)
        self.daily_logs = DailyLogRepository(db)

    async def normalize_and_store(
        self,
        activities: Iterable[NormalizedActivity],
        metrics: Iterable[NormalizedHealthMetric],
        athlete_id: str,
        club_id: str | None,
    ) -> SyncResult:
        """
        Store activities and metrics, skipping duplicates.

        Returns:
            SyncResult with inserted / skipped counters
        """
        result = SyncResult()
        metrics = list(metrics)

        for activity in activities:
            if await self._store_activity(activity, athlete_id, club_id):
                result.workouts_inserted += 1
            else:
                result.workouts_skipped += 1

        for metric in metrics:
            if await self._store_metric(metric, athlete_id, club_id):
                result.metrics_inserted += 1
            else:
                result.metrics_skipped += 1

        if metrics:
            await self._enrich_daily_logs(metrics, athlete_id, club_id)

        logger.debug(f"Normalized data for athlete {athlete_id}: {result}")
        return result

    async def _store_activity(
        self,
        activity: NormalizedActivity,
        athlete_id: str,
        club_id: str | None,
    ) -> bool:
        source = activity.source.value
        duplicate = await self.workouts.find_near(
            athlete_id,
            source,
            activity.started_at,
            SyncConfig.WORKOUT_DEDUP_WINDOW,
        )
        if duplicate:
            logger.debug(f"Skipping duplicate {source} workout at {activity.started_at}")
            return False

        try:
            async with self.db.begin_nested():
                await self.workouts.create(
                    athlete_id=athlete_id,
                    club_id=club_id,
                    activity_type=activity.activity_type.value,
                    source=source,
                    started_at=activity.started_at,
                    duration_s=activity.duration_s,
                    distance_m=activity.distance_m,
                    avg_hr=activity.avg_hr,
                    max_hr=activity.max_hr,
                    avg_pace_s_km=activity.avg_pace_s_km,
                    avg_power_w=activity.avg_power_w,
                    calories=activity.calories,
                    tss=activity.tss,
                    raw_data=activity.raw_data,
                    notes=activity.notes,
                )
            await self.db.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to insert {source} workout for athlete {athlete_id}: {e}")
            return False

    async def _store_metric(
        self,
        metric: NormalizedHealthMetric,
        athlete_id: str,
        club_id: str | None,
    ) -> bool:
        if await self.metrics.exists(athlete_id, metric.metric_type.value, metric.recorded_at):
            return False

        try:
            async with self.db.begin_nested():
                await self.metrics.create(
                    athlete_id=athlete_id,
                    club_id=club_id,
                    metric_type=metric.metric_type.value,
                    value=metric.value,
                    unit=metric.unit,
                    recorded_at=metric.recorded_at,
                    source=metric.source.value,
                    raw_data=metric.raw_data,
                )
            await self.db.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to insert {metric.metric_type.value} metric for athlete {athlete_id}: {e}")
            return False

    async def _enrich_daily_logs(
        self,
        metrics: list[NormalizedHealthMetric],
        athlete_id: str,
        club_id: str | None,
    ) -> None:
        """
        Copy wellness metrics into daily logs without overwriting anything.

        Failures are logged; the log is a convenience, not the source of truth.
        """
        by_date: dict[date, dict[str, float]] = defaultdict(dict)
        for metric in metrics:
            field = DAILY_LOG_METRIC_FIELDS.get(metric.metric_type)
            if field:
                by_date[metric.recorded_at.date()][field] = metric.value

        for log_date, values in by_date.items():
            try:
                async with self.db.begin_nested():
                    existing = await self.daily_logs.get_for_date(athlete_id, log_date)
                    if existing is None:
                        await self.daily_logs.create(
                            athlete_id=athlete_id,
                            club_id=club_id,
                            log_date=log_date,
                            **values,
                        )
                    else:
                        missing = {
                            field: value for field, value in values.items()
                            if getattr(existing, field) is None
                        }
                        if missing:
                            await self.daily_logs.update(existing, **missing)
                await self.db.commit()
            except SQLAlchemyError as e:
                logger.error(f"Failed to update daily log {log_date} for athlete {athlete_id}: {e}")
