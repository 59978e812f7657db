"""
Unified constants for providers, activity types and health metrics.

This module provides a single source of truth for the enum values that are
stored in the database and returned by the API.
"""

from enum import Enum


class ProviderName(str, Enum):
    """
    External fitness platforms we integrate with.

    Values are stored in connected_accounts.provider, webhook_queue.provider
    and used as workouts.source / health_metrics.source.
    """
    STRAVA = "STRAVA"
    GARMIN = "GARMIN"
    POLAR = "POLAR"
    WAHOO = "WAHOO"

    @property
    def slug(self) -> str:
        """Lowercase form used in URLs."""
        return self.value.lower()


class ActivityType(str, Enum):
    """
    Platform activity types.

    Every provider sport string maps onto one of these. Unknown sports
    become OTHER.
    """
    SWIM = "SWIM"
    BIKE = "BIKE"
    RUN = "RUN"
    STRENGTH = "STRENGTH"
    YOGA = "YOGA"
    OTHER = "OTHER"


class MetricType(str, Enum):
    """Health / wellness metric kinds."""
    SLEEP_HOURS = "SLEEP_HOURS"
    SLEEP_STAGES = "SLEEP_STAGES"
    HRV = "HRV"
    RESTING_HR = "RESTING_HR"
    STEPS = "STEPS"
    ACTIVE_CALORIES = "ACTIVE_CALORIES"
    SPO2 = "SPO2"
    VO2MAX = "VO2MAX"


class WebhookJobStatus(str, Enum):
    """Lifecycle of a webhook_queue row."""
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class SyncEventType(str, Enum):
    """What triggered a sync_history entry."""
    WEBHOOK = "webhook"
    MANUAL = "manual"
    BACKFILL = "backfill"


class SyncStatus(str, Enum):
    """Outcome recorded in sync_history."""
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


# Metric types copied into daily_logs, mapped to the daily_logs column
DAILY_LOG_METRIC_FIELDS: dict[MetricType, str] = {
    MetricType.HRV: "hrv",
    MetricType.RESTING_HR: "resting_hr",
    MetricType.SLEEP_HOURS: "sleep_hours",
}
