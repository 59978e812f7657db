"""
Shared utilities (NOT business logic).

Usage:
    from app.shared import BaseRepository, fetch_with_retry
    from app.shared.constants import ProviderName, ActivityType
"""
from .constants import (
    ProviderName,
    ActivityType,
    MetricType,
    WebhookJobStatus,
    SyncEventType,
    SyncStatus,
    DAILY_LOG_METRIC_FIELDS,
)
from .http import fetch_with_retry, retry_after_ms, backoff_ms
from .repository import BaseRepository

__all__ = [
    # constants
    "ProviderName",
    "ActivityType",
    "MetricType",
    "WebhookJobStatus",
    "SyncEventType",
    "SyncStatus",
    "DAILY_LOG_METRIC_FIELDS",
    # http
    "fetch_with_retry",
    "retry_after_ms",
    "backoff_ms",
    # repository
    "BaseRepository",
]
