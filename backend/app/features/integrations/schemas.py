"""
Integration data types.

Provider adapters produce these; the normalizer, token manager and routes
consume them. None of them are persisted as-is.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Optional

from app.shared.constants import ActivityType, MetricType, ProviderName


@dataclass(frozen=True)
class OAuthConfig:
    """Static OAuth endpoints and credentials for a provider."""
    authorize_url: str
    token_url: str
    client_id: str
    client_secret: str
    scopes: list[str]
    callback_path: str
    revoke_url: Optional[str] = None
    oauth_version: str = "2.0"


@dataclass
class OAuthTokens:
    """Result of a code exchange or token refresh."""
    access_token: str
    expires_at: Optional[datetime]
    provider_user_id: str
    scopes: list[str] = field(default_factory=list)
    refresh_token: Optional[str] = None


@dataclass
class NormalizedActivity:
    """
    Provider-agnostic workout.

    Numeric fields are None when the provider did not record them.
    """
    activity_type: ActivityType
    source: ProviderName
    started_at: datetime
    duration_s: Optional[int] = None
    distance_m: Optional[float] = None
    avg_hr: Optional[float] = None
    max_hr: Optional[float] = None
    avg_pace_s_km: Optional[int] = None
    avg_power_w: Optional[float] = None
    calories: Optional[float] = None
    tss: Optional[float] = None
    raw_data: dict[str, Any] = field(default_factory=dict)
    notes: Optional[str] = None


@dataclass
class NormalizedHealthMetric:
    """Single wellness reading (resting HR, sleep hours, ...)."""
    metric_type: MetricType
    value: float
    unit: str
    recorded_at: datetime
    source: ProviderName
    raw_data: dict[str, Any] = field(default_factory=dict)


@dataclass
class SyncResult:
    """Counters returned by normalize_and_store."""
    workouts_inserted: int = 0
    workouts_skipped: int = 0
    metrics_inserted: int = 0
    metrics_skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller: athlete and their club."""
    user_id: str
    club_id: str


def pace_s_per_km(duration_s: Optional[float], distance_m: Optional[float]) -> Optional[int]:
    """Average pace in seconds per km, None without a usable distance."""
    if not duration_s or not distance_m or distance_m <= 0:
        return None
    return round(duration_s / (distance_m / 1000))
