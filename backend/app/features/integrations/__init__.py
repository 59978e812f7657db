"""
Fitness device integrations.

Connects athletes' Strava, Garmin, Polar and Wahoo accounts, ingests their
activities and wellness data through OAuth pulls and webhooks, and stores
it in one normalized shape.

Usage:
    from app.features.integrations import get_provider, IntegrationOAuthService
    from app.features.integrations import WebhookQueue
"""

from .models import (
    ConnectedAccount,
    Workout,
    HealthMetric,
    DailyLog,
    WebhookJob,
    SyncHistory,
)
from .errors import (
    IntegrationError,
    TokenExpiredError,
    RateLimitedError,
    WebhookVerificationError,
    ProviderApiError,
    OAuthStateError,
    ProviderUnavailableError,
    ProviderNotConnectedError,
    SyncCooldownError,
    ConfigurationError,
)
from .schemas import (
    OAuthConfig,
    OAuthTokens,
    NormalizedActivity,
    NormalizedHealthMetric,
    SyncResult,
    Principal,
)
from .config import SyncConfig
from .providers import ProviderAdapter
from .registry import get_provider, list_providers, register_provider, reset_providers
from .repository import (
    ConnectedAccountRepository,
    WorkoutRepository,
    HealthMetricRepository,
    DailyLogRepository,
    WebhookJobRepository,
    SyncHistoryRepository,
)
from .token_manager import TokenManager, ActiveConnection
from .normalizer import Normalizer
from .sync import IntegrationSyncService, SyncCooldown, WebhookQueue
from .oauth import IntegrationOAuthService, dispatch_backfill, wait_for_backfills

__all__ = [
    # Models
    "ConnectedAccount",
    "Workout",
    "HealthMetric",
    "DailyLog",
    "WebhookJob",
    "SyncHistory",
    # Errors
    "IntegrationError",
    "TokenExpiredError",
    "RateLimitedError",
    "WebhookVerificationError",
    "ProviderApiError",
    "OAuthStateError",
    "ProviderUnavailableError",
    "ProviderNotConnectedError",
    "SyncCooldownError",
    "ConfigurationError",
    # Schemas
    "OAuthConfig",
    "OAuthTokens",
    "NormalizedActivity",
    "NormalizedHealthMetric",
    "SyncResult",
    "Principal",
    # Providers
    "SyncConfig",
    "ProviderAdapter",
    "get_provider",
    "list_providers",
    "register_provider",
    "reset_providers",
    # Repositories
    "ConnectedAccountRepository",
    "WorkoutRepository",
    "HealthMetricRepository",
    "DailyLogRepository",
    "WebhookJobRepository",
    "SyncHistoryRepository",
    # Services
    "TokenManager",
    "ActiveConnection",
    "Normalizer",
    "IntegrationSyncService",
    "SyncCooldown",
    "WebhookQueue",
    "IntegrationOAuthService",
    "dispatch_backfill",
    "wait_for_backfills",
]
