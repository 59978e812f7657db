"""
Integration sync services.

Provides:
- IntegrationSyncService: Fetch -> normalize -> store pipelines
- SyncCooldown: Manual sync rate limit
- WebhookQueue: Durable webhook queue runner
"""

from .service import IntegrationSyncService, JobOutcome, SyncCooldown
from .queue import WebhookQueue

__all__ = [
    # Services
    "IntegrationSyncService",
    "JobOutcome",
    "SyncCooldown",
    # Background
    "WebhookQueue",
]
