"""
Shared API dependencies.

Authentication happens upstream (API gateway); this service trusts the
X-User-Id / X-Club-Id headers it forwards.
"""

from typing import Optional

from fastapi import Header, HTTPException, Path, Request

from app.db.session import AsyncSessionLocal
from app.features.integrations import (
    Principal,
    ProviderAdapter,
    SyncCooldown,
    WebhookQueue,
    get_provider,
)


async def get_current_principal(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    x_club_id: Optional[str] = Header(default=None, alias="X-Club-Id"),
) -> Principal:
    """Caller identity forwarded by the gateway."""
    if not x_user_id or not x_club_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return Principal(user_id=x_user_id, club_id=x_club_id)


def get_adapter(provider: str = Path(..., description="Provider slug, e.g. strava")) -> ProviderAdapter:
    """Resolve the provider path segment. Unknown providers are 404."""
    try:
        return get_provider(provider)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}")


def get_webhook_queue(request: Request) -> WebhookQueue:
    return request.app.state.webhook_queue


def get_sync_cooldown(request: Request) -> SyncCooldown:
    return request.app.state.sync_cooldown


def get_session_factory(request: Request):
    """Session factory for work that outlives the request (backfills)."""
    return getattr(request.app.state, "session_factory", AsyncSessionLocal)
