"""
Integration Routes

Endpoints for fitness platform connections:
- /integrations/status - Connection status for all providers
- /integrations/sync-history - Recent sync runs
- /integrations/{provider}/connect - Initiate OAuth flow
- /integrations/{provider}/callback - Handle OAuth callback
- /integrations/{provider}/disconnect - Revoke and forget a connection
- /integrations/{provider}/sync - Pull recent data on demand
"""

import logging
from typing import Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    get_adapter,
    get_current_principal,
    get_session_factory,
    get_sync_cooldown,
    get_webhook_queue,
)
from app.config import settings
from app.db.session import get_async_db
from app.features.integrations import (
    IntegrationError,
    IntegrationOAuthService,
    OAuthStateError,
    Principal,
    ProviderAdapter,
    ProviderNotConnectedError,
    SyncCooldown,
    SyncCooldownError,
    SyncHistoryRepository,
    TokenExpiredError,
    TokenManager,
    WebhookQueue,
    get_provider,
    list_providers,
)
from app.features.integrations.providers.garmin import DEVELOPER_PROGRAM_URL
from app.shared.constants import ProviderName

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["Integrations"])


def _settings_redirect(adapter: ProviderAdapter, **params) -> RedirectResponse:
    query = urlencode({"integration": adapter.name.slug, **params})
    return RedirectResponse(url=f"{settings.web_url.rstrip('/')}/workout/settings?{query}")


# =============================================================================
# Status
# =============================================================================

@router.get("/status")
async def integration_status(
    principal: Principal = Depends(get_current_principal),
    queue: WebhookQueue = Depends(get_webhook_queue),
    db: AsyncSession = Depends(get_async_db),
):
    """Connection status for every registered provider."""
    connected = {
        account["provider"]: account
        for account in await TokenManager(db).get_connected_accounts(principal.user_id)
    }

    integrations = []
    for name in list_providers():
        account = connected.get(name)
        integrations.append({
            "provider": name,
            "connected": account is not None,
            "lastSyncAt": account["lastSyncAt"] if account else None,
            "providerUid": account["providerUid"] if account else None,
        })

    return {
        "integrations": integrations,
        "webhookQueueSize": await queue.queue_depth(),
    }


@router.get("/sync-history")
async def sync_history(
    limit: int = Query(default=20, ge=1, le=100),
    provider: Optional[str] = Query(default=None),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
):
    """Recent sync runs for the caller, newest first."""
    if provider:
        try:
            provider = get_provider(provider).name.value
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}")

    rows = await SyncHistoryRepository(db).recent(principal.user_id, limit=limit, provider=provider)
    return {"history": [row.to_dict() for row in rows]}


# =============================================================================
# OAuth Flow
# =============================================================================

@router.get("/{provider}/connect")
async def connect_provider(
    adapter: ProviderAdapter = Depends(get_adapter),
    principal: Principal = Depends(get_current_principal),
):
    """Redirect the athlete to the provider's consent screen."""
    if adapter.name == ProviderName.GARMIN:
        return JSONResponse(
            status_code=503,
            content={
                "error": "Garmin integration requires business API approval",
                "status": "pending_approval",
                "applyAt": DEVELOPER_PROGRAM_URL,
            },
        )

    if not adapter.oauth_config.client_id:
        raise HTTPException(status_code=503, detail=f"{adapter.name.value} integration not configured")

    url = IntegrationOAuthService.build_authorization_url(adapter, principal.user_id)
    logger.info(f"{adapter.name.value} OAuth initiated for athlete {principal.user_id}")
    return RedirectResponse(url=url)


@router.get("/{provider}/callback")
async def oauth_callback(
    adapter: ProviderAdapter = Depends(get_adapter),
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_async_db),
    session_factory=Depends(get_session_factory),
):
    """
    Handle the provider's OAuth redirect.

    Unauthenticated: the athlete is identified by the signed state.
    Always redirects back to the settings page.
    """
    if error or not code or not state:
        logger.warning(f"{adapter.name.value} OAuth callback error: {error}")
        return _settings_redirect(adapter, error="denied")

    service = IntegrationOAuthService(db, session_factory=session_factory)
    try:
        athlete_id = service.verify_callback_state(adapter, state)
    except OAuthStateError as e:
        logger.warning(str(e))
        return _settings_redirect(adapter, error="denied")

    try:
        await service.handle_oauth_callback(adapter, code, athlete_id)
    except Exception as e:
        logger.error(f"{adapter.name.value} OAuth callback failed: {e}")
        await db.rollback()
        return _settings_redirect(adapter, error="failed")

    return _settings_redirect(adapter, status="connected")


# =============================================================================
# Connection management
# =============================================================================

@router.post("/{provider}/disconnect")
async def disconnect(
    adapter: ProviderAdapter = Depends(get_adapter),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
):
    """Revoke access and delete stored tokens."""
    await IntegrationOAuthService(db).disconnect_provider(adapter, principal.user_id)
    return {"status": "disconnected", "provider": adapter.name.value}


@router.post("/{provider}/sync")
async def manual_sync(
    adapter: ProviderAdapter = Depends(get_adapter),
    principal: Principal = Depends(get_current_principal),
    cooldown: SyncCooldown = Depends(get_sync_cooldown),
    db: AsyncSession = Depends(get_async_db),
):
    """Pull the last week of activities (and today's health data)."""
    service = IntegrationOAuthService(db, cooldown=cooldown)
    try:
        return await service.handle_provider_sync(adapter, principal)
    except SyncCooldownError as e:
        return JSONResponse(status_code=429, content={"error": f"Please wait {e.wait_seconds}s before syncing again"})
    except ProviderNotConnectedError:
        return JSONResponse(status_code=400, content={"error": f"{adapter.name.value} not connected"})
    except TokenExpiredError:
        return JSONResponse(
            status_code=401,
            content={"error": f"{adapter.name.value} authorization expired, please reconnect", "reconnect": True},
        )
    except IntegrationError as e:
        logger.error(f"Manual sync failed: {e}")
        return JSONResponse(status_code=502, content={"error": e.message})
    except httpx.HTTPError as e:
        logger.error(f"Manual sync failed: {adapter.name.value} unreachable: {e!r}")
        return JSONResponse(status_code=502, content={"error": f"{adapter.name.value} is unreachable, try again later"})
