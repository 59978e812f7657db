"""
Webhook Routes

Inbound provider webhooks:
- POST /webhooks/{provider} - Verify and enqueue an event
- GET  /webhooks/strava     - Strava subscription handshake

Events are only verified and stored here; the webhook queue processes them
in the background so providers get an answer immediately.
"""

import json
import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_adapter, get_webhook_queue
from app.config import settings
from app.db.session import get_async_db
from app.features.integrations import ProviderAdapter, WebhookQueue, WebhookVerificationError
from app.shared.constants import ProviderName

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def _status(status: str, code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=code, content={"status": status})


def parse_event(body: str):
    """Decoded JSON body, or None when it is not valid JSON."""
    try:
        return json.loads(body)
    except ValueError:
        return None


def is_strava_activity_create(event: dict) -> bool:
    """Strava sends updates and deletes too; only new activities are ingested."""
    return event.get("object_type") == "activity" and event.get("aspect_type") == "create"


# =============================================================================
# Strava subscription handshake
# =============================================================================

@router.get("/strava")
async def strava_subscription_handshake(
    mode: str = Query(None, alias="hub.mode"),
    verify_token: str = Query(None, alias="hub.verify_token"),
    challenge: str = Query(None, alias="hub.challenge"),
):
    """Echo hub.challenge when Strava validates the webhook subscription."""
    expected = settings.strava_verify_token
    if mode == "subscribe" and expected and verify_token == expected:
        logger.info("Strava webhook subscription verified")
        return {"hub.challenge": challenge}

    logger.warning("Strava webhook subscription handshake rejected")
    return PlainTextResponse("Forbidden", status_code=403)


# =============================================================================
# Events
# =============================================================================

@router.post("/{provider}")
async def receive_webhook(
    request: Request,
    adapter: ProviderAdapter = Depends(get_adapter),
    queue: WebhookQueue = Depends(get_webhook_queue),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Verify and enqueue a provider webhook.

    Returns 200 for anything that is not a signature failure (even internal
    errors) so providers do not hammer us with redeliveries.
    """
    provider = adapter.name.value
    try:
        # Undecodable bytes still reach signature verification, which then fails
        body = (await request.body()).decode("utf-8", errors="replace")
        event = parse_event(body)

        if adapter.name == ProviderName.STRAVA and isinstance(event, dict) and not is_strava_activity_create(event):
            return _status("ignored")

        if not adapter.verify_webhook(request.headers, body):
            raise WebhookVerificationError(provider)

        if event is None:
            logger.warning(f"{provider} webhook body is not valid JSON")
            return _status("error")
        if not isinstance(event, dict):
            return _status("ignored")

        await queue.enqueue(provider, event, db=db)
        return _status("accepted")

    except WebhookVerificationError as e:
        logger.warning(f"Rejected webhook: {e}")
        return _status("invalid_signature", 401)
    except Exception as e:
        logger.error(f"{provider} webhook error: {e}")
        return _status("error")
