"""
Tests for the webhook endpoints.
"""

import hashlib
import hmac
import json

from sqlalchemy import select

from app.features.integrations import WebhookJob

STRAVA_CREATE = {
    "object_type": "activity",
    "object_id": 99,
    "aspect_type": "create",
    "owner_id": 12345,
}


async def queued_jobs(session_factory) -> list[WebhookJob]:
    async with session_factory() as db:
        result = await db.execute(select(WebhookJob))
        return list(result.scalars().all())


def polar_headers(body: str, secret: str = "polar-webhook-secret") -> dict:
    signature = hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()
    return {"Polar-Webhook-Signature": signature, "Content-Type": "application/json"}


# =============================================================================
# Strava handshake
# =============================================================================

class TestStravaHandshake:
    """GET /webhooks/strava subscription validation."""

    async def test_valid_token_echoes_challenge(self, api):
        response = await api.get(
            "/api/v1/webhooks/strava",
            params={"hub.mode": "subscribe", "hub.verify_token": "strava-verify", "hub.challenge": "xyz"},
        )

        assert response.status_code == 200
        assert response.json() == {"hub.challenge": "xyz"}

    async def test_wrong_token_forbidden(self, api):
        response = await api.get(
            "/api/v1/webhooks/strava",
            params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "xyz"},
        )

        assert response.status_code == 403

    async def test_unconfigured_token_forbidden(self, api, test_settings, monkeypatch):
        monkeypatch.setattr(test_settings, "strava_verify_token", None)
        response = await api.get(
            "/api/v1/webhooks/strava",
            params={"hub.mode": "subscribe", "hub.challenge": "xyz"},
        )

        assert response.status_code == 403


# =============================================================================
# Events
# =============================================================================

class TestReceiveWebhook:
    """POST /webhooks/{provider}."""

    async def test_strava_create_enqueued(self, api, session_factory):
        response = await api.post("/api/v1/webhooks/strava", json=STRAVA_CREATE)

        assert response.status_code == 200
        assert response.json() == {"status": "accepted"}
        jobs = await queued_jobs(session_factory)
        assert len(jobs) == 1
        assert jobs[0].provider == "STRAVA"
        assert jobs[0].event_data["object_id"] == 99

    async def test_strava_update_ignored(self, api, session_factory):
        event = dict(STRAVA_CREATE, aspect_type="update")
        response = await api.post("/api/v1/webhooks/strava", json=event)

        assert response.json() == {"status": "ignored"}
        assert await queued_jobs(session_factory) == []

    async def test_strava_athlete_event_ignored(self, api, session_factory):
        event = dict(STRAVA_CREATE, object_type="athlete")
        response = await api.post("/api/v1/webhooks/strava", json=event)

        assert response.json() == {"status": "ignored"}

    async def test_polar_valid_signature(self, api, session_factory):
        body = json.dumps({"event": "EXERCISE", "user_id": 1, "entity_id": "ex-1"})
        response = await api.post("/api/v1/webhooks/polar", content=body, headers=polar_headers(body))

        assert response.status_code == 200
        assert response.json() == {"status": "accepted"}
        assert len(await queued_jobs(session_factory)) == 1

    async def test_polar_bad_signature_rejected(self, api, session_factory):
        body = json.dumps({"event": "EXERCISE", "user_id": 1, "entity_id": "ex-1"})
        response = await api.post(
            "/api/v1/webhooks/polar",
            content=body,
            headers=polar_headers(body, secret="forged"),
        )

        assert response.status_code == 401
        assert response.json() == {"status": "invalid_signature"}
        assert await queued_jobs(session_factory) == []

    async def test_polar_undecodable_body_rejected(self, api, session_factory):
        body = b"\xff\xfe{\"user_id\": 1}"
        signature = hmac.new(b"polar-webhook-secret", body, hashlib.sha256).hexdigest()

        response = await api.post(
            "/api/v1/webhooks/polar",
            content=body,
            headers={"Polar-Webhook-Signature": signature},
        )

        assert response.status_code == 401
        assert response.json() == {"status": "invalid_signature"}
        assert await queued_jobs(session_factory) == []

    async def test_polar_signed_malformed_body(self, api, session_factory):
        body = "{not json"

        response = await api.post("/api/v1/webhooks/polar", content=body, headers=polar_headers(body))

        assert response.status_code == 200
        assert response.json() == {"status": "error"}
        assert await queued_jobs(session_factory) == []

    async def test_wahoo_token(self, api, session_factory):
        good = {"webhook_token": "wahoo-webhook-token", "user": {"id": 5}, "workout_summary": {"id": 9}}
        bad = dict(good, webhook_token="stolen")

        assert (await api.post("/api/v1/webhooks/wahoo", json=bad)).status_code == 401
        assert (await api.post("/api/v1/webhooks/wahoo", json=good)).json() == {"status": "accepted"}
        assert len(await queued_jobs(session_factory)) == 1

    async def test_non_object_body_ignored(self, api):
        response = await api.post("/api/v1/webhooks/garmin", json=[1, 2, 3])

        assert response.json() == {"status": "ignored"}

    async def test_malformed_body_still_200(self, api, session_factory):
        response = await api.post("/api/v1/webhooks/garmin", content=b"{not json")

        assert response.status_code == 200
        assert response.json() == {"status": "error"}
        assert await queued_jobs(session_factory) == []

    async def test_unknown_provider(self, api):
        response = await api.post("/api/v1/webhooks/fitbit", json={})

        assert response.status_code == 404
