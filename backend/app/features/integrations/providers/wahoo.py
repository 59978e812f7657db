"""
Wahoo Cloud API adapter.

- OAuth 2.0 with refresh tokens (2 hour access tokens)
- The token response has no user id, so exchange_code makes an extra
  GET /v1/user round trip
- Webhook deliveries carry the app's static webhook token in the JSON body
  ("webhook_token"); it is compared in constant time
"""

import hmac
import json
import logging
from datetime import datetime
from typing import Any, Mapping, Optional
from urllib.parse import urlencode

from app.config import settings
from app.shared.clock import utcnow
from app.shared.constants import ActivityType, ProviderName
from ..errors import ProviderApiError
from ..schemas import NormalizedActivity, OAuthConfig, OAuthTokens, pace_s_per_km
from .base import (
    ProviderAdapter,
    as_float,
    as_int,
    from_epoch,
    parse_timestamp,
    require_start,
    to_epoch,
)

logger = logging.getLogger(__name__)


WAHOO_API = "https://api.wahooligan.com/v1"
WEBHOOK_TOKEN_FIELD = "webhook_token"

ACTIVITY_TYPE_MAP: dict[str, ActivityType] = {
    "running": ActivityType.RUN,
    "cycling": ActivityType.BIKE,
    "swimming": ActivityType.SWIM,
    "strength": ActivityType.STRENGTH,
    "yoga": ActivityType.YOGA,
}


class WahooProvider(ProviderAdapter):
    """Wahoo Cloud API adapter."""

    name = ProviderName.WAHOO

    AUTHORIZE_URL = "https://api.wahooligan.com/oauth/authorize"
    TOKEN_URL = "https://api.wahooligan.com/oauth/token"
    REVOKE_URL = "https://api.wahooligan.com/oauth/revoke"
    SCOPES = ["user_read", "workouts_read", "offline_data"]

    @property
    def oauth_config(self) -> OAuthConfig:
        return OAuthConfig(
            authorize_url=self.AUTHORIZE_URL,
            token_url=self.TOKEN_URL,
            revoke_url=self.REVOKE_URL,
            client_id=settings.wahoo_client_id or "",
            client_secret=settings.wahoo_client_secret or "",
            scopes=self.SCOPES,
            callback_path="/api/v1/integrations/wahoo/callback",
        )

    # -------------------------------------------------------------------------
    # OAuth
    # -------------------------------------------------------------------------

    def build_auth_url(self, state: str) -> str:
        config = self.oauth_config
        params = {
            "client_id": config.client_id,
            "response_type": "code",
            "redirect_uri": self.callback_url,
            "scope": " ".join(config.scopes),
            "state": state,
        }
        return f"{config.authorize_url}?{urlencode(params)}"

    @staticmethod
    def _expires_at(data: Mapping[str, Any]) -> Optional[datetime]:
        expires_in = as_int(data.get("expires_in"))
        if expires_in is None:
            return None
        created_at = as_int(data.get("created_at")) or to_epoch(utcnow())
        return from_epoch(created_at + expires_in)

    async def exchange_code(self, code: str) -> OAuthTokens:
        config = self.oauth_config
        response = await self._request(
            "POST",
            config.token_url,
            data={
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.callback_url,
            },
        )
        self._raise_for_token_response(response, "Code exchange")
        data = response.json()

        user = await self._get_json(f"{WAHOO_API}/user", data["access_token"])

        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=self._expires_at(data),
            provider_user_id=str(user.get("id", "")),
            scopes=list(config.scopes),
        )

    async def refresh_token(self, refresh_token: str) -> OAuthTokens:
        config = self.oauth_config
        response = await self._request(
            "POST",
            config.token_url,
            data={
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        self._raise_for_token_response(response, "Token refresh")
        data = response.json()

        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=self._expires_at(data),
            provider_user_id="",
            scopes=list(config.scopes),
        )

    async def revoke_access(self, access_token: str) -> None:
        config = self.oauth_config
        try:
            response = await self._request(
                "POST",
                self.REVOKE_URL,
                data={
                    "token": access_token,
                    "client_id": config.client_id,
                    "client_secret": config.client_secret,
                },
                max_retries=0,
            )
            if not response.is_success:
                logger.warning(f"Wahoo revoke returned HTTP {response.status_code}")
        except Exception as e:
            logger.warning(f"Wahoo revoke failed: {e}")

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    def verify_webhook(self, headers: Mapping[str, str], body: str) -> bool:
        expected = settings.wahoo_webhook_token
        if not expected:
            logger.warning("WAHOO_WEBHOOK_TOKEN not configured, skipping webhook token check")
            return True

        try:
            event = json.loads(body)
        except (TypeError, ValueError):
            return False
        if not isinstance(event, dict):
            return False

        token = event.get(WEBHOOK_TOKEN_FIELD)
        if not isinstance(token, str) or not token:
            return False
        return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))

    def extract_owner_id(self, event: Mapping[str, Any]) -> str:
        user = event.get("user") or {}
        return str(user.get("id") or "")

    def extract_activity_id(self, event: Mapping[str, Any]) -> str:
        summary = event.get("workout_summary") or {}
        return str(summary.get("id") or event.get("id") or "")

    # -------------------------------------------------------------------------
    # Data
    # -------------------------------------------------------------------------

    async def fetch_activity(self, access_token: str, activity_id: str) -> NormalizedActivity:
        data = await self._get_json(f"{WAHOO_API}/workouts/{activity_id}", access_token)
        return self.normalize_activity(data)

    async def fetch_activities(
        self,
        access_token: str,
        since: datetime,
        limit: int = 50,
    ) -> list[NormalizedActivity]:
        response = await self._request(
            "GET",
            f"{WAHOO_API}/workouts",
            headers={"Authorization": f"Bearer {access_token}"},
            params={"per_page": limit},
        )
        if not response.is_success:
            logger.warning(f"Wahoo workout list returned HTTP {response.status_code}")
            return []

        payload = response.json()
        if not isinstance(payload, dict):
            raise ProviderApiError(self.name.value, 502, "Unexpected workouts payload")
        workouts = self._normalize_all((payload.get("workouts") or [])[:limit], self.normalize_activity)
        return [w for w in workouts if w.started_at >= since]

    # -------------------------------------------------------------------------
    # Mapping
    # -------------------------------------------------------------------------

    @staticmethod
    def map_activity_type(wahoo_type: Any) -> ActivityType:
        return ACTIVITY_TYPE_MAP.get(str(wahoo_type or "").lower(), ActivityType.OTHER)

    def normalize_activity(self, a: Mapping[str, Any]) -> NormalizedActivity:
        summary = a.get("workout_summary") or a
        workout = a.get("workout") or a

        duration = as_int(summary.get("duration_active_accum") or workout.get("duration_active_accum"))
        distance = as_float(summary.get("distance_accum") or workout.get("distance_accum"))
        started_at = parse_timestamp(workout.get("starts")) or parse_timestamp(workout.get("created_at"))

        return NormalizedActivity(
            activity_type=self.map_activity_type(workout.get("workout_type") or workout.get("name")),
            source=self.name,
            started_at=require_start(started_at, self.name),
            duration_s=duration,
            distance_m=distance,
            avg_hr=as_float(summary.get("heart_rate_avg")),
            max_hr=None,  # not in the summary
            avg_pace_s_km=pace_s_per_km(duration, distance),
            avg_power_w=as_float(summary.get("power_avg")),
            calories=as_float(summary.get("calories_accum")),
            tss=None,
            raw_data=dict(a),
            notes=workout.get("description") or None,
        )
