"""
Strava adapter.

OAuth 2.0 with refresh tokens (6 hour access tokens).

Webhooks carry no signature. Authenticity is established once through the
subscription handshake (GET with hub.challenge, see webhooks route); POSTed
events are only checked for the fields we rely on.

Strava API Limits:
- 200 requests per 15 minutes
- 2,000 requests per day
"""

import json
import logging
from datetime import datetime
from typing import Any, Mapping
from urllib.parse import urlencode

from app.config import settings
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


STRAVA_API = "https://www.strava.com/api/v3"

WEBHOOK_REQUIRED_FIELDS = ("object_type", "object_id", "aspect_type", "owner_id")

ACTIVITY_TYPE_MAP: dict[str, ActivityType] = {
    "Run": ActivityType.RUN,
    "VirtualRun": ActivityType.RUN,
    "TrailRun": ActivityType.RUN,
    "Ride": ActivityType.BIKE,
    "VirtualRide": ActivityType.BIKE,
    "GravelRide": ActivityType.BIKE,
    "MountainBikeRide": ActivityType.BIKE,
    "EBikeRide": ActivityType.BIKE,
    "Swim": ActivityType.SWIM,
    "WeightTraining": ActivityType.STRENGTH,
    "Yoga": ActivityType.YOGA,
}


class StravaProvider(ProviderAdapter):
    """
    Strava API adapter.

    Usage:
        strava = StravaProvider()
        url = strava.build_auth_url(state)
        tokens = await strava.exchange_code(code)
        activity = await strava.fetch_activity(tokens.access_token, "123")
    """

    name = ProviderName.STRAVA

    AUTHORIZE_URL = "https://www.strava.com/oauth/authorize"
    TOKEN_URL = "https://www.strava.com/oauth/token"
    DEAUTHORIZE_URL = "https://www.strava.com/oauth/deauthorize"
    SCOPES = ["read", "activity:read_all"]

    @property
    def oauth_config(self) -> OAuthConfig:
        return OAuthConfig(
            authorize_url=self.AUTHORIZE_URL,
            token_url=self.TOKEN_URL,
            revoke_url=self.DEAUTHORIZE_URL,
            client_id=settings.strava_client_id or "",
            client_secret=settings.strava_client_secret or "",
            scopes=self.SCOPES,
            callback_path="/api/v1/integrations/strava/callback",
        )

    # -------------------------------------------------------------------------
    # OAuth
    # -------------------------------------------------------------------------

    def build_auth_url(self, state: str) -> str:
        config = self.oauth_config
        params = {
            "client_id": config.client_id,
            "redirect_uri": self.callback_url,
            "response_type": "code",
            "scope": ",".join(config.scopes),
            "approval_prompt": "auto",
            "state": state,
        }
        return f"{config.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> OAuthTokens:
        """
        Exchange authorization code for tokens.

        Strava answers with:
            {"access_token", "refresh_token", "expires_at", "athlete": {"id", ...}}
        """
        config = self.oauth_config
        response = await self._request(
            "POST",
            config.token_url,
            json={
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "code": code,
                "grant_type": "authorization_code",
            },
        )
        self._raise_for_token_response(response, "Code exchange")

        data = response.json()
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=from_epoch(data.get("expires_at")),
            provider_user_id=str((data.get("athlete") or {}).get("id", "")),
            scopes=list(config.scopes),
        )

    async def refresh_token(self, refresh_token: str) -> OAuthTokens:
        config = self.oauth_config
        response = await self._request(
            "POST",
            config.token_url,
            json={
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
            expires_at=from_epoch(data.get("expires_at")),
            provider_user_id="",  # not returned on refresh
            scopes=list(config.scopes),
        )

    async def revoke_access(self, access_token: str) -> None:
        try:
            response = await self._request(
                "POST",
                self.DEAUTHORIZE_URL,
                headers={"Authorization": f"Bearer {access_token}"},
                max_retries=0,
            )
            if not response.is_success:
                logger.warning(f"Strava deauthorize returned HTTP {response.status_code}")
        except Exception as e:
            logger.warning(f"Strava deauthorize failed: {e}")

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    def verify_webhook(self, headers: Mapping[str, str], body: str) -> bool:
        try:
            event = json.loads(body)
        except (TypeError, ValueError):
            return False
        if not isinstance(event, dict):
            return False
        return all(event.get(key) is not None for key in WEBHOOK_REQUIRED_FIELDS)

    def extract_owner_id(self, event: Mapping[str, Any]) -> str:
        return str(event.get("owner_id") or "")

    def extract_activity_id(self, event: Mapping[str, Any]) -> str:
        return str(event.get("object_id") or "")

    # -------------------------------------------------------------------------
    # Data
    # -------------------------------------------------------------------------

    async def fetch_activity(self, access_token: str, activity_id: str) -> NormalizedActivity:
        data = await self._get_json(f"{STRAVA_API}/activities/{activity_id}", access_token)
        return self.normalize_activity(data)

    async def fetch_activities(
        self,
        access_token: str,
        since: datetime,
        limit: int = 50,
    ) -> list[NormalizedActivity]:
        params = {
            "after": to_epoch(since),
            "per_page": min(limit, 200),
        }
        data = await self._get_json(f"{STRAVA_API}/athlete/activities", access_token, params=params)
        if not isinstance(data, list):
            raise ProviderApiError(self.name.value, 502, "Unexpected activities payload")
        return self._normalize_all(data, self.normalize_activity)

    # -------------------------------------------------------------------------
    # Mapping
    # -------------------------------------------------------------------------

    @staticmethod
    def map_activity_type(strava_type: str | None) -> ActivityType:
        return ACTIVITY_TYPE_MAP.get(strava_type or "", ActivityType.OTHER)

    def normalize_activity(self, a: Mapping[str, Any]) -> NormalizedActivity:
        duration = as_int(a.get("elapsed_time"))
        distance = as_float(a.get("distance"))
        return NormalizedActivity(
            activity_type=self.map_activity_type(a.get("sport_type") or a.get("type")),
            source=self.name,
            started_at=require_start(parse_timestamp(a.get("start_date")), self.name),
            duration_s=duration,
            distance_m=distance,
            avg_hr=as_float(a.get("average_heartrate")),
            max_hr=as_float(a.get("max_heartrate")),
            avg_pace_s_km=pace_s_per_km(duration, distance),
            avg_power_w=as_float(a.get("average_watts")),
            calories=as_float(a.get("calories")),
            tss=as_float(a.get("suffer_score")),
            raw_data=dict(a),
            notes=a.get("description") or None,
        )
