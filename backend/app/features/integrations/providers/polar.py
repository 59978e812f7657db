"""
Polar AccessLink adapter.

- OAuth 2.0, code exchange authenticated with HTTP Basic client credentials
- Access tokens do not expire and there is no refresh token
- Webhooks are signed: HMAC-SHA256 of the raw body, hex encoded, sent in
  the Polar-Webhook-Signature header
- Exercise durations are ISO-8601 durations (PT1H30M45S)
"""

import hashlib
import hmac
import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Any, Mapping, Optional
from urllib.parse import urlencode

import httpx

from app.config import settings
from app.shared.clock import utcnow
from app.shared.constants import ActivityType, MetricType, ProviderName
from ..errors import ProviderUnavailableError
from ..schemas import (
    NormalizedActivity,
    NormalizedHealthMetric,
    OAuthConfig,
    OAuthTokens,
    pace_s_per_km,
)
from .base import ProviderAdapter, as_float, parse_timestamp, require_start

logger = logging.getLogger(__name__)


POLAR_API = "https://www.polaraccesslink.com/v3"
SIGNATURE_HEADER = "polar-webhook-signature"

# Polar tokens never expire; store a far-future expiry so refresh is never attempted
TOKEN_LIFETIME = timedelta(days=365)

_ISO_DURATION_RE = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?")

ACTIVITY_TYPE_MAP: dict[str, ActivityType] = {
    "RUNNING": ActivityType.RUN,
    "JOGGING": ActivityType.RUN,
    "ROAD_RUNNING": ActivityType.RUN,
    "TRAIL_RUNNING": ActivityType.RUN,
    "TREADMILL_RUNNING": ActivityType.RUN,
    "CYCLING": ActivityType.BIKE,
    "ROAD_BIKING": ActivityType.BIKE,
    "MOUNTAIN_BIKING": ActivityType.BIKE,
    "INDOOR_CYCLING": ActivityType.BIKE,
    "SWIMMING": ActivityType.SWIM,
    "POOL_SWIMMING": ActivityType.SWIM,
    "OPEN_WATER_SWIMMING": ActivityType.SWIM,
    "STRENGTH_TRAINING": ActivityType.STRENGTH,
    "YOGA": ActivityType.YOGA,
    "TRIATHLON": ActivityType.OTHER,
}


def parse_iso_duration(value: Optional[str]) -> int:
    """
    Parse an ISO-8601 time duration to whole seconds.

    Examples:
        "PT1H30M45S" -> 5445
        "PT45.6S" -> 46
        "" or garbage -> 0
    """
    match = _ISO_DURATION_RE.search(value or "")
    if not match:
        return 0
    hours = int(match.group(1) or 0)
    minutes = int(match.group(2) or 0)
    seconds = float(match.group(3) or 0)
    return hours * 3600 + minutes * 60 + round(seconds)


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup for plain dicts."""
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


class PolarProvider(ProviderAdapter):
    """Polar AccessLink v3 adapter."""

    name = ProviderName.POLAR
    supports_health_data = True

    AUTHORIZE_URL = "https://flow.polar.com/oauth2/authorization"
    TOKEN_URL = "https://polarremote.com/v2/oauth2/token"
    SCOPES = ["accesslink.read_all"]

    @property
    def oauth_config(self) -> OAuthConfig:
        return OAuthConfig(
            authorize_url=self.AUTHORIZE_URL,
            token_url=self.TOKEN_URL,
            client_id=settings.polar_client_id or "",
            client_secret=settings.polar_client_secret or "",
            scopes=self.SCOPES,
            callback_path="/api/v1/integrations/polar/callback",
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

    async def exchange_code(self, code: str) -> OAuthTokens:
        """
        Exchange authorization code for a (non-expiring) access token.

        Polar answers with:
            {"access_token", "token_type", "x_user_id"}
        """
        config = self.oauth_config
        response = await self._request(
            "POST",
            config.token_url,
            auth=httpx.BasicAuth(config.client_id, config.client_secret),
            headers={"Accept": "application/json"},
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.callback_url,
            },
        )
        self._raise_for_token_response(response, "Code exchange")

        data = response.json()
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=None,
            expires_at=utcnow() + TOKEN_LIFETIME,
            provider_user_id=str(data.get("x_user_id", "")),
            scopes=list(config.scopes),
        )

    async def refresh_token(self, refresh_token: str) -> OAuthTokens:
        raise ProviderUnavailableError(self.name.value, "Tokens do not expire")

    async def revoke_access(self, access_token: str) -> None:
        """Delete the AccessLink user registration."""
        try:
            response = await self._request(
                "DELETE",
                f"{POLAR_API}/users/current",
                headers={"Authorization": f"Bearer {access_token}"},
                max_retries=0,
            )
            if not response.is_success:
                logger.warning(f"Polar deregistration returned HTTP {response.status_code}")
        except Exception as e:
            logger.warning(f"Polar deregistration failed: {e}")

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    def verify_webhook(self, headers: Mapping[str, str], body: str) -> bool:
        secret = settings.polar_webhook_secret
        if not secret:
            logger.warning("POLAR_WEBHOOK_SECRET not configured, skipping signature verification")
            return True

        signature = _header(headers, SIGNATURE_HEADER)
        if not signature:
            logger.warning("Missing Polar-Webhook-Signature header")
            return False

        expected = hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()
        return hmac.compare_digest(signature.strip().encode("utf-8"), expected.encode("utf-8"))

    def extract_owner_id(self, event: Mapping[str, Any]) -> str:
        return str(event.get("user_id") or "")

    def extract_activity_id(self, event: Mapping[str, Any]) -> str:
        return str(event.get("entity_id") or event.get("exercise_id") or "")

    # -------------------------------------------------------------------------
    # Data
    # -------------------------------------------------------------------------

    async def fetch_activity(self, access_token: str, activity_id: str) -> NormalizedActivity:
        data = await self._get_json(f"{POLAR_API}/exercises/{activity_id}", access_token)
        return self.normalize_activity(data)

    async def fetch_activities(
        self,
        access_token: str,
        since: datetime,
        limit: int = 50,
    ) -> list[NormalizedActivity]:
        """
        List recent exercises.

        AccessLink returns the last 30 days regardless of `since`; older
        entries are filtered out here.
        """
        response = await self._request(
            "GET",
            f"{POLAR_API}/exercises",
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
        if not response.is_success:
            logger.warning(f"Polar exercise list returned HTTP {response.status_code}")
            return []

        exercises = self._normalize_all(response.json()[:limit], self.normalize_activity)
        return [e for e in exercises if e.started_at >= since]

    async def fetch_health_data(self, access_token: str, day: date) -> list[NormalizedHealthMetric]:
        """Sleep duration (Nightly Recharge). Errors are logged, partial list returned."""
        metrics: list[NormalizedHealthMetric] = []

        try:
            response = await self._request(
                "GET",
                f"{POLAR_API}/users/sleep",
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            )
            if response.is_success:
                sleep = response.json()
                duration = as_float(sleep.get("sleep_duration"))
                if duration:
                    metrics.append(NormalizedHealthMetric(
                        metric_type=MetricType.SLEEP_HOURS,
                        value=duration / 3600,
                        unit="hours",
                        recorded_at=self._sleep_date(sleep, day),
                        source=self.name,
                        raw_data=dict(sleep),
                    ))
        except Exception as e:
            logger.error(f"Polar health data fetch failed for {day}: {e}")

        return metrics

    @staticmethod
    def _sleep_date(sleep: Mapping[str, Any], day: date) -> datetime:
        # Canonical midnight timestamp so repeated fetches dedup
        try:
            night = date.fromisoformat(str(sleep.get("date")))
        except ValueError:
            night = day
        return datetime.combine(night, time.min)

    # -------------------------------------------------------------------------
    # Mapping
    # -------------------------------------------------------------------------

    @staticmethod
    def map_activity_type(polar_type: str | None) -> ActivityType:
        return ACTIVITY_TYPE_MAP.get((polar_type or "").upper(), ActivityType.OTHER)

    def normalize_activity(self, a: Mapping[str, Any]) -> NormalizedActivity:
        duration = parse_iso_duration(a.get("duration")) or None
        distance = as_float(a.get("distance"))
        heart_rate = a.get("heart_rate") or {}
        return NormalizedActivity(
            activity_type=self.map_activity_type(a.get("sport") or a.get("detailed_sport_info")),
            source=self.name,
            started_at=require_start(parse_timestamp(a.get("start_time")), self.name),
            duration_s=duration,
            distance_m=distance,
            avg_hr=as_float(heart_rate.get("average")),
            max_hr=as_float(heart_rate.get("maximum")),
            avg_pace_s_km=pace_s_per_km(duration, distance),
            avg_power_w=None,  # only in detailed samples
            calories=as_float(a.get("calories")),
            tss=as_float(a.get("training_load")),
            raw_data=dict(a),
            notes=None,
        )
