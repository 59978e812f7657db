"""
Garmin adapter.

Garmin Health API uses OAuth 1.0a and requires business approval
(https://developer.garmin.com/gc-developer-program/). Until access is
granted the OAuth and webhook-signature paths are stubs:

- exchange_code always raises ProviderUnavailableError
- refresh_token raises ProviderUnavailableError (1.0a tokens do not expire)
- verify_webhook accepts every delivery and logs a warning

Data fetching is implemented against the Wellness API so it works as soon
as tokens can be obtained.
"""

import logging
from datetime import date, datetime, time
from typing import Any, Mapping
from urllib.parse import urlencode

from app.config import settings
from app.shared.clock import utcnow
from app.shared.constants import ActivityType, MetricType, ProviderName
from ..errors import ProviderApiError, ProviderUnavailableError
from ..schemas import (
    NormalizedActivity,
    NormalizedHealthMetric,
    OAuthConfig,
    OAuthTokens,
    pace_s_per_km,
)
from .base import ProviderAdapter, as_float, as_int, from_epoch, require_start, to_epoch

logger = logging.getLogger(__name__)


GARMIN_API = "https://apis.garmin.com/wellness-api/rest"
DEVELOPER_PROGRAM_URL = "https://developer.garmin.com/gc-developer-program/"

ACTIVITY_TYPE_MAP: dict[str, ActivityType] = {
    "running": ActivityType.RUN,
    "trail_running": ActivityType.RUN,
    "treadmill_running": ActivityType.RUN,
    "cycling": ActivityType.BIKE,
    "mountain_biking": ActivityType.BIKE,
    "indoor_cycling": ActivityType.BIKE,
    "virtual_ride": ActivityType.BIKE,
    "lap_swimming": ActivityType.SWIM,
    "open_water_swimming": ActivityType.SWIM,
    "strength_training": ActivityType.STRENGTH,
    "yoga": ActivityType.YOGA,
    "multi_sport": ActivityType.OTHER,
}

# dailies field -> (metric, unit)
DAILY_SUMMARY_METRICS: list[tuple[str, MetricType, str]] = [
    ("restingHeartRateInBeatsPerMinute", MetricType.RESTING_HR, "bpm"),
    ("steps", MetricType.STEPS, "count"),
    ("activeKilocalories", MetricType.ACTIVE_CALORIES, "kcal"),
]


class GarminProvider(ProviderAdapter):
    """Garmin Wellness API adapter (OAuth 1.0a pending approval)."""

    name = ProviderName.GARMIN
    supports_health_data = True

    AUTHORIZE_URL = "https://connect.garmin.com/oauthConfirm"
    TOKEN_URL = "https://connectapi.garmin.com/oauth-service/oauth/access_token"

    @property
    def oauth_config(self) -> OAuthConfig:
        return OAuthConfig(
            authorize_url=self.AUTHORIZE_URL,
            token_url=self.TOKEN_URL,
            client_id=settings.garmin_consumer_key or "",
            client_secret=settings.garmin_consumer_secret or "",
            scopes=[],
            callback_path="/api/v1/integrations/garmin/callback",
            oauth_version="1.0a",
        )

    # -------------------------------------------------------------------------
    # OAuth (stub)
    # -------------------------------------------------------------------------

    def build_auth_url(self, state: str) -> str:
        logger.warning("Garmin OAuth 1.0a not implemented yet, requires business API approval")
        params = {"oauth_callback": self.callback_url}
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> OAuthTokens:
        raise ProviderUnavailableError(
            self.name.value,
            "OAuth 1.0a token exchange not yet implemented (awaiting API approval)",
        )

    async def refresh_token(self, refresh_token: str) -> OAuthTokens:
        raise ProviderUnavailableError(self.name.value, "OAuth 1.0a tokens do not expire")

    async def revoke_access(self, access_token: str) -> None:
        # TODO: call the Garmin user-registration DELETE endpoint once API access is approved
        logger.warning("Garmin access revocation not implemented yet")

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    def verify_webhook(self, headers: Mapping[str, str], body: str) -> bool:
        logger.warning("Garmin webhook signature verification not implemented, accepting delivery")
        return True

    def extract_owner_id(self, event: Mapping[str, Any]) -> str:
        return str(event.get("userId") or event.get("userAccessToken") or "")

    def extract_activity_id(self, event: Mapping[str, Any]) -> str:
        return str(event.get("activityId") or event.get("summaryId") or "")

    # -------------------------------------------------------------------------
    # Data
    # -------------------------------------------------------------------------

    async def fetch_activity(self, access_token: str, activity_id: str) -> NormalizedActivity:
        data = await self._get_json(f"{GARMIN_API}/activities/{activity_id}", access_token)
        return self.normalize_activity(data)

    async def fetch_activities(
        self,
        access_token: str,
        since: datetime,
        limit: int = 50,
    ) -> list[NormalizedActivity]:
        params = {
            "uploadStartTimeInSeconds": to_epoch(since),
            "uploadEndTimeInSeconds": to_epoch(utcnow()),
        }
        data = await self._get_json(f"{GARMIN_API}/activities", access_token, params=params)
        if not isinstance(data, list):
            raise ProviderApiError(self.name.value, 502, "Unexpected activities payload")
        return self._normalize_all(data[:limit], self.normalize_activity)

    async def fetch_health_data(self, access_token: str, day: date) -> list[NormalizedHealthMetric]:
        """
        Daily summary metrics for one calendar day.

        Failures are logged and whatever was collected so far is returned.
        """
        recorded_at = datetime.combine(day, time.min)
        metrics: list[NormalizedHealthMetric] = []

        try:
            summaries = await self._get_json(
                f"{GARMIN_API}/dailies",
                access_token,
                params={"calendarDate": day.isoformat()},
            )
            for summary in summaries or []:
                for field_name, metric_type, unit in DAILY_SUMMARY_METRICS:
                    value = as_float(summary.get(field_name))
                    if not value:
                        continue
                    metrics.append(NormalizedHealthMetric(
                        metric_type=metric_type,
                        value=value,
                        unit=unit,
                        recorded_at=recorded_at,
                        source=self.name,
                        raw_data=dict(summary),
                    ))
        except Exception as e:
            logger.error(f"Garmin health data fetch failed for {day}: {e}")

        return metrics

    # -------------------------------------------------------------------------
    # Mapping
    # -------------------------------------------------------------------------

    @staticmethod
    def map_activity_type(garmin_type: str | None) -> ActivityType:
        return ACTIVITY_TYPE_MAP.get((garmin_type or "").lower(), ActivityType.OTHER)

    def normalize_activity(self, a: Mapping[str, Any]) -> NormalizedActivity:
        duration = as_int(a.get("durationInSeconds") or a.get("elapsedDurationInSeconds"))
        distance = as_float(a.get("distanceInMeters"))
        return NormalizedActivity(
            activity_type=self.map_activity_type(a.get("activityType") or a.get("sportType")),
            source=self.name,
            started_at=require_start(from_epoch(a.get("startTimeInSeconds")), self.name),
            duration_s=duration,
            distance_m=distance,
            avg_hr=as_float(a.get("averageHeartRateInBeatsPerMinute")),
            max_hr=as_float(a.get("maxHeartRateInBeatsPerMinute")),
            avg_pace_s_km=pace_s_per_km(duration, distance),
            avg_power_w=as_float(a.get("averagePowerInWatts")),
            calories=as_float(a.get("activeKilocalories")),
            tss=None,  # Garmin reports Training Effect, not TSS
            raw_data=dict(a),
            notes=None,
        )
