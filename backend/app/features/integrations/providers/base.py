"""
Provider adapter interface.

Every fitness platform implements the same capability set so the queue,
token manager and OAuth orchestrator never branch on provider identity.
New providers are added by subclassing ProviderAdapter and registering an
instance (see registry.py).
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Any, Mapping, Optional

import httpx

from app.config import settings
from app.shared.clock import to_naive_utc
from app.shared.constants import ProviderName
from app.shared.http import fetch_with_retry, retry_after_ms
from ..errors import ProviderApiError, ProviderUnavailableError, RateLimitedError
from ..schemas import NormalizedActivity, NormalizedHealthMetric, OAuthConfig, OAuthTokens

logger = logging.getLogger(__name__)


class ProviderAdapter(ABC):
    """
    Base class for provider adapters.

    Args:
        http_client: Optional shared httpx.AsyncClient. Tests inject one
            backed by httpx.MockTransport.
    """

    name: ProviderName
    supports_health_data: bool = False

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self._http_client = http_client

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    @property
    @abstractmethod
    def oauth_config(self) -> OAuthConfig:
        """OAuth endpoints and credentials, read from settings."""

    @property
    def callback_url(self) -> str:
        return f"{settings.api_url.rstrip('/')}{self.oauth_config.callback_path}"

    # -------------------------------------------------------------------------
    # OAuth
    # -------------------------------------------------------------------------

    @abstractmethod
    def build_auth_url(self, state: str) -> str:
        ...

    @abstractmethod
    async def exchange_code(self, code: str) -> OAuthTokens:
        ...

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> OAuthTokens:
        ...

    @abstractmethod
    async def revoke_access(self, access_token: str) -> None:
        """Best-effort revoke. Implementations log failures instead of raising."""

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    @abstractmethod
    def verify_webhook(self, headers: Mapping[str, str], body: str) -> bool:
        ...

    @abstractmethod
    def extract_owner_id(self, event: Mapping[str, Any]) -> str:
        ...

    @abstractmethod
    def extract_activity_id(self, event: Mapping[str, Any]) -> str:
        ...

    # -------------------------------------------------------------------------
    # Data
    # -------------------------------------------------------------------------

    @abstractmethod
    async def fetch_activity(self, access_token: str, activity_id: str) -> NormalizedActivity:
        ...

    @abstractmethod
    async def fetch_activities(
        self,
        access_token: str,
        since: datetime,
        limit: int = 50,
    ) -> list[NormalizedActivity]:
        ...

    async def fetch_health_data(self, access_token: str, day: date) -> list[NormalizedHealthMetric]:
        """Daily wellness metrics. Only some providers expose these."""
        raise ProviderUnavailableError(self.name.value, "Health data not supported")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        fetch_with_retry bound to this provider.

        Raises:
            ProviderApiError: Provider unreachable once retries are exhausted
            RateLimitedError: Still rate limited once retries are exhausted
        """
        provider = self.name.value
        try:
            response = await fetch_with_retry(method, url, client=self._http_client, **kwargs)
        except httpx.TransportError as e:
            logger.error(f"{provider} unreachable: {e!r}")
            raise ProviderApiError(provider, 503, f"unreachable: {e!r}", cause=e) from e

        if response.status_code == 429:
            raise RateLimitedError(provider, retry_after_ms(response) or 0)
        return response

    async def _get_json(self, url: str, access_token: str, **kwargs) -> Any:
        """GET with bearer auth; non-2xx raises ProviderApiError."""
        response = await self._request(
            "GET",
            url,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            **kwargs,
        )
        if not response.is_success:
            raise ProviderApiError(self.name.value, response.status_code, response.text[:200])
        return response.json()

    def _raise_for_token_response(self, response: httpx.Response, action: str) -> None:
        if not response.is_success:
            logger.error(f"{self.name.value} {action} failed: HTTP {response.status_code}")
            raise ProviderApiError(
                self.name.value,
                response.status_code,
                f"{action} failed: {response.text[:200]}",
            )

    def _normalize_all(self, items: list, normalize) -> list:
        """Normalize a page of payloads, skipping entries that cannot be normalized."""
        normalized = []
        for item in items:
            try:
                normalized.append(normalize(item))
            except ValueError as e:
                logger.warning(f"Skipping {self.name.value} activity: {e}")
        return normalized

    def __repr__(self):
        return f"<{type(self).__name__} {self.name.value}>"


# =============================================================================
# Field parsing helpers
# =============================================================================

def as_float(value: Any) -> Optional[float]:
    """Numeric payload field to float, keeping None for missing values."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def as_int(value: Any) -> Optional[int]:
    number = as_float(value)
    return round(number) if number is not None else None


def from_epoch(seconds: Any) -> Optional[datetime]:
    """Unix seconds to naive UTC."""
    number = as_float(seconds)
    if number is None:
        return None
    return datetime.fromtimestamp(number, tz=timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings (with or without Z / offset) to naive UTC."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return to_naive_utc(parsed)


def to_epoch(value: datetime) -> int:
    """Datetime (naive values are UTC) to Unix seconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def require_start(value: Optional[datetime], provider: ProviderName) -> datetime:
    """Activities without a start time cannot be deduplicated, so reject them."""
    if value is None:
        raise ValueError(f"{provider.value} activity has no start time")
    return value
