"""
Integration error hierarchy.

Every error carries the provider it came from so logs and API responses
can say which platform failed. The message always starts with
"[PROVIDER]".
"""

from typing import Optional


class IntegrationError(Exception):
    """Base integration error."""

    def __init__(self, provider: str, message: str, cause: Optional[BaseException] = None):
        self.provider = str(provider)
        self.cause = cause
        super().__init__(f"[{self.provider}] {message}")

    @property
    def message(self) -> str:
        return str(self)


class TokenExpiredError(IntegrationError):
    """Access token expired and no refresh was possible. Athlete must reconnect."""

    def __init__(self, provider: str, cause: Optional[BaseException] = None):
        super().__init__(provider, "Access token expired and could not be refreshed", cause)


class RateLimitedError(IntegrationError):
    """Provider rate limit hit."""

    def __init__(self, provider: str, retry_after_ms: float, cause: Optional[BaseException] = None):
        self.retry_after_ms = retry_after_ms
        super().__init__(provider, f"Rate limited, retry after {retry_after_ms:.0f}ms", cause)


class WebhookVerificationError(IntegrationError):
    """Webhook signature/authenticity check failed."""

    def __init__(self, provider: str):
        super().__init__(provider, "Webhook signature verification failed")


class ProviderApiError(IntegrationError):
    """Provider API returned a non-2xx response."""

    def __init__(self, provider: str, status_code: int, message: str, cause: Optional[BaseException] = None):
        self.status_code = status_code
        super().__init__(provider, f"API error {status_code}: {message}", cause)


class OAuthStateError(IntegrationError):
    """OAuth state missing, tampered with or expired."""

    def __init__(self, provider: str):
        super().__init__(provider, "Invalid or expired OAuth state (possible CSRF attack)")


class ProviderUnavailableError(IntegrationError):
    """Capability not available for this provider (known, permanent limitation)."""

    def __init__(self, provider: str, reason: str):
        self.reason = reason
        super().__init__(provider, f"Provider unavailable: {reason}")


class ProviderNotConnectedError(IntegrationError):
    """Athlete has no connected account for the provider."""

    def __init__(self, provider: str):
        super().__init__(provider, "Provider not connected")


class SyncCooldownError(IntegrationError):
    """Manual sync requested again inside the cooldown window."""

    def __init__(self, provider: str, wait_seconds: int):
        self.wait_seconds = wait_seconds
        super().__init__(provider, f"Please wait {wait_seconds}s before syncing again")


class ConfigurationError(Exception):
    """Required secret or setting is missing."""
    pass
