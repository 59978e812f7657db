"""
Provider registry.

Maps provider names to adapter instances. Callers look adapters up by name
and never import concrete provider classes.
"""

import logging
from typing import Optional

from app.shared.constants import ProviderName
from .providers import (
    GarminProvider,
    PolarProvider,
    ProviderAdapter,
    StravaProvider,
    WahooProvider,
)

logger = logging.getLogger(__name__)


_providers: Optional[dict[ProviderName, ProviderAdapter]] = None


def _registry() -> dict[ProviderName, ProviderAdapter]:
    global _providers
    if _providers is None:
        _providers = {}
        for adapter in (StravaProvider(), GarminProvider(), PolarProvider(), WahooProvider()):
            _providers[adapter.name] = adapter
    return _providers


def get_provider(name: str | ProviderName) -> ProviderAdapter:
    """
    Look up the adapter for a provider.

    Args:
        name: Provider name, any case ("strava", "STRAVA", ProviderName.STRAVA)

    Raises:
        KeyError: Unknown provider
    """
    try:
        key = ProviderName(str(getattr(name, "value", name)).upper())
    except ValueError:
        raise KeyError(f"Unknown integration provider: {name}") from None
    return _registry()[key]


def list_providers() -> list[str]:
    """Names of all registered providers."""
    return [name.value for name in _registry()]


def register_provider(adapter: ProviderAdapter) -> None:
    """Register or replace an adapter."""
    _registry()[adapter.name] = adapter
    logger.debug(f"Registered provider adapter {adapter!r}")


def reset_providers() -> None:
    """Drop all adapters; the defaults are recreated on next lookup."""
    global _providers
    _providers = None
