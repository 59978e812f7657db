"""
Provider adapters.

Each adapter implements ProviderAdapter for one fitness platform.
"""

from .base import ProviderAdapter
from .strava import StravaProvider
from .garmin import GarminProvider
from .polar import PolarProvider, parse_iso_duration
from .wahoo import WahooProvider

__all__ = [
    "ProviderAdapter",
    "StravaProvider",
    "GarminProvider",
    "PolarProvider",
    "WahooProvider",
    "parse_iso_duration",
]
