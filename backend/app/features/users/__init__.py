"""
Athlete profile module.

Usage:
    from app.features.users import Profile, ProfileRepository
"""

from .models import Profile
from .repository import ProfileRepository

__all__ = [
    "Profile",
    "ProfileRepository",
]
