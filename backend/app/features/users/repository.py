"""
Profile repository.

Data access layer for athlete profiles.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.repository import BaseRepository
from .models import Profile


class ProfileRepository(BaseRepository[Profile]):
    """Repository for Profile lookups."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, Profile)

    async def get_club_id(self, athlete_id: str) -> str | None:
        """
        Resolve the club an athlete belongs to.

        Args:
            athlete_id: Profile ID

        Returns:
            club_id if the profile exists, None otherwise
        """
        result = await self.db.execute(
            select(Profile.club_id).where(Profile.id == athlete_id)
        )
        return result.scalar_one_or_none()
