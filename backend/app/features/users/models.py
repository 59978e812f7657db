"""
Athlete profile model.

Models:
- Profile: Athlete belonging to a club

The profile row itself is owned by the platform's account service. The
integration pipeline only reads it to resolve an athlete's club when no
authenticated principal is available (OAuth callback, webhook jobs).
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime
import uuid

from app.models.base import Base


class Profile(Base):
    """Athlete profile with club membership."""

    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    club_id = Column(String(36), nullable=False, index=True)
    display_name = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Profile {self.id} club={self.club_id}>"
