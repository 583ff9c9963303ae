"""Persona model: a reusable provider voice derived from one of the user's songs."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Boolean, DateTime, JSON, Text, Index
from ..database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Persona(Base):
    """
    Voice persona registered with the provider.

    ``persona_id`` is the provider's identifier (unique); ``id`` is ours.
    Allowed status values: creating, ready, failed.
    """

    __tablename__ = "personas"

    id = Column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    user_id = Column(String(50), nullable=False)

    name = Column(String(50), nullable=False)
    description = Column(String(200), nullable=False)

    persona_id = Column(String(100), nullable=False, unique=True)
    source_clip_id = Column(String(100), nullable=False)
    source_song_title = Column(String(100), nullable=True)

    status = Column(String(20), nullable=False, default="creating")
    error_message = Column(Text, nullable=True)

    usage_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    # Allowed values: male, female, mixed, unknown
    voice_type = Column(String(20), nullable=False, default="unknown")
    characteristics = Column(JSON, nullable=False, default=list)

    is_favorite = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_personas_user_created", "user_id", "created_at"),
    )

    @property
    def display_name(self) -> str:
        if self.usage_count:
            return f"{self.name} ({self.usage_count} songs)"
        return f"{self.name} (New)"
