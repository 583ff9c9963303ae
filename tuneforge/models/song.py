"""Song model: one row per generated clip."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, Integer, Float, Boolean, DateTime, JSON, Index
from ..database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_song_id() -> str:
    return uuid.uuid4().hex


class Song(Base):
    """
    A generated clip persisted into a user's library.

    ``clip_id`` is the provider's clip identifier and carries a UNIQUE
    constraint: at most one Song exists per clip no matter how many trigger
    surfaces try to insert it.
    """

    __tablename__ = "songs"

    id = Column(String(32), primary_key=True, default=_new_song_id)
    user_id = Column(String(50), nullable=False)

    # Provider linkage
    clip_id = Column(String(100), nullable=False, unique=True)
    task_id = Column(String(100), nullable=True, index=True)

    # Payload
    title = Column(String(100), nullable=False)
    prompt = Column(Text, nullable=True)
    lyrics = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    duration = Column(Float, nullable=False, default=0.0)
    ai_model = Column(String(50), nullable=True)
    audio_url = Column(Text, nullable=True)
    video_url = Column(Text, nullable=True)
    thumbnail_url = Column(Text, nullable=True)

    # Allowed values: completed (only value written by the reconciliation path)
    status = Column(String(20), nullable=False, default="completed")
    is_public = Column(Boolean, nullable=False, default=False)
    play_count = Column(Integer, nullable=False, default=0)

    # Timestamp reported by the provider for the clip
    original_created_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_songs_user_created", "user_id", "created_at"),
    )

    @property
    def formatted_duration(self) -> str:
        total = int(self.duration or 0)
        return f"{total // 60}:{total % 60:02d}"
