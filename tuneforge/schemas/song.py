"""Song library schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SongResponse(BaseModel):
    id: str
    user_id: str
    clip_id: str
    task_id: Optional[str] = None
    title: str
    prompt: Optional[str] = None
    lyrics: Optional[str] = None
    tags: List[str] = []
    duration: float = 0.0
    formatted_duration: str
    ai_model: Optional[str] = None
    audio_url: Optional[str] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    status: str
    is_public: bool
    play_count: int = 0
    original_created_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SongUpdate(BaseModel):
    """Partial update. Only fields that are set are applied."""
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    is_public: Optional[bool] = None


class SongListResponse(BaseModel):
    songs: List[SongResponse]
    total: int
