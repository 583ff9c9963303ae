"""Persona schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class PersonaCreate(BaseModel):
    """Lengths are validated by the service so errors name the field."""
    name: str
    description: str
    source_clip_id: str
    source_song_title: Optional[str] = None


class PersonaResponse(BaseModel):
    id: str
    name: str
    description: str
    persona_id: str
    source_clip_id: str
    source_song_title: Optional[str] = None
    status: str
    voice_type: str
    characteristics: List[str] = []
    usage_count: int = 0
    is_favorite: bool = False
    last_used_at: Optional[datetime] = None
    created_at: datetime
    display_name: str

    model_config = ConfigDict(from_attributes=True)


class PersonaListResponse(BaseModel):
    personas: List[PersonaResponse]
    total: int
