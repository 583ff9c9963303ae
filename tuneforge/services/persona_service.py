"""Voice personas: creation through the provider, listing, favorites, deletion."""

import logging
import re
from typing import List, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.auth import AuthContext
from ..exceptions import ConflictError, PersonaNotFoundError, SongNotFoundError, ValidationError
from ..models.persona import Persona
from ..models.song import Song
from ..schemas.persona import PersonaCreate

logger = logging.getLogger(__name__)

NAME_MIN, NAME_MAX = 2, 50
DESCRIPTION_MIN, DESCRIPTION_MAX = 10, 200

# Characteristic -> keywords that reveal it in a free-text description
CHARACTERISTIC_KEYWORDS = {
    "deep": ("deep", "bass", "low"),
    "high": ("high", "tenor", "soprano"),
    "smooth": ("smooth", "silky", "velvet"),
    "rough": ("rough", "raspy", "gritty"),
    "rhythmic": ("rhythmic", "percussive", "beat"),
    "melodic": ("melodic", "singing", "tune"),
    "powerful": ("powerful", "strong", "bold"),
    "soft": ("soft", "gentle", "whisper"),
    "energetic": ("energetic", "upbeat", "lively"),
    "calm": ("calm", "peaceful", "serene"),
}

_MALE = re.compile(r"\bmale\b")
_FEMALE = re.compile(r"\bfemale\b")


def extract_characteristics(description: str) -> Tuple[str, List[str]]:
    """Derive ``(voice_type, characteristics)`` from a persona description."""
    desc = description.lower()
    male, female = bool(_MALE.search(desc)), bool(_FEMALE.search(desc))

    if "mixed" in desc or (male and female):
        voice_type = "mixed"
    elif male:
        voice_type = "male"
    elif female:
        voice_type = "female"
    else:
        voice_type = "unknown"

    characteristics = [
        name for name, keywords in CHARACTERISTIC_KEYWORDS.items()
        if any(k in desc for k in keywords)
    ]
    return voice_type, characteristics


class PersonaService:
    def __init__(self, db: Session, provider=None):
        self.db = db
        self.provider = provider

    def create_persona(self, auth: AuthContext, data: PersonaCreate) -> Persona:
        """Register a persona with the provider from one of the caller's songs.

        Raises:
            ValidationError: name or description length out of range.
            SongNotFoundError: the source clip is not one of the caller's songs.
            ConflictError: the caller already has a persona with that name.
            ProviderError: the provider refused the persona.
        """
        name = data.name.strip()
        description = data.description.strip()
        if not NAME_MIN <= len(name) <= NAME_MAX:
            raise ValidationError(
                f"Persona name must be {NAME_MIN}-{NAME_MAX} characters", field="name"
            )
        if not DESCRIPTION_MIN <= len(description) <= DESCRIPTION_MAX:
            raise ValidationError(
                f"Description must be {DESCRIPTION_MIN}-{DESCRIPTION_MAX} characters", field="description"
            )

        source = (
            self.db.query(Song)
            .filter(Song.user_id == auth.user_id, Song.clip_id == data.source_clip_id)
            .first()
        )
        if source is None:
            raise SongNotFoundError(data.source_clip_id)

        duplicate = (
            self.db.query(Persona)
            .filter(Persona.user_id == auth.user_id, func.lower(Persona.name) == name.lower())
            .first()
        )
        if duplicate is not None:
            raise ConflictError("You already have a persona with this name", details={"name": name})

        provider_persona_id = self.provider.create_persona(name, description, data.source_clip_id)

        voice_type, characteristics = extract_characteristics(description)
        persona = Persona(
            user_id=auth.user_id,
            name=name,
            description=description,
            persona_id=provider_persona_id,
            source_clip_id=data.source_clip_id,
            source_song_title=data.source_song_title or source.title,
            status="ready",
            voice_type=voice_type,
            characteristics=characteristics,
        )
        self.db.add(persona)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(
                "Persona already registered", details={"persona_id": provider_persona_id}
            )
        self.db.refresh(persona)

        logger.info(f"Persona {persona.id} created for user {auth.user_id}", extra={"persona_id": provider_persona_id})
        return persona

    def list_personas(self, user_id: str) -> List[Persona]:
        """Favorites first, then most recently used, then newest."""
        return (
            self.db.query(Persona)
            .filter(Persona.user_id == user_id)
            .order_by(
                Persona.is_favorite.desc(),
                Persona.last_used_at.desc().nulls_last(),
                Persona.created_at.desc(),
            )
            .all()
        )

    def _owned(self, auth: AuthContext, persona_id: str) -> Persona:
        persona = self.db.query(Persona).filter(Persona.id == persona_id).first()
        if persona is None or persona.user_id != auth.user_id:
            raise PersonaNotFoundError(persona_id)
        return persona

    def toggle_favorite(self, auth: AuthContext, persona_id: str) -> Persona:
        persona = self._owned(auth, persona_id)
        persona.is_favorite = not persona.is_favorite
        self.db.commit()
        self.db.refresh(persona)
        return persona

    def delete_persona(self, auth: AuthContext, persona_id: str) -> None:
        persona = self._owned(auth, persona_id)
        self.db.delete(persona)
        self.db.commit()
        logger.info(f"Persona {persona_id} deleted by user {auth.user_id}")
