"""Business logic services."""

from .generation_service import GenerationService
from .persona_service import PersonaService
from .reconciler import TaskReconciler
from .song_service import SongService

__all__ = ["GenerationService", "PersonaService", "SongService", "TaskReconciler"]
