"""Database models."""

from .generation_task import GenerationTask, TaskStatus
from .song import Song
from .user import User, UserRole
from .persona import Persona

__all__ = [
    "GenerationTask", "TaskStatus",
    "Song",
    "User", "UserRole",
    "Persona",
]
