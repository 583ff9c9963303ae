"""Data access repositories."""

from .base import BaseRepository
from .task_repository import TaskRepository
from .song_repository import SongRepository

__all__ = [
    "BaseRepository",
    "TaskRepository",
    "SongRepository",
]
