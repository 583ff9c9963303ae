"""API routes."""

from .admin import router as admin_router
from .auth_routes import router as auth_router
from .music import router as music_router
from .personas import router as personas_router
from .songs import router as songs_router

__all__ = [
    "admin_router",
    "auth_router",
    "music_router",
    "personas_router",
    "songs_router",
]
