"""Pydantic schemas for request/response validation."""

from .generation import (
    GenerationRequest,
    GenerationTaskResponse,
    PendingTaskStub,
    SweepResponse,
    RecoveryResponse,
    CheckPendingResponse,
    TaskStatusResponse,
)
from .persona import PersonaCreate, PersonaResponse
from .provider import ProviderClip, ProviderTaskStatus
from .song import SongResponse, SongUpdate
from .user import UserResponse

__all__ = [
    "GenerationRequest",
    "GenerationTaskResponse",
    "PendingTaskStub",
    "SweepResponse",
    "RecoveryResponse",
    "CheckPendingResponse",
    "TaskStatusResponse",
    "PersonaCreate",
    "PersonaResponse",
    "ProviderClip",
    "ProviderTaskStatus",
    "SongResponse",
    "SongUpdate",
    "UserResponse",
]
