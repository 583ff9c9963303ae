"""Generation request, task and trigger-surface schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

MUSIC_MODELS = ("chirp-v3-5", "chirp-v4", "chirp-v4-5", "chirp-v4-5-plus")
PROMPT_MAX = 3000
TAGS_MAX = 200
TITLE_MAX = 100


class GenerationRequest(BaseModel):
    """Body of ``POST /api/music/create``. Limits are checked by the service."""
    prompt: str = ""
    tags: str = ""
    mv: str = "chirp-v3-5"
    title: Optional[str] = None
    custom_mode: bool = True
    make_instrumental: bool = False
    persona_id: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "examples": [{
                "prompt": "[Verse]\nNeon rain on the boulevard",
                "tags": "synthwave, dreamy",
                "mv": "chirp-v4",
                "title": "Boulevard",
            }]
        }
    }


class GenerationTaskResponse(BaseModel):
    """Full task record, including the reconciliation diagnostics."""
    task_id: str
    user_id: str
    status: str
    prompt: str
    title: Optional[str] = None
    tags: Optional[str] = None
    music_model: Optional[str] = None
    is_instrumental: bool = False
    persona_id: Optional[str] = None
    poll_attempts: int
    max_poll_attempts: int
    last_polled_at: Optional[datetime] = None
    next_poll_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    generated_song_ids: List[str] = []
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AdminTaskResponse(GenerationTaskResponse):
    last_api_response: Optional[Dict[str, Any]] = None


class PendingTaskStub(BaseModel):
    """Lightweight view of an outstanding task for the caller's dashboard."""
    task_id: str
    status: str
    prompt: str
    title: Optional[str] = None
    tags: Optional[str] = None
    model: Optional[str] = Field(None, validation_alias="music_model")
    persona_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class CreateMusicResponse(BaseModel):
    success: bool = True
    task_id: str
    status: str
    message: str = "Generation started"


class SweepResponse(BaseModel):
    success: bool
    polled: int
    completed: int
    failed: int
    error: Optional[str] = None


class CompletedTaskDetail(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(alias="taskId")
    songs_recovered: int = Field(alias="songsRecovered")
    prompt: str


class RecoveredTaskDetail(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(alias="taskId")
    status: str
    prompt: str


class RecoveryDetails(BaseModel):
    completed: List[CompletedTaskDetail] = []
    recovered: List[RecoveredTaskDetail] = []


class RecoveryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    recovered_tasks: int = Field(alias="recoveredTasks")
    completed_tasks: int = Field(alias="completedTasks")
    details: RecoveryDetails


class CheckPendingResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    completed: int
    still_pending: int = Field(alias="stillPending")
    completed_tasks: List[str] = Field(alias="completedTasks")


class TaskStatusResponse(BaseModel):
    """Inline status check: provider view of a task plus what was saved locally."""
    task_id: str
    status: str
    clips: List[Dict[str, Any]] = []
    song_ids: List[str] = []
    new_song_ids: List[str] = []
    provider_response: Dict[str, Any] = {}


class CreditsResponse(BaseModel):
    credits: int
    extra_credits: int
    total: int
