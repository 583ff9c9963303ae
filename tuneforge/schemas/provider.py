"""Shapes of the music provider's task-status payload."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ClipState:
    """Clip lifecycle states reported by the provider."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ProviderClip(BaseModel):
    """One generated audio candidate inside a provider task."""

    model_config = ConfigDict(extra="ignore")

    clip_id: str
    state: str = ClipState.PENDING
    title: Optional[str] = None
    duration: float = 0.0
    audio_url: Optional[str] = None
    video_url: Optional[str] = None
    image_url: Optional[str] = None
    lyrics: Optional[str] = None
    tags: Optional[str] = None
    mv: Optional[str] = None
    created_at: Optional[str] = None

    @field_validator("duration", mode="before")
    @classmethod
    def _coerce_duration(cls, v: Any) -> float:
        # The provider sends numbers, numeric strings, or null.
        try:
            return float(v)
        except (TypeError, ValueError):
            return 0.0

    @field_validator("state", mode="before")
    @classmethod
    def _normalize_state(cls, v: Any) -> str:
        return str(v or ClipState.PENDING).strip().lower()

    @property
    def succeeded(self) -> bool:
        return self.state == ClipState.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.state == ClipState.FAILED


class ClipPartition(BaseModel):
    succeeded: List[ProviderClip] = Field(default_factory=list)
    failed: List[ProviderClip] = Field(default_factory=list)
    in_progress: List[ProviderClip] = Field(default_factory=list)


class ProviderTaskStatus(BaseModel):
    """Parsed ``GET /suno/task/{task_id}`` response. ``raw`` keeps the original body."""

    code: Optional[int] = None
    message: Optional[str] = None
    data: List[ProviderClip] = Field(default_factory=list)
    raw: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ProviderTaskStatus":
        clips = payload.get("data") or []
        if not isinstance(clips, list):
            clips = []
        return cls(
            code=payload.get("code"),
            message=payload.get("message"),
            data=[ProviderClip.model_validate(c) for c in clips if isinstance(c, dict) and c.get("clip_id")],
            raw=payload,
        )

    def partition(self) -> ClipPartition:
        """Split clips by lifecycle state. Unknown states count as in progress."""
        parts = ClipPartition()
        for clip in self.data:
            if clip.succeeded:
                parts.succeeded.append(clip)
            elif clip.failed:
                parts.failed.append(clip)
            else:
                parts.in_progress.append(clip)
        return parts
