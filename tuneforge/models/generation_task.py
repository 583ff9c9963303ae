"""Generation task model: one row per task submitted to the music provider."""

from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, Integer, Boolean, DateTime, JSON, Index
from ..database import Base


class TaskStatus:
    """Allowed values for GenerationTask.status.

    pending -> in_progress -> completed | failed | abandoned.
    Terminal states are final: a terminal task is never polled again.
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"

    ACTIVE = (PENDING, IN_PROGRESS)
    TERMINAL = (COMPLETED, FAILED, ABANDONED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationTask(Base):
    """
    Tracks one provider generation task from submission to a terminal outcome.

    Only the reconciliation engine mutates status and polling fields. Rows are
    never deleted; terminal rows are kept as an audit trail.
    """

    __tablename__ = "generation_tasks"

    # Provider-assigned task identifier
    task_id = Column(String(100), primary_key=True)

    # Owning user (no FK: dev-mode anonymous users have no row)
    user_id = Column(String(50), nullable=False, index=True)

    status = Column(String(20), nullable=False, default=TaskStatus.PENDING)

    # Snapshot of the original request
    prompt = Column(Text, nullable=False)
    title = Column(String(100), nullable=True)
    tags = Column(String(200), nullable=True)
    music_model = Column(String(50), nullable=True)
    is_instrumental = Column(Boolean, nullable=False, default=False)
    persona_id = Column(String(100), nullable=True)

    # Polling state
    poll_attempts = Column(Integer, nullable=False, default=0)
    max_poll_attempts = Column(Integer, nullable=False, default=30)
    last_polled_at = Column(DateTime(timezone=True), nullable=True)
    next_poll_at = Column(DateTime(timezone=True), nullable=True)
    # Raw provider payload (or transport error) from the last poll, for diagnosis
    last_api_response = Column(JSON, nullable=True)

    # Outcome
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    # Ordered list of Song.id values produced by this task
    generated_song_ids = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_generation_tasks_user_status", "user_id", "status"),
        Index("ix_generation_tasks_status_next_poll", "status", "next_poll_at"),
        Index("ix_generation_tasks_created_at", "created_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TaskStatus.TERMINAL
