"""Reconciliation engine for generation tasks.

One call to ``TaskReconciler.reconcile`` asks the provider where a task
stands and applies the answer to local storage:

    succeeded clip(s)      -> persist new songs, task completed
    every clip failed      -> task failed ("All songs in task failed")
    anything else          -> in_progress, poll_attempts += 1, next_poll_at pushed out
    older than max age     -> abandoned, without asking the provider
                              (user recovery asks first and keeps any succeeded clips)
    attempts reach the cap -> failed

Every trigger surface (sweep, recovery, check-pending) goes through this
module, so deduplication and classification rules live in one place. Song
inserts rely on the UNIQUE constraint on ``songs.clip_id``; task updates are
compare-and-set on the active statuses, so a terminal task is never reopened
no matter how many callers race on it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .polling_policy import PollingPolicy
from ..exceptions import ProviderError
from ..models.generation_task import GenerationTask, TaskStatus
from ..models.song import Song
from ..models.user import User
from ..repositories.song_repository import SongRepository
from ..repositories.task_repository import TaskRepository
from ..schemas.provider import ProviderClip

logger = logging.getLogger(__name__)

ABANDONED_MESSAGE = "Task abandoned - exceeded maximum time limit"
ALL_FAILED_MESSAGE = "All songs in task failed"
MAX_ATTEMPTS_MESSAGE = "Task failed - exceeded maximum polling attempts"

_TITLE_MAX = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReconciliationOutcome:
    """What one reconcile call observed and did."""

    task_id: str
    status: str
    song_ids: List[str] = field(default_factory=list)
    new_song_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None
    # False when the task was already terminal, or another caller finished it first.
    changed: bool = True

    @property
    def completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    @property
    def failed(self) -> bool:
        return self.status in (TaskStatus.FAILED, TaskStatus.ABANDONED)

    @property
    def pending(self) -> bool:
        return self.status in TaskStatus.ACTIVE


def _parse_provider_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _split_tags(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [t.strip() for t in raw.split(",") if t.strip()]


def song_from_clip(
    clip: ProviderClip,
    owner_id: str,
    task_id: str,
    prompt: Optional[str] = None,
    tags: Optional[str] = None,
    title_fallback: Optional[str] = None,
    model: Optional[str] = None,
) -> Song:
    """Build an unsaved Song from a succeeded provider clip."""
    title = (clip.title or title_fallback or "Untitled").strip() or "Untitled"
    return Song(
        user_id=owner_id,
        clip_id=clip.clip_id,
        task_id=task_id,
        title=title[:_TITLE_MAX],
        prompt=prompt,
        lyrics=clip.lyrics,
        tags=_split_tags(clip.tags or tags),
        duration=clip.duration,
        ai_model=clip.mv or model,
        audio_url=clip.audio_url,
        video_url=clip.video_url,
        thumbnail_url=clip.image_url,
        status="completed",
        original_created_at=_parse_provider_time(clip.created_at),
    )


def persist_succeeded_clips(
    db: Session,
    clips: Iterable[ProviderClip],
    owner_id: str,
    task_id: str,
    prompt: Optional[str] = None,
    tags: Optional[str] = None,
    title_fallback: Optional[str] = None,
    model: Optional[str] = None,
) -> Tuple[List[str], List[str]]:
    """Store every clip that has no Song yet.

    Clips already present are not an error: their existing Song id is
    reported. A clip whose insert fails for any other database reason is
    logged and left out; its siblings are unaffected.

    Returns:
        ``(song_ids, new_song_ids)``: ids for every stored clip in provider
        order, and the subset inserted by this call.
    """
    clips = [c for c in clips if c.succeeded]
    songs = SongRepository(db)
    already_stored = songs.existing_clip_ids(c.clip_id for c in clips)

    song_ids: List[str] = []
    new_song_ids: List[str] = []
    seen = set()

    for clip in clips:
        if clip.clip_id in seen:
            continue
        seen.add(clip.clip_id)

        if clip.clip_id in already_stored:
            existing = songs.get_by_clip_id(clip.clip_id)
            if existing is not None:
                song_ids.append(existing.id)
                continue

        song = song_from_clip(clip, owner_id, task_id, prompt, tags, title_fallback, model)
        try:
            stored, created = songs.insert_if_absent(song)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                f"Failed to save clip {clip.clip_id} for task {task_id}: {e}",
                extra={"task_id": task_id, "clip_id": clip.clip_id},
            )
            continue

        song_ids.append(stored.id)
        if created:
            new_song_ids.append(stored.id)
            logger.info(
                f"Saved song {stored.id} for clip {clip.clip_id}",
                extra={"task_id": task_id, "clip_id": clip.clip_id},
            )

    return song_ids, new_song_ids


def record_usage(db: Session, user_id: str, new_songs: int) -> None:
    """Bump the owner's usage counters for *new_songs* freshly stored songs.

    One relative UPDATE; the counters are informational, so a failure is
    logged and swallowed rather than blocking task completion.
    """
    if new_songs <= 0:
        return
    try:
        db.query(User).filter(User.user_id == user_id).update(
            {
                User.songs_created: User.songs_created + new_songs,
                User.songs_this_month: User.songs_this_month + new_songs,
                User.credits_used: User.credits_used + 1,
                User.credits_remaining: case(
                    (User.credits_remaining > 0, User.credits_remaining - 1),
                    else_=User.credits_remaining,
                ),
            },
            synchronize_session=False,
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Usage update failed for user {user_id}: {e}", extra={"user_id": user_id})


class TaskReconciler:
    """
    Applies provider state to one GenerationTask at a time.

    Args:
        db: Session used for every read and write of this reconciler.
        provider: Object with ``get_task(task_id) -> ProviderTaskStatus``.
        policy: Backoff schedule and lifetime limits.
    """

    def __init__(self, db: Session, provider, policy: Optional[PollingPolicy] = None):
        self.db = db
        self.provider = provider
        self.policy = policy or PollingPolicy()
        self.tasks = TaskRepository(db)

    def reconcile(
        self,
        task: GenerationTask,
        now: Optional[datetime] = None,
        query_expired: bool = False,
    ) -> ReconciliationOutcome:
        """Query the provider for *task* and apply the result exactly once.

        An expired task is abandoned without a provider call, unless
        *query_expired* is set: then the provider is asked first, succeeded
        clips are still stored, and the task is abandoned only when nothing
        terminal came back. A provider error is never a reason to abandon.
        """
        now = now or _utcnow()

        if task.is_terminal:
            return self._unchanged(task)

        expired = self.policy.is_expired(task.created_at, now)
        if expired and not query_expired:
            return self._abandon(task, now)

        try:
            result = self.provider.get_task(task.task_id)
        except ProviderError as e:
            logger.warning(
                f"Provider check failed for task {task.task_id}: {e.message}",
                extra={"task_id": task.task_id},
            )
            return self.record_failure(task, e.message, now)

        parts = result.partition()
        polled = {
            GenerationTask.last_polled_at: now,
            GenerationTask.last_api_response: result.raw,
        }

        if parts.succeeded:
            song_ids, new_song_ids = persist_succeeded_clips(
                self.db,
                parts.succeeded,
                owner_id=task.user_id,
                task_id=task.task_id,
                prompt=task.prompt,
                tags=task.tags,
                title_fallback=task.title,
                model=task.music_model,
            )
            if song_ids:
                outcome = self._apply(task, {
                    **polled,
                    GenerationTask.status: TaskStatus.COMPLETED,
                    GenerationTask.completed_at: now,
                    GenerationTask.generated_song_ids: song_ids,
                    GenerationTask.error_message: None,
                })
                outcome.new_song_ids = new_song_ids
                record_usage(self.db, task.user_id, len(new_song_ids))
                if parts.failed:
                    logger.info(
                        f"Task {task.task_id} completed with {len(parts.failed)} failed clip(s)",
                        extra={"task_id": task.task_id},
                    )
                return outcome
            # Completion requires at least one stored song; retry on the next poll.
            logger.warning(
                f"Task {task.task_id} has succeeded clips but none could be saved",
                extra={"task_id": task.task_id},
            )
            if expired:
                return self._abandon(task, now, polled)
            return self._reschedule(task, now, polled)

        if parts.failed and not parts.in_progress:
            return self._apply(task, {
                **polled,
                GenerationTask.status: TaskStatus.FAILED,
                GenerationTask.failed_at: now,
                GenerationTask.error_message: ALL_FAILED_MESSAGE,
            })

        if expired:
            return self._abandon(task, now, polled)
        return self._reschedule(task, now, polled)

    def record_failure(self, task: GenerationTask, message: str, now: Optional[datetime] = None) -> ReconciliationOutcome:
        """Count a failed poll: reschedule, or fail the task with *message* at the cap."""
        now = now or _utcnow()
        if task.is_terminal:
            return self._unchanged(task)
        return self._reschedule(
            task,
            now,
            {
                GenerationTask.last_polled_at: now,
                GenerationTask.last_api_response: {"error": message},
            },
            error=message,
        )

    # ----- internals --------------------------------------------------------

    def _abandon(self, task: GenerationTask, now: datetime, values: Optional[dict] = None) -> ReconciliationOutcome:
        logger.warning(
            f"Task {task.task_id} exceeded {self.policy.max_task_age}, abandoning",
            extra={"task_id": task.task_id},
        )
        return self._apply(task, {
            **(values or {}),
            GenerationTask.status: TaskStatus.ABANDONED,
            GenerationTask.failed_at: now,
            GenerationTask.error_message: ABANDONED_MESSAGE,
        })

    def _reschedule(self, task: GenerationTask, now: datetime, values: dict, error: Optional[str] = None) -> ReconciliationOutcome:
        cap = task.max_poll_attempts or self.policy.max_attempts
        attempts = (task.poll_attempts or 0) + 1

        if self.policy.reached_cap(attempts, cap):
            logger.warning(
                f"Task {task.task_id} reached {cap} poll attempts, failing",
                extra={"task_id": task.task_id},
            )
            return self._apply(task, {
                **values,
                GenerationTask.status: TaskStatus.FAILED,
                GenerationTask.poll_attempts: min(attempts, cap),
                GenerationTask.failed_at: now,
                GenerationTask.error_message: error or MAX_ATTEMPTS_MESSAGE,
            })

        return self._apply(task, {
            **values,
            GenerationTask.status: TaskStatus.IN_PROGRESS,
            GenerationTask.poll_attempts: attempts,
            GenerationTask.next_poll_at: self.policy.next_poll_at(attempts, now),
        }, error=error)

    def _apply(self, task: GenerationTask, values: dict, error: Optional[str] = None) -> ReconciliationOutcome:
        applied = self.tasks.update_if_active(task, values)
        outcome = ReconciliationOutcome(
            task_id=task.task_id,
            status=task.status,
            song_ids=list(task.generated_song_ids or []),
            error=error or (task.error_message if task.status in TaskStatus.TERMINAL else None),
            changed=applied,
        )
        if applied and task.is_terminal:
            logger.info(
                f"Task {task.task_id} -> {task.status}",
                extra={"task_id": task.task_id, "status": task.status},
            )
        return outcome

    @staticmethod
    def _unchanged(task: GenerationTask) -> ReconciliationOutcome:
        return ReconciliationOutcome(
            task_id=task.task_id,
            status=task.status,
            song_ids=list(task.generated_song_ids or []),
            error=task.error_message,
            changed=False,
        )
