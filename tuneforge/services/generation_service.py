"""Generation submission and the trigger surfaces over the reconciliation engine.

Surfaces:
    sweep         -- ``run_sweep``: every due task, bounded batch, never raises per task
    recovery      -- ``recover_user_tasks``: one user's active tasks from the last 24h,
                     provider asked even past the age limit
    check pending -- ``check_pending``: same, for the last hour
    inline check  -- ``check_task_status``: provider view of one task, saves new clips
                     while the task is active, leaves the task record alone

All of them are stateless: each call queries what it needs and may overlap
any other call, including itself.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .auth_service import can_create_songs, get_user_by_id
from .polling_policy import PollingPolicy
from .reconciler import ReconciliationOutcome, TaskReconciler, persist_succeeded_clips, record_usage
from ..core.auth import AuthContext
from ..core.config import settings
from ..exceptions import ConflictError, ForbiddenError, QuotaExceededError, TaskNotFoundError, ValidationError
from ..models.generation_task import GenerationTask, TaskStatus
from ..models.persona import Persona
from ..repositories.task_repository import TaskRepository
from ..schemas.generation import MUSIC_MODELS, PROMPT_MAX, TAGS_MAX, TITLE_MAX, GenerationRequest

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SweepResult:
    polled: int = 0
    completed: int = 0
    failed: int = 0


@dataclass
class RecoveryResult:
    outcomes: List[ReconciliationOutcome] = field(default_factory=list)
    prompts: dict = field(default_factory=dict)

    @property
    def completed(self) -> List[ReconciliationOutcome]:
        return [o for o in self.outcomes if o.completed]

    @property
    def still_pending(self) -> List[ReconciliationOutcome]:
        return [o for o in self.outcomes if o.pending]


class GenerationService:
    """
    Entry point for everything that starts or advances a generation task.

    Args:
        db: Request- or worker-scoped session.
        provider: ``SunoClient`` or any object with the same methods.
        policy: Polling policy; built from settings when omitted.
    """

    def __init__(self, db: Session, provider, policy: Optional[PollingPolicy] = None):
        self.db = db
        self.provider = provider
        self.policy = policy or PollingPolicy.from_settings(settings)
        self.tasks = TaskRepository(db)
        self.reconciler = TaskReconciler(db, provider, self.policy)

    # ----- submission -------------------------------------------------------

    def submit(self, auth: AuthContext, request: GenerationRequest, now: Optional[datetime] = None) -> GenerationTask:
        """Validate, check the allowance, submit to the provider and record the task.

        Raises:
            ValidationError: a field is missing or out of range.
            QuotaExceededError: the caller's plan has no songs left.
            ProviderError: the provider rejected or failed the submission.
            ConflictError: the provider returned a task id we already track.
        """
        self._validate(request)

        user = get_user_by_id(self.db, auth.user_id)
        if not can_create_songs(user, auth.role):
            raise QuotaExceededError(user.role if user is not None else auth.role)

        payload = {
            "task_type": "persona_music" if request.persona_id else "create_music",
            "custom_mode": request.custom_mode,
            "prompt": request.prompt,
            "tags": request.tags,
            "mv": request.mv,
        }
        if request.title:
            payload["title"] = request.title
        if request.make_instrumental:
            payload["make_instrumental"] = True
        if request.persona_id:
            payload["persona_id"] = request.persona_id

        task_id = self.provider.create_music(payload)

        now = now or _utcnow()
        task = GenerationTask(
            task_id=task_id,
            user_id=auth.user_id,
            status=TaskStatus.PENDING,
            prompt=request.prompt,
            title=request.title,
            tags=request.tags,
            music_model=request.mv,
            is_instrumental=request.make_instrumental,
            persona_id=request.persona_id,
            poll_attempts=0,
            max_poll_attempts=self.policy.max_attempts,
            next_poll_at=self.policy.first_poll_at(now),
            generated_song_ids=[],
            created_at=now,
        )
        try:
            self.tasks.add(task)
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(f"Task already exists: {task_id}", details={"task_id": task_id})

        logger.info(
            f"Task {task_id} submitted by user {auth.user_id}",
            extra={"task_id": task_id, "user_id": auth.user_id},
        )

        if request.persona_id:
            self._record_persona_usage(auth.user_id, request.persona_id, now)
        return task

    @staticmethod
    def _validate(request: GenerationRequest) -> None:
        if not request.prompt or not request.prompt.strip():
            raise ValidationError("Prompt is required", field="prompt")
        if len(request.prompt) > PROMPT_MAX:
            raise ValidationError(f"Prompt must be at most {PROMPT_MAX} characters", field="prompt")
        if not request.tags or not request.tags.strip():
            raise ValidationError("Tags are required", field="tags")
        if len(request.tags) > TAGS_MAX:
            raise ValidationError(f"Tags must be at most {TAGS_MAX} characters", field="tags")
        if request.mv not in MUSIC_MODELS:
            raise ValidationError(
                f"Unknown model {request.mv!r}. Use one of: {', '.join(MUSIC_MODELS)}", field="mv"
            )
        if request.title and len(request.title) > TITLE_MAX:
            raise ValidationError(f"Title must be at most {TITLE_MAX} characters", field="title")

    def _record_persona_usage(self, user_id: str, persona_id: str, now: datetime) -> None:
        try:
            updated = (
                self.db.query(Persona)
                .filter(Persona.user_id == user_id, Persona.persona_id == persona_id)
                .update(
                    {Persona.usage_count: Persona.usage_count + 1, Persona.last_used_at: now},
                    synchronize_session=False,
                )
            )
            self.db.commit()
            if updated:
                logger.info(f"Persona {persona_id} usage recorded", extra={"persona_id": persona_id})
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Failed to record persona usage for {persona_id}: {e}")

    # ----- sweep ------------------------------------------------------------

    def due_tasks(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> List[GenerationTask]:
        """Tasks the sweep should reconcile right now."""
        return self.tasks.due_tasks(now or _utcnow(), limit or settings.sweep_batch_size)

    def run_sweep(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> SweepResult:
        """Reconcile every due task once, sequentially.

        A task that raises is rolled back, counted as a failed poll for that
        task only, and the batch continues. Errors while selecting the batch
        propagate: that is the "subsystem unavailable" case.
        """
        now = now or _utcnow()
        due = self.due_tasks(now, limit)
        result = SweepResult()

        for task in due:
            task_id = task.task_id
            result.polled += 1
            try:
                outcome = self.reconciler.reconcile(task, now)
            except Exception as e:
                self.db.rollback()
                logger.error(
                    f"Unexpected error reconciling task {task_id}: {e}",
                    exc_info=True,
                    extra={"task_id": task_id},
                )
                outcome = self._fail_safely(task_id, str(e), now)
                if outcome is None:
                    continue

            if outcome.changed and outcome.completed:
                result.completed += 1
            elif outcome.changed and outcome.failed:
                result.failed += 1

        if due:
            logger.info(
                f"Sweep finished: polled={result.polled} completed={result.completed} failed={result.failed}"
            )
        return result

    def _fail_safely(self, task_id: str, message: str, now: datetime) -> Optional[ReconciliationOutcome]:
        try:
            task = self.tasks.get_by_id(task_id)
            return self.reconciler.record_failure(task, message, now)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Could not record failure for task {task_id}: {e}", extra={"task_id": task_id})
            return None

    # ----- user surfaces ----------------------------------------------------

    def recover_user_tasks(self, user_id: str, now: Optional[datetime] = None) -> RecoveryResult:
        """Reconcile the user's active tasks from the recovery window, off-schedule."""
        now = now or _utcnow()
        since = now - timedelta(hours=settings.recovery_window_hours)
        return self._reconcile_for_user(user_id, since, now)

    def check_pending(self, user_id: str, now: Optional[datetime] = None) -> RecoveryResult:
        """Reconcile the user's active tasks from the last hour."""
        now = now or _utcnow()
        since = now - timedelta(minutes=settings.pending_check_window_minutes)
        return self._reconcile_for_user(user_id, since, now)

    def _reconcile_for_user(self, user_id: str, since: datetime, now: datetime) -> RecoveryResult:
        result = RecoveryResult()
        for task in self.tasks.active_for_user(user_id, since):
            task_id = task.task_id
            result.prompts[task_id] = task.prompt
            try:
                result.outcomes.append(self.reconciler.reconcile(task, now, query_expired=True))
            except Exception as e:
                self.db.rollback()
                logger.error(f"Recovery failed for task {task_id}: {e}", extra={"task_id": task_id})
                result.outcomes.append(
                    ReconciliationOutcome(task_id=task_id, status=TaskStatus.IN_PROGRESS, error=str(e), changed=False)
                )
        logger.info(
            f"Reconciled {len(result.outcomes)} task(s) for user {user_id}: "
            f"{len(result.completed)} completed",
            extra={"user_id": user_id},
        )
        return result

    def pending_stubs(self, user_id: str) -> List[GenerationTask]:
        """Derived pending-task list: the user's active tasks, newest first."""
        since = _utcnow() - timedelta(hours=settings.recovery_window_hours)
        return self.tasks.active_for_user(user_id, since)

    def list_tasks(self, user_id: str, limit: int = 50) -> List[GenerationTask]:
        return self.tasks.list_for_user(user_id, limit)

    def check_task_status(self, auth: AuthContext, task_id: str) -> dict:
        """Ask the provider about one task and store any newly succeeded clips.

        Clips are stored only while the task is active. Scheduling fields on
        the task are not touched; the sweep remains the owner of the poll
        schedule.
        """
        task = self.tasks.get_by_id_optional(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if not auth.can_access(task.user_id):
            raise ForbiddenError("You do not have access to this task")

        result = self.provider.get_task(task_id)
        parts = result.partition()

        # A terminal task already owns its songs; one the user deleted stays deleted.
        song_ids: List[str] = list(task.generated_song_ids or []) if task.is_terminal else []
        new_song_ids: List[str] = []
        if parts.succeeded and not task.is_terminal:
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
            record_usage(self.db, task.user_id, len(new_song_ids))
            self.db.refresh(task)

        return {
            "task_id": task.task_id,
            "status": task.status,
            "clips": [clip.model_dump() for clip in result.data],
            "song_ids": song_ids,
            "new_song_ids": new_song_ids,
            "provider_response": result.raw,
        }
