"""Data access for generation tasks."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_

from .base import BaseRepository
from ..exceptions import TaskNotFoundError
from ..models.generation_task import GenerationTask, TaskStatus

logger = logging.getLogger(__name__)


class TaskRepository(BaseRepository[GenerationTask]):
    """Queries and compare-and-set updates over ``generation_tasks``."""

    model_class = GenerationTask
    id_column = "task_id"
    not_found_error = TaskNotFoundError

    def add(self, task: GenerationTask) -> GenerationTask:
        self.db.add(task)
        self.db.commit()
        self.db.refresh(task)
        return task

    def due_tasks(self, now: datetime, limit: int) -> List[GenerationTask]:
        """Active tasks whose next poll time has elapsed (or was never set).

        Tasks already at their attempt cap are excluded; oldest schedule first.
        """
        return (
            self.db.query(GenerationTask)
            .filter(
                GenerationTask.status.in_(TaskStatus.ACTIVE),
                or_(GenerationTask.next_poll_at.is_(None), GenerationTask.next_poll_at <= now),
                GenerationTask.poll_attempts < GenerationTask.max_poll_attempts,
            )
            .order_by(GenerationTask.next_poll_at.asc().nulls_first(), GenerationTask.created_at.asc())
            .limit(limit)
            .all()
        )

    def active_for_user(self, user_id: str, since: datetime) -> List[GenerationTask]:
        """A user's non-terminal tasks created at or after *since*, newest first."""
        return (
            self.db.query(GenerationTask)
            .filter(
                GenerationTask.user_id == user_id,
                GenerationTask.status.in_(TaskStatus.ACTIVE),
                GenerationTask.created_at >= since,
            )
            .order_by(GenerationTask.created_at.desc())
            .all()
        )

    def list_for_user(self, user_id: str, limit: int = 50) -> List[GenerationTask]:
        return (
            self.db.query(GenerationTask)
            .filter(GenerationTask.user_id == user_id)
            .order_by(GenerationTask.created_at.desc())
            .limit(limit)
            .all()
        )

    def count_active(self) -> int:
        return self.db.query(GenerationTask).filter(GenerationTask.status.in_(TaskStatus.ACTIVE)).count()

    def list_by_status(self, status: Optional[str] = None, limit: int = 100) -> List[GenerationTask]:
        query = self.db.query(GenerationTask)
        if status:
            query = query.filter(GenerationTask.status == status)
        return query.order_by(GenerationTask.created_at.desc()).limit(limit).all()

    def update_if_active(self, task: GenerationTask, values: Dict[Any, Any]) -> bool:
        """Apply *values* in one UPDATE guarded by ``status IN (active)``.

        Returns False when another caller already moved the task to a
        terminal state; the row is left untouched in that case. *task* is
        refreshed either way.
        """
        updated = (
            self.db.query(GenerationTask)
            .filter(
                GenerationTask.task_id == task.task_id,
                GenerationTask.status.in_(TaskStatus.ACTIVE),
            )
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(task)
        if not updated:
            logger.info(
                "Task %s already terminal (%s), update skipped", task.task_id, task.status,
                extra={"task_id": task.task_id},
            )
        return bool(updated)
