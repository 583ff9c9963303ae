"""Tests for the sweep, recovery, check-pending and inline-check surfaces."""

from datetime import timedelta

import pytest

from tuneforge.core.auth import AuthContext
from tuneforge.exceptions import ForbiddenError, TaskNotFoundError
from tuneforge.models import GenerationTask, Song, TaskStatus, User
from tuneforge.services.generation_service import GenerationService
from tuneforge.services.polling_policy import PollingPolicy
from tuneforge.services.song_service import SongService
from tests.conftest import NOW, clip, make_song, make_task, make_user, provider_down, song_count

ADMIN = AuthContext(user_id="anonymous", role="admin")


def _service(db, provider):
    return GenerationService(db, provider, PollingPolicy())


class TestDueTasks:

    def test_selects_only_due_active_tasks_under_cap(self, db, provider):
        make_task(db, "due", next_poll_at=NOW - timedelta(seconds=1))
        make_task(db, "due-now", next_poll_at=NOW)
        make_task(db, "future", next_poll_at=NOW + timedelta(seconds=30))
        make_task(db, "done", status=TaskStatus.COMPLETED, next_poll_at=NOW - timedelta(minutes=5))
        make_task(db, "capped", status=TaskStatus.IN_PROGRESS, poll_attempts=30, next_poll_at=NOW - timedelta(minutes=1))

        due = {t.task_id for t in _service(db, provider).due_tasks(NOW, 10)}

        assert due == {"due", "due-now"}

    def test_unscheduled_task_is_due(self, db, provider):
        task = make_task(db, "never-scheduled")
        task.next_poll_at = None
        db.commit()

        assert [t.task_id for t in _service(db, provider).due_tasks(NOW, 10)] == ["never-scheduled"]

    def test_unscheduled_task_leads_a_full_batch(self, db, provider):
        for i in range(10):
            make_task(db, f"t-{i:02d}", next_poll_at=NOW - timedelta(minutes=10 - i))
        task = make_task(db, "never-scheduled")
        task.next_poll_at = None
        db.commit()

        due = _service(db, provider).due_tasks(NOW, 10)

        assert len(due) == 10
        assert due[0].task_id == "never-scheduled"

    def test_batch_is_bounded_and_oldest_first(self, db, provider):
        for i in range(12):
            make_task(db, f"t-{i:02d}", next_poll_at=NOW - timedelta(minutes=12 - i))

        due = _service(db, provider).due_tasks(NOW, 10)

        assert len(due) == 10
        assert due[0].task_id == "t-00"


class TestSweep:

    def test_counts_outcomes(self, db, provider):
        make_task(db, "will-complete", next_poll_at=NOW)
        make_task(db, "will-fail", next_poll_at=NOW)
        make_task(db, "still-running", next_poll_at=NOW)
        provider.set_clips("will-complete", clip("c1"))
        provider.set_clips("will-fail", clip("c2", state="failed"))
        provider.set_clips("still-running", clip("c3", state="running"))

        result = _service(db, provider).run_sweep(NOW)

        assert (result.polled, result.completed, result.failed) == (3, 1, 1)

    def test_abandonment_counts_as_failed(self, db, provider):
        make_task(db, "old", created_at=NOW - timedelta(minutes=25), next_poll_at=NOW)

        result = _service(db, provider).run_sweep(NOW)

        assert result.failed == 1
        assert db.query(GenerationTask).one().status == TaskStatus.ABANDONED
        assert provider.status_calls == []

    def test_unexpected_error_is_contained_to_its_task(self, db, provider):
        make_task(db, "explodes", next_poll_at=NOW - timedelta(seconds=2))
        make_task(db, "fine", next_poll_at=NOW - timedelta(seconds=1))
        provider.fail_with("explodes", RuntimeError("boom"))
        provider.set_clips("fine", clip("c1"))

        result = _service(db, provider).run_sweep(NOW)

        assert result.polled == 2
        assert result.completed == 1
        broken = db.query(GenerationTask).filter(GenerationTask.task_id == "explodes").one()
        assert broken.status == TaskStatus.IN_PROGRESS
        assert broken.poll_attempts == 1
        assert broken.last_api_response == {"error": "boom"}

    def test_unexpected_error_at_cap_fails_task(self, db, provider):
        make_task(db, "explodes", status=TaskStatus.IN_PROGRESS, poll_attempts=29, next_poll_at=NOW)
        provider.fail_with("explodes", RuntimeError("boom"))

        result = _service(db, provider).run_sweep(NOW)

        assert result.failed == 1
        task = db.query(GenerationTask).one()
        assert task.status == TaskStatus.FAILED
        assert task.error_message == "boom"

    def test_provider_outage_reschedules_everything(self, db, provider):
        for i in range(3):
            make_task(db, f"t-{i}", next_poll_at=NOW)
            provider.fail_with(f"t-{i}", provider_down())

        result = _service(db, provider).run_sweep(NOW)

        assert (result.polled, result.completed, result.failed) == (3, 0, 0)
        assert {t.status for t in db.query(GenerationTask).all()} == {TaskStatus.IN_PROGRESS}

    def test_rescheduled_task_waits_for_its_interval(self, db, provider):
        make_task(db, "t", next_poll_at=NOW)
        provider.set_clips("t", clip("c", state="running"))
        service = _service(db, provider)

        service.run_sweep(NOW)
        assert service.run_sweep(NOW + timedelta(seconds=5)).polled == 0
        assert service.run_sweep(NOW + timedelta(seconds=15)).polled == 1


class TestExactlyOnceAcrossSurfaces:

    def test_sweep_then_recovery_saves_clip_once(self, db, provider):
        make_user(db, "user-1", role="max")
        make_task(db, "t", user_id="user-1", next_poll_at=NOW)
        provider.set_clips("t", clip("clip-x"))
        service = _service(db, provider)

        service.run_sweep(NOW)
        recovery = service.recover_user_tasks("user-1", NOW)

        assert song_count(db, "clip-x") == 1
        assert recovery.outcomes == []
        assert db.query(GenerationTask).one().status == TaskStatus.COMPLETED

    def test_inline_check_then_sweep_completes_with_existing_song(self, db, provider):
        make_user(db, "user-1", role="max")
        make_task(db, "t", user_id="user-1", next_poll_at=NOW)
        provider.set_clips("t", clip("clip-x"))
        service = _service(db, provider)

        inline = service.check_task_status(AuthContext("user-1", "max"), "t")
        result = service.run_sweep(NOW)

        assert song_count(db, "clip-x") == 1
        assert result.completed == 1
        task = db.query(GenerationTask).one()
        assert task.status == TaskStatus.COMPLETED
        assert task.generated_song_ids == inline["song_ids"]
        user = db.query(User).filter(User.user_id == "user-1").one()
        assert user.songs_created == 1

    def test_recovery_after_inline_save_hits_unique_constraint(self, db, provider, monkeypatch):
        from tuneforge.repositories.song_repository import SongRepository

        make_task(db, "t", user_id="user-1", next_poll_at=NOW)
        provider.set_clips("t", clip("clip-x"))
        service = _service(db, provider)
        service.check_task_status(AuthContext("user-1", "max"), "t")
        # Existence check misses the row, so the insert hits the unique constraint.
        monkeypatch.setattr(SongRepository, "existing_clip_ids", lambda self, ids: set())

        recovery = service.recover_user_tasks("user-1", NOW)

        assert song_count(db, "clip-x") == 1
        assert recovery.completed[0].song_ids == [db.query(GenerationTask).one().generated_song_ids[0]]


class TestRecovery:

    def test_reconciles_only_callers_recent_active_tasks(self, db, provider):
        make_task(db, "mine", user_id="user-1", next_poll_at=NOW + timedelta(minutes=5))
        make_task(db, "theirs", user_id="user-2", next_poll_at=NOW)
        make_task(db, "ancient", user_id="user-1", created_at=NOW - timedelta(hours=30))
        make_task(db, "finished", user_id="user-1", status=TaskStatus.COMPLETED)
        provider.set_clips("mine", clip("clip-m"))

        result = _service(db, provider).recover_user_tasks("user-1", NOW)

        assert [o.task_id for o in result.outcomes] == ["mine"]
        assert [o.task_id for o in result.completed] == ["mine"]
        assert provider.status_calls == ["mine"]
        assert result.prompts["mine"] == "A song about neon rain"

    def test_reports_still_pending(self, db, provider):
        make_task(db, "slow", user_id="user-1")
        provider.set_clips("slow", clip("c", state="running"))

        result = _service(db, provider).recover_user_tasks("user-1", NOW)

        assert result.completed == []
        assert [o.task_id for o in result.still_pending] == ["slow"]

    def test_old_task_with_succeeded_clip_is_recovered(self, db, provider):
        make_task(db, "late", user_id="user-1", created_at=NOW - timedelta(minutes=30))
        provider.set_clips("late", clip("clip-late"))

        result = _service(db, provider).recover_user_tasks("user-1", NOW)

        assert provider.status_calls == ["late"]
        assert result.outcomes[0].status == TaskStatus.COMPLETED
        assert song_count(db, "clip-late") == 1

    def test_old_task_still_running_is_abandoned_after_asking(self, db, provider):
        make_task(db, "stale", user_id="user-1", created_at=NOW - timedelta(hours=2))
        provider.set_clips("stale", clip("c", state="running"))

        result = _service(db, provider).recover_user_tasks("user-1", NOW)

        assert provider.status_calls == ["stale"]
        assert result.outcomes[0].status == TaskStatus.ABANDONED
        task = db.query(GenerationTask).one()
        assert task.last_api_response["data"][0]["state"] == "running"

    def test_old_task_with_every_clip_failed_is_failed(self, db, provider):
        make_task(db, "stale", user_id="user-1", created_at=NOW - timedelta(hours=2))
        provider.set_clips("stale", clip("c", state="failed"))

        result = _service(db, provider).recover_user_tasks("user-1", NOW)

        assert result.outcomes[0].status == TaskStatus.FAILED

    def test_provider_error_does_not_abandon_old_task(self, db, provider):
        make_task(db, "stale", user_id="user-1", created_at=NOW - timedelta(hours=2))
        provider.fail_with("stale", provider_down())

        result = _service(db, provider).recover_user_tasks("user-1", NOW)

        assert result.outcomes[0].status == TaskStatus.IN_PROGRESS
        assert db.query(GenerationTask).one().poll_attempts == 1

    def test_check_pending_recovers_task_past_age_limit(self, db, provider):
        make_task(db, "late", user_id="user-1", created_at=NOW - timedelta(minutes=45))
        provider.set_clips("late", clip("clip-late"))

        result = _service(db, provider).check_pending("user-1", NOW)

        assert [o.task_id for o in result.completed] == ["late"]
        assert song_count(db, "clip-late") == 1

    def test_check_pending_uses_one_hour_window(self, db, provider):
        make_task(db, "recent", user_id="user-1", created_at=NOW - timedelta(minutes=5))
        make_task(db, "older", user_id="user-1", created_at=NOW - timedelta(minutes=90))
        provider.set_clips("recent", clip("c1"))

        result = _service(db, provider).check_pending("user-1", NOW)

        assert [o.task_id for o in result.outcomes] == ["recent"]
        assert len(result.completed) == 1


class TestInlineCheck:

    def test_saves_new_clips_without_touching_schedule(self, db, provider):
        task = make_task(db, "t", user_id="user-1", next_poll_at=NOW + timedelta(seconds=15))
        provider.set_clips("t", clip("c1"), clip("c2", state="running"))

        result = _service(db, provider).check_task_status(AuthContext("user-1", "free"), "t")

        assert len(result["new_song_ids"]) == 1
        assert [c["clip_id"] for c in result["clips"]] == ["c1", "c2"]
        db.refresh(task)
        assert task.status == TaskStatus.PENDING
        assert task.poll_attempts == 0
        assert task.last_polled_at is None

    def test_repeated_check_does_not_duplicate(self, db, provider):
        make_song(db, clip_id="c1", user_id="user-1")
        make_task(db, "t", user_id="user-1")
        provider.set_clips("t", clip("c1"))
        service = _service(db, provider)

        first = service.check_task_status(ADMIN, "t")
        second = service.check_task_status(ADMIN, "t")

        assert song_count(db) == 1
        assert first["new_song_ids"] == [] and second["new_song_ids"] == []

    def test_deleted_song_of_completed_task_stays_deleted(self, db, provider):
        user = make_user(db, "user-1", role="max")
        make_task(db, "t", user_id="user-1", next_poll_at=NOW)
        provider.set_clips("t", clip("clip-x"))
        service = _service(db, provider)
        service.run_sweep(NOW)
        song = db.query(Song).filter(Song.clip_id == "clip-x").one()
        SongService(db).delete_song(AuthContext("user-1", "max"), song.id)
        db.refresh(user)
        credits_used = user.credits_used

        result = service.check_task_status(AuthContext("user-1", "max"), "t")

        assert result["status"] == TaskStatus.COMPLETED
        assert result["new_song_ids"] == []
        assert song_count(db, "clip-x") == 0
        db.refresh(user)
        assert user.credits_used == credits_used
        assert user.songs_created == 0

    def test_other_users_task_is_forbidden(self, db, provider):
        make_task(db, "t", user_id="user-2")

        with pytest.raises(ForbiddenError):
            _service(db, provider).check_task_status(AuthContext("user-1", "free"), "t")

    def test_unknown_task(self, db, provider):
        with pytest.raises(TaskNotFoundError):
            _service(db, provider).check_task_status(ADMIN, "nope")
