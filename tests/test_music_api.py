"""HTTP tests for /api/music: submission, status, recovery and sweep endpoints."""

from tuneforge.core.config import settings
from tuneforge.models import GenerationTask, Persona, TaskStatus
from tuneforge.services.generation_service import GenerationService
from tests.conftest import bearer, clip, make_task, make_user, minutes_ago, song_count


def _create(client, headers=None, **overrides):
    body = {"prompt": "[Verse]\nNeon rain", "tags": "synthwave", "mv": "chirp-v4"}
    body.update(overrides)
    return client.post("/api/music/create", json=body, headers=headers)


class TestCreate:

    def test_submits_and_tracks_task(self, client, db, provider):
        resp = _create(client, title="Boulevard")

        assert resp.status_code == 201
        data = resp.json()
        assert data["task_id"] == "task-1"
        assert data["status"] == TaskStatus.PENDING

        task = db.query(GenerationTask).one()
        assert task.user_id == "anonymous"
        assert task.poll_attempts == 0
        assert task.next_poll_at is not None
        assert provider.submitted[0]["task_type"] == "create_music"
        assert provider.submitted[0]["title"] == "Boulevard"

    def test_missing_prompt_names_field(self, client, provider):
        resp = _create(client, prompt="   ")

        assert resp.status_code == 400
        assert resp.json()["error"] == "VALIDATION_ERROR"
        assert resp.json()["details"]["field"] == "prompt"
        assert provider.submitted == []

    def test_unknown_model_rejected(self, client):
        resp = _create(client, mv="chirp-v1")

        assert resp.status_code == 400
        assert resp.json()["details"]["field"] == "mv"

    def test_persona_request_records_usage(self, client, db, provider):
        db.add(Persona(
            user_id="anonymous", name="Nova", description="warm female voice",
            persona_id="persona-abc", source_clip_id="clip-1",
        ))
        db.commit()

        resp = _create(client, persona_id="persona-abc")

        assert resp.status_code == 201
        assert provider.submitted[0]["task_type"] == "persona_music"
        assert provider.submitted[0]["persona_id"] == "persona-abc"
        persona = db.query(Persona).one()
        db.refresh(persona)
        assert persona.usage_count == 1
        assert persona.last_used_at is not None

    def test_duplicate_provider_task_id_is_conflict(self, client, db):
        make_task(db, "task-1")
        db.expunge_all()

        resp = _create(client)

        assert resp.status_code == 409
        assert resp.json()["error"] == "CONFLICT"
        assert db.query(GenerationTask).count() == 1

    def test_free_plan_used_up(self, client, db, provider, auth_enabled):
        user = make_user(db, "user-1", role="free", songs_created=1)

        resp = _create(client, headers=bearer(user))

        assert resp.status_code == 403
        assert resp.json()["error"] == "QUOTA_EXCEEDED"
        assert provider.submitted == []

    def test_free_plan_first_song_allowed(self, client, db, auth_enabled):
        user = make_user(db, "user-1", role="free")

        resp = _create(client, headers=bearer(user))

        assert resp.status_code == 201
        assert db.query(GenerationTask).one().user_id == "user-1"

    def test_requires_token_when_auth_enabled(self, client, auth_enabled):
        assert _create(client).status_code == 401


class TestTaskStatus:

    def test_inline_check_saves_clips(self, client, db, provider):
        make_task(db, "t", created_at=minutes_ago(1))
        provider.set_clips("t", clip("c1"), clip("c2", state="running"))

        resp = client.get("/api/music/task/t")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == TaskStatus.PENDING
        assert len(data["new_song_ids"]) == 1
        assert [c["clip_id"] for c in data["clips"]] == ["c1", "c2"]
        assert data["provider_response"]["code"] == 200
        assert song_count(db, "c1") == 1

    def test_unknown_task(self, client):
        resp = client.get("/api/music/task/missing")
        assert resp.status_code == 404
        assert resp.json()["error"] == "TASK_NOT_FOUND"

    def test_other_users_task(self, client, db, auth_enabled):
        user = make_user(db, "user-1")
        make_task(db, "t", user_id="user-2")

        resp = client.get("/api/music/task/t", headers=bearer(user))
        assert resp.status_code == 403


class TestPendingAndTasks:

    def test_pending_lists_active_tasks_only(self, client, db):
        make_task(db, "active", created_at=minutes_ago(3), music_model="chirp-v4-5")
        make_task(db, "done", created_at=minutes_ago(2), status=TaskStatus.COMPLETED)

        resp = client.get("/api/music/pending")

        assert resp.status_code == 200
        stubs = resp.json()
        assert [s["task_id"] for s in stubs] == ["active"]
        assert stubs[0]["model"] == "chirp-v4-5"

    def test_tasks_newest_first(self, client, db):
        make_task(db, "older", created_at=minutes_ago(10))
        make_task(db, "newer", created_at=minutes_ago(1))

        resp = client.get("/api/music/tasks")

        assert [t["task_id"] for t in resp.json()] == ["newer", "older"]


class TestUserReconciliation:

    def test_check_pending_camel_case_summary(self, client, db, provider):
        make_task(db, "done-now", created_at=minutes_ago(2))
        make_task(db, "slow", created_at=minutes_ago(2))
        provider.set_clips("done-now", clip("c1"))
        provider.set_clips("slow", clip("c2", state="running"))

        resp = client.post("/api/music/check-pending")

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["completed"] == 1
        assert data["stillPending"] == 1
        assert data["completedTasks"] == ["done-now"]

    def test_recover_tasks_reports_details(self, client, db, provider):
        make_task(db, "t", created_at=minutes_ago(5), prompt="lost in the rain")
        provider.set_clips("t", clip("c1"), clip("c2"))

        resp = client.post("/api/music/recover-tasks")

        data = resp.json()
        assert data["recoveredTasks"] == 1
        assert data["completedTasks"] == 1
        completed = data["details"]["completed"][0]
        assert completed == {"taskId": "t", "songsRecovered": 2, "prompt": "lost in the rain"}
        assert data["details"]["recovered"][0]["status"] == TaskStatus.COMPLETED
        assert song_count(db) == 2


class TestSweepEndpoints:

    def test_poll_pending(self, client, db, provider):
        make_task(db, "t", created_at=minutes_ago(1))
        provider.set_clips("t", clip("c1"))

        resp = client.post("/api/music/poll-pending")

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "polled": 1, "completed": 1, "failed": 0, "error": None}

    def test_poll_trigger_accepts_get_and_post(self, client, db):
        assert client.get("/api/music/poll-trigger").json()["polled"] == 0
        assert client.post("/api/music/poll-trigger").json()["success"] is True

    def test_sweep_token_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "sweep_token", "s3cret")

        assert client.post("/api/music/poll-pending").status_code == 401
        assert client.post("/api/music/poll-pending", headers={"X-Sweep-Token": "nope"}).status_code == 401
        ok = client.post("/api/music/poll-pending", headers={"X-Sweep-Token": "s3cret"})
        assert ok.status_code == 200

    def test_subsystem_failure_returns_zero_counts(self, client, monkeypatch):
        def broken(self, now=None, limit=None):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(GenerationService, "due_tasks", broken)

        resp = client.post("/api/music/poll-pending")

        assert resp.status_code == 500
        data = resp.json()
        assert data["success"] is False
        assert (data["polled"], data["completed"], data["failed"]) == (0, 0, 0)
        assert data["error"] == "database is locked"

    def test_abandoned_task_counts_as_failed(self, client, db):
        make_task(db, "stale", created_at=minutes_ago(30))

        data = client.post("/api/music/poll-pending").json()

        assert data["failed"] == 1
        assert db.query(GenerationTask).one().status == TaskStatus.ABANDONED


def test_credits(client, provider):
    resp = client.get("/api/music/credits")

    assert resp.status_code == 200
    assert resp.json() == {"credits": 40, "extra_credits": 10, "total": 50}
