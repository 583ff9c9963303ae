"""Shared test fixtures for the TuneForge test suite.

Tests run against an in-memory SQLite database (one shared connection via
StaticPool). Every test starts from freshly created tables, and the music
provider is replaced by ``FakeProvider`` through a dependency override.
"""

import os

# Force auth off and use an in-memory database before any app imports.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTH_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "text"
os.environ["SUNO_API_KEY"] = ""
os.environ["SWEEP_TOKEN"] = ""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from tuneforge.core.config import settings
from tuneforge.core.token_factory import create_token
from tuneforge.database import Base, SessionLocal, engine, get_db
from tuneforge.exceptions import ProviderError
from tuneforge.main import app
from tuneforge.models import GenerationTask, Song, TaskStatus, User
from tuneforge.schemas.provider import ProviderTaskStatus
from tuneforge.services.provider_client import get_provider

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeProvider:
    """In-memory stand-in for SunoClient.

    ``responses`` maps task id to a raw status payload or to an exception
    that ``get_task`` raises.
    """

    def __init__(self):
        self.responses = {}
        self.status_calls = []
        self.submitted = []
        self.personas = []
        self.credits = {"credits": 40, "extra_credits": 10, "total": 50}
        self._next_task = 0

    def set_clips(self, task_id: str, *clips: dict) -> None:
        self.responses[task_id] = {"code": 200, "message": "success", "data": list(clips)}

    def fail_with(self, task_id: str, error: Exception) -> None:
        self.responses[task_id] = error

    def get_task(self, task_id: str) -> ProviderTaskStatus:
        self.status_calls.append(task_id)
        response = self.responses.get(task_id, {"code": 200, "message": "success", "data": []})
        if isinstance(response, Exception):
            raise response
        return ProviderTaskStatus.from_payload(response)

    def create_music(self, payload: dict) -> str:
        self._next_task += 1
        self.submitted.append(payload)
        return f"task-{self._next_task}"

    def create_persona(self, name: str, description: str, clip_id: str) -> str:
        self.personas.append((name, description, clip_id))
        return f"persona-{len(self.personas)}"

    def get_credits(self) -> dict:
        return dict(self.credits)

    def close(self) -> None:
        pass


def clip(clip_id: str, state: str = "succeeded", **overrides) -> dict:
    """Provider clip payload."""
    payload = {
        "clip_id": clip_id,
        "state": state,
        "title": f"Song {clip_id}",
        "duration": 184.5,
        "audio_url": f"https://cdn.example.com/{clip_id}.mp3",
        "video_url": f"https://cdn.example.com/{clip_id}.mp4",
        "image_url": f"https://cdn.example.com/{clip_id}.jpg",
        "lyrics": "[Verse]\nla la la",
        "tags": "synthwave, dreamy",
        "mv": "chirp-v4",
        "created_at": "2026-03-01T11:59:00Z",
    }
    payload.update(overrides)
    return payload


def make_task(
    db,
    task_id: str = "task-1",
    user_id: str = "anonymous",
    status: str = TaskStatus.PENDING,
    created_at: Optional[datetime] = None,
    poll_attempts: int = 0,
    next_poll_at: Optional[datetime] = None,
    **overrides,
) -> GenerationTask:
    created = created_at or NOW - timedelta(minutes=1)
    task = GenerationTask(
        task_id=task_id,
        user_id=user_id,
        status=status,
        prompt=overrides.pop("prompt", "A song about neon rain"),
        title=overrides.pop("title", "Neon Rain"),
        tags=overrides.pop("tags", "synthwave"),
        music_model=overrides.pop("music_model", "chirp-v4"),
        poll_attempts=poll_attempts,
        max_poll_attempts=overrides.pop("max_poll_attempts", 30),
        next_poll_at=next_poll_at if next_poll_at is not None else created + timedelta(seconds=15),
        generated_song_ids=overrides.pop("generated_song_ids", []),
        created_at=created,
        **overrides,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


def make_user(db, user_id: str = "user-1", role: str = "free", **overrides) -> User:
    user = User(
        user_id=user_id,
        display_name=overrides.pop("display_name", "Ana"),
        email=overrides.pop("email", f"{user_id}@example.com"),
        role=role,
        **overrides,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_song(db, clip_id: str = "clip-1", user_id: str = "anonymous", **overrides) -> Song:
    song = Song(
        user_id=user_id,
        clip_id=clip_id,
        title=overrides.pop("title", "Existing"),
        tags=overrides.pop("tags", []),
        **overrides,
    )
    db.add(song)
    db.commit()
    db.refresh(song)
    return song


def song_count(db, clip_id: Optional[str] = None) -> int:
    query = db.query(Song)
    if clip_id is not None:
        query = query.filter(Song.clip_id == clip_id)
    return query.count()


@pytest.fixture(autouse=True)
def _fresh_tables():
    """Recreate every table before each test for isolation."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def db():
    """Per-test database session."""
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture()
def provider():
    return FakeProvider()


@pytest.fixture()
def client(db, provider):
    """TestClient with the DB session and the provider overridden."""

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_provider] = lambda: provider
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_enabled(monkeypatch):
    """Turn JWT auth on for the duration of a test."""
    monkeypatch.setattr(settings, "auth_enabled", True)


def bearer(user: User) -> dict:
    token = create_token(subject=user.user_id, role=user.role, secret=settings.jwt_secret_key)
    return {"Authorization": f"Bearer {token}"}


def provider_down(message: str = "API returned 503: upstream unavailable") -> ProviderError:
    return ProviderError(message, upstream_status=503)


def minutes_ago(minutes: float) -> datetime:
    """Wall-clock timestamp, for tests that go through the HTTP surfaces."""
    return datetime.now(timezone.utc) - timedelta(minutes=minutes)
