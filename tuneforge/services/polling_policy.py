"""Backoff schedule and lifetime limits for generation-task polling."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (SQLite drops tzinfo) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class PollingPolicy:
    """
    Pure scheduling rules shared by every trigger surface.

    interval(n) = min(base * factor ** max(0, n - grace), max_interval)

    With the defaults the first five attempts poll every 15s, the interval
    then grows by 20% per attempt and reaches the 60s ceiling around
    attempt 13.
    """

    base_interval: float = 15.0
    max_interval: float = 60.0
    growth_factor: float = 1.2
    grace_attempts: int = 5
    max_attempts: int = 30
    max_task_age: timedelta = field(default_factory=lambda: timedelta(minutes=20))

    @classmethod
    def from_settings(cls, settings) -> "PollingPolicy":
        return cls(
            base_interval=settings.poll_base_interval_seconds,
            max_interval=settings.poll_max_interval_seconds,
            growth_factor=settings.poll_backoff_factor,
            grace_attempts=settings.poll_backoff_grace_attempts,
            max_attempts=settings.max_poll_attempts,
            max_task_age=timedelta(minutes=settings.task_max_age_minutes),
        )

    def interval_for(self, attempts: int) -> float:
        """Seconds to wait after the *attempts*-th poll."""
        exponent = max(0, attempts - self.grace_attempts)
        return min(self.base_interval * (self.growth_factor ** exponent), self.max_interval)

    def next_poll_at(self, attempts: int, now: datetime) -> datetime:
        return now + timedelta(seconds=self.interval_for(attempts))

    def first_poll_at(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.base_interval)

    def is_expired(self, created_at: Optional[datetime], now: datetime) -> bool:
        """True once a task has lived longer than ``max_task_age``."""
        created = as_utc(created_at)
        if created is None:
            return False
        return as_utc(now) - created > self.max_task_age

    def reached_cap(self, attempts: int, cap: Optional[int] = None) -> bool:
        """True when *attempts* hits *cap* (a task's own limit) or the policy default."""
        return attempts >= (cap or self.max_attempts)
