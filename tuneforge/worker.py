"""
Polling worker that reconciles due generation tasks.

Runs the same stateless sweep as ``POST /api/music/poll-pending`` every
WORKER_POLL_INTERVAL seconds. Any number of workers and HTTP-triggered
sweeps may run side by side; the song uniqueness constraint and the
compare-and-set task updates keep them from stepping on each other.

Usage:
    python -m tuneforge.worker
"""

import logging
import time

from .core.config import settings
from .core.logging_config import setup_logging
from .database import SessionLocal, init_db
from .services.generation_service import GenerationService
from .services.provider_client import SunoClient

logger = logging.getLogger("tuneforge.worker")


def run_once(provider) -> None:
    """One sweep in a fresh session."""
    db = SessionLocal()
    try:
        result = GenerationService(db, provider).run_sweep()
        if result.polled:
            logger.info(
                f"Sweep: polled={result.polled} completed={result.completed} failed={result.failed}"
            )
    finally:
        db.close()


def main() -> None:
    """Sweep forever, sleeping WORKER_POLL_INTERVAL seconds between batches."""
    setup_logging(log_level=settings.log_level, log_format=settings.log_format, secrets=settings.secret_values())
    init_db()

    provider = SunoClient()
    interval = settings.worker_poll_interval
    logger.info(f"Worker started, sweeping every {interval}s (batch size {settings.sweep_batch_size})")

    while True:
        try:
            run_once(provider)
            time.sleep(interval)
        except KeyboardInterrupt:
            logger.info("Worker shutting down")
            break
        except Exception as e:
            logger.error(f"Worker error: {e}")
            time.sleep(interval)

    provider.close()


if __name__ == "__main__":
    main()
