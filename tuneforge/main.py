"""Main FastAPI application."""

import logging
import re
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

from . import __version__
from .api import admin_router, auth_router, music_router, personas_router, songs_router
from .core.config import settings, ConfigurationError, Environment
from .core.logging_config import setup_logging
from .database import DATABASE_URL, SessionLocal, engine, get_db, init_db, is_postgresql
from .exceptions import TuneForgeException
from .middleware.exception_handler import tuneforge_exception_handler
from .middleware.request_context import RequestContextMiddleware
from .repositories.task_repository import TaskRepository
from .services.provider_client import get_provider

# Setup logging first
setup_logging(log_level=settings.log_level, log_format=settings.log_format, secrets=settings.secret_values())
logger = logging.getLogger(__name__)


def _mask_url(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r'://([^:]+):([^@]+)@', r'://\1:***@', url)


def _validate_database_connection() -> None:
    """Test that the database is reachable. Exits with a clear message on failure."""
    masked = _mask_url(DATABASE_URL)
    logger.info(f"Connecting to database: {masked}")

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection verified")
    except Exception as e:
        if is_postgresql():
            hint = "Verify PostgreSQL is running and DATABASE_URL credentials are correct."
        else:
            hint = "Check that the SQLite directory exists and is writable."
        logger.critical(
            f"Database connection failed.\n"
            f"  DATABASE_URL: {masked}\n"
            f"  {hint}\n"
            f"  Error: {e}"
        )
        raise SystemExit(1)


_validate_database_connection()
init_db()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle for the TuneForge API."""
    logger.info(f"Environment: {settings.environment.value}")
    try:
        settings.validate_production_config()
    except ConfigurationError as e:
        logger.critical(f"STARTUP BLOCKED: {e}")
        raise SystemExit(1) from e

    if settings.environment == Environment.DEVELOPMENT:
        if settings.uses_default_jwt_secret():
            if settings.auth_enabled:
                logger.critical(
                    "SECURITY: AUTH_ENABLED=true but JWT_SECRET_KEY is the default. "
                    "Anyone can forge tokens. Generate a secure key: openssl rand -hex 32"
                )
            else:
                logger.warning(
                    "SECURITY: JWT_SECRET_KEY is the default. "
                    "Set a secure key before enabling auth: openssl rand -hex 32"
                )

        if not settings.auth_enabled:
            logger.warning(
                "SECURITY: Authentication is disabled (AUTH_ENABLED=false). "
                "Every request runs as an anonymous admin."
            )

        if not settings.sweep_token:
            logger.warning("SWEEP_TOKEN is empty. Sweep endpoints are open to anyone.")

        if not settings.suno_api_key:
            logger.warning("SUNO_API_KEY is empty. Generation and polling calls will fail with 503.")

    db = SessionLocal()
    try:
        backlog = TaskRepository(db).count_active()
        if backlog:
            logger.info(f"{backlog} generation task(s) awaiting reconciliation")
    except Exception as e:
        logger.warning(f"Could not count active tasks (non-fatal): {e}")
    finally:
        db.close()

    yield  # App runs here

    get_provider().close()


app = FastAPI(
    title="TuneForge API",
    description=(
        "REST API for TuneForge, an AI music generation service. Submits generation "
        "requests to a Suno-compatible provider, reconciles task status through several "
        "trigger surfaces, and stores each generated clip exactly once.\n\n"
        "**Authentication:** When `AUTH_ENABLED=true`, user endpoints require a "
        "`Bearer` token in the `Authorization` header. Sweep endpoints use `X-Sweep-Token`."
    ),
    version=__version__,
    lifespan=lifespan,
)

# Middleware stack (outermost first; CORS wraps request context).
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Sweep-Token"],
)
app.add_middleware(RequestContextMiddleware)

app.add_exception_handler(TuneForgeException, tuneforge_exception_handler)

logger.info(
    "TuneForge API started | env=%s | db=%s | auth=%s | provider=%s",
    settings.environment.value,
    "PostgreSQL" if is_postgresql() else "SQLite",
    "enabled" if settings.auth_enabled else "disabled",
    "configured" if settings.suno_api_key else "missing",
)

app.include_router(auth_router)
app.include_router(music_router)
app.include_router(songs_router)
app.include_router(personas_router)
app.include_router(admin_router)


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "name": "TuneForge API",
        "version": __version__,
        "status": "running"
    }


_startup_time = time.monotonic()


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Health check with database status, uptime and the active task backlog.

    Never raises: returns degraded status on DB failure so load balancers
    can still probe without receiving 5xx.
    """
    db_status = "ok"
    active_tasks = 0
    try:
        active_tasks = TaskRepository(db).count_active()
    except Exception:
        db_status = "error"

    return {
        "status": "healthy" if db_status == "ok" else "degraded",
        "db": db_status,
        "uptime_seconds": round(time.monotonic() - _startup_time),
        "version": __version__,
        "active_tasks": active_tasks,
    }
