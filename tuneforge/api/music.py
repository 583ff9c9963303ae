"""Music generation endpoints: submission and every reconciliation trigger surface.

User endpoints:
    POST /api/music/create           -- submit a generation request
    GET  /api/music/task/{task_id}   -- inline status check (saves new clips)
    GET  /api/music/pending          -- caller's outstanding tasks
    POST /api/music/check-pending    -- reconcile caller's tasks from the last hour
    POST /api/music/recover-tasks    -- reconcile caller's tasks from the last 24h
    GET  /api/music/tasks            -- caller's tasks, newest first
    GET  /api/music/credits          -- provider credit balance

Scheduler endpoints (X-Sweep-Token when SWEEP_TOKEN is set):
    POST /api/music/poll-pending     -- sweep due tasks
    GET|POST /api/music/poll-trigger -- same sweep, for GET-only schedulers
"""

import hmac
import logging
from typing import List

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, require_auth
from ..core.config import settings
from ..database import get_db
from ..exceptions import AuthenticationError
from ..schemas.generation import (
    CheckPendingResponse,
    CompletedTaskDetail,
    CreateMusicResponse,
    CreditsResponse,
    GenerationRequest,
    GenerationTaskResponse,
    PendingTaskStub,
    RecoveredTaskDetail,
    RecoveryDetails,
    RecoveryResponse,
    SweepResponse,
    TaskStatusResponse,
)
from ..services.generation_service import GenerationService
from ..services.provider_client import get_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/music", tags=["music"])


def _service(db: Session = Depends(get_db), provider=Depends(get_provider)) -> GenerationService:
    return GenerationService(db, provider)


def verify_sweep_token(x_sweep_token: str = Header("", alias="X-Sweep-Token")) -> None:
    """Guard for scheduler endpoints. Open when SWEEP_TOKEN is unset."""
    expected = settings.sweep_token
    if not expected:
        return
    if not hmac.compare_digest(x_sweep_token.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Sweep request rejected: bad or missing X-Sweep-Token")
        raise AuthenticationError("Invalid sweep token")


@router.post("/create", response_model=CreateMusicResponse, status_code=201)
def create_music(
    body: GenerationRequest,
    auth: AuthContext = Depends(require_auth),
    service: GenerationService = Depends(_service),
):
    """Submit a generation request to the provider and start tracking it."""
    task = service.submit(auth, body)
    return CreateMusicResponse(task_id=task.task_id, status=task.status)


@router.get("/task/{task_id}", response_model=TaskStatusResponse)
def get_task_status(
    task_id: str,
    auth: AuthContext = Depends(require_auth),
    service: GenerationService = Depends(_service),
):
    """Provider view of one task. Newly succeeded clips are saved; the poll schedule is untouched."""
    return service.check_task_status(auth, task_id)


@router.get("/pending", response_model=List[PendingTaskStub])
def list_pending(
    auth: AuthContext = Depends(require_auth),
    service: GenerationService = Depends(_service),
):
    return [PendingTaskStub.model_validate(t) for t in service.pending_stubs(auth.user_id)]


@router.get("/tasks", response_model=List[GenerationTaskResponse])
def list_tasks(
    limit: int = Query(50, ge=1, le=200),
    auth: AuthContext = Depends(require_auth),
    service: GenerationService = Depends(_service),
):
    return service.list_tasks(auth.user_id, limit)


@router.post("/check-pending", response_model=CheckPendingResponse)
def check_pending(
    auth: AuthContext = Depends(require_auth),
    service: GenerationService = Depends(_service),
):
    result = service.check_pending(auth.user_id)
    return CheckPendingResponse(
        completed=len(result.completed),
        still_pending=len(result.still_pending),
        completed_tasks=[o.task_id for o in result.completed],
    )


@router.post("/recover-tasks", response_model=RecoveryResponse)
def recover_tasks(
    auth: AuthContext = Depends(require_auth),
    service: GenerationService = Depends(_service),
):
    """Reconcile every active task the caller started in the recovery window, right now."""
    result = service.recover_user_tasks(auth.user_id)
    details = RecoveryDetails(
        completed=[
            CompletedTaskDetail(
                task_id=o.task_id,
                songs_recovered=len(o.song_ids),
                prompt=result.prompts.get(o.task_id, ""),
            )
            for o in result.completed
        ],
        recovered=[
            RecoveredTaskDetail(task_id=o.task_id, status=o.status, prompt=result.prompts.get(o.task_id, ""))
            for o in result.outcomes
        ],
    )
    return RecoveryResponse(
        recovered_tasks=len(result.outcomes),
        completed_tasks=len(result.completed),
        details=details,
    )


def _sweep(service: GenerationService):
    try:
        result = service.run_sweep()
    except Exception as e:
        logger.error(f"Sweep failed: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content=SweepResponse(success=False, polled=0, completed=0, failed=0, error=str(e)).model_dump(),
        )
    return SweepResponse(success=True, polled=result.polled, completed=result.completed, failed=result.failed)


@router.post("/poll-pending", response_model=SweepResponse, dependencies=[Depends(verify_sweep_token)])
def poll_pending(service: GenerationService = Depends(_service)):
    """Reconcile a bounded batch of due tasks. Always answers with a JSON summary."""
    return _sweep(service)


@router.api_route(
    "/poll-trigger",
    methods=["GET", "POST"],
    response_model=SweepResponse,
    dependencies=[Depends(verify_sweep_token)],
)
def poll_trigger(service: GenerationService = Depends(_service)):
    return _sweep(service)


@router.get("/credits", response_model=CreditsResponse)
def get_credits(
    auth: AuthContext = Depends(require_auth),
    provider=Depends(get_provider),
):
    return provider.get_credits()
