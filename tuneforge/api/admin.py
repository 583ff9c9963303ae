"""Admin back-office: user roles, song moderation and task diagnostics."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, require_admin
from ..database import get_db
from ..exceptions import ValidationError
from ..models.generation_task import TaskStatus
from ..repositories.task_repository import TaskRepository
from ..schemas.generation import AdminTaskResponse
from ..schemas.song import SongListResponse, SongResponse
from ..schemas.user import RoleRequest, UserResponse
from ..services import auth_service
from ..services.song_service import SongService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/users", response_model=List[UserResponse])
def list_users(
    auth: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return auth_service.list_users(db)


@router.put("/users/{user_id}/role", response_model=UserResponse)
def update_role(
    user_id: str,
    body: RoleRequest,
    auth: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = auth_service.update_user_role(db, user_id, body.role)
    logger.info(f"Admin {auth.user_id} set role of {user_id} to {body.role}")
    return user


@router.get("/songs", response_model=SongListResponse)
def list_songs(
    user_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    auth: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    songs = SongService(db).list_all(user_id=user_id, limit=limit, offset=offset)
    return SongListResponse(songs=[SongResponse.model_validate(s) for s in songs], total=len(songs))


@router.delete("/songs/{song_id}", status_code=204)
def delete_song(
    song_id: str,
    auth: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    SongService(db).admin_delete_song(song_id)
    logger.info(f"Admin {auth.user_id} deleted song {song_id}")


@router.get("/tasks", response_model=List[AdminTaskResponse])
def list_tasks(
    status: Optional[str] = Query(None, description="Filter by task status"),
    limit: int = Query(100, ge=1, le=500),
    auth: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Tasks with their last provider response, for diagnosing stuck or failed generations."""
    valid = TaskStatus.ACTIVE + TaskStatus.TERMINAL
    if status and status not in valid:
        raise ValidationError(f"Invalid status: {status}. Must be one of {', '.join(valid)}", field="status")
    return TaskRepository(db).list_by_status(status, limit)
