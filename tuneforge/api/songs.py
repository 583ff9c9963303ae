"""Song library endpoints."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, require_auth
from ..database import get_db
from ..schemas.song import SongListResponse, SongResponse, SongUpdate
from ..services.song_service import SongService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/songs", tags=["songs"])


@router.get("", response_model=SongListResponse)
def list_songs(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """The caller's songs, newest first."""
    songs = SongService(db).list_for_user(auth.user_id)
    return SongListResponse(songs=[SongResponse.model_validate(s) for s in songs], total=len(songs))


@router.get("/{song_id}", response_model=SongResponse)
def get_song(
    song_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    return SongService(db).get_song(auth, song_id)


@router.patch("/{song_id}", response_model=SongResponse)
def update_song(
    song_id: str,
    body: SongUpdate,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    return SongService(db).update_song(auth, song_id, body)


@router.delete("/{song_id}", status_code=204)
def delete_song(
    song_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    SongService(db).delete_song(auth, song_id)
