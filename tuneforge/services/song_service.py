"""Song library operations for owners and admins."""

import logging
from typing import List, Optional

from sqlalchemy import case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.auth import AuthContext
from ..exceptions import ForbiddenError, SongNotFoundError
from ..models.song import Song
from ..models.user import User
from ..repositories.song_repository import SongRepository
from ..schemas.song import SongUpdate

logger = logging.getLogger(__name__)


class SongService:
    """Read, update and delete songs with the owner/admin/public access rule."""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SongRepository(db)

    def list_for_user(self, user_id: str) -> List[Song]:
        return self.repo.list_for_user(user_id)

    def list_all(self, user_id: Optional[str] = None, limit: int = 100, offset: int = 0) -> List[Song]:
        return self.repo.list_all(user_id=user_id, limit=limit, offset=offset)

    def get_song(self, auth: AuthContext, song_id: str) -> Song:
        """Owner, admin, or anyone for a public song. Others get a 404."""
        song = self.repo.get_by_id(song_id)
        if song.is_public or auth.can_access(song.user_id):
            return song
        raise SongNotFoundError(song_id)

    def update_song(self, auth: AuthContext, song_id: str, update: SongUpdate) -> Song:
        song = self.repo.get_by_id(song_id)
        if not auth.can_access(song.user_id):
            raise ForbiddenError("You can only edit your own songs")

        for key, value in update.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(song, key, value.strip() if isinstance(value, str) else value)

        self.db.commit()
        self.db.refresh(song)
        return song

    def delete_song(self, auth: AuthContext, song_id: str) -> None:
        """Delete the caller's own song and release one unit of ``songs_created``."""
        song = self.repo.get_by_id(song_id)
        if song.user_id != auth.user_id:
            raise ForbiddenError("You can only delete your own songs")
        self._delete(song)

    def admin_delete_song(self, song_id: str) -> None:
        self._delete(self.repo.get_by_id(song_id))

    def _delete(self, song: Song) -> None:
        owner_id, song_id, clip_id = song.user_id, song.id, song.clip_id
        self.repo.delete(song)
        logger.info(f"Song {song_id} deleted", extra={"clip_id": clip_id})

        try:
            self.db.query(User).filter(User.user_id == owner_id).update(
                {
                    User.songs_created: case(
                        (User.songs_created > 0, User.songs_created - 1),
                        else_=0,
                    )
                },
                synchronize_session=False,
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"Usage update after delete failed for user {owner_id}: {e}")
