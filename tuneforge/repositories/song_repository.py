"""Data access for songs, including the clip-level insert-once primitive."""

import logging
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy.exc import IntegrityError

from .base import BaseRepository
from ..exceptions import SongNotFoundError
from ..models.song import Song

logger = logging.getLogger(__name__)


class SongRepository(BaseRepository[Song]):
    model_class = Song
    not_found_error = SongNotFoundError

    def get_by_clip_id(self, clip_id: str) -> Optional[Song]:
        return self.db.query(Song).filter(Song.clip_id == clip_id).first()

    def existing_clip_ids(self, clip_ids: Iterable[str]) -> Set[str]:
        """Subset of *clip_ids* that already have a Song row."""
        clip_ids = list(clip_ids)
        if not clip_ids:
            return set()
        rows = self.db.query(Song.clip_id).filter(Song.clip_id.in_(clip_ids)).all()
        return {row[0] for row in rows}

    def insert_if_absent(self, song: Song) -> Tuple[Song, bool]:
        """Insert *song* in its own transaction unless its clip already exists.

        The UNIQUE constraint on ``clip_id`` is the authority: a violation
        rolls back this insert only and the existing row is returned.

        Returns:
            ``(song, created)`` where *song* is the stored row.
        """
        self.db.add(song)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.get_by_clip_id(song.clip_id)
            if existing is None:
                raise
            logger.info(
                "Clip %s inserted concurrently, reusing song %s", song.clip_id, existing.id,
                extra={"clip_id": song.clip_id},
            )
            return existing, False
        self.db.refresh(song)
        return song, True

    def list_for_user(self, user_id: str) -> List[Song]:
        return (
            self.db.query(Song)
            .filter(Song.user_id == user_id)
            .order_by(Song.created_at.desc())
            .all()
        )

    def list_all(self, user_id: Optional[str] = None, limit: int = 100, offset: int = 0) -> List[Song]:
        query = self.db.query(Song)
        if user_id:
            query = query.filter(Song.user_id == user_id)
        return query.order_by(Song.created_at.desc()).offset(offset).limit(limit).all()

    def delete(self, song: Song) -> None:
        self.db.delete(song)
        self.db.commit()
