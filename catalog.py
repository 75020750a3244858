"""
Catalog and status-table access.

TrackCatalog reads the ordered track list for an album from the `tracks`
table. StatusRecorder upserts the single `album_downloads` row per album.
Both take a SQLAlchemy session factory so tests can hand in an in-memory
database.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from models import AlbumDownload, DownloadStatus, Track
from runpod_exceptions import CatalogError, StatusWriteError

logger = logging.getLogger("AlbumZipWorker.catalog")


@dataclass(frozen=True)
class TrackEntry:
    id: str
    title: str
    ordinal: int

    def entry_name(self, ext: str) -> str:
        """Archive member name, e.g. '1 - Intro.mp3'."""
        # Title is used verbatim; a '/' in it nests the member inside the zip.
        return f"{self.ordinal} - {self.title}.{ext}"


class TrackCatalog:
    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def list_tracks(self, album_id: str) -> List[TrackEntry]:
        """Return the album's tracks ordered by track number."""
        stmt = (
            select(Track.id, Track.title, Track.track_number)
            .where(Track.album_id == album_id)
            .order_by(Track.track_number, Track.id)
        )
        try:
            with self.session_factory() as session:
                rows = session.execute(stmt).all()
        except SQLAlchemyError as exc:
            raise CatalogError(f"Catalog read failed ({album_id}): {exc}") from exc
        return [TrackEntry(id=r.id, title=r.title, ordinal=r.track_number)
                for r in rows]


def _upsert(session, values: Dict[str, Any]) -> None:
    """INSERT ... ON CONFLICT (album_id) DO UPDATE for the columns given."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        session.merge(AlbumDownload(**values))
        return

    stmt = insert(AlbumDownload.__table__).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["album_id"],
        set_={k: stmt.excluded[k] for k in values if k != "album_id"},
    )
    session.execute(stmt)


class StatusRecorder:
    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def _write(self, values: Dict[str, Any]) -> None:
        try:
            with self.session_factory() as session:
                _upsert(session, values)
                session.commit()
        except SQLAlchemyError as exc:
            raise StatusWriteError(
                f"Status write failed ({values['album_id']}): {exc}") from exc

    def mark(self, album_id: str, status: DownloadStatus) -> None:
        """Set only the status column; archive columns keep their last value."""
        self._write({"album_id": album_id, "status": status})
        logger.info(f"Status {album_id} -> {status.value}")

    def record_ready(
        self, album_id: str, zip_file_path: str,
        zip_file_size: int, generated_at: datetime,
    ) -> None:
        self._write({
            "album_id": album_id,
            "zip_file_path": zip_file_path,
            "zip_file_size": zip_file_size,
            "generated_at": generated_at,
            "status": DownloadStatus.READY,
        })
        logger.info(f"Status {album_id} -> ready ({zip_file_path}, {zip_file_size} bytes)")

    def get(self, album_id: str) -> Optional[AlbumDownload]:
        with self.session_factory() as session:
            return session.get(AlbumDownload, album_id)
