import enum

from sqlalchemy import Column, String, Integer, BigInteger, DateTime, Enum, Index

from database import Base


class DownloadStatus(str, enum.Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class Track(Base):
    """
    A track row from the catalog. Read-only for this service.
    """
    __tablename__ = 'tracks'

    id = Column(String, primary_key=True)
    album_id = Column(String, nullable=False)
    title = Column(String, nullable=False)
    track_number = Column(Integer, nullable=False)

    __table_args__ = (
        Index('idx_tracks_album', 'album_id', 'track_number'),
    )


class AlbumDownload(Base):
    """
    Latest generated archive for an album.

    One row per album_id; every regeneration overwrites the row.
    """
    __tablename__ = 'album_downloads'

    album_id = Column(String, primary_key=True)
    zip_file_path = Column(String, nullable=True)
    zip_file_size = Column(BigInteger, nullable=True)
    generated_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(
        Enum(DownloadStatus, values_callable=lambda e: [m.value for m in e],
             native_enum=False, name='download_status'),
        nullable=False,
        default=DownloadStatus.PENDING,
    )
