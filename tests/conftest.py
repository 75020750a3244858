"""Test configuration and fixtures"""

import pytest

from catalog import StatusRecorder, TrackCatalog
from database import Base, make_engine, make_session_factory
from models import Track
from runpod_exceptions import AssetNotFoundError, StorageError, TranscodeError


class FakeObjectStore:
    """In-memory stand-in for ObjectStore keyed by (bucket, key)."""

    def __init__(self):
        self.objects = {}
        self.uploads = []
        self.signed = []
        self.fail_upload = False
        self.fail_sign = False

    def put(self, bucket, key, data):
        self.objects[(bucket, key)] = data

    def download(self, bucket, key):
        if (bucket, key) not in self.objects:
            raise AssetNotFoundError(f"Not found: {bucket}/{key}")
        return self.objects[(bucket, key)]

    def upload(self, bucket, key, data, content_type=None):
        if self.fail_upload:
            raise StorageError(f"Upload failed ({bucket}/{key}): boom")
        self.objects[(bucket, key)] = data
        self.uploads.append((bucket, key, content_type))

    def sign(self, bucket, key, ttl_seconds):
        if self.fail_sign:
            raise StorageError(f"Signing failed ({bucket}/{key}): boom")
        self.signed.append((bucket, key, ttl_seconds))
        return f"https://storage.test/{bucket}/{key}?X-Amz-Expires={ttl_seconds}"


class FakeTranscoder:
    """Writes 'MP3:' + source bytes; sources containing b'corrupt' fail."""

    ext = "mp3"

    def __init__(self):
        self.calls = []

    def transcode(self, src, dst, bitrate_kbps):
        self.calls.append((src, dst, bitrate_kbps))
        with open(src, "rb") as f:
            data = f.read()
        if b"corrupt" in data:
            raise TranscodeError("FFmpeg exited with 1: Invalid data")
        with open(dst, "wb") as f:
            f.write(b"MP3:" + data)


@pytest.fixture
def session_factory(tmp_path):
    """File-backed SQLite so worker threads get their own connections"""
    engine = make_engine(f"sqlite:///{tmp_path / 'catalog.db'}")
    Base.metadata.create_all(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def add_tracks(session_factory):
    """Insert catalog rows: add_tracks('A1', [('t1', 'Intro', 1), ...])"""
    def _add(album_id, rows):
        with session_factory() as session:
            for track_id, title, number in rows:
                session.add(Track(id=track_id, album_id=album_id,
                                  title=title, track_number=number))
            session.commit()
    return _add


@pytest.fixture
def catalog(session_factory):
    return TrackCatalog(session_factory)


@pytest.fixture
def status_recorder(session_factory):
    return StatusRecorder(session_factory)


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def transcoder():
    return FakeTranscoder()


@pytest.fixture
def work_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path
