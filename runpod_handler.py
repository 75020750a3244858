"""
RunPod Serverless Handler for Album Archive Generation

Pipeline:
    list_tracks -> [fetch_source -> transcode_track] per track -> pack_archive
    -> upload_archive -> sign_url -> record_status

Response structure:
    { downloadUrl } on success, { error } on failure

A track whose source cannot be fetched or transcoded is skipped; every other
failure ends the run. Nothing is retried: the caller re-invokes to retry.
"""

import os
import logging
import tempfile
import time
import traceback

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import runpod
import uuid6
from runpod.serverless.utils import rp_cleanup
from runpod.serverless.utils.rp_validator import validate

from album_lock import AlbumLocks
from archive_builder import ArchiveBuilder
from catalog import StatusRecorder, TrackCatalog, TrackEntry
from database import make_engine, make_session_factory
from models import DownloadStatus
from object_store import ObjectStore
from runpod_schemas import INPUT_SCHEMA
from runpod_exceptions import (
    AlbumArchiveError,
    CatalogError,
    EmptyArchiveError,
    NotFoundError,
    TransientAssetError,
    ValidationError,
)
from transcoder import FFmpegTranscoder


# =============================================================================
# Constants
# =============================================================================

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///album_downloads.db")
SOURCE_BUCKET = os.environ.get("SOURCE_BUCKET", "audio-files")
ARCHIVE_BUCKET = os.environ.get("ARCHIVE_BUCKET", "archives")
SOURCE_EXTENSION = os.environ.get("SOURCE_EXTENSION", "wav")
ARCHIVE_FORMAT = os.environ.get("ARCHIVE_FORMAT", "MP3")
ARCHIVE_BITRATE_KBPS = int(os.environ.get("ARCHIVE_BITRATE_KBPS", "192"))
SIGNED_URL_TTL_SECONDS = int(os.environ.get("SIGNED_URL_TTL_SECONDS", "900"))  # 15 min
WORK_DIR_BASE = os.environ.get("WORK_DIR_BASE", tempfile.gettempdir())
TRACK_WORKERS = int(os.environ.get("TRACK_WORKERS", "1"))
ALBUM_LOCK_MODE = os.environ.get("ALBUM_LOCK_MODE", "none")
ALBUM_LOCK_TIMEOUT_SECONDS = float(os.environ.get("ALBUM_LOCK_TIMEOUT_SECONDS", "300"))
FAIL_ON_EMPTY_ARCHIVE = os.environ.get(
    "FAIL_ON_EMPTY_ARCHIVE", "false").lower() in ("1", "true", "yes")

ARCHIVE_CONTENT_TYPE = "application/zip"

MISSING_ALBUM_ID = "Missing albumId"
NO_TRACKS_FOUND = "No tracks found for album"
GENERATION_FAILED = "Failed to generate zip"

STAGES = ("list_tracks", "fetch_sources", "transcode_tracks",
          "pack_archive", "upload_archive", "sign_url", "record_status")


# =============================================================================
# Global Logger
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("AlbumZipWorker")


# =============================================================================
# Results
# =============================================================================


@dataclass
class ArchiveResult:
    album_id: str
    download_url: str
    expires_at: datetime
    archive_key: str
    size_bytes: int
    generated_at: datetime
    tracks_packed: int
    tracks_skipped: int
    timings: Dict[str, float] = field(default_factory=dict)


@dataclass
class TrackOutcome:
    """What happened to one track; output_path is None when it was skipped."""
    track: TrackEntry
    entry_name: str
    output_path: Optional[str] = None
    fetch_seconds: float = 0.0
    transcode_seconds: float = 0.0


# =============================================================================
# Main Worker Class
# =============================================================================


class AlbumZipWorker:
    """
    Builds and publishes a zip of an album's tracks on demand.

    Lifecycle per request:
        1. list_tracks       - catalog read; empty or failed read is a 404
        2. fetch_sources     - download each WAV (missing ones are skipped)
        3. transcode_tracks  - FFmpeg to the archive format (failures skipped)
        4. pack_archive      - zip in memory, entries in track-number order
        5. upload_archive    - overwrite {albumId}.zip
        6. sign_url          - presigned GET URL
        7. record_status     - upsert album_downloads row as ready

    Collaborators are passed in; from_env() builds the production set and
    close() releases them.
    """

    def __init__(
        self,
        catalog: TrackCatalog,
        status: StatusRecorder,
        store: ObjectStore,
        transcoder: FFmpegTranscoder,
        *,
        source_bucket: str = SOURCE_BUCKET,
        archive_bucket: str = ARCHIVE_BUCKET,
        source_ext: str = SOURCE_EXTENSION,
        bitrate_kbps: int = ARCHIVE_BITRATE_KBPS,
        url_ttl_seconds: int = SIGNED_URL_TTL_SECONDS,
        work_dir_base: str = WORK_DIR_BASE,
        track_workers: int = TRACK_WORKERS,
        locks: Optional[AlbumLocks] = None,
        fail_on_empty: bool = FAIL_ON_EMPTY_ARCHIVE,
        on_close: Optional[Callable[[], None]] = None,
    ) -> None:
        self.catalog = catalog
        self.status = status
        self.store = store
        self.transcoder = transcoder
        self.source_bucket = source_bucket
        self.archive_bucket = archive_bucket
        self.source_ext = source_ext
        self.bitrate_kbps = bitrate_kbps
        self.url_ttl_seconds = url_ttl_seconds
        self.work_dir_base = work_dir_base
        self.track_workers = max(1, track_workers)
        self.locks = locks or AlbumLocks("none")
        self.fail_on_empty = fail_on_empty
        self._on_close = on_close

    @classmethod
    def from_env(cls) -> "AlbumZipWorker":
        engine = make_engine(DATABASE_URL)
        session_factory = make_session_factory(engine)
        logger.info(f"Worker configured: source={SOURCE_BUCKET} archive={ARCHIVE_BUCKET} "
                    f"format={ARCHIVE_FORMAT}@{ARCHIVE_BITRATE_KBPS}k "
                    f"track_workers={TRACK_WORKERS} lock_mode={ALBUM_LOCK_MODE}")
        return cls(
            TrackCatalog(session_factory),
            StatusRecorder(session_factory),
            ObjectStore.from_env(),
            FFmpegTranscoder(ARCHIVE_FORMAT),
            locks=AlbumLocks(ALBUM_LOCK_MODE, ALBUM_LOCK_TIMEOUT_SECONDS),
            on_close=engine.dispose,
        )

    def close(self) -> None:
        if self._on_close is not None:
            self._on_close()
            self._on_close = None

    def archive_key(self, album_id: str) -> str:
        return f"{album_id}.zip"

    # =====================================================================
    # Pipeline stages
    # =====================================================================

    # Stage 1: list tracks
    def _list_tracks(self, album_id: str) -> List[TrackEntry]:
        try:
            tracks = self.catalog.list_tracks(album_id)
        except CatalogError as exc:
            logger.error(f"{exc.error_code}: {exc.message}")
            raise NotFoundError(f"No tracks found for album {album_id}") from exc
        if not tracks:
            raise NotFoundError(f"No tracks found for album {album_id}")
        logger.info(f"Album {album_id}: {len(tracks)} tracks in catalog")
        return tracks

    # Stages 2-3: fetch and transcode one track
    def _process_track(self, index: int, track: TrackEntry,
                       work_dir: str) -> TrackOutcome:
        """Fetch and encode one track. Never raises TransientAssetError."""
        outcome = TrackOutcome(track, track.entry_name(self.transcoder.ext))
        key = f"{track.id}.{self.source_ext}"
        src_path = os.path.join(work_dir, f"track-{index:03d}.{self.source_ext}")
        out_path = os.path.join(work_dir, f"track-{index:03d}.{self.transcoder.ext}")

        try:
            t0 = time.perf_counter()
            data = self.store.download(self.source_bucket, key)
            with open(src_path, "wb") as f:
                f.write(data)
            outcome.fetch_seconds = time.perf_counter() - t0

            t0 = time.perf_counter()
            self.transcoder.transcode(src_path, out_path, self.bitrate_kbps)
            outcome.transcode_seconds = time.perf_counter() - t0
        except TransientAssetError as exc:
            logger.warning(f"Skipping track {track.id} ('{track.title}'): "
                           f"{exc.error_code}: {exc.message}")
            return outcome
        finally:
            if os.path.exists(src_path):
                os.remove(src_path)

        outcome.output_path = out_path
        return outcome

    def _process_tracks(self, tracks: List[TrackEntry],
                        work_dir: str) -> List[TrackOutcome]:
        indexed = list(enumerate(tracks, start=1))
        if self.track_workers == 1:
            return [self._process_track(i, t, work_dir) for i, t in indexed]

        with ThreadPoolExecutor(max_workers=self.track_workers,
                                thread_name_prefix="album-track") as pool:
            futures = [pool.submit(self._process_track, i, t, work_dir)
                       for i, t in indexed]
            return [f.result() for f in futures]

    # Stage 4: pack
    def _pack_archive(self, outcomes: List[TrackOutcome]) -> bytes:
        builder = ArchiveBuilder()
        # Stable sort: equal track numbers keep catalog order, so a later
        # duplicate name overwrites an earlier one.
        for outcome in sorted(outcomes, key=lambda o: o.track.ordinal):
            if outcome.output_path is not None:
                builder.add_file(outcome.entry_name, outcome.output_path)
        return builder.finalize()

    def _mark_failed(self, album_id: str) -> None:
        try:
            self.status.mark(album_id, DownloadStatus.FAILED)
        except Exception:
            logger.warning(f"Could not mark {album_id} as failed", exc_info=True)

    # =====================================================================
    # Orchestrator
    # =====================================================================

    def generate_archive(self, album_id: str) -> ArchiveResult:
        """Run the full pipeline for one album and return the signed link."""
        if not isinstance(album_id, str) or not album_id.strip():
            raise ValidationError(MISSING_ALBUM_ID)

        request_id = str(uuid6.uuid7())
        logger.info(f"Album {album_id} archive requested (request_id={request_id})")
        perf = {stage: 0.0 for stage in STAGES}

        t0 = time.perf_counter()
        tracks = self._list_tracks(album_id)
        perf["list_tracks"] = round(time.perf_counter() - t0, 3)

        with self.locks.hold(album_id):
            return self._run(album_id, tracks, request_id, perf)

    def _run(self, album_id: str, tracks: List[TrackEntry],
             request_id: str, perf: Dict[str, float]) -> ArchiveResult:
        self.status.mark(album_id, DownloadStatus.PENDING)

        work_dir = os.path.join(self.work_dir_base, f"album-{request_id}")
        try:
            os.makedirs(work_dir)

            # ---- Stages 2-3: fetch + transcode ----
            outcomes = self._process_tracks(tracks, work_dir)
            perf["fetch_sources"] = round(sum(o.fetch_seconds for o in outcomes), 3)
            perf["transcode_tracks"] = round(sum(o.transcode_seconds for o in outcomes), 3)
            packed = sum(1 for o in outcomes if o.output_path is not None)
            skipped = len(outcomes) - packed

            if packed == 0:
                if self.fail_on_empty:
                    raise EmptyArchiveError(
                        f"No track of album {album_id} could be packed")
                logger.warning(f"Album {album_id}: no track could be packed, "
                               f"publishing an empty archive")
            elif skipped:
                logger.warning(f"Album {album_id}: {skipped} of {len(outcomes)} tracks skipped")

            # ---- Stage 4: pack ----
            t0 = time.perf_counter()
            blob = self._pack_archive(outcomes)
            perf["pack_archive"] = round(time.perf_counter() - t0, 3)

            # ---- Stage 5: upload ----
            archive_key = self.archive_key(album_id)
            t0 = time.perf_counter()
            self.store.upload(self.archive_bucket, archive_key, blob,
                              ARCHIVE_CONTENT_TYPE)
            perf["upload_archive"] = round(time.perf_counter() - t0, 3)

            # ---- Stage 6: sign ----
            t0 = time.perf_counter()
            signed_at = datetime.now(timezone.utc)
            url = self.store.sign(self.archive_bucket, archive_key,
                                  self.url_ttl_seconds)
            perf["sign_url"] = round(time.perf_counter() - t0, 3)

            # ---- Stage 7: record status (only once the object exists) ----
            t0 = time.perf_counter()
            generated_at = datetime.now(timezone.utc)
            self.status.record_ready(album_id, archive_key, len(blob), generated_at)
            perf["record_status"] = round(time.perf_counter() - t0, 3)

            logger.info(f"Album {album_id} archive ready: {archive_key} "
                        f"({len(blob)} bytes, {packed} packed, {skipped} skipped) "
                        f"timings={perf} (request_id={request_id})")
            return ArchiveResult(
                album_id=album_id,
                download_url=url,
                expires_at=signed_at + timedelta(seconds=self.url_ttl_seconds),
                archive_key=archive_key,
                size_bytes=len(blob),
                generated_at=generated_at,
                tracks_packed=packed,
                tracks_skipped=skipped,
                timings=perf,
            )
        except Exception:
            self._mark_failed(album_id)
            raise
        finally:
            rp_cleanup.clean([work_dir])

    # =====================================================================
    # Request mapping
    # =====================================================================

    def respond(self, raw_request: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        """
        Map a raw request to (status_code, body).

        Bodies are flat and stable; error detail only goes to the log.
        """
        ignored = sorted(k for k in raw_request if k not in INPUT_SCHEMA)
        if ignored:
            logger.info(f"Ignoring extra input keys: {ignored}")
        request = {k: v for k, v in raw_request.items() if k in INPUT_SCHEMA}

        validated = validate(request, INPUT_SCHEMA)
        if "errors" in validated:
            logger.warning(f"Input validation failed: {validated['errors']}")
            return 400, {"error": MISSING_ALBUM_ID}

        album_id = validated["validated_input"]["albumId"]
        try:
            result = self.generate_archive(album_id)
        except ValidationError as exc:
            logger.warning(f"{exc.error_code}: {exc.message}")
            return 400, {"error": MISSING_ALBUM_ID}
        except NotFoundError as exc:
            logger.warning(f"{exc.error_code}: {exc.message}")
            return 404, {"error": NO_TRACKS_FOUND}
        except AlbumArchiveError as exc:
            logger.error(f"{exc.error_code}: {exc.message}", exc_info=True)
            return 500, {"error": GENERATION_FAILED}
        except Exception as exc:
            logger.error(f"Unexpected: {exc}\n{traceback.format_exc()}")
            return 500, {"error": GENERATION_FAILED}

        return 200, {"downloadUrl": result.download_url}

    def process_job(self, job: Dict[str, Any]) -> Dict[str, Any]:
        """RunPod entry: job["input"] carries the request parameters."""
        status_code, body = self.respond(job.get("input") or {})
        logger.info(f"Job {job.get('id')} finished with {status_code}")
        return body


# =============================================================================
# Entry Point
# =============================================================================


def make_handler(worker: AlbumZipWorker) -> Callable[[Dict[str, Any]], Dict[str, Any]]:
    def handler(job: Dict[str, Any]) -> Dict[str, Any]:
        """RunPod handler function."""
        return worker.process_job(job)
    return handler


if __name__ == "__main__":
    worker = AlbumZipWorker.from_env()
    runpod.serverless.start({"handler": make_handler(worker)})
