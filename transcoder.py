"""
FFmpeg transcoder: one child process per input/output pair.

subprocess.run blocks until the process exits (or the timeout fires), so a
call has exactly one outcome and the output file is complete when it returns.
"""

import logging
import os
import subprocess

from runpod_exceptions import TranscodeError

logger = logging.getLogger("AlbumZipWorker.transcoder")

FFMPEG_BINARY = os.environ.get("FFMPEG_BINARY", "ffmpeg")
FFMPEG_TIMEOUT_SECONDS = int(os.environ.get("FFMPEG_TIMEOUT_SECONDS", "600"))

# Format -> (container extension, ffmpeg codec)
FORMAT_PROFILES = {
    "MP3":  ("mp3",  "libmp3lame"),
    "M4A":  ("m4a",  "aac"),
    "OGG":  ("ogg",  "libvorbis"),
    "OPUS": ("opus", "libopus"),
}


class FFmpegTranscoder:
    def __init__(
        self, out_format: str = "MP3",
        binary: str = FFMPEG_BINARY,
        timeout: float = FFMPEG_TIMEOUT_SECONDS,
    ) -> None:
        profile = FORMAT_PROFILES.get(out_format.upper())
        if profile is None:
            raise ValueError(f"Unsupported format: {out_format}")
        self.ext, self.codec = profile
        self.binary = binary
        self.timeout = timeout

    def build_command(self, src: str, dst: str, bitrate_kbps: int) -> list:
        return [self.binary, "-y", "-loglevel", "warning",
                "-i", src, "-vn", "-c:a", self.codec,
                "-b:a", f"{bitrate_kbps}k", dst]

    def transcode(self, src: str, dst: str, bitrate_kbps: int) -> None:
        """Encode *src* into *dst* at *bitrate_kbps*; raise TranscodeError on failure."""
        cmd = self.build_command(src, dst, bitrate_kbps)
        logger.info(f"Running FFmpeg: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True,
                                    timeout=self.timeout)
        except subprocess.TimeoutExpired as exc:
            logger.error(f"FFmpeg timed out: {' '.join(cmd)}")
            raise TranscodeError(
                f"FFmpeg timed out after {self.timeout}s") from exc
        except OSError as exc:
            raise TranscodeError(f"FFmpeg could not start: {exc}") from exc

        if result.stderr:
            logger.info(f"FFmpeg output: {result.stderr.strip()}")

        if result.returncode != 0:
            raise TranscodeError(
                f"FFmpeg exited with {result.returncode}: {result.stderr}")

        if not os.path.exists(dst) or os.path.getsize(dst) == 0:
            raise TranscodeError(f"FFmpeg produced no output: {dst}")
