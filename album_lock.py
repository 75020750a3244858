"""
Per-album advisory locking.

"none" keeps last-writer-wins between concurrent runs for the same album.
"album" serializes them inside this process; it does not coordinate across
separate workers.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List

from runpod_exceptions import AlbumBusyError

LOCK_MODES = ("none", "album")


class AlbumLocks:
    def __init__(self, mode: str = "none", timeout: float = 300.0) -> None:
        if mode not in LOCK_MODES:
            raise ValueError(f"Unknown lock mode '{mode}'. Expected one of {LOCK_MODES}")
        self.mode = mode
        self.timeout = timeout
        self._guard = threading.Lock()
        # album_id -> [lock, number of holders and waiters]
        self._locks: Dict[str, List] = {}

    def _acquire_ref(self, album_id: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.setdefault(album_id, [threading.Lock(), 0])
            entry[1] += 1
            return entry[0]

    def _release_ref(self, album_id: str) -> None:
        with self._guard:
            entry = self._locks[album_id]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[album_id]

    @contextmanager
    def hold(self, album_id: str) -> Iterator[None]:
        if self.mode == "none":
            yield
            return

        lock = self._acquire_ref(album_id)
        try:
            if not lock.acquire(timeout=self.timeout):
                raise AlbumBusyError(
                    f"Album {album_id} still locked after {self.timeout}s")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._release_ref(album_id)
