import threading
import time

import pytest

from album_lock import AlbumLocks
from runpod_exceptions import AlbumBusyError


class TestAlbumLocks:
    """Per-album locking modes"""

    def test_none_mode_never_blocks(self):
        locks = AlbumLocks("none")
        with locks.hold("A1"):
            with locks.hold("A1"):
                pass

    def test_album_mode_times_out_while_held(self):
        locks = AlbumLocks("album", timeout=0.01)
        with locks.hold("A1"):
            with pytest.raises(AlbumBusyError):
                with locks.hold("A1"):
                    pass

    def test_album_mode_releases(self):
        locks = AlbumLocks("album", timeout=0.01)
        with locks.hold("A1"):
            pass
        with locks.hold("A1"):
            pass

    def test_albums_are_independent(self):
        locks = AlbumLocks("album", timeout=0.01)
        with locks.hold("A1"):
            with locks.hold("A2"):
                pass

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            AlbumLocks("global")

    def test_released_albums_are_forgotten(self):
        locks = AlbumLocks("album", timeout=0.01)
        for i in range(100):
            with locks.hold(f"album-{i}"):
                pass
        assert locks._locks == {}

    def test_timed_out_waiter_is_forgotten(self):
        locks = AlbumLocks("album", timeout=0.01)
        with locks.hold("A1"):
            with pytest.raises(AlbumBusyError):
                with locks.hold("A1"):
                    pass
            assert list(locks._locks) == ["A1"]
        assert locks._locks == {}

    def test_waiter_gets_the_same_lock(self):
        locks = AlbumLocks("album", timeout=5)
        order = []

        def waiter():
            with locks.hold("A1"):
                order.append("waiter")

        with locks.hold("A1"):
            thread = threading.Thread(target=waiter)
            thread.start()
            time.sleep(0.05)
            order.append("holder")
        thread.join()

        assert order == ["holder", "waiter"]
        assert locks._locks == {}
