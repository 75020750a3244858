"""In-memory zip assembly for the album archive."""

import io
import zipfile
from typing import Dict


class ArchiveBuilder:
    """
    Collects named payloads and freezes them into one zip blob.

    A repeated name replaces the earlier payload (last write wins) and keeps
    the position of its first insertion. finalize() may only be called once.
    """

    def __init__(self, compression: int = zipfile.ZIP_DEFLATED) -> None:
        self.compression = compression
        self._entries: Dict[str, bytes] = {}
        self._finalized = False

    def __len__(self) -> int:
        return len(self._entries)

    def add_entry(self, name: str, data: bytes) -> None:
        if self._finalized:
            raise RuntimeError("Archive already finalized")
        self._entries[name] = data

    def add_file(self, name: str, path: str) -> None:
        with open(path, "rb") as f:
            self.add_entry(name, f.read())

    def finalize(self) -> bytes:
        if self._finalized:
            raise RuntimeError("Archive already finalized")
        self._finalized = True

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", self.compression) as zf:
            for name, data in self._entries.items():
                zf.writestr(name, data)
        self._entries.clear()
        return buffer.getvalue()
