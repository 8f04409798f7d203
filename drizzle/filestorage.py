"""Storage of torrent files on disk."""

from __future__ import annotations

import os
import sys
import threading
from typing import Optional

_LINUX = sys.platform.startswith("linux")
_MODE = 0o640
_DIR_MODE = 0o750


def _open_flags() -> int:
    flags = os.O_RDWR | getattr(os, "O_SYNC", 0) | getattr(os, "O_BINARY", 0)
    if _LINUX:
        flags |= getattr(os, "O_NOATIME", 0)
    return flags


def _disable_read_ahead(fd: int) -> None:
    if _LINUX and hasattr(os, "posix_fadvise"):
        os.posix_fadvise(fd, 0, 0, os.POSIX_FADV_RANDOM)


class _StorageFile:
    """An open file supporting positional reads and writes."""

    def __init__(self, fd: int, path: str) -> None:
        self._fd: Optional[int] = fd
        self.path = path
        self._lock = threading.Lock()

    def _handle(self) -> int:
        if self._fd is None:
            raise ValueError("I/O operation on closed file")
        return self._fd

    def _pread(self, fd: int, size: int, offset: int) -> bytes:
        if hasattr(os, "pread"):
            return os.pread(fd, size, offset)
        with self._lock:
            os.lseek(fd, offset, os.SEEK_SET)
            return os.read(fd, size)

    def _pwrite(self, fd: int, data: bytes, offset: int) -> int:
        if hasattr(os, "pwrite"):
            return os.pwrite(fd, data, offset)
        with self._lock:
            os.lseek(fd, offset, os.SEEK_SET)
            return os.write(fd, data)

    def read_at(self, size: int, offset: int) -> bytes:
        """Read exactly ``size`` bytes at ``offset``; EOFError if the file is shorter."""
        fd = self._handle()
        out = bytearray()
        while len(out) < size:
            chunk = self._pread(fd, size - len(out), offset + len(out))
            if not chunk:
                raise EOFError(f"short read from {self.path}: {len(out)} of {size} bytes")
            out += chunk
        return bytes(out)

    def write_at(self, data: bytes, offset: int) -> int:
        """Write all of ``data`` at ``offset`` and return its length."""
        fd = self._handle()
        view = memoryview(bytes(data))
        written = 0
        while written < len(view):
            written += self._pwrite(fd, view[written:], offset + written)
        return written

    def close(self) -> None:
        if self._fd is not None:
            fd, self._fd = self._fd, None
            os.close(fd)

    def __enter__(self) -> _StorageFile:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


class FileStorage:
    """Keeps torrent files under a destination directory."""

    def __init__(self, dest: str) -> None:
        self.dest = os.path.abspath(dest)

    def open(self, name: str, size: int) -> tuple[_StorageFile, bool]:
        """Open or create ``name`` under the destination, sized to ``size`` bytes.

        Returns the file and whether it existed before.
        """
        path = os.path.normpath(self.dest + os.sep + os.path.normpath(name))
        os.makedirs(os.path.dirname(path), mode=_DIR_MODE, exist_ok=True)
        flags = _open_flags()
        try:
            fd = os.open(path, flags, _MODE)
            exists = True
        except FileNotFoundError:
            fd = os.open(path, flags | os.O_CREAT, _MODE)
            exists = False
        try:
            if not exists or os.fstat(fd).st_size != size:
                os.ftruncate(fd, size)
            _disable_read_ahead(fd)
        except BaseException:
            os.close(fd)
            raise
        return _StorageFile(fd, path), exists