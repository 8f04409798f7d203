"""Downloading piece data from HTTP (webseed) sources."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Sequence
from urllib.parse import quote

import requests

from .piece import Piece

_CHUNK_SIZE = 16 * 1024
# Characters that stay unescaped in a single path segment.
_SEGMENT_SAFE = "$&+=:@"


@dataclass
class DownloadJob:
    """A byte range of one file to fetch with a single HTTP request."""

    filename: str
    range_begin: int
    length: int


def create_jobs(pieces: Sequence[Piece], begin: int, end: int) -> list[DownloadJob]:
    """Group the file sections of pieces ``begin`` to ``end`` (exclusive) into per-file ranges."""
    jobs: list[DownloadJob] = []
    if begin == end:
        return jobs
    job = DownloadJob("", 0, 0)
    for i in range(begin, end):
        for j, sec in enumerate(pieces[i].data):
            if i == 0 and j == 0:
                job = DownloadJob(sec.name, sec.offset, sec.length)
                continue
            if sec.name == job.filename:
                job.length += sec.length
                continue
            if job.length > 0:  # do not request 0 byte files
                jobs.append(job)
            job = DownloadJob(sec.name, sec.offset, sec.length)
    if job.length > 0:
        jobs.append(job)
    return jobs


@dataclass(eq=False)
class PieceResult:
    """A downloaded piece, or the error that stopped the download."""

    downloader: URLDownloader
    buffer: bytearray = field(default_factory=bytearray)
    index: int = 0
    error: Optional[BaseException] = None
    done: bool = False


class _BodyReader:
    """Reads exact amounts from a stream of response chunks."""

    def __init__(self, chunks: Iterator[bytes]) -> None:
        self._chunks = chunks
        self._pending = b""

    def read(self, size: int) -> bytes:
        out = bytearray(self._pending[:size])
        self._pending = self._pending[size:]
        while len(out) < size:
            chunk = next(self._chunks, None)
            if chunk is None:
                raise EOFError("unexpected EOF")
            need = size - len(out)
            out += chunk[:need]
            self._pending = chunk[need:]
        return bytes(out)


class URLDownloader:
    """Downloads the pieces ``begin`` to ``end`` (exclusive) from one URL."""

    def __init__(self, source: str, begin: int, end: int) -> None:
        self.url = source
        self.begin = begin
        self.end = end
        self._current = begin
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self._started = threading.Event()
        self._finished = threading.Event()

    def close(self) -> None:
        """Stop the download and wait for run() to return if it has started."""
        self._closed.set()
        if self._started.is_set():
            self._finished.wait()

    def __str__(self) -> str:
        return self.url

    def update_end(self, value: int) -> None:
        """Change the end index of the piece range."""
        with self._lock:
            self.end = value

    def _read_end(self) -> int:
        with self._lock:
            return self.end

    def read_current(self) -> int:
        """Index of the piece being downloaded now."""
        with self._lock:
            return self._current

    def url_for(self, filename: str, multifile: bool) -> str:
        """URL to request for ``filename``."""
        src = self.url
        if not multifile:
            if src.endswith("/"):
                src += quote(filename, safe=_SEGMENT_SAFE)
            return src
        if not src.endswith("/"):
            src += "/"
        return src + quote(filename, safe=_SEGMENT_SAFE)

    def _send(self, results: Any, result: PieceResult) -> None:
        if self._closed.is_set():
            return
        results.put(result)

    def run(
        self,
        session: requests.Session,
        pieces: Sequence[Piece],
        multifile: bool,
        results: Any,
        read_timeout: float,
    ) -> None:
        """Download the pieces and put a PieceResult for each into ``results``.

        ``results`` needs a ``put`` method; ``read_timeout`` is in seconds.
        """
        self._started.set()
        try:
            if self._closed.is_set():
                return
            jobs = create_jobs(pieces, self.begin, self._read_end())
            if not jobs:
                return
            buf = bytearray(pieces[self.read_current()].length)
            pos = 0
            for job in jobs:
                headers = {"Range": f"bytes={job.range_begin}-{job.range_begin + job.length - 1}"}
                try:
                    resp = session.get(
                        self.url_for(job.filename, multifile),
                        headers=headers,
                        stream=True,
                        timeout=read_timeout,
                    )
                except (requests.RequestException, OSError) as exc:
                    self._send(results, PieceResult(self, error=exc))
                    return
                with resp:
                    if resp.status_code not in (200, 206):
                        err = OSError(f"unexpected status code: {resp.status_code}")
                        self._send(results, PieceResult(self, error=err))
                        return
                    reader = _BodyReader(resp.iter_content(_CHUNK_SIZE))
                    read = 0
                    while read < job.length:
                        if self._closed.is_set():
                            return
                        size = min(len(buf) - pos, job.length - read)
                        try:
                            data = reader.read(size)
                        except (requests.RequestException, OSError, EOFError) as exc:
                            self._send(results, PieceResult(self, error=exc))
                            return
                        buf[pos : pos + size] = data
                        pos += size
                        read += size
                        if pos == len(buf):  # piece completed
                            index = self.read_current()
                            done = index >= self._read_end() - 1
                            self._send(results, PieceResult(self, buffer=buf, index=index, done=done))
                            if done:
                                return
                            with self._lock:
                                self._current += 1
                                current = self._current
                            buf = bytearray(pieces[current].length)
                            pos = 0
        finally:
            self._finished.set()