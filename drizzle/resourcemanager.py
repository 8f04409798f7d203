"""Fair distribution of a limited amount of a resource between requesters."""

from __future__ import annotations

import random
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass
class Stats:
    """Current state of a ResourceManager."""

    allocated_size: int = 0
    allocated_objects: int = 0
    pending_keys: int = 0


@dataclass(eq=False)
class _Request:
    key: str
    data: Any
    n: int
    notify: Callable[[Any], Any]
    cancel: Optional[threading.Event]

    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()


class ResourceManager:
    """Hands out up to ``limit`` units; waiting requests are served in random order."""

    def __init__(self, limit: int) -> None:
        self._limit = limit
        self._available = limit
        self._objects = 0
        self._requests: dict[str, list[_Request]] = {}
        self._lock = threading.Lock()
        self._closed = threading.Event()

    def close(self) -> None:
        """Stop the manager; pending requests are dropped."""
        self._closed.set()
        with self._lock:
            self._requests.clear()

    def stats(self) -> Stats:
        """Return allocation statistics; all zero once closed."""
        if self._closed.is_set():
            return Stats()
        with self._lock:
            self._prune()
            return Stats(
                allocated_size=self._limit - self._available,
                allocated_objects=self._objects,
                pending_keys=len(self._requests),
            )

    def request(
        self,
        key: str,
        data: Any,
        n: int,
        notify: Optional[Callable[[Any], Any]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> bool:
        """Request ``n`` units for ``key``; True if acquired at once.

        Otherwise, if ``notify`` is given, the request waits and ``notify(data)`` is
        called once the units have been allocated to it, unless ``cancel`` is set first.
        release() must be called when done with acquired units.
        """
        if n < 0:
            return False
        with self._lock:
            if self._closed.is_set():
                return False
            if cancel is not None and cancel.is_set():
                return False
            if self._available >= n:
                self._allocate(n)
                return True
            if notify is not None:
                self._requests.setdefault(key, []).append(_Request(key, data, n, notify, cancel))
        return False

    def release(self, n: int) -> None:
        """Give back ``n`` units and serve waiting requests that now fit."""
        with self._lock:
            if self._closed.is_set():
                return
            if self._available + n > self._limit:
                raise RuntimeError("invalid release call")
            self._available += n
            self._objects -= 1
            served = self._dispatch()
        for req in served:
            req.notify(req.data)

    def _allocate(self, n: int) -> None:
        if self._available - n < 0:
            raise RuntimeError("invalid request call")
        self._available -= n
        self._objects += 1

    def _prune(self) -> None:
        for key in list(self._requests):
            live = [r for r in self._requests[key] if not r.cancelled()]
            if live:
                self._requests[key] = live
            else:
                del self._requests[key]

    def _delete(self, key: str, i: int) -> None:
        rs = self._requests[key]
        rs[i] = rs[-1]
        rs.pop()
        if not rs:
            del self._requests[key]

    def _dispatch(self) -> list[_Request]:
        self._prune()
        served = []
        while self._requests:
            key = random.choice(list(self._requests))
            rs = self._requests[key]
            i = random.randrange(len(rs))
            req = rs[i]
            if req.n > self._available:
                break
            self._allocate(req.n)
            self._delete(key, i)
            served.append(req)
        return served