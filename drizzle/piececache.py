"""Size-bounded LRU cache of piece data whose items expire after a TTL."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Callable, Optional

from .semaphore import Semaphore

Loader = Callable[[], bytes]

_RATE_WINDOW = 60.0


class _Meter:
    """Counts events and reports their rate over the last minute."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: deque[tuple[float, int]] = deque()
        self._window_sum = 0
        self._count = 0
        self._stopped = False

    def _trim(self, now: float) -> None:
        while self._events and self._events[0][0] <= now - _RATE_WINDOW:
            _, n = self._events.popleft()
            self._window_sum -= n

    def mark(self, n: int = 1) -> None:
        with self._lock:
            if self._stopped:
                return
            now = time.monotonic()
            self._count += n
            self._events.append((now, n))
            self._window_sum += n
            self._trim(now)

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def rate1(self) -> float:
        """Events per second over the last minute."""
        with self._lock:
            self._trim(time.monotonic())
            return self._window_sum / _RATE_WINDOW

    def stop(self) -> None:
        with self._lock:
            self._stopped = True


@dataclass(eq=False)
class _Item:
    key: str
    value: bytes = b""
    loaded: bool = False
    error: Optional[BaseException] = None
    expires_at: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock)


class Cache:
    """LRU cache holding at most ``max_size`` bytes; items expire ``ttl`` seconds after last use."""

    def __init__(self, max_size: int, ttl: float, parallel_reads: int) -> None:
        self._max_size = max_size
        self._ttl = ttl
        self._size = 0
        self._items: dict[str, _Item] = {}
        self._access: OrderedDict[str, _Item] = OrderedDict()
        self._lock = threading.Lock()
        self._sem = Semaphore(parallel_reads)
        self.num_cached = _Meter()
        self.num_total = _Meter()
        self.num_load = _Meter()
        self.num_loaded_bytes = _Meter()

    def close(self) -> None:
        """Stop the meters."""
        for meter in (self.num_cached, self.num_total, self.num_load, self.num_loaded_bytes):
            meter.stop()

    def clear(self) -> None:
        """Drop every item."""
        with self._lock:
            self._items = {}
            self._access.clear()
            self._size = 0

    def __len__(self) -> int:
        with self._lock:
            self._expire()
            return len(self._items)

    def loads_active(self) -> int:
        """Number of loaders currently running."""
        return len(self._sem)

    def loads_waiting(self) -> int:
        """Number of loaders waiting for a read slot."""
        return self._sem.waiting()

    def size(self) -> int:
        """Total size of the cached values."""
        with self._lock:
            self._expire()
            return self._size

    def utilization(self) -> int:
        """Hit ratio over the last minute, from 0 to 100."""
        total = self.num_total.rate1()
        if total == 0:
            return 0
        return int((100 * self.num_cached.rate1()) / total)

    def keys(self) -> list[str]:
        """Keys of cached values, least recently used first."""
        with self._lock:
            self._expire()
            return list(self._access)

    def get(self, key: str, loader: Optional[Loader]) -> bytes:
        """Return the value for ``key``, calling ``loader`` to fill it if not cached.

        An exception raised by ``loader`` propagates and nothing is cached.
        """
        item = self._get_item(key)
        with item.lock:
            if item.loaded:
                if item.error is not None:
                    raise item.error
                self._touch(item)
                return item.value
            if loader is None:
                raise ValueError(f"no loader for uncached key {key!r}")
            with self._sem:
                try:
                    item.value = bytes(loader())
                except Exception as exc:
                    item.error = exc
            item.loaded = True
            self.num_load.mark(1)
            self.num_loaded_bytes.mark(len(item.value))
            return self._store(item)

    def _get_item(self, key: str) -> _Item:
        with self._lock:
            self._expire()
            self.num_total.mark(1)
            item = self._items.get(key)
            if item is not None:
                self.num_cached.mark(1)
            else:
                item = _Item(key)
                self._items[key] = item
            return item

    def _store(self, item: _Item) -> bytes:
        with self._lock:
            if item.error is not None:
                self._discard(item)
                raise item.error
            length = len(item.value)
            # Values larger than the whole cache are returned but not kept.
            if length > self._max_size:
                self._discard(item)
                return item.value
            self._expire()
            previous = self._access.get(item.key)
            if previous is not None:
                self._drop(previous)
            while self._max_size - self._size < length:
                _, oldest = self._access.popitem(last=False)
                self._forget(oldest)
            self._size += length
            item.expires_at = time.monotonic() + self._ttl
            self._access[item.key] = item
            return item.value

    def _touch(self, item: _Item) -> None:
        with self._lock:
            if self._access.get(item.key) is item:
                item.expires_at = time.monotonic() + self._ttl
                self._access.move_to_end(item.key)

    def _expire(self) -> None:
        now = time.monotonic()
        while self._access:
            key, oldest = next(iter(self._access.items()))
            if oldest.expires_at > now:
                break
            del self._access[key]
            self._forget(oldest)

    def _discard(self, item: _Item) -> None:
        if self._items.get(item.key) is item:
            del self._items[item.key]

    def _drop(self, item: _Item) -> None:
        del self._access[item.key]
        self._forget(item)

    def _forget(self, item: _Item) -> None:
        self._discard(item)
        self._size -= len(item.value)