"""Counting semaphore that reports how many holders and waiters it has."""

from __future__ import annotations

import threading


class Semaphore:
    """Limits concurrent access to a resource to ``n`` holders."""

    def __init__(self, n: int) -> None:
        if n < 1:
            raise ValueError("semaphore size must be at least 1")
        self._capacity = n
        self._cond = threading.Condition()
        self._active = 0
        self._waiting = 0

    def wait(self) -> None:
        """Acquire the semaphore, blocking until a slot is free."""
        with self._cond:
            self._waiting += 1
            try:
                while self._active >= self._capacity:
                    self._cond.wait()
            finally:
                self._waiting -= 1
            self._active += 1

    def signal(self) -> None:
        """Release the semaphore, waking one waiter."""
        with self._cond:
            if self._active == 0:
                raise RuntimeError("semaphore released more times than acquired")
            self._active -= 1
            self._cond.notify()

    def waiting(self) -> int:
        """Number of threads blocked in wait()."""
        with self._cond:
            return self._waiting

    def __len__(self) -> int:
        with self._cond:
            return self._active

    def __enter__(self) -> Semaphore:
        self.wait()
        return self

    def __exit__(self, *args: object) -> None:
        self.signal()