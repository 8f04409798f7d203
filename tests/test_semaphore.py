import threading
import time

import pytest

from drizzle.semaphore import Semaphore


def test_wait_and_signal_track_active_count():
    sem = Semaphore(2)
    sem.wait()
    sem.wait()
    assert len(sem) == 2
    sem.signal()
    assert len(sem) == 1
    sem.signal()
    assert len(sem) == 0


def test_context_manager_releases():
    sem = Semaphore(1)
    with sem:
        assert len(sem) == 1
    assert len(sem) == 0


def test_signal_without_wait_raises():
    with pytest.raises(RuntimeError):
        Semaphore(1).signal()


def test_invalid_size_raises():
    with pytest.raises(ValueError):
        Semaphore(0)


def test_blocked_thread_counts_as_waiting():
    sem = Semaphore(1)
    sem.wait()
    worker = threading.Thread(target=sem.wait)
    worker.start()
    deadline = time.monotonic() + 5
    while sem.waiting() == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    assert sem.waiting() == 1
    assert len(sem) == 1
    sem.signal()
    worker.join(timeout=5)
    assert not worker.is_alive()
    assert sem.waiting() == 0
    assert len(sem) == 1