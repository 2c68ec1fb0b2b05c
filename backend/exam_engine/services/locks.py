"""
Per-attempt write serialization.

Every write to an attempt (sync, response, transition, expiry, submit) runs
inside ``attempt_locks.hold(attempt_id)`` and loads the attempt row with
SELECT ... FOR UPDATE. The in-process lock covers SQLite, where FOR UPDATE
is a no-op; the row lock covers several API workers on PostgreSQL.
"""

import threading
from contextlib import contextmanager


class AttemptLockRegistry:
    """One re-entrant lock per attempt id, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}
        self._holders = {}

    def _entry(self, attempt_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(attempt_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[attempt_id] = lock
                self._holders[attempt_id] = 0
            self._holders[attempt_id] += 1
            return lock

    def _release(self, attempt_id: str) -> None:
        with self._guard:
            self._holders[attempt_id] -= 1
            if self._holders[attempt_id] == 0:
                del self._holders[attempt_id]
                del self._locks[attempt_id]

    @contextmanager
    def hold(self, attempt_id: str):
        lock = self._entry(attempt_id)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            self._release(attempt_id)

    def __len__(self):
        with self._guard:
            return len(self._locks)


attempt_locks = AttemptLockRegistry()
