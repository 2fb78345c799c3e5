"""Per-user serialization of reconciliation runs."""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional


class UserLockRegistry:
    """One re-entrant lock per user id.

    Runs for different users proceed in parallel; runs for the same user
    queue behind each other.  ``timeout`` bounds the wait so a stuck run
    cannot block callers forever.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, user_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        lock = self._lock_for(user_id)
        acquired = lock.acquire(timeout=self.timeout) if self.timeout is not None else lock.acquire()
        if not acquired:
            raise TimeoutError(f"Reconciliation for user {user_id} is already running")
        try:
            yield
        finally:
            lock.release()

    def __len__(self) -> int:
        return len(self._locks)
