import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from energy_auction.errors import ConcurrentClearingError


class TimeslotLocks:
    """One exclusive lock per timeslot id, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, timeslot_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(timeslot_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[timeslot_id] = lock
            return lock

    @contextmanager
    def hold(self, timeslot_id: str, timeout: float) -> Iterator[None]:
        lock = self._lock_for(timeslot_id)
        if not lock.acquire(timeout=timeout):
            raise ConcurrentClearingError(details={"timeslotId": timeslot_id, "timeout": timeout})
        try:
            yield
        finally:
            lock.release()

    def is_held(self, timeslot_id: str) -> bool:
        with self._guard:
            lock = self._locks.get(timeslot_id)
        return bool(lock and lock.locked())


# Shared by every orchestrator in the process unless one is injected.
timeslot_locks = TimeslotLocks()
