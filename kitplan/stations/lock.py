import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Optional

from kitplan.logging_config import get_logger

logger = get_logger(__name__)


class JobLockManager:
    """
    Per-job mutexes serialising station counter updates inside one process.

    Different jobs get different locks, so they never wait on each other.
    The database row update is still the source of truth across processes;
    this only keeps threads of one worker from racing on the same row.

    A job's entry lives only while some thread holds or waits for its lock,
    so the registry stays as small as the set of jobs being worked on.
    """

    def __init__(self):
        self._registry_lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}
        self._holders: Dict[str, str] = {}
        self._acquired_at: Dict[str, datetime] = {}

    def _checkout(self, job_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[job_id] = lock
            self._users[job_id] = self._users.get(job_id, 0) + 1
            return lock

    def _checkin(self, job_id: str) -> None:
        with self._registry_lock:
            self._users[job_id] -= 1
            if self._users[job_id] == 0:
                del self._users[job_id]
                del self._locks[job_id]

    def is_locked(self, job_id: str) -> bool:
        with self._registry_lock:
            lock = self._locks.get(job_id)
        return lock is not None and lock.locked()

    @contextmanager
    def acquire(self, job_id: str, operation_name: str):
        """
        Hold the job's lock for the duration of the block.

        Blocks until the lock is free (no timeout).
        """
        lock = self._checkout(job_id)
        try:
            lock.acquire()
            self._holders[job_id] = operation_name
            self._acquired_at[job_id] = datetime.now()
            logger.debug("Job lock acquired", job_id=job_id, operation=operation_name)
            try:
                yield
            finally:
                self._holders.pop(job_id, None)
                self._acquired_at.pop(job_id, None)
                lock.release()
                logger.debug("Job lock released", job_id=job_id, operation=operation_name)
        finally:
            self._checkin(job_id)

    def get_status(self, job_id: Optional[str] = None) -> dict:
        """Which jobs are currently locked, and by what operation."""
        with self._registry_lock:
            job_ids = [job_id] if job_id is not None else list(self._locks)
            tracked = len(self._locks)
        now = datetime.now()
        locked = {}
        for jid in job_ids:
            acquired_at = self._acquired_at.get(jid)
            if self.is_locked(jid):
                locked[jid] = {
                    "operation": self._holders.get(jid),
                    "held_for_seconds": (now - acquired_at).total_seconds() if acquired_at else 0,
                }
        return {
            "timestamp": now.isoformat(),
            "locked_jobs": locked,
            "tracked_jobs": tracked,
        }


# Global instance - create once and reuse
job_lock_manager = JobLockManager()
