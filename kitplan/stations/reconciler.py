"""
Client-side kit progress reconciliation.

Each execution station keeps its own view of the job (current kit, timers)
and periodically pulls the authoritative shared count. Only the shared count
is taken from the poll; the station's own in-flight kit is never overwritten.
"""

import threading
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from kitplan.logging_config import get_logger
from kitplan.stations.config import StationConfig

logger = get_logger(__name__)


@dataclass(frozen=True)
class StationProgressState:
    """What one station displays."""
    job_id: str
    station_number: Optional[int]
    completed_kits: int = 0
    remaining_kits: int = 0
    current_kit_number: Optional[int] = None


class StationProgressTracker:
    """
    Local progress state of one station, reconciled against the shared count.
    """

    def __init__(self, job_id: str, station_number: Optional[int] = None, ordered_quantity: int = 0):
        self._lock = threading.Lock()
        self._state = StationProgressState(
            job_id=job_id,
            station_number=station_number,
            completed_kits=0,
            remaining_kits=ordered_quantity,
        )
        self.ordered_quantity = ordered_quantity

    @property
    def state(self) -> StationProgressState:
        with self._lock:
            return self._state

    def start_kit(self, kit_number: int) -> StationProgressState:
        with self._lock:
            self._state = replace(self._state, current_kit_number=kit_number)
            return self._state

    def complete_kit(self) -> StationProgressState:
        """Optimistic local bump; the next poll corrects it if another station also finished one."""
        with self._lock:
            completed = self._state.completed_kits + 1
            self._state = replace(
                self._state,
                completed_kits=completed,
                remaining_kits=max(self.ordered_quantity - completed, 0),
                current_kit_number=None,
            )
            return self._state

    def reconcile(self, authoritative: Dict[str, Any]) -> bool:
        """
        Apply a polled progress payload.

        Args:
            authoritative: ``get_progress`` output (needs ``completed_kits``)

        Returns:
            bool: True if the displayed count changed
        """
        completed = authoritative.get('completed_kits')
        if completed is None:
            return False

        with self._lock:
            if completed == self._state.completed_kits:
                return False

            if authoritative.get('ordered_quantity') is not None:
                self.ordered_quantity = authoritative['ordered_quantity']
            remaining = authoritative.get('remaining_kits')
            if remaining is None:
                remaining = max(self.ordered_quantity - completed, 0)

            previous = self._state.completed_kits
            self._state = replace(self._state, completed_kits=completed, remaining_kits=remaining)

        logger.debug(
            "Station progress reconciled",
            job_id=self._state.job_id,
            station_number=self._state.station_number,
            previous_completed=previous,
            completed_kits=completed,
        )
        return True


class ProgressPoller:
    """
    Fire-and-forget interval poll feeding a StationProgressTracker.

    ``fetch`` returns the authoritative progress dict for the tracker's job
    (typically ``get_progress`` or an HTTP call to it). A failing fetch is
    logged and retried on the next tick; ``stop()`` is the only cancellation.
    """

    def __init__(
        self,
        tracker: StationProgressTracker,
        fetch: Callable[[str], Dict[str, Any]],
        interval_seconds: Optional[int] = None,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self.tracker = tracker
        self.fetch = fetch
        self.interval_seconds = interval_seconds or StationConfig.PROGRESS_POLL_INTERVAL_SECONDS
        self._scheduler = scheduler or BackgroundScheduler()
        self._owns_scheduler = scheduler is None
        self._job = None

    @property
    def job_id(self) -> str:
        return f"progress-poll-{self.tracker.state.job_id}-{self.tracker.state.station_number}"

    @property
    def running(self) -> bool:
        return self._job is not None

    def poll_once(self) -> bool:
        """Fetch once and reconcile. Returns True if the tracker changed."""
        job_id = self.tracker.state.job_id
        try:
            authoritative = self.fetch(job_id)
        except Exception as exc:
            logger.warning("Progress poll failed", job_id=job_id, error=str(exc))
            return False
        return self.tracker.reconcile(authoritative)

    def start(self):
        if self._job is not None:
            return
        self._job = self._scheduler.add_job(
            func=self.poll_once,
            trigger="interval",
            seconds=self.interval_seconds,
            id=self.job_id,
            replace_existing=True,
        )
        if self._owns_scheduler and not self._scheduler.running:
            self._scheduler.start()
        logger.info("Progress poller started", poll_job_id=self.job_id, interval_seconds=self.interval_seconds)

    def stop(self):
        if self._job is None:
            return
        self._job.remove()
        self._job = None
        if self._owns_scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("Progress poller stopped", poll_job_id=self.job_id)
