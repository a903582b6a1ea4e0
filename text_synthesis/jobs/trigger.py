"""
Entry points that run the queue: a non-overlapping trigger and a periodic
scheduler that fires it.

One queue run ("cycle") processes a batch, sweeps expired completed jobs
and then records the run time in the shared RunState.
"""

import logging
import signal
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Callable

from .errors import PersistenceError
from .retention import RetentionSweeper
from .runner import QueueRunner, BatchResult

log = logging.getLogger(__name__)


class RunState:
    """
    Time of the last completed queue run, shared by everything in the process.

    ``last_run`` is 0.0 until the first cycle completes. It is kept in
    memory only; hosts that need it across restarts must persist it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._last_run = 0.0

    @property
    def last_run(self) -> float:
        with self._lock:
            return self._last_run

    @property
    def has_run(self) -> bool:
        return self.last_run > 0

    def record(self, timestamp: float):
        with self._lock:
            self._last_run = timestamp


class CycleStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"      # another cycle was still running
    FAILED = "failed"        # job database unavailable


@dataclass
class CycleResult:
    """Outcome of one trigger firing."""
    status: CycleStatus
    batch: Optional[BatchResult] = None
    swept: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == CycleStatus.COMPLETED


class Trigger:
    """
    Runs one queue cycle per firing, never two at once.

    A firing that arrives while a cycle is in progress is skipped, not
    queued.
    """

    def __init__(
        self,
        runner: QueueRunner,
        sweeper: RetentionSweeper,
        parallel_calls: int = 0,
        state: Optional[RunState] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Args:
            runner: Queue runner used for the batch
            sweeper: Retention sweeper run after the batch
            parallel_calls: Batch limit, 0 for all waiting jobs
            state: Shared run state (a new one if omitted)
            clock: Source of the last-run timestamp
        """
        if parallel_calls < 0:
            raise ValueError("parallel_calls must be 0 (unlimited) or positive")

        self.runner = runner
        self.sweeper = sweeper
        self.parallel_calls = parallel_calls
        self.state = state if state is not None else RunState()
        self.clock = clock
        self._cycle_lock = threading.Lock()

    @property
    def last_run(self) -> float:
        return self.state.last_run

    @property
    def is_running(self) -> bool:
        return self._cycle_lock.locked()

    def fire(self) -> CycleResult:
        """
        Run one cycle: batch, retention sweep, then record the run time.

        Returns:
            CycleResult; FAILED cycles carry the persistence error message
            and do not update ``last_run``
        """
        if not self._cycle_lock.acquire(blocking=False):
            log.info("Queue run still in progress, skipping this trigger")
            return CycleResult(CycleStatus.SKIPPED)

        try:
            try:
                batch = self.runner.process_batch(limit=self.parallel_calls)
                swept = self.sweeper.sweep()
            except PersistenceError as e:
                log.error("Queue run aborted: %s", e)
                return CycleResult(CycleStatus.FAILED, error=str(e))

            self.state.record(self.clock())
            return CycleResult(CycleStatus.COMPLETED, batch=batch, swept=swept)
        finally:
            self._cycle_lock.release()


class PeriodicScheduler:
    """
    Fires a Trigger every ``interval_seconds`` on a background thread.

    Intervals are measured from the start of one firing to the start of the
    next. A cycle that overruns the interval delays the next firing instead
    of stacking firings up.
    """

    def __init__(
        self,
        trigger: Trigger,
        interval_seconds: float,
        fire_on_start: bool = True
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self.trigger = trigger
        self.interval_seconds = interval_seconds
        self.fire_on_start = fire_on_start

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> threading.Thread:
        """Start the scheduler thread (daemon). Returns the thread."""
        if self.running:
            raise RuntimeError("Scheduler already running")

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name="synthesis-scheduler"
        )
        self._thread.start()
        log.info("Scheduler started, interval %gs", self.interval_seconds)
        return self._thread

    def stop(self, timeout: Optional[float] = None):
        """Ask the loop to stop and wait for the current cycle to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_forever(self):
        """
        Run the loop in the calling thread until SIGINT or SIGTERM.

        Must be called from the main thread.
        """
        def _signal_handler(signum, frame):
            log.info("Received signal %s, shutting down gracefully...", signum)
            self._stop.set()

        signal.signal(signal.SIGTERM, _signal_handler)
        signal.signal(signal.SIGINT, _signal_handler)

        self._stop.clear()
        self._loop()

    def _loop(self):
        next_fire = time.monotonic() + (0 if self.fire_on_start else self.interval_seconds)

        while not self._stop.wait(max(0.0, next_fire - time.monotonic())):
            next_fire = time.monotonic() + self.interval_seconds
            try:
                self.trigger.fire()
            except Exception:
                log.exception("Unexpected error in scheduled queue run")

        log.info("Scheduler stopped")
