"""
High-level job management API.

Provides the interface the host uses: enqueue requests, trigger the queue,
and the manual run/delete actions of the admin page.
"""

import logging
import time
from typing import Optional, List, Dict, Any, Union, Mapping, Callable

from ..client import GoogleSynthesisClient
from ..config import QueueConfig
from .errors import PersistenceError, ClaimConflict
from .logger import JobLogger
from .models import (
    SynthesisJob,
    SynthesisRequest,
    JobStatus,
    BulkSelector,
    ActionResult,
    JobID
)
from .retention import RetentionSweeper
from .runner import QueueRunner, ResultHandler
from .storage import JobStorage
from .trigger import Trigger, RunState, CycleResult, PeriodicScheduler

log = logging.getLogger(__name__)


class JobManager:
    """
    High-level API for the synthesis queue.

    Example:
        manager = JobManager(QueueConfig.from_env())

        job_id = manager.submit_job(
            {"input": {"text": "Hello"}, "voice": {"languageCode": "en-US"}},
            page_ref="1042",
            field_ref="body"
        )

        manager.run_queue()              # what the scheduler does
        result = manager.run_job(job_id)  # "run again" button
        print(result.message)
    """

    def __init__(
        self,
        config: Optional[QueueConfig] = None,
        client=None,
        result_handler: Optional[ResultHandler] = None,
        state: Optional[RunState] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize job manager.

        Args:
            config: Queue configuration (defaults if omitted)
            client: Synthesis client (a GoogleSynthesisClient built from
                config if omitted)
            result_handler: Called with (job, result) after each success
            state: Shared run state for last-run reporting
            clock: Source of all timestamps
        """
        self.config = (config or QueueConfig()).validate()

        if client is None:
            client = GoogleSynthesisClient(
                endpoint=self.config.endpoint,
                api_key=self.config.api_key,
                timeout=self.config.request_timeout
            )

        self.storage = JobStorage(self.config.db_path, clock=clock)
        self.client = client
        self.runner = QueueRunner(self.storage, client, result_handler=result_handler, clock=clock)
        self.sweeper = RetentionSweeper(
            self.storage,
            delete_completed=self.config.delete_completed,
            delete_completed_after=self.config.delete_completed_after,
            clock=clock
        )
        self.trigger = Trigger(
            self.runner,
            self.sweeper,
            parallel_calls=self.config.parallel_calls,
            state=state,
            clock=clock
        )

    # Enqueue and queries

    def submit_job(
        self,
        request: Union[SynthesisRequest, Mapping[str, Any], str],
        page_ref: str,
        field_ref: str
    ) -> JobID:
        """
        Validate a request and add it to the queue.

        Args:
            request: Request payload as dict, JSON string or SynthesisRequest
            page_ref: Host page reference (opaque)
            field_ref: Host field reference (opaque)

        Returns:
            ID of the new waiting job

        Raises:
            ValidationError: If the request is malformed; nothing is stored
        """
        if isinstance(request, str):
            request = SynthesisRequest.from_json(request)
        elif not isinstance(request, SynthesisRequest):
            request = SynthesisRequest.from_dict(request)

        job_id = self.storage.enqueue(request, page_ref, field_ref)

        JobLogger(job_id, self.storage).info(
            f"Job enqueued for page {page_ref}, field {field_ref}",
            metadata={'mode': request.mode, 'details': request.describe()}
        )

        return job_id

    def get_job(self, job_id: JobID) -> Optional[SynthesisJob]:
        return self.storage.get_job(job_id)

    def get_all_jobs(self, status: Optional[JobStatus] = None) -> List[SynthesisJob]:
        """All jobs in creation order, optionally filtered by status."""
        return self.storage.list_jobs(status=status)

    def get_statistics(self) -> Dict[str, int]:
        return self.storage.get_statistics()

    def get_job_logs(
        self,
        job_id: JobID,
        level: Optional[str] = None,
        limit: int = 100
    ) -> List[Dict[str, Any]]:
        """Log entries for a job, newest first."""
        return self.storage.get_logs(job_id, level=level, limit=limit)

    @property
    def last_run(self) -> float:
        """Time of the last completed queue run, 0.0 if never."""
        return self.trigger.last_run

    def describe_retention(self) -> str:
        return self.sweeper.describe()

    # Queue execution

    def run_queue(self) -> CycleResult:
        """Run one queue cycle now (skipped if one is already running)."""
        return self.trigger.fire()

    def create_scheduler(self, fire_on_start: bool = True) -> PeriodicScheduler:
        """Scheduler that runs the queue every ``config.interval_seconds``."""
        return PeriodicScheduler(
            self.trigger,
            self.config.interval_seconds,
            fire_on_start=fire_on_start
        )

    # Manual actions

    def run_job(self, job_id: JobID) -> ActionResult:
        """
        Process one job immediately, whatever its current status.

        Completed and failed jobs are reset to waiting first. The job is
        still claimed like any other, so a concurrent batch cannot process
        it twice. A job in processing is refused; if its runner died, use
        recover_stalled_jobs() to return it to waiting.

        Returns:
            ActionResult, successful if the job completed
        """
        try:
            job = self.storage.get_job(job_id)
            if job is None:
                return ActionResult(False, f"Job #{job_id} not found")

            if not job.can_be_run() or not self.storage.reset_to_waiting(job_id):
                return ActionResult(False, f"Job #{job_id} is currently being processed")

            JobLogger(job_id, self.storage).info(
                "Manual run requested",
                metadata={'previous_status': job.status.value}
            )

            status = self.runner.process_job(job_id)
            if status == JobStatus.COMPLETED:
                return ActionResult(True, f"Job #{job_id} completed", affected=1)

            job = self.storage.get_job(job_id)
        except ClaimConflict:
            return ActionResult(False, f"Job #{job_id} was picked up by another queue run")
        except PersistenceError as e:
            log.error("Manual run of job %s failed: %s", job_id, e)
            return ActionResult(False, str(e))

        error = job.error if job is not None else "unknown error"
        return ActionResult(False, f"Job #{job_id} failed: {error}", affected=1)

    def delete_job(self, job_id: JobID) -> ActionResult:
        """Delete a job regardless of its status."""
        try:
            deleted = self.storage.delete_job(job_id)
        except PersistenceError as e:
            log.error("Deleting job %s failed: %s", job_id, e)
            return ActionResult(False, str(e))

        if not deleted:
            return ActionResult(False, f"Job #{job_id} not found")
        return ActionResult(True, f"Job #{job_id} deleted", affected=1)

    def delete_jobs(self, selector: Union[BulkSelector, str]) -> ActionResult:
        """
        Delete a group of jobs.

        Args:
            selector: 'pending' (waiting jobs), 'completed', 'error' or 'all'
        """
        try:
            selector = BulkSelector(selector)
        except ValueError:
            return ActionResult(False, f"Unknown job selector: {selector}")

        try:
            if selector.status is None:
                deleted = self.storage.delete_all()
            else:
                deleted = self.storage.delete_by_status(selector.status)
        except PersistenceError as e:
            log.error("Deleting %s jobs failed: %s", selector.value, e)
            return ActionResult(False, str(e))

        log.info("Deleted %d %s job(s)", deleted, selector.value)
        return ActionResult(True, f"{deleted} job(s) deleted", affected=deleted)

    def recover_stalled_jobs(self, older_than: Optional[float] = None) -> ActionResult:
        """
        Return jobs left in processing by a crashed runner to waiting.

        Args:
            older_than: Seconds a job must have been processing. Defaults to
                twice the request timeout, which no live synthesis call
                can reach.
        """
        if older_than is None:
            older_than = 2 * self.config.request_timeout
        if older_than < 0:
            return ActionResult(False, "older_than must not be negative")

        try:
            job_ids = self.storage.reset_stalled(self.trigger.clock() - older_than)
        except PersistenceError as e:
            log.error("Recovering stalled jobs failed: %s", e)
            return ActionResult(False, str(e))

        for job_id in job_ids:
            JobLogger(job_id, self.storage).warning(
                "Job was stuck in processing and has been returned to waiting"
            )
        if job_ids:
            log.warning("Returned %d stalled job(s) to waiting", len(job_ids))
        return ActionResult(True, f"{len(job_ids)} stalled job(s) returned to waiting", affected=len(job_ids))

    def close(self):
        """Close database connections and HTTP sessions."""
        self.storage.close()
        if hasattr(self.client, 'close'):
            self.client.close()
