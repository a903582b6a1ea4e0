"""
Queue runner: claims waiting jobs and synthesizes them.

A batch takes the oldest waiting jobs, claims each one and calls the
synthesis client for it on a thread pool sized to the batch limit. A failure
is recorded on its job and never stops the rest of the batch; only
PersistenceError escapes.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, List, Callable, Any

from .errors import PersistenceError, ClaimConflict
from .logger import JobLogger
from .models import SynthesisJob, JobStatus, JobID
from .storage import JobStorage

log = logging.getLogger(__name__)

# Called with (job, result) after a successful synthesis, e.g. to store the
# audio on the host page. Raising marks the job as failed.
ResultHandler = Callable[[SynthesisJob, Any], None]


@dataclass
class BatchResult:
    """Job IDs touched by one batch, by outcome."""
    completed: List[JobID] = field(default_factory=list)
    failed: List[JobID] = field(default_factory=list)
    skipped: List[JobID] = field(default_factory=list)  # claim lost to another runner

    @property
    def claimed(self) -> List[JobID]:
        return self.completed + self.failed

    def record(self, job_id: JobID, status: Optional[JobStatus]):
        if status == JobStatus.COMPLETED:
            self.completed.append(job_id)
        elif status == JobStatus.ERROR:
            self.failed.append(job_id)
        else:
            self.skipped.append(job_id)


class QueueRunner:
    """
    Executes waiting jobs against a synthesis client.

    Example:
        runner = QueueRunner(storage, GoogleSynthesisClient(endpoint, api_key))
        result = runner.process_batch(limit=3)
        print(f"{len(result.completed)} completed, {len(result.failed)} failed")
    """

    def __init__(
        self,
        storage: JobStorage,
        client,
        result_handler: Optional[ResultHandler] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize runner.

        Args:
            storage: Job storage
            client: Object with ``synthesize(request)`` (see SynthesisClient)
            result_handler: Optional callback receiving each successful result
            clock: Source of completion timestamps
        """
        self.storage = storage
        self.client = client
        self.result_handler = result_handler
        self.clock = clock

    def process_batch(self, limit: int = 0) -> BatchResult:
        """
        Process up to ``limit`` waiting jobs, oldest first.

        At most ``limit`` synthesis calls are in flight at once. Jobs beyond
        the limit stay waiting for the next batch.

        Args:
            limit: Maximum jobs in this batch, 0 for all waiting jobs

        Returns:
            BatchResult with the IDs of completed, failed and skipped jobs

        Raises:
            PersistenceError: If the job database fails; the batch is aborted
        """
        if limit < 0:
            raise ValueError("limit must be 0 (unlimited) or positive")

        result = BatchResult()
        jobs = self.storage.get_waiting_jobs(limit or None)
        if not jobs:
            log.debug("No waiting jobs")
            return result

        workers = min(limit or len(jobs), len(jobs))
        log.info("Processing %d job(s) with %d worker(s)", len(jobs), workers)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="synthesis") as executor:
            futures = [(job.id, executor.submit(self._run_in_worker, job)) for job in jobs]
            try:
                for job_id, future in futures:
                    result.record(job_id, future.result())
            except PersistenceError:
                for _, future in futures:
                    future.cancel()
                raise

        log.info(
            "Batch finished: %d completed, %d failed, %d skipped",
            len(result.completed), len(result.failed), len(result.skipped)
        )
        return result

    def process_job(self, job_id: JobID) -> JobStatus:
        """
        Claim and process a single job outside of a batch.

        Returns:
            JobStatus.COMPLETED or JobStatus.ERROR

        Raises:
            ClaimConflict: If the job is gone or not waiting
        """
        job = self.storage.get_job(job_id)
        status = self._claim_and_execute(job) if job is not None else None
        if status is None:
            raise ClaimConflict(job_id)
        return status

    def _run_in_worker(self, job: SynthesisJob) -> Optional[JobStatus]:
        # Pool threads are discarded after the batch; close their connections
        try:
            return self._claim_and_execute(job)
        finally:
            self.storage.release_connection()

    def _claim_and_execute(self, job: SynthesisJob) -> Optional[JobStatus]:
        if not self.storage.claim(job.id):
            log.debug("Job %s already claimed, skipping", job.id)
            return None

        job.status = JobStatus.PROCESSING
        return self.execute_job(job)

    def execute_job(self, job: SynthesisJob) -> JobStatus:
        """
        Synthesize a job the caller has already claimed.

        Args:
            job: Job in processing state

        Returns:
            JobStatus.COMPLETED or JobStatus.ERROR
        """
        logger = JobLogger(job.id, self.storage)
        logger.info(
            "Synthesis started",
            metadata={'mode': job.request.mode, 'page': job.page_ref, 'field': job.field_ref}
        )
        started = time.monotonic()

        try:
            output = self.client.synthesize(job.request)
            if self.result_handler is not None:
                self.result_handler(job, output)
        except PersistenceError:
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            if self.storage.mark_error(job.id, message):
                logger.log_failure(e, "synthesis")
            else:
                log.warning("Job %s vanished before its failure could be recorded: %s", job.id, message)
            job.status, job.error = JobStatus.ERROR, message
            return JobStatus.ERROR

        completed_at = self.clock()
        if self.storage.mark_completed(job.id, completed_at):
            logger.info(
                f"Synthesis completed in {time.monotonic() - started:.1f}s",
                metadata={'audio_bytes': len(getattr(output, 'audio_content', b'') or b'')}
            )
        else:
            log.warning("Job %s vanished before its completion could be recorded", job.id)
        job.status, job.completed_at = JobStatus.COMPLETED, completed_at
        return JobStatus.COMPLETED
