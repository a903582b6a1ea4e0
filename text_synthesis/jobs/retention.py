"""Time-based cleanup of completed jobs."""

import logging
import time
from typing import Callable

from .storage import JobStorage

log = logging.getLogger(__name__)


class RetentionSweeper:
    """
    Deletes completed jobs once they are older than the retention period.

    A job completed at ``t`` is removed by the first sweep at or after
    ``t + delete_completed_after``. Waiting and failed jobs are never touched.
    """

    def __init__(
        self,
        storage: JobStorage,
        delete_completed: bool = True,
        delete_completed_after: int = 86400,
        clock: Callable[[], float] = time.time
    ):
        if delete_completed_after < 0:
            raise ValueError("delete_completed_after must not be negative")

        self.storage = storage
        self.delete_completed = delete_completed
        self.delete_completed_after = delete_completed_after
        self.clock = clock

    def sweep(self) -> int:
        """
        Delete expired completed jobs.

        Returns:
            Number of jobs deleted (0 when retention cleanup is disabled)
        """
        if not self.delete_completed:
            return 0

        deleted = self.storage.delete_completed_before(self.clock() - self.delete_completed_after)
        if deleted:
            log.info("Deleted %d completed job(s)", deleted)
        return deleted

    def describe(self) -> str:
        """Human-readable retention policy."""
        if not self.delete_completed:
            return "Completed jobs are not deleted."
        if self.delete_completed_after == 0:
            return "Completed jobs are deleted immediately"
        return f"Completed jobs are deleted after {_format_duration(self.delete_completed_after)}"


def _format_duration(seconds: int) -> str:
    for unit, size in (("week", 604800), ("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size and seconds % size == 0:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''}"
    return f"{seconds} second{'s' if seconds != 1 else ''}"
