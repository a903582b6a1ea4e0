"""
Structured logging system for jobs.

Provides thread-safe logging with persistence to the database.
"""

import logging
import threading
import traceback
from typing import Optional, Dict, Any

from .models import JobID
from .storage import JobStorage


class JobLogger:
    """
    Logger for job-specific structured logging.

    Features:
    - Thread-safe logging operations
    - Persistence to database via JobStorage
    - Structured metadata support
    - Standard Python logging integration
    """

    # Log levels
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def __init__(self, job_id: JobID, storage: JobStorage):
        """
        Initialize logger for a specific job.

        Args:
            job_id: Job ID to log for
            storage: JobStorage instance for persistence
        """
        self.job_id = job_id
        self.storage = storage
        self._lock = threading.Lock()

        self._py_logger = logging.getLogger(f"text_synthesis.job.{job_id}")

    def _log(
        self,
        level: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None
    ):
        with self._lock:
            self.storage.add_log(
                job_id=self.job_id,
                level=level,
                message=message,
                metadata=metadata
            )

            py_level = self._level_to_py_level(level)
            if self._py_logger.isEnabledFor(py_level):
                extra_msg = f" [{metadata}]" if metadata else ""
                self._py_logger.log(py_level, f"{message}{extra_msg}")

    @staticmethod
    def _level_to_py_level(level: str) -> int:
        """Convert string level to Python logging level."""
        return {
            "DEBUG": logging.DEBUG,
            "INFO": logging.INFO,
            "WARNING": logging.WARNING,
            "ERROR": logging.ERROR,
            "CRITICAL": logging.CRITICAL,
        }.get(level, logging.INFO)

    def debug(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        self._log(self.DEBUG, message, metadata)

    def info(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        self._log(self.INFO, message, metadata)

    def warning(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        self._log(self.WARNING, message, metadata)

    def error(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        self._log(self.ERROR, message, metadata)

    def critical(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        self._log(self.CRITICAL, message, metadata)

    def log_failure(self, error: BaseException, context: str):
        """
        Log a job failure with its exception details.

        Args:
            error: Exception raised while processing the job
            context: Description of what was being done
        """
        self.error(
            f"Error during {context}: {type(error).__name__}: {error}",
            metadata={
                "error_type": type(error).__name__,
                "error_message": str(error),
                "context": context,
                "traceback": "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                ),
            }
        )
