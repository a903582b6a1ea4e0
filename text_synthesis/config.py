"""Queue configuration for text synthesis.

Settings can come from keyword arguments, from environment variables, or
from the host's module configuration (which uses the original camelCase
keys such as ``cronSchedule`` and ``cronParallelCalls``).
"""

import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .client import DEFAULT_ENDPOINT
from .jobs.errors import ConfigurationError


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('1', 'true', 'yes', 'on')


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


def _as_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e


@dataclass
class QueueConfig:
    """Configuration for the synthesis queue.

    Attributes:
        endpoint: Synthesis API base URL
        api_key: Synthesis API key
        interval_seconds: Seconds between scheduled queue runs (cronSchedule)
        parallel_calls: Jobs processed per run, 0 for all (cronParallelCalls)
        delete_completed: Remove completed jobs during each run
        delete_completed_after: Seconds a completed job is kept, 0 for immediately
        db_path: SQLite database path (None for ~/.text-synthesis/jobs.db)
        request_timeout: Seconds before a synthesis call counts as failed
    """
    endpoint: str = DEFAULT_ENDPOINT
    api_key: str = ""
    interval_seconds: int = 300
    parallel_calls: int = 3
    delete_completed: bool = True
    delete_completed_after: int = 86400
    db_path: Optional[str] = None
    request_timeout: float = 60.0

    def __post_init__(self):
        """Normalize empty values after dataclass init."""
        if self.endpoint is None:
            self.endpoint = ""
        if self.api_key is None:
            self.api_key = ""
        if not self.db_path:
            self.db_path = None

    def validate(self) -> 'QueueConfig':
        """Check value ranges.

        Endpoint and API key are not checked here; the synthesis client
        reports them per job so the queue keeps running.

        Raises:
            ConfigurationError: If a numeric setting is out of range
        """
        if self.interval_seconds <= 0:
            raise ConfigurationError("cronSchedule must be a positive number of seconds")
        if not 0 <= self.parallel_calls <= 1000:
            raise ConfigurationError("cronParallelCalls must be between 0 and 1000")
        if self.delete_completed_after < 0:
            raise ConfigurationError("deleteCompletedAfter must not be negative")
        if self.request_timeout <= 0:
            raise ConfigurationError("request timeout must be positive")
        return self

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'QueueConfig':
        """Load configuration from the host's module settings.

        Keys: endpoint, apiKey, cronSchedule, cronParallelCalls,
        deleteCompleted, deleteCompletedAfter, dbPath, requestTimeout.
        Missing keys keep their defaults.
        """
        config = cls()
        if 'endpoint' in data:
            config.endpoint = data['endpoint'] or ""
        if 'apiKey' in data:
            config.api_key = data['apiKey'] or ""
        if 'cronSchedule' in data:
            config.interval_seconds = _as_int(data['cronSchedule'], 'cronSchedule')
        if 'cronParallelCalls' in data:
            config.parallel_calls = _as_int(data['cronParallelCalls'], 'cronParallelCalls')
        if 'deleteCompleted' in data:
            config.delete_completed = bool(data['deleteCompleted'])
        if 'deleteCompletedAfter' in data:
            config.delete_completed_after = _as_int(data['deleteCompletedAfter'], 'deleteCompletedAfter')
        if 'dbPath' in data:
            config.db_path = data['dbPath'] or None
        if 'requestTimeout' in data:
            config.request_timeout = _as_float(data['requestTimeout'], 'requestTimeout')
        return config.validate()

    @classmethod
    def from_env(cls) -> 'QueueConfig':
        """Load configuration from environment variables.

        Environment variables:
            TEXT_SYNTHESIS_ENDPOINT: API base URL
            TEXT_SYNTHESIS_API_KEY: API key
            TEXT_SYNTHESIS_CRON_SCHEDULE: Seconds between runs (integer)
            TEXT_SYNTHESIS_CRON_PARALLEL_CALLS: Jobs per run, 0 for all (integer)
            TEXT_SYNTHESIS_DELETE_COMPLETED: Delete completed jobs ('true'/'false')
            TEXT_SYNTHESIS_DELETE_COMPLETED_AFTER: Retention in seconds (integer)
            TEXT_SYNTHESIS_DB_PATH: SQLite database path
            TEXT_SYNTHESIS_REQUEST_TIMEOUT: Synthesis call timeout in seconds

        Returns:
            Validated QueueConfig instance
        """
        return cls(
            endpoint=os.getenv('TEXT_SYNTHESIS_ENDPOINT', DEFAULT_ENDPOINT),
            api_key=os.getenv('TEXT_SYNTHESIS_API_KEY', ''),
            interval_seconds=_as_int(os.getenv('TEXT_SYNTHESIS_CRON_SCHEDULE', '300'), 'TEXT_SYNTHESIS_CRON_SCHEDULE'),
            parallel_calls=_as_int(os.getenv('TEXT_SYNTHESIS_CRON_PARALLEL_CALLS', '3'), 'TEXT_SYNTHESIS_CRON_PARALLEL_CALLS'),
            delete_completed=_env_bool('TEXT_SYNTHESIS_DELETE_COMPLETED', 'true'),
            delete_completed_after=_as_int(os.getenv('TEXT_SYNTHESIS_DELETE_COMPLETED_AFTER', '86400'), 'TEXT_SYNTHESIS_DELETE_COMPLETED_AFTER'),
            db_path=os.getenv('TEXT_SYNTHESIS_DB_PATH') or None,
            request_timeout=_as_float(os.getenv('TEXT_SYNTHESIS_REQUEST_TIMEOUT', '60'), 'TEXT_SYNTHESIS_REQUEST_TIMEOUT'),
        ).validate()
