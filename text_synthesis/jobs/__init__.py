"""
Synthesis job queue.

Jobs are persisted to SQLite and processed in batches, either by a periodic
scheduler or on demand, with a cap on parallel synthesis calls.

Key Components:
- JobManager: High-level API used by the host (enqueue, run, delete)
- JobStorage: SQLite persistence layer and the atomic claim
- QueueRunner: Batch execution against a synthesis client
- RetentionSweeper: Cleanup of old completed jobs
- Trigger / PeriodicScheduler: Non-overlapping queue runs
- JobLogger: Structured per-job logging

Example Usage:
    from text_synthesis.jobs import JobManager

    manager = JobManager()
    job_id = manager.submit_job({"input": {"text": "Hello"}}, page_ref="1", field_ref="audio")

    manager.run_queue()
    print(manager.get_job(job_id).status)
"""

from .errors import (
    SynthesisQueueError,
    ValidationError,
    ClaimConflict,
    PersistenceError,
    SynthesisError,
    TransientAPIError,
    ConfigurationError
)

from .models import (
    SynthesisJob,
    SynthesisRequest,
    SynthesisInput,
    VoiceSelection,
    AudioConfig,
    JobStatus,
    BulkSelector,
    ActionResult,
    JobID
)

from .storage import JobStorage
from .logger import JobLogger
from .runner import QueueRunner, BatchResult
from .retention import RetentionSweeper
from .trigger import Trigger, RunState, CycleResult, CycleStatus, PeriodicScheduler
from .manager import JobManager

__all__ = [
    # Errors
    'SynthesisQueueError',
    'ValidationError',
    'ClaimConflict',
    'PersistenceError',
    'SynthesisError',
    'TransientAPIError',
    'ConfigurationError',

    # Data models
    'SynthesisJob',
    'SynthesisRequest',
    'SynthesisInput',
    'VoiceSelection',
    'AudioConfig',
    'JobStatus',
    'BulkSelector',
    'ActionResult',
    'JobID',

    # Core components
    'JobStorage',
    'JobLogger',
    'QueueRunner',
    'BatchResult',
    'RetentionSweeper',
    'Trigger',
    'RunState',
    'CycleResult',
    'CycleStatus',
    'PeriodicScheduler',
    'JobManager',
]
