"""
Text synthesis queue.

Converts stored text and SSML content into audio through a speech synthesis
API, using a persistent job queue that runs on a schedule or on demand.
"""

__version__ = "1.0.0"

from .jobs import (
    JobManager,
    JobStatus,
    SynthesisJob,
    SynthesisRequest,
    ActionResult,
    BulkSelector,
    ValidationError,
    PersistenceError,
    SynthesisError,
    TransientAPIError,
    ConfigurationError
)
from .client import GoogleSynthesisClient, SynthesisClient, SynthesisResult
from .config import QueueConfig

__all__ = [
    'JobManager',
    'JobStatus',
    'SynthesisJob',
    'SynthesisRequest',
    'ActionResult',
    'BulkSelector',
    'ValidationError',
    'PersistenceError',
    'SynthesisError',
    'TransientAPIError',
    'ConfigurationError',
    'GoogleSynthesisClient',
    'SynthesisClient',
    'SynthesisResult',
    'QueueConfig',
]
