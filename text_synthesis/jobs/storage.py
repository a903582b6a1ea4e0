"""
SQLite storage layer for job persistence.

Provides thread-safe database operations for the job queue system. This is
the only component that writes job state; every status transition is a
single conditional UPDATE so concurrent runners cannot double-dispatch.
"""

import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, List, Dict, Any, Callable

from .errors import PersistenceError
from .models import SynthesisJob, SynthesisRequest, JobStatus, JobID


class JobStorage:
    """
    SQLite-based storage for synthesis jobs.

    Features:
    - Thread-local connections, one per worker thread
    - WAL mode for concurrent readers during a batch
    - Atomic compare-and-set claim
    - sqlite3 errors surface as PersistenceError
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize storage.

        Args:
            db_path: Path to SQLite database file. Defaults to ~/.text-synthesis/jobs.db
            clock: Source of timestamps for created_at/started_at
        """
        if db_path is None:
            data_dir = Path.home() / ".text-synthesis"
            data_dir.mkdir(exist_ok=True)
            db_path = str(data_dir / "jobs.db")

        self.db_path = db_path
        self.clock = clock
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

        self._initialize_database()

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a thread-local database connection.

        Each thread gets its own connection for thread safety.
        """
        if not hasattr(self._local, 'connection'):
            try:
                conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA foreign_keys=ON")
            except sqlite3.Error as e:
                raise PersistenceError(f"Cannot open job database {self.db_path}: {e}") from e

            self._local.connection = conn
            with self._connections_lock:
                self._connections.append(conn)

        return self._local.connection

    @contextmanager
    def _transaction(self):
        """
        Context manager for database transactions.

        Automatically commits on success, rolls back on error.
        """
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Job database write failed: {e}") from e
        except Exception:
            conn.rollback()
            raise

    def _query(self, sql: str, params=()) -> List[sqlite3.Row]:
        try:
            return self._get_connection().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Job database read failed: {e}") from e

    def _initialize_database(self):
        """Initialize database schema from schema.sql."""
        schema_path = Path(__file__).parent / "schema.sql"

        with open(schema_path, 'r') as f:
            schema_sql = f.read()

        try:
            conn = self._get_connection()
            conn.executescript(schema_sql)
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot initialize job database {self.db_path}: {e}") from e

    # Job CRUD Operations

    def create_job(self, job: SynthesisJob) -> JobID:
        """
        Insert a new waiting job.

        The job's id is assigned by the database and written back to ``job``.

        Returns:
            ID of the created job
        """
        job_dict = job.to_dict()

        with self._transaction() as conn:
            cursor = conn.execute("""
                INSERT INTO jobs (
                    page_ref, field_ref, request, status, error,
                    created_at, started_at, completed_at
                ) VALUES (
                    :page_ref, :field_ref, :request, :status, :error,
                    :created_at, :started_at, :completed_at
                )
            """, job_dict)

        job.id = cursor.lastrowid
        return job.id

    def enqueue(self, request: SynthesisRequest, page_ref: str, field_ref: str) -> JobID:
        """
        Add a request to the queue.

        Args:
            request: Validated synthesis request
            page_ref: Host page reference (opaque)
            field_ref: Host field reference (opaque)

        Returns:
            ID of the new job
        """
        job = SynthesisJob(
            request=request,
            page_ref=str(page_ref),
            field_ref=str(field_ref),
            created_at=self.clock(),
        )
        return self.create_job(job)

    def get_job(self, job_id: JobID) -> Optional[SynthesisJob]:
        """
        Retrieve a job by ID.

        Returns:
            SynthesisJob instance or None if not found
        """
        rows = self._query("SELECT * FROM jobs WHERE id = ?", (job_id,))
        if not rows:
            return None

        return SynthesisJob.from_dict(dict(rows[0]))

    def list_jobs(self, status: Optional[JobStatus] = None) -> List[SynthesisJob]:
        """
        Get all jobs in creation order, optionally filtered by status.

        Args:
            status: Filter by job status (None for all)
        """
        query = "SELECT * FROM jobs"
        params = []

        if status is not None:
            query += " WHERE status = ?"
            params.append(JobStatus(status).value)

        query += " ORDER BY created_at ASC, id ASC"

        return [SynthesisJob.from_dict(dict(row)) for row in self._query(query, params)]

    def get_waiting_jobs(self, limit: Optional[int] = None) -> List[SynthesisJob]:
        """
        Get waiting jobs, oldest first.

        Args:
            limit: Maximum number of jobs to return (None or 0 for all)
        """
        query = """
            SELECT * FROM jobs
            WHERE status = 'waiting'
            ORDER BY created_at ASC, id ASC
        """
        params = []

        if limit:
            query += " LIMIT ?"
            params.append(limit)

        return [SynthesisJob.from_dict(dict(row)) for row in self._query(query, params)]

    # Status transitions (Atomic)

    def claim(self, job_id: JobID) -> bool:
        """
        Atomically move a job from waiting to processing.

        This is the only way into processing. The conditional UPDATE means
        at most one caller, across threads and processes, gets True for a
        given job.

        Returns:
            True if this caller now owns the job
        """
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE jobs
                SET status = 'processing', started_at = ?
                WHERE id = ? AND status = 'waiting'
            """, (self.clock(), job_id))

        return cursor.rowcount == 1

    def mark_completed(self, job_id: JobID, timestamp: float) -> bool:
        """
        Record a successful synthesis for a job in processing.

        Returns:
            False if the job is gone or no longer processing
        """
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE jobs
                SET status = 'completed', completed_at = ?, error = NULL
                WHERE id = ? AND status = 'processing'
            """, (timestamp, job_id))

        return cursor.rowcount == 1

    def mark_error(self, job_id: JobID, message: str) -> bool:
        """
        Record a failed synthesis for a job in processing.

        The message is stored exactly as given.

        Returns:
            False if the job is gone or no longer processing
        """
        if not message:
            message = "Unknown error"

        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE jobs
                SET status = 'error', error = ?, completed_at = NULL
                WHERE id = ? AND status = 'processing'
            """, (message, job_id))

        return cursor.rowcount == 1

    def reset_to_waiting(self, job_id: JobID) -> bool:
        """
        Reset a completed or failed job so it is processed again.

        Clears error and completion time. A job that is already waiting is
        left as is.

        Returns:
            True if the job is now waiting, False if it does not exist or
            is currently being processed
        """
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE jobs
                SET status = 'waiting',
                    error = NULL,
                    started_at = NULL,
                    completed_at = NULL
                WHERE id = ? AND status IN ('waiting', 'completed', 'error')
            """, (job_id,))

        return cursor.rowcount == 1

    def reset_stalled(self, cutoff: float) -> List[JobID]:
        """
        Return jobs stuck in processing since ``cutoff`` or earlier to waiting.

        A job stays in processing if its runner died before recording an
        outcome. Only call this with a cutoff well past the request timeout,
        or a live runner may lose its job.

        Returns:
            IDs of the jobs reset
        """
        with self._transaction() as conn:
            rows = conn.execute("""
                SELECT id FROM jobs
                WHERE status = 'processing' AND started_at <= ?
                ORDER BY id
            """, (cutoff,)).fetchall()
            job_ids = [row['id'] for row in rows]

            conn.executemany("""
                UPDATE jobs
                SET status = 'waiting', started_at = NULL
                WHERE id = ? AND status = 'processing'
            """, [(job_id,) for job_id in job_ids])

        return job_ids

    # Deletion

    def delete_job(self, job_id: JobID) -> bool:
        """
        Delete a job and its log entries.

        Returns:
            True if a job was deleted
        """
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))

        return cursor.rowcount == 1

    def delete_by_status(self, status: JobStatus) -> int:
        """Delete every job with the given status. Returns the number deleted."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM jobs WHERE status = ?",
                (JobStatus(status).value,)
            )

        return cursor.rowcount

    def delete_all(self) -> int:
        """Delete every job. Returns the number deleted."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM jobs")

        return cursor.rowcount

    def delete_completed_before(self, cutoff: float) -> int:
        """
        Delete completed jobs whose completion time is at or before ``cutoff``.

        Returns:
            Number of jobs deleted
        """
        with self._transaction() as conn:
            cursor = conn.execute("""
                DELETE FROM jobs
                WHERE status = 'completed' AND completed_at <= ?
            """, (cutoff,))

        return cursor.rowcount

    # Job Log Operations

    def add_log(
        self,
        job_id: JobID,
        level: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None
    ):
        """
        Add a log entry for a job.

        Args:
            job_id: Job ID
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            message: Log message
            metadata: Optional additional context
        """
        metadata_json = json.dumps(metadata) if metadata else None

        with self._transaction() as conn:
            conn.execute("""
                INSERT INTO job_logs (job_id, timestamp, level, message, metadata)
                SELECT ?, ?, ?, ?, ? WHERE EXISTS (SELECT 1 FROM jobs WHERE id = ?)
            """, (job_id, self.clock(), level, message, metadata_json, job_id))

    def get_logs(
        self,
        job_id: JobID,
        level: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Get log entries for a job, newest first.

        Args:
            job_id: Job ID
            level: Filter by log level (None for all)
            limit: Maximum number of entries to return
        """
        query = "SELECT * FROM job_logs WHERE job_id = ?"
        params = [job_id]

        if level is not None:
            query += " AND level = ?"
            params.append(level)

        query += " ORDER BY timestamp DESC, id DESC"

        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        logs = []
        for row in self._query(query, params):
            log_dict = dict(row)
            if log_dict.get('metadata'):
                log_dict['metadata'] = json.loads(log_dict['metadata'])
            logs.append(log_dict)

        return logs

    # Statistics

    def get_statistics(self) -> Dict[str, int]:
        """
        Count jobs per status.

        Returns:
            Mapping of every status value to its job count
        """
        stats = {status.value: 0 for status in JobStatus}
        rows = self._query("SELECT status, COUNT(*) AS count FROM jobs GROUP BY status")
        for row in rows:
            stats[row['status']] = row['count']

        return stats

    def release_connection(self):
        """
        Close the calling thread's connection, if it has one.

        Worker threads call this before they exit; the next call from the
        same thread opens a new connection.
        """
        conn = getattr(self._local, 'connection', None)
        if conn is None:
            return

        del self._local.connection
        with self._connections_lock:
            if conn in self._connections:
                self._connections.remove(conn)
        conn.close()

    def close(self):
        """Close all database connections opened by this storage."""
        with self._connections_lock:
            connections, self._connections = self._connections, []

        for conn in connections:
            conn.close()

        # Connections are closed; force each thread to reconnect
        self._local = threading.local()
