"""
Job Tracker Module
==================

In-memory registry of background pipeline runs. Jobs expire a fixed TTL
after creation whatever their state; expiry is enforced lazily on read and
by a background sweeper task scanning the registry on a fixed interval.
Abort is a flag the running pipeline observes at stage boundaries.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 30.0

MESSAGE_STARTING = "Starting vision processing..."
MESSAGE_CANCELLED = "Processing cancelled by user"
MESSAGE_COMPLETE = "Processing complete"

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class JobStatus(str, Enum):
    """Status of a pipeline run."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.ABORTED})


class JobNotFoundError(LookupError):
    """The job does not exist or has expired."""


class JobAccessDeniedError(PermissionError):
    """The job belongs to another user."""


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_job_id(user_id: str, shelf_id: str) -> str:
    """Build a job id of the form vision-{user}-{shelf}-{base36 ms}-{random}."""
    stamp = _to_base36(int(time.time() * 1000))
    return f"vision-{user_id}-{shelf_id}-{stamp}-{secrets.token_hex(4)}"


@dataclass
class ProcessingJob:
    """State of one pipeline run as seen by pollers."""

    job_id: str
    user_id: str
    shelf_id: str
    status: JobStatus = JobStatus.PENDING
    step: str = "initializing"
    progress: int = 0
    message: str = MESSAGE_STARTING
    abort_requested: bool = False
    result: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    # Monotonic creation time used for TTL eviction
    created_monotonic: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "jobId": self.job_id,
            "status": self.status.value,
            "step": self.step,
            "progress": self.progress,
            "message": self.message,
            "abortRequested": self.abort_requested,
            "result": self.result,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class JobTracker:
    """
    Thread-safe map of job id to ProcessingJob with TTL eviction.

    Readers receive copies; all mutation goes through tracker methods.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._jobs: dict[str, ProcessingJob] = {}
        self._lock = threading.Lock()
        self._sweeper_task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _is_expired(self, job: ProcessingJob, now: float) -> bool:
        return now - job.created_monotonic >= self.ttl_seconds

    def _live(self, job_id: str) -> ProcessingJob | None:
        """Fetch a job under the lock, evicting it if expired."""
        job = self._jobs.get(job_id)
        if job is None:
            return None
        if self._is_expired(job, self._clock()):
            del self._jobs[job_id]
            return None
        return job

    # ------------------------------------------------------------------
    # Job status surface
    # ------------------------------------------------------------------

    def create(self, user_id: str, shelf_id: str) -> ProcessingJob:
        """Register a new pending job and return a snapshot of it."""
        job = ProcessingJob(
            job_id=generate_job_id(user_id, shelf_id),
            user_id=str(user_id),
            shelf_id=str(shelf_id),
            created_monotonic=self._clock(),
        )
        with self._lock:
            self._jobs[job.job_id] = job
        logger.info(f"Created job {job.job_id}")
        return replace(job)

    def get(self, job_id: str, user_id: str | None = None) -> ProcessingJob:
        """
        Snapshot of a job.

        Args:
            job_id: Job identifier.
            user_id: When given, the job must belong to this user.

        Raises:
            JobNotFoundError: Unknown or expired job.
            JobAccessDeniedError: Job owned by another user.
        """
        with self._lock:
            job = self._live(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if user_id is not None and job.user_id != str(user_id):
                raise JobAccessDeniedError(job_id)
            return replace(job)

    def abort(self, job_id: str, user_id: str | None = None) -> bool:
        """
        Request cooperative cancellation.

        Returns:
            True if the request was recorded, False if the job already finished.

        Raises:
            JobNotFoundError: Unknown or expired job.
            JobAccessDeniedError: Job owned by another user.
        """
        with self._lock:
            job = self._live(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if user_id is not None and job.user_id != str(user_id):
                raise JobAccessDeniedError(job_id)
            if job.is_terminal:
                return False
            job.abort_requested = True
            job.message = "Cancelling..."
            job.updated_at = datetime.now(UTC)
        logger.info(f"Abort requested for job {job_id}")
        return True

    # ------------------------------------------------------------------
    # Run-side mutation
    # ------------------------------------------------------------------

    def is_abort_requested(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            return bool(job and job.abort_requested)

    def update(
        self,
        job_id: str,
        step: str | None = None,
        progress: int | None = None,
        message: str | None = None,
    ) -> bool:
        """
        Record stage progress. Terminal and expired jobs are left untouched.

        Returns:
            True if the job was updated.
        """
        with self._lock:
            job = self._live(job_id)
            if job is None or job.is_terminal:
                return False
            job.status = JobStatus.PROCESSING
            if step is not None:
                job.step = step
            if progress is not None:
                job.progress = max(0, min(100, int(progress)))
            if message is not None and not job.abort_requested:
                job.message = message
            job.updated_at = datetime.now(UTC)
            return True

    def _finish(
        self,
        job_id: str,
        status: JobStatus,
        message: str,
        result: dict[str, Any] | None,
        progress: int | None = None,
    ) -> bool:
        with self._lock:
            job = self._live(job_id)
            if job is None or job.is_terminal:
                return False
            job.status = status
            job.step = status.value
            job.message = message
            job.result = result
            if progress is not None:
                job.progress = progress
            job.updated_at = datetime.now(UTC)
        return True

    def complete(self, job_id: str, result: dict[str, Any]) -> bool:
        return self._finish(job_id, JobStatus.COMPLETED, MESSAGE_COMPLETE, result, progress=100)

    def fail(self, job_id: str, message: str, result: dict[str, Any] | None = None) -> bool:
        return self._finish(job_id, JobStatus.FAILED, message, result)

    def mark_aborted(self, job_id: str, result: dict[str, Any] | None = None) -> bool:
        return self._finish(job_id, JobStatus.ABORTED, MESSAGE_CANCELLED, result)

    def token(self, job_id: str) -> CancellationToken:
        return CancellationToken(self, job_id)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """
        Evict every job older than the TTL.

        Returns:
            Number of jobs removed.
        """
        now = self._clock()
        with self._lock:
            expired = [jid for jid, job in self._jobs.items() if self._is_expired(job, now)]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.debug(f"Swept {len(expired)} expired jobs")
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            self.sweep()

    def start_sweeper(self) -> asyncio.Task[None]:
        """Start the background sweeper on the running event loop."""
        if self._sweeper_task is None or self._sweeper_task.done():
            self._sweeper_task = asyncio.get_running_loop().create_task(self._sweep_loop())
        return self._sweeper_task

    async def stop_sweeper(self) -> None:
        task, self._sweeper_task = self._sweeper_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


@dataclass(frozen=True)
class CancellationToken:
    """Handle given to a running pipeline to observe abort requests."""

    tracker: JobTracker
    job_id: str

    @property
    def requested(self) -> bool:
        return self.tracker.is_abort_requested(self.job_id)
