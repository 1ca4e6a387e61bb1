"""Render jobs tracked in memory, with background execution and expiry.

WHY: A render takes seconds to many minutes, so POST /videos answers with
a job ID and the client polls. A job moves through the same stages as the
pipeline (pending -> fetching -> planning -> rendering -> finalizing)
and ends completed or failed. One host, no persistence: a dict behind a
lock is enough.

HOW:
  JobStatus  - job states; the in-progress names equal the pipeline stages
  Job        - status, progress, errors, and the RequestContext whose work
               dir holds the outputs
  JobStore   - lock-guarded dict; renders run through run_in_background()
               and finished jobs expire after a TTL

RULES:
- Only jobs still rendering count against max_active_jobs
- A finished job never changes status again
- Deleting an unfinished job cancels its context (kills ffmpeg) first
- Expired and deleted jobs take their work dirs with them
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from slidecast.core.context import RequestContext
from slidecast.core.errors import SlidecastError

logger = logging.getLogger(__name__)

# Finished jobs are kept for an hour
DEFAULT_TTL_SECONDS = 3600
DEFAULT_MAX_ACTIVE_JOBS = 8


class JobStatus(str, enum.Enum):
    """Where a render job is in its lifecycle."""

    PENDING = "pending"
    FETCHING = "fetching"
    PLANNING = "planning"
    RENDERING = "rendering"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class JobLimitError(ValueError):
    """Raised by create_job() when too many renders are in progress."""


@dataclass
class Job:
    """One render request and everything the API reports about it.

    RULES:
    - id is ctx.request_id
    - payload is the validated RenderRequest the background runner renders
    - progress looks like {"stage": "batch", "done": 2, "total": 4}
    - error_details carries the failing ffmpeg job's stderr tail
    - output_files lists the downloadable names inside ctx.work_dir
    """

    id: str
    ctx: RequestContext
    status: JobStatus = JobStatus.PENDING
    created_at: float = 0.0
    updated_at: float = 0.0
    completed_at: Optional[float] = None
    config: Dict[str, Any] = field(default_factory=dict)
    payload: Any = None
    progress: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_details: Optional[str] = None
    output_files: List[str] = field(default_factory=list)

    @property
    def output_dir(self) -> Path:
        return self.ctx.work_dir

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_STATUSES


# Fields update_job() may change besides status
_UPDATABLE = ("progress", "error", "error_details", "output_files")


class JobStore:
    """Thread-safe registry of render jobs."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_active_jobs: int = DEFAULT_MAX_ACTIVE_JOBS,
        root: Optional[Union[str, Path]] = None,
    ) -> None:
        self._jobs = {}  # type: Dict[str, Job]
        self._lock = threading.Lock()
        self._ttl_seconds = ttl_seconds
        self.max_active_jobs = max_active_jobs
        self.root = root

    def _active_count(self) -> int:
        return sum(1 for job in self._jobs.values() if not job.finished)

    def create_job(
        self,
        config: Optional[Dict[str, Any]] = None,
        payload: Any = None,
    ) -> Job:
        """Register a pending job and create its work dir.

        Raises:
            JobLimitError: max_active_jobs renders are already in progress.
        """
        with self._lock:
            if self._active_count() >= self.max_active_jobs:
                raise JobLimitError(
                    "Too many renders in progress (limit {}); try again later.".format(
                        self.max_active_jobs
                    )
                )
            ctx = RequestContext(root=self.root)
            ctx.create()
            now = time.time()
            job = Job(
                id=ctx.request_id,
                ctx=ctx,
                created_at=now,
                updated_at=now,
                config=dict(config or {}),
                payload=payload,
            )
            self._jobs[job.id] = job

        logger.info("Created job %s", job.id)
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        """The live Job for job_id, or None."""
        with self._lock:
            return self._jobs.get(job_id)

    def list_jobs(self) -> List[Job]:
        """All jobs, oldest first."""
        with self._lock:
            return sorted(self._jobs.values(), key=lambda j: j.created_at)

    def update_job(
        self,
        job_id: str,
        status: Optional[JobStatus] = None,
        **changes: Any
    ) -> Optional[Job]:
        """Apply status and field changes to a job.

        Keyword arguments left as None are ignored. Returns the job, or
        None when job_id is unknown.

        Raises:
            TypeError: a keyword is not an updatable field.
        """
        unknown = set(changes) - set(_UPDATABLE)
        if unknown:
            raise TypeError("Cannot update job field(s): {}".format(", ".join(sorted(unknown))))

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            now = time.time()
            if status is not None and not job.finished:
                job.status = status
                if job.finished:
                    job.completed_at = now
            for name, value in changes.items():
                if value is not None:
                    setattr(job, name, value)
            job.updated_at = now
            return job

    def run_in_background(self, job_id: str, task: Callable[[str, JobStore], None]) -> None:
        """Call task(job_id, self); any exception fails the job instead of propagating."""
        try:
            task(job_id, self)
        except SlidecastError as exc:
            logger.error("Job %s failed: %s", job_id, exc.message)
            self.update_job(job_id, JobStatus.FAILED, error=exc.message, error_details=exc.details)
        except Exception as exc:
            logger.exception("Job %s crashed", job_id)
            self.update_job(job_id, JobStatus.FAILED, error=str(exc))

    def delete_job(self, job_id: str) -> bool:
        """Remove a job, stopping its render and deleting its files."""
        with self._lock:
            job = self._jobs.pop(job_id, None)
        if job is None:
            return False
        if not job.finished:
            job.ctx.cancel()
        job.ctx.cleanup()
        logger.info("Deleted job %s", job_id)
        return True

    def cancel_all(self, reason: str = "Server shutting down") -> int:
        """Fail every unfinished job and kill its processes. Returns the count."""
        with self._lock:
            running = [job for job in self._jobs.values() if not job.finished]
        for job in running:
            job.ctx.cancel()
            self.update_job(job.id, JobStatus.FAILED, error=reason)
        if running:
            logger.warning("Cancelled %d running job(s): %s", len(running), reason)
        return len(running)

    def cleanup_expired(self) -> int:
        """Drop finished jobs older than the TTL along with their work dirs."""
        cutoff = time.time() - self._ttl_seconds
        with self._lock:
            expired = [
                job_id for job_id, job in self._jobs.items()
                if job.completed_at is not None and job.completed_at < cutoff
            ]
            removed = [self._jobs.pop(job_id) for job_id in expired]

        for job in removed:
            job.ctx.cleanup()
        if removed:
            logger.info("Expired %d finished job(s)", len(removed))
        return len(removed)
