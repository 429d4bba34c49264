"""In-memory job state machine with per-key striped locking and a TTL."""
import logging
import threading
import time
import uuid
from dataclasses import replace
from typing import Callable, Optional

from fileforge import config
from fileforge.conversion.models import Job, JobStatus
from fileforge.errors import NotFoundError

logger = logging.getLogger("fileforge.jobs")

# Allowed forward moves. Terminal states have no entry.
_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
}


class JobLifecycleTracker:
    """jobId -> Job, safe for concurrent create/update/get.

    Each job id hashes to one of ``stripes`` locks, so work on different jobs
    rarely contends and there is no lock spanning all jobs. Updates against a
    terminal job are ignored. Expired jobs are invisible to :meth:`get` even
    before :meth:`sweep` physically removes them.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        stripes: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else config.JOB_TTL_SECONDS
        self._clock = clock
        self._locks = [threading.Lock() for _ in range(max(1, stripes or config.JOB_LOCK_STRIPES))]
        self._jobs: dict[str, Job] = {}

    def _lock_for(self, job_id: str) -> threading.Lock:
        return self._locks[hash(job_id) % len(self._locks)]

    def _expired(self, job: Job, now: Optional[float] = None) -> bool:
        return (now if now is not None else self._clock()) >= job.expires_at

    def create(self, conversion_type: Optional[str] = None, source_name: Optional[str] = None) -> str:
        job_id = str(uuid.uuid4())
        now = self._clock()
        job = Job(
            job_id=job_id,
            created_at=now,
            expires_at=now + self.ttl_seconds,
            message="Queued",
            conversion_type=conversion_type,
            source_name=source_name,
        )
        with self._lock_for(job_id):
            self._jobs[job_id] = job
        logger.debug("Created job %s (%s)", job_id, conversion_type)
        return job_id

    def get(self, job_id: str) -> Job:
        """Snapshot of the job. NotFoundError when unknown or past its TTL."""
        with self._lock_for(job_id):
            job = self._jobs.get(job_id)
            if job is None or self._expired(job):
                raise NotFoundError(f"Job not found or expired: {job_id}")
            return replace(job, result_files=list(job.result_files) if job.result_files else None)

    def update(
        self,
        job_id: str,
        status: Optional[JobStatus] = None,
        progress: Optional[int] = None,
        message: Optional[str] = None,
        result_files: Optional[list[str]] = None,
        error: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> bool:
        """Apply a patch. Returns False (no change) when the job is already terminal
        or the status move is not forward; raises NotFoundError for unknown jobs.
        """
        with self._lock_for(job_id):
            job = self._jobs.get(job_id)
            if job is None or self._expired(job):
                raise NotFoundError(f"Job not found or expired: {job_id}")
            if job.status.terminal:
                logger.debug("Ignoring update to terminal job %s (%s)", job_id, job.status.value)
                return False
            if status is not None and status != job.status:
                if status not in _TRANSITIONS.get(job.status, ()):
                    logger.warning("Rejected transition %s -> %s for job %s", job.status.value, status.value, job_id)
                    return False
                if status == JobStatus.COMPLETED and not result_files:
                    raise ValueError("A completed job needs at least one result file")
                if status == JobStatus.FAILED and not error:
                    error = "Conversion failed"
                job.status = status
                if status == JobStatus.COMPLETED:
                    job.result_files = list(result_files)
                    job.progress = 100
                elif status == JobStatus.FAILED:
                    job.error = error
                    job.error_code = error_code
            if progress is not None:
                job.progress = max(job.progress, min(100, max(0, int(progress))))
            if message is not None:
                job.message = message
            return True

    def start(self, job_id: str, message: str = "Processing") -> bool:
        return self.update(job_id, status=JobStatus.PROCESSING, progress=10, message=message)

    def complete(self, job_id: str, result_files: list[str], message: str = "Conversion complete") -> bool:
        return self.update(job_id, status=JobStatus.COMPLETED, progress=100, message=message, result_files=result_files)

    def fail(self, job_id: str, error: str, error_code: Optional[str] = None) -> bool:
        return self.update(job_id, status=JobStatus.FAILED, message="Conversion failed", error=error, error_code=error_code)

    def sweep(self) -> list[Job]:
        """Drop expired jobs. Returns them so the caller can remove their artifacts."""
        now = self._clock()
        removed: list[Job] = []
        for lock in self._locks:
            with lock:
                # Only ids hashed to this stripe are touched under it.
                for job_id in [j for j in list(self._jobs) if self._lock_for(j) is lock]:
                    job = self._jobs[job_id]
                    if self._expired(job, now):
                        removed.append(self._jobs.pop(job_id))
        if removed:
            logger.info("Expired %s jobs", len(removed))
        return removed

    def __len__(self) -> int:
        return len(self._jobs)
