"""
In-process job registry.
Thread-safe via an explicit lock; the single source of truth for live status.
"""

import copy
import itertools
import logging
import threading
from datetime import datetime, timezone

from mediascribe.core.constants import JobStatus, JobStage, PROGRESS_QUEUED
from mediascribe.core.error_codes import DuplicateJobError
from mediascribe.core.models import Job

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {'status', 'progress', 'message', 'result', 'display_name'}


class JobRegistry:
    """Concurrent-safe map from job id to Job."""

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._order: dict[str, int] = {}
        self._seq = itertools.count()
        self._lock = threading.Lock()

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    # ── Job CRUD ──────────────────────────────────────────────────────

    def create(self, job_id: str, original_filename: str, display_name: str) -> Job:
        now = self._now()
        job = Job(
            id=job_id,
            original_filename=original_filename,
            display_name=display_name,
            status=JobStatus.QUEUED,
            progress=PROGRESS_QUEUED,
            message=JobStage.QUEUED,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            if job_id in self._jobs:
                raise DuplicateJobError(f"Job {job_id} already exists")
            self._jobs[job_id] = job
            self._order[job_id] = next(self._seq)
            return copy.copy(job)

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.copy(job) if job else None

    def update(self, job_id: str, **fields) -> Job | None:
        """
        Merge fields into the job and stamp updated_at.
        No-op for unknown ids and for jobs already in a terminal state.
        Progress is never lowered while the job is running.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update job fields: {sorted(unknown)}")

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if job.is_terminal:
                logger.debug("Ignoring update to terminal job %s: %s", job_id, sorted(fields))
                return copy.copy(job)

            progress = fields.get('progress')
            if progress is not None:
                progress = max(0, min(100, int(progress)))
                fields['progress'] = max(job.progress, progress)

            for key, value in fields.items():
                setattr(job, key, value)
            job.updated_at = self._now()
            return copy.copy(job)

    def list(self) -> list[Job]:
        with self._lock:
            jobs = [(copy.copy(j), self._order[j.id]) for j in self._jobs.values()]
        jobs.sort(key=lambda pair: (pair[0].created_at or "", pair[1]), reverse=True)
        return [job for job, _ in jobs]

    def ids(self) -> set[str]:
        with self._lock:
            return set(self._jobs)

    def delete(self, job_id: str) -> bool:
        with self._lock:
            self._order.pop(job_id, None)
            return self._jobs.pop(job_id, None) is not None

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
