"""
Transcription manager.
The operations an API layer needs: submit, status, result, list, delete.
Each submission runs on its own background thread.
"""

import uuid
import logging
import threading

from mediascribe.core.constants import (
    JobStatus, JobStage, ARTIFACT_CLEANED, ARTIFACT_META, PROGRESS_DONE,
)
from mediascribe.core.config import AppConfig
from mediascribe.core.job_registry import JobRegistry
from mediascribe.core.artifact_store import create_artifact_store
from mediascribe.core.error_codes import ArtifactNotFoundError
from mediascribe.core.media import FfmpegTranscoder
from mediascribe.core.transcribe_openai import OpenAITranscriptionService, OpenAICleanupService
from mediascribe.core.orchestrator import JobOrchestrator
from mediascribe.core.cleanup import sweep_stale_workspaces
from mediascribe.core.merge import strip_code_fences
from mediascribe.core.security_utils import display_name_from_filename

logger = logging.getLogger(__name__)


class TranscriptionManager:
    """
    Owns the registry, the artifact store and the pipeline.
    Collaborators can be injected; otherwise they are built from config.
    """

    def __init__(self, config: AppConfig | None = None, registry: JobRegistry | None = None,
                 store=None, transcoder=None, transcription=None, cleanup_service=None,
                 sweep_workspaces: bool = True):
        self.config = config or AppConfig()
        self.registry = registry or JobRegistry()
        self.store = store or create_artifact_store(self.config, self.registry)
        self.orchestrator = JobOrchestrator(
            registry=self.registry,
            store=self.store,
            transcoder=transcoder or FfmpegTranscoder(),
            transcription=transcription or OpenAITranscriptionService(self.config.openai_api_key),
            cleanup_service=cleanup_service or OpenAICleanupService(self.config.openai_api_key),
            config=self.config,
        )
        self._threads: dict[str, threading.Thread] = {}
        self._threads_lock = threading.Lock()

        if sweep_workspaces:
            sweep_stale_workspaces(self.config.work_dir)

    # ── Submission ────────────────────────────────────────────────────

    def submit(self, file_bytes: bytes, original_filename: str,
               mime_type: str | None = None) -> str:
        """Create a job and start its pipeline in the background. Returns the job id."""
        job_id = uuid.uuid4().hex
        display_name = display_name_from_filename(original_filename) or job_id
        self.registry.create(job_id, original_filename or "", display_name)

        thread = threading.Thread(
            target=self._run_job,
            args=(job_id, file_bytes, original_filename or "", mime_type),
            name=f"job-{job_id[:8]}",
            daemon=True,
        )
        with self._threads_lock:
            self._threads[job_id] = thread
        thread.start()

        logger.info("Submitted job %s (%s, %d bytes)", job_id, display_name, len(file_bytes))
        return job_id

    def _run_job(self, job_id: str, file_bytes: bytes, original_filename: str,
                 mime_type: str | None):
        try:
            self.orchestrator.run(job_id, file_bytes, original_filename, mime_type)
        except Exception as e:
            logger.error("Job %s crashed: %s", job_id, e, exc_info=True)
            self.orchestrator.fail(job_id, str(e))
        finally:
            with self._threads_lock:
                self._threads.pop(job_id, None)

    def wait(self, job_id: str, timeout: float | None = None) -> bool:
        """Block until the job's pipeline thread finishes. True if it has."""
        with self._threads_lock:
            thread = self._threads.get(job_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # ── Queries ───────────────────────────────────────────────────────

    def status(self, job_id: str) -> dict | None:
        """
        Latest known snapshot, or None if the id is unknown.
        Ids missing from the registry (e.g. after a restart) are looked up
        in the artifact store: a cleaned transcript means completed.
        """
        job = self.registry.get(job_id)
        if job:
            return job.snapshot()

        try:
            completed = self.store.exists(job_id, ARTIFACT_CLEANED)
        except Exception as e:
            logger.warning("Status lookup for %s failed: %s", job_id, e)
            return None
        if not completed:
            return None

        summary = self._summary_from_meta(job_id)
        return {
            'job_id': job_id,
            'status': JobStatus.COMPLETED,
            'progress': PROGRESS_DONE,
            'message': JobStage.DONE,
            'display_name': summary['display_name'],
            'original_filename': summary['original_filename'],
            'created_at': summary['created_at'],
            'updated_at': None,
            'result_available': True,
        }

    def result(self, job_id: str) -> str | None:
        """Final Markdown for a completed job, or None."""
        job = self.registry.get(job_id)
        if job is not None:
            if job.status != JobStatus.COMPLETED or job.result is None:
                return None
            return strip_code_fences(job.result)

        try:
            markdown = self.store.get_text(job_id, ARTIFACT_CLEANED)
        except ArtifactNotFoundError:
            return None
        except Exception as e:
            logger.warning("Result lookup for %s failed: %s", job_id, e)
            return None
        return strip_code_fences(markdown)

    def _summary_from_meta(self, job_id: str) -> dict:
        """Display metadata from meta.json; missing or corrupt meta falls back to the id."""
        meta = None
        try:
            meta = self.store.get_json(job_id, ARTIFACT_META)
        except ArtifactNotFoundError:
            pass
        except Exception as e:
            logger.warning("Could not read metadata for job %s: %s", job_id, e)
        if not isinstance(meta, dict):
            meta = {}
        return {
            'job_id': job_id,
            'display_name': meta.get('displayName') or job_id,
            'original_filename': meta.get('originalFilename'),
            'created_at': meta.get('createdAt'),
            'status': None,
        }

    # ── Mutations ─────────────────────────────────────────────────────

    def delete(self, job_id: str) -> dict:
        """
        Remove a job's artifacts and its registry entry.
        A running pipeline stops at its next write or stage boundary once
        the registry entry is gone; anything it stored before that is
        caught by the second sweep.
        """
        job = self.registry.get(job_id)
        deleted = self.store.delete_prefix(job_id)
        self.registry.delete(job_id)
        if job is not None and not job.is_terminal:
            deleted += self.store.delete_prefix(job_id)
        logger.info("Deleted job %s (%d artifacts)", job_id, deleted)
        return {'ok': True, 'deleted': deleted}

    def list(self) -> list[dict]:
        """Job summaries, newest first. Jobs without a creation time sort last."""
        job_ids = self.registry.ids() | self.store.list_job_ids()
        summaries = []
        for job_id in job_ids:
            job = self.registry.get(job_id)
            if job:
                summaries.append({
                    'job_id': job.id,
                    'display_name': job.display_name or job.id,
                    'original_filename': job.original_filename,
                    'created_at': job.created_at,
                    'status': job.status,
                })
            else:
                summaries.append(self._summary_from_meta(job_id))

        summaries.sort(key=lambda s: (s['created_at'] is not None, s['created_at'] or ''),
                       reverse=True)
        return summaries
