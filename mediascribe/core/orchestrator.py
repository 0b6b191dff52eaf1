"""
Job pipeline.
Drives one submitted file through analysis, audio extraction, chunking,
ordered per-chunk transcription and cleanup.
"""

import json
import logging
from pathlib import Path

from mediascribe.core.constants import (
    JobStatus, JobStage, MAX_ERROR_MESSAGE_LEN,
    ARTIFACT_META, ARTIFACT_RAW, ARTIFACT_CLEANED,
    ARTIFACT_ORIGINAL_DIR, ARTIFACT_SEGMENTS_DIR,
    PROGRESS_UPLOAD, PROGRESS_ANALYZE, PROGRESS_EXTRACT, PROGRESS_SPLIT,
    PROGRESS_TRANSCRIBE_START, PROGRESS_TRANSCRIBE_SPAN,
    PROGRESS_CLEANING, PROGRESS_DONE,
)
from mediascribe.core.error_codes import (
    JobError, JobDeletedError, MediaAnalysisError, TranscodeError, SplitError,
    TranscriptionServiceError, CleanupServiceError,
)
from mediascribe.core import chunk_planner
from mediascribe.core.cleanup import job_workspace
from mediascribe.core.merge import merge_transcripts, strip_code_fences
from mediascribe.core.security_utils import safe_source_filename

logger = logging.getLogger(__name__)


def transcribe_progress(done: int, total: int) -> int:
    """Linear progress across the transcription stage."""
    if total <= 0:
        return PROGRESS_TRANSCRIBE_START
    return PROGRESS_TRANSCRIBE_START + int((done / total) * PROGRESS_TRANSCRIBE_SPAN)


class JobOrchestrator:
    """
    Runs jobs through the pipeline, one stage at a time.
    Stateless between jobs; each run owns its own workspace.
    """

    def __init__(self, registry, store, transcoder, transcription, cleanup_service, config):
        self.registry = registry
        self.store = store
        self.transcoder = transcoder
        self.transcription = transcription
        self.cleanup_service = cleanup_service
        self.config = config

    def _update_progress(self, job_id: str, message: str, progress: int | None = None, **extra):
        fields = {'status': JobStatus.PROCESSING, 'message': message}
        if progress is not None:
            fields['progress'] = progress
        fields.update(extra)
        if self.registry.update(job_id, **fields) is None:
            raise JobDeletedError(f"Job {job_id} was deleted")
        logger.info("Job %s: %s", job_id, message)

    def _put(self, job_id: str, name: str, body, content_type: str):
        """Store an artifact; stop the job if it was deleted meanwhile."""
        self.store.put(job_id, name, body, content_type)
        if job_id not in self.registry:
            raise JobDeletedError(f"Job {job_id} was deleted")

    def _discard_artifacts(self, job_id: str):
        try:
            self.store.delete_prefix(job_id)
        except Exception as e:
            logger.warning("Could not remove artifacts of deleted job %s: %s", job_id, e)

    # ── Job processing pipeline ───────────────────────────────────────

    def run(self, job_id: str, source_bytes: bytes, original_filename: str,
            mime_type: str | None = None):
        """Process a single job. Never raises; failures end in the error state."""
        try:
            with job_workspace(self.config.work_dir, job_id) as workspace:
                self._process_job(job_id, source_bytes, original_filename,
                                  mime_type, workspace)
        except JobDeletedError:
            # Writes may have landed after the delete swept the prefix.
            logger.info("Job %s was deleted while running; stopped", job_id)
            self._discard_artifacts(job_id)
        except JobError as e:
            logger.warning("Job %s failed: %s", job_id, e)
            self.fail(job_id, e.message)
        except Exception as e:
            logger.error("Unexpected error processing job %s: %s", job_id, e, exc_info=True)
            self.fail(job_id, f"Unexpected error: {e}")

    def fail(self, job_id: str, message: str):
        self.registry.update(
            job_id,
            status=JobStatus.ERROR,
            progress=PROGRESS_DONE,
            message=str(message)[:MAX_ERROR_MESSAGE_LEN],
        )

    def _process_job(self, job_id: str, source_bytes: bytes, original_filename: str,
                     mime_type: str | None, workspace: Path):
        # ── Stage 1: Persist source ──
        self._update_progress(job_id, JobStage.UPLOADING_SOURCE, PROGRESS_UPLOAD)
        src_name = safe_source_filename(original_filename)
        src_path = workspace / src_name
        src_path.write_bytes(source_bytes)
        self._upload_source(job_id, src_name, source_bytes, original_filename, mime_type)

        # ── Stage 2: Analyze ──
        self._update_progress(job_id, JobStage.ANALYZING, PROGRESS_ANALYZE)
        probe = self.transcoder.probe(src_path)
        logger.info("Job %s: source duration %.1fs, video=%s",
                    job_id, probe.duration_sec, probe.has_video)

        # ── Stage 3: Extract / compress ──
        stage = JobStage.EXTRACTING if probe.has_video else JobStage.COMPRESSING
        self._update_progress(job_id, stage, PROGRESS_EXTRACT)
        bitrate = self.config.bitrate_kbps
        audio_path = self.transcoder.transcode(src_path, bitrate, workspace / "audio")
        duration = self._measure_duration(audio_path)

        # ── Stage 4: Split ──
        plan = chunk_planner.plan(duration, bitrate, self.config.max_chunk_mb,
                                  self.config.max_duration_sec)
        segments_dir = workspace / "segments"
        if plan.needs_split:
            self._update_progress(job_id, JobStage.SPLITTING, PROGRESS_SPLIT)
            segment_paths = self.transcoder.segment(
                audio_path, plan.segment_duration_sec, segments_dir)
        else:
            segment_paths = self.transcoder.single_segment(audio_path, segments_dir)

        if not segment_paths:
            raise SplitError("No segments produced")
        if len(segment_paths) != plan.segment_count:
            logger.debug("Job %s: planned %d segments, transcoder produced %d",
                         job_id, plan.segment_count, len(segment_paths))

        for path in segment_paths:
            self._put(job_id, f"{ARTIFACT_SEGMENTS_DIR}{path.name}",
                      path.read_bytes(), "audio/mpeg")

        # ── Stage 5: Transcribe (strictly in order) ──
        raw = self._transcribe_segments(job_id, segment_paths)
        self._put(job_id, ARTIFACT_RAW, raw, "text/plain; charset=utf-8")

        # ── Stage 6: Clean ──
        self._update_progress(job_id, JobStage.CLEANING, PROGRESS_CLEANING)
        try:
            cleaned = self.cleanup_service.clean(raw)
        except JobError:
            raise
        except Exception as e:
            raise CleanupServiceError(f"Transcript cleanup failed: {e}")
        markdown = strip_code_fences(cleaned) or ""
        self._put(job_id, ARTIFACT_CLEANED, markdown, "text/markdown; charset=utf-8")

        done = self.registry.update(job_id, status=JobStatus.COMPLETED, progress=PROGRESS_DONE,
                                    message=JobStage.DONE, result=markdown)
        if done is None:
            raise JobDeletedError(f"Job {job_id} was deleted")
        logger.info("Job %s completed (%d segments)", job_id, len(segment_paths))

    def _upload_source(self, job_id: str, src_name: str, source_bytes: bytes,
                       original_filename: str, mime_type: str | None):
        job = self.registry.get(job_id)
        if job is None:
            raise JobDeletedError(f"Job {job_id} was deleted")
        meta = {
            'jobId': job_id,
            'displayName': job.display_name,
            'originalFilename': original_filename,
            'createdAt': job.created_at,
        }
        self._put(job_id, f"{ARTIFACT_ORIGINAL_DIR}{src_name}", source_bytes,
                  mime_type or "application/octet-stream")
        self._put(job_id, ARTIFACT_META, json.dumps(meta), "application/json")

    def _measure_duration(self, audio_path: Path) -> float:
        """Duration of the transcoded audio; the container probe is not trusted."""
        try:
            duration = self.transcoder.probe(audio_path).duration_sec
        except MediaAnalysisError as e:
            raise TranscodeError(f"Could not measure transcoded audio: {e.message}")
        if duration <= 0:
            raise TranscodeError("Transcoded audio has no measurable duration")
        return duration

    def _transcribe_segments(self, job_id: str, segment_paths: list[Path]) -> str:
        """Transcribe each segment in order; the first failure aborts the job."""
        total = len(segment_paths)
        texts = []

        for i, segment_path in enumerate(segment_paths):
            self._update_progress(
                job_id,
                JobStage.TRANSCRIBING.format(current=i + 1, total=total),
                transcribe_progress(i, total),
            )
            audio = segment_path.read_bytes()
            try:
                text = self.transcription.transcribe(audio, segment_path.name)
            except JobError:
                raise
            except Exception as e:
                raise TranscriptionServiceError(
                    f"Transcription failed for chunk {i + 1}/{total}: {e}")
            texts.append(text)

        return merge_transcripts(texts)
