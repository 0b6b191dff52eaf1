"""
Standardised error handling for MediaScribe.

Every pipeline failure is job-fatal; nothing here is retried.
"""

from mediascribe.core.constants import ErrorCode


class JobError(Exception):
    """Raised when a job encounters a known error condition."""

    code = ErrorCode.UNEXPECTED

    def __init__(self, message: str, code: str | None = None):
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(f"[{self.code}] {message}")


class ConfigurationError(JobError):
    """Required external-service configuration is missing."""
    code = ErrorCode.CONFIGURATION


class MediaAnalysisError(JobError):
    code = ErrorCode.MEDIA_ANALYSIS


class TranscodeError(JobError):
    code = ErrorCode.TRANSCODE


class SplitError(JobError):
    code = ErrorCode.SPLIT


class TranscriptionServiceError(JobError):
    code = ErrorCode.TRANSCRIPTION_SERVICE


class CleanupServiceError(JobError):
    code = ErrorCode.CLEANUP_SERVICE


class ArtifactNotFoundError(JobError):
    """An artifact key does not exist in the store (not job-fatal)."""
    code = ErrorCode.ARTIFACT_NOT_FOUND


class DuplicateJobError(JobError):
    code = ErrorCode.DUPLICATE_JOB


class JobDeletedError(JobError):
    """The job was deleted while its pipeline was still running."""
    code = ErrorCode.JOB_DELETED
