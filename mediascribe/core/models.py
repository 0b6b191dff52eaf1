"""
Data models (plain dataclasses) for MediaScribe.
"""

from dataclasses import dataclass, field
from typing import Optional

from mediascribe.core.constants import JobStatus, TERMINAL_STATUSES, JobStage


@dataclass
class Job:
    id: str
    original_filename: str
    display_name: str
    status: str = JobStatus.QUEUED
    progress: int = 0
    message: str = JobStage.QUEUED
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    result: Optional[str] = None     # final Markdown, set on completion

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def snapshot(self) -> dict:
        """Status view without the (possibly large) result body."""
        return {
            'job_id': self.id,
            'status': self.status,
            'progress': self.progress,
            'message': self.message,
            'display_name': self.display_name,
            'original_filename': self.original_filename,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
            'result_available': self.status == JobStatus.COMPLETED and self.result is not None,
        }


@dataclass(frozen=True)
class Segment:
    idx: int
    start_sec: float
    end_sec: float

    @property
    def duration_sec(self) -> float:
        return self.end_sec - self.start_sec


@dataclass(frozen=True)
class ChunkPlan:
    total_duration_sec: float
    bytes_per_second: float
    max_bytes: int
    max_duration_sec: int
    segment_duration_sec: int
    needs_split: bool
    segments: tuple[Segment, ...] = field(default_factory=tuple)

    @property
    def segment_count(self) -> int:
        return len(self.segments)


@dataclass(frozen=True)
class ProbeResult:
    duration_sec: float
    has_video: bool
