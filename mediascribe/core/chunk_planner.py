"""
Size- and duration-aware chunk planning.
Splits only when the transcoded audio would exceed the upload size ceiling
or the transcription model's duration cap.
"""

import math

from mediascribe.core.constants import (
    SIZE_SAFETY_PAD_SEC, DURATION_SAFETY_PAD_SEC, MIN_SEGMENT_SEC,
)
from mediascribe.core.models import ChunkPlan, Segment


def bytes_per_second(bitrate_kbps: float) -> float:
    return (bitrate_kbps * 1000) / 8


def max_bytes_for(max_chunk_mb: float) -> int:
    return int(max_chunk_mb * 1024 * 1024)


def segment_duration_for(bitrate_kbps: float, max_chunk_mb: float,
                         max_duration_sec: int) -> int:
    """Longest segment that fits both ceilings, never below MIN_SEGMENT_SEC."""
    by_size = math.floor(max_bytes_for(max_chunk_mb) / bytes_per_second(bitrate_kbps))
    max_seg_by_size = max(MIN_SEGMENT_SEC, by_size - SIZE_SAFETY_PAD_SEC)
    max_seg_by_duration = max(MIN_SEGMENT_SEC, int(max_duration_sec) - DURATION_SAFETY_PAD_SEC)
    return min(max_seg_by_size, max_seg_by_duration)


def needs_split(duration_sec: float, bitrate_kbps: float, max_chunk_mb: float,
                max_duration_sec: int) -> bool:
    """Check if the audio exceeds the size or duration ceiling."""
    too_big = duration_sec * bytes_per_second(bitrate_kbps) > max_bytes_for(max_chunk_mb)
    return too_big or duration_sec > max_duration_sec


def build_segments(duration_sec: float, segment_duration_sec: int) -> tuple[Segment, ...]:
    """
    Contiguous time ranges covering [0, duration_sec).
    The last segment may be shorter; a zero duration yields one empty segment.
    """
    if duration_sec <= 0:
        return (Segment(idx=0, start_sec=0.0, end_sec=0.0),)

    segments = []
    idx = 0
    start = 0.0
    while start < duration_sec:
        end = min(start + segment_duration_sec, duration_sec)
        segments.append(Segment(idx=idx, start_sec=start, end_sec=end))
        idx += 1
        start = end

    return tuple(segments)


def plan(duration_sec: float, bitrate_kbps: float, max_chunk_mb: float,
         max_duration_sec: int) -> ChunkPlan:
    """
    Decide whether splitting is required and lay out the segments.
    Pure and deterministic.
    """
    duration_sec = max(0.0, float(duration_sec))
    segment_sec = segment_duration_for(bitrate_kbps, max_chunk_mb, max_duration_sec)
    split = needs_split(duration_sec, bitrate_kbps, max_chunk_mb, max_duration_sec)

    if split:
        segments = build_segments(duration_sec, segment_sec)
    else:
        # Unsplit audio fits both ceilings even when it is longer than the
        # padded segment length.
        segment_sec = max(segment_sec, math.ceil(duration_sec))
        segments = (Segment(idx=0, start_sec=0.0, end_sec=duration_sec),)

    return ChunkPlan(
        total_duration_sec=duration_sec,
        bytes_per_second=bytes_per_second(bitrate_kbps),
        max_bytes=max_bytes_for(max_chunk_mb),
        max_duration_sec=int(max_duration_sec),
        segment_duration_sec=segment_sec,
        needs_split=split,
        segments=segments,
    )
