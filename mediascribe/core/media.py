"""
Media transcoding using ffmpeg / ffprobe.
Target: mono, 16kHz, MP3 CBR at the configured bitrate.
"""

import json
import shutil
import logging
import subprocess
from pathlib import Path

from mediascribe.core.security_utils import run_subprocess_capture
from mediascribe.core.error_codes import MediaAnalysisError, TranscodeError, SplitError
from mediascribe.core.constants import (
    NORM_CHANNELS, NORM_SAMPLE_RATE, NORM_FORMAT, SEGMENT_PATTERN, SEGMENT_PREFIX,
)
from mediascribe.core.models import ProbeResult

logger = logging.getLogger(__name__)


def _stderr_tail(result: subprocess.CompletedProcess, limit: int = 300) -> str:
    stderr = (result.stderr or "").strip()
    return stderr[-limit:] if stderr else "unknown error"


class FfmpegTranscoder:
    """
    Subprocess-backed media transcoder.
    Timeouts are per invocation; long sources need a generous transcode limit.
    """

    def __init__(self, ffmpeg: str = "ffmpeg", ffprobe: str = "ffprobe",
                 probe_timeout: int = 60, transcode_timeout: int | None = 3600):
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe
        self.probe_timeout = probe_timeout
        self.transcode_timeout = transcode_timeout

    def probe(self, path: Path) -> ProbeResult:
        """Container duration and whether a video stream is present."""
        args = [
            self.ffprobe,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]

        try:
            result = run_subprocess_capture(args, timeout=self.probe_timeout)
        except (OSError, subprocess.SubprocessError) as e:
            raise MediaAnalysisError(f"ffprobe failed: {e}")

        if result.returncode != 0:
            raise MediaAnalysisError(
                f"ffprobe failed (rc={result.returncode}): {_stderr_tail(result)}")

        try:
            info = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            raise MediaAnalysisError("ffprobe returned invalid JSON")

        streams = info.get('streams') or []
        has_video = any(s.get('codec_type') == 'video' for s in streams)
        try:
            duration = float((info.get('format') or {}).get('duration') or 0)
        except (TypeError, ValueError):
            duration = 0.0

        return ProbeResult(duration_sec=duration, has_video=has_video)

    def transcode(self, src_path: Path, bitrate_kbps: int, output_dir: Path) -> Path:
        """
        Transcode any audio/video source to mono 16kHz CBR MP3, dropping video.
        Returns path to the audio file.
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / f"audio.{NORM_FORMAT}"

        args = [
            self.ffmpeg,
            "-y",                           # overwrite
            "-i", str(src_path),
            "-vn",                          # drop video
            "-ac", str(NORM_CHANNELS),      # mono
            "-ar", str(NORM_SAMPLE_RATE),   # 16kHz
            "-b:a", f"{bitrate_kbps}k",
            str(output_path),
        ]

        try:
            result = run_subprocess_capture(args, timeout=self.transcode_timeout)
        except (OSError, subprocess.SubprocessError) as e:
            raise TranscodeError(f"ffmpeg transcode failed: {e}")

        if result.returncode != 0:
            raise TranscodeError(
                f"ffmpeg failed (rc={result.returncode}): {_stderr_tail(result)}")

        if not output_path.exists():
            raise TranscodeError("Transcoded audio file not created")

        logger.info("Transcoded audio: %s", output_path)
        return output_path

    def segment(self, audio_path: Path, segment_duration_sec: int,
                output_dir: Path) -> list[Path]:
        """
        Split audio into part-000.mp3, part-001.mp3, ... at fixed boundaries.
        Stream copy, timestamps reset per segment. Returns paths in order.
        """
        output_dir.mkdir(parents=True, exist_ok=True)

        args = [
            self.ffmpeg,
            "-y",
            "-i", str(audio_path),
            "-f", "segment",
            "-segment_time", str(segment_duration_sec),
            "-reset_timestamps", "1",
            "-c", "copy",
            str(output_dir / SEGMENT_PATTERN),
        ]

        try:
            result = run_subprocess_capture(args, timeout=self.transcode_timeout)
        except (OSError, subprocess.SubprocessError) as e:
            raise SplitError(f"ffmpeg segmenting failed: {e}")

        if result.returncode != 0:
            raise SplitError(
                f"ffmpeg segmenting failed (rc={result.returncode}): {_stderr_tail(result)}")

        segments = list_segments(output_dir)
        logger.info("Created %d segments in %s", len(segments), output_dir)
        return segments

    def single_segment(self, audio_path: Path, output_dir: Path) -> list[Path]:
        """Treat the whole audio file as segment 0."""
        output_dir.mkdir(parents=True, exist_ok=True)
        target = output_dir / (SEGMENT_PATTERN % 0)
        shutil.copyfile(audio_path, target)
        return [target]


def list_segments(segments_dir: Path) -> list[Path]:
    """Segment files in order (zero-padded names sort lexically)."""
    if not segments_dir.exists():
        return []
    return sorted(
        p for p in segments_dir.iterdir()
        if p.is_file() and p.name.startswith(SEGMENT_PREFIX)
    )
