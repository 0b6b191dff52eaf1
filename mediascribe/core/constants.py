"""
Shared constants for MediaScribe.
Single source of truth — imported by every other module.
"""

import pathlib
import tempfile

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "MediaScribe"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

APP_SUPPORT_DIR = HOME / ".mediascribe"
CONFIG_PATH = APP_SUPPORT_DIR / "config.json"
LOG_DIR = APP_SUPPORT_DIR / "logs"
DEFAULT_OUTPUT_ROOT = HOME / "Documents" / "MediaScribe Transcripts"
DEFAULT_WORK_DIR = pathlib.Path(tempfile.gettempdir()) / "mediascribe"
WORKSPACE_PREFIX = "transcribe-"

# ── Job status values ─────────────────────────────────────────────────
class JobStatus:
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.ERROR}

# ── Stage messages (ordered) ─────────────────────────────────────────
class JobStage:
    QUEUED = "Queued"
    UPLOADING_SOURCE = "Uploading source..."
    ANALYZING = "Analyzing media..."
    EXTRACTING = "Extracting audio..."
    COMPRESSING = "Compressing audio..."
    SPLITTING = "Splitting into chunks..."
    TRANSCRIBING = "Transcribing chunk {current}/{total}..."
    CLEANING = "Cleaning transcript..."
    DONE = "Done"

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    CONFIGURATION = "ERR_CONFIGURATION"
    MEDIA_ANALYSIS = "ERR_MEDIA_ANALYSIS"
    TRANSCODE = "ERR_TRANSCODE"
    SPLIT = "ERR_SPLIT"
    TRANSCRIPTION_SERVICE = "ERR_TRANSCRIPTION_SERVICE"
    CLEANUP_SERVICE = "ERR_CLEANUP_SERVICE"
    ARTIFACT_NOT_FOUND = "ERR_ARTIFACT_NOT_FOUND"
    DUPLICATE_JOB = "ERR_DUPLICATE_JOB"
    JOB_DELETED = "ERR_JOB_DELETED"
    UNEXPECTED = "ERR_UNEXPECTED"

MAX_ERROR_MESSAGE_LEN = 2000

# ── Audio pipeline defaults ───────────────────────────────────────────
DEFAULT_BITRATE_KBPS = 48
DEFAULT_MAX_CHUNK_MB = 24
DEFAULT_MAX_DURATION_SEC = 1400

SIZE_SAFETY_PAD_SEC = 2        # container/header overhead
DURATION_SAFETY_PAD_SEC = 5    # stay under the model's duration cap
MIN_SEGMENT_SEC = 60

# Transcode target
NORM_CHANNELS = 1
NORM_SAMPLE_RATE = 16000
NORM_FORMAT = "mp3"
SEGMENT_PATTERN = "part-%03d.mp3"
SEGMENT_PREFIX = "part-"

# ── Progress mapping ─────────────────────────────────────────────────
PROGRESS_QUEUED = 0
PROGRESS_UPLOAD = 5
PROGRESS_ANALYZE = 6
PROGRESS_EXTRACT = 8
PROGRESS_SPLIT = 10
PROGRESS_TRANSCRIBE_START = 10
PROGRESS_TRANSCRIBE_SPAN = 60
PROGRESS_CLEANING = 85
PROGRESS_DONE = 100

# ── Artifact names (durable key layout: jobs/<id>/<name>) ─────────────
ARTIFACT_ROOT = "jobs/"
ARTIFACT_META = "meta.json"
ARTIFACT_RAW = "raw.txt"
ARTIFACT_CLEANED = "cleaned.md"
ARTIFACT_ORIGINAL_DIR = "original/"
ARTIFACT_SEGMENTS_DIR = "segments/"
S3_DELETE_BATCH = 1000

# ── OpenAI ────────────────────────────────────────────────────────────
OPENAI_API_BASE = "https://api.openai.com/v1"
TRANSCRIBE_MODEL = "gpt-4o-transcribe"
CLEANUP_MODEL = "gpt-4o-mini"
CLEANUP_TEMPERATURE = 0.2

# ── Misc ──────────────────────────────────────────────────────────────
DEFAULT_AWS_REGION = "us-east-1"
DISPLAY_NAME_MAX_LEN = 32

# Characters forbidden in file/folder names
UNSAFE_FILENAME_CHARS = r'[<>:"/\\|?*\x00-\x1f]'
MAX_FOLDER_NAME_LEN = 200
