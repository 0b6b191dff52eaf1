"""
Diagnostics: tool version detection, configuration and connection checks.
"""

import shutil
import logging
import subprocess

from mediascribe.core.security_utils import run_subprocess_capture
from mediascribe.core.transcribe_openai import verify_api_key
from mediascribe.core.artifact_store import S3ArtifactStore

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("ffmpeg", "ffprobe")


def get_tool_version(tool: str) -> str:
    """Return the first line of `<tool> -version`, or an error message."""
    try:
        result = run_subprocess_capture([tool, "-version"], timeout=10)
        if result.returncode == 0:
            lines = result.stdout.strip().splitlines()
            return lines[0] if lines else "Unknown version"
        return f"Error (rc={result.returncode})"
    except FileNotFoundError:
        return "Not installed"
    except (OSError, subprocess.SubprocessError) as e:
        return f"Error: {e}"


def missing_tools() -> list[str]:
    """Required command-line tools not found on PATH."""
    missing = [tool for tool in REQUIRED_TOOLS if not shutil.which(tool)]
    if missing:
        logger.warning("Missing tools on PATH: %s — media processing will fail",
                       ", ".join(missing))
    return missing


def check_connections(config, write: bool = False, s3_client=None) -> dict:
    """Probe the OpenAI key and, when configured, the S3 bucket."""
    if config.openai_api_key:
        ok, message = verify_api_key(config.openai_api_key)
        openai = {'ok': ok, 'message': message}
    else:
        openai = {'ok': False, 'message': 'Missing OPENAI_API_KEY'}

    if config.s3_bucket:
        store = S3ArtifactStore(
            config.s3_bucket,
            client=s3_client,
            region=config.aws_region,
            access_key_id=config.aws_access_key_id,
            secret_access_key=config.aws_secret_access_key,
        )
        s3 = store.test_connection(write=write)
    else:
        s3 = {'ok': False, 'error': 'Missing S3_BUCKET'}

    return {'openai': openai, 's3': s3}


def get_diagnostics(config) -> dict:
    """Gather all diagnostic information."""
    return {
        "ffmpeg_version": get_tool_version("ffmpeg"),
        "ffprobe_version": get_tool_version("ffprobe"),
        "storage": "s3" if config.s3_bucket else "ephemeral",
        "config": config.status(),
    }
