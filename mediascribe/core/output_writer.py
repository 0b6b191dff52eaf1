"""
Output writer: writes final transcript Markdown files.
"""

import logging
from pathlib import Path

from mediascribe.core.security_utils import safe_output_path

logger = logging.getLogger(__name__)


def transcript_filename(job_id: str) -> str:
    return f"transcript-{job_id}.md"


def write_transcript(markdown: str, output_root: Path, title: str, job_id: str) -> Path:
    """
    Write transcript to <OutputRoot>/<SanitizedTitle>/transcript-<job_id>.md
    Returns the path to the written file.
    """
    folder = safe_output_path(output_root, title, job_id)
    folder.mkdir(parents=True, exist_ok=True)

    output_file = folder / transcript_filename(job_id)
    output_file.write_text(markdown, encoding='utf-8')

    logger.info("Wrote transcript: %s", output_file)
    return output_file
