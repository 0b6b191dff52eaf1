"""
Security utilities for MediaScribe.
Uploaded file names are untrusted: they end up inside job workspaces and
output folders, and external tools are only ever run without a shell.
"""

import os
import re
import subprocess
import pathlib
import logging

from mediascribe.core.constants import (
    UNSAFE_FILENAME_CHARS,
    MAX_FOLDER_NAME_LEN,
    DISPLAY_NAME_MAX_LEN,
)

logger = logging.getLogger(__name__)

_MAX_EXTENSION_LEN = 16


# ── Names and paths ───────────────────────────────────────────────────

def sanitize_title(title: str) -> str:
    """File/folder-safe version of a title. Empty string if nothing usable remains."""
    if not title:
        return ""
    cleaned = re.sub(UNSAFE_FILENAME_CHARS, ' ', title).replace('..', '')
    cleaned = re.sub(r'[_\s]+', ' ', cleaned)
    cleaned = cleaned[:MAX_FOLDER_NAME_LEN]
    # no hidden files, no trailing separators
    return cleaned.strip(' .')


def safe_source_filename(original_filename: str, fallback: str = "source") -> str:
    """
    File name for an upload inside a job workspace.
    Keeps the extension so ffprobe can sniff the container.
    """
    base = os.path.basename((original_filename or "").replace('\\', '/'))
    stem, ext = os.path.splitext(base)
    ext = re.sub(r'[^A-Za-z0-9.]', '', ext)[:_MAX_EXTENSION_LEN]
    return f"{sanitize_title(stem) or fallback}{ext}"


def safe_output_path(output_root: pathlib.Path, title: str, job_id: str) -> pathlib.Path:
    """
    Folder for a job's transcript under output_root.
    Anything that would resolve outside the root becomes job_<job_id>.
    """
    fallback = output_root / f"job_{job_id}"
    folder = sanitize_title(title)
    if not folder:
        return fallback

    candidate = output_root / folder
    try:
        inside = candidate.resolve().is_relative_to(output_root.resolve())
    except OSError:
        inside = False
    if not inside:
        logger.warning("Rejected output folder %r for job %s", folder, job_id)
        return fallback
    return candidate


def display_name_from_filename(filename: str, max_len: int = DISPLAY_NAME_MAX_LEN) -> str:
    """Base name without extension, whitespace collapsed, truncated with an ellipsis."""
    if not filename:
        return ""
    base = os.path.splitext(os.path.basename(filename))[0] or str(filename)
    trimmed = re.sub(r'\s+', ' ', base.strip())
    if len(trimmed) <= max_len:
        return trimmed
    return trimmed[:max_len - 1] + '…'


# ── External tools ────────────────────────────────────────────────────

def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """Run an external tool from an argument list. Never through a shell."""
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")
    kwargs['shell'] = False
    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.run(list(args), **kwargs)


def run_subprocess_capture(args: list[str], timeout: int | None = 300,
                           **kwargs) -> subprocess.CompletedProcess:
    """run_subprocess with stdout/stderr captured as text."""
    kwargs.setdefault('capture_output', True)
    kwargs.setdefault('text', True)
    return run_subprocess(args, timeout=timeout, **kwargs)
