"""
Transcript assembly helpers.
Joins per-chunk transcripts in order and strips code fences that the
cleanup model sometimes wraps its answer in.
"""

import re
import logging

logger = logging.getLogger(__name__)

CHUNK_SEPARATOR = "\n\n"
_FENCE = "```"
_OPENING_FENCE_RE = re.compile(r'^```[a-zA-Z0-9_-]*\s*$')


def merge_transcripts(texts: list[str]) -> str:
    """
    Merge chunk transcripts in order, separated by a blank line.
    Chunks are contiguous time slices, so order is never changed.
    """
    if not texts:
        return ""
    return CHUNK_SEPARATOR.join(texts)


def _strip_one_fence(s: str) -> str:
    if not s.startswith(_FENCE):
        return s

    first_newline = s.find('\n')
    if first_newline == -1:
        return s

    opening = s[:first_newline]
    if not _OPENING_FENCE_RE.match(opening):
        return s

    body = s[first_newline + 1:]

    last_fence = body.rfind(_FENCE)
    if last_fence != -1 and body[last_fence:].strip() == _FENCE:
        body = body[:last_fence]

    return body.strip()


def strip_code_fences(text: str | None) -> str | None:
    """
    Remove enclosing ```lang ... ``` fences, if present.
    Returns the trimmed text otherwise.

    Nested wrappers are peeled until nothing changes, so applying this
    twice gives the same result as applying it once.
    """
    if not text:
        return text

    s = str(text).strip()
    while True:
        stripped = _strip_one_fence(s)
        if stripped == s:
            return s
        logger.debug("Stripped code fence from cleaned transcript")
        s = stripped
