"""
OpenAI speech-to-text and transcript cleanup integration.
Transcription uses gpt-4o-transcribe; cleanup and speaker labelling use a
lightweight chat model. Failed requests are not retried.
"""

import json
import logging
import requests

from mediascribe.core.error_codes import (
    ConfigurationError, TranscriptionServiceError, CleanupServiceError,
)
from mediascribe.core.constants import (
    OPENAI_API_BASE, TRANSCRIBE_MODEL, CLEANUP_MODEL, CLEANUP_TEMPERATURE,
)

logger = logging.getLogger(__name__)

TRANSCRIPTIONS_URL = f"{OPENAI_API_BASE}/audio/transcriptions"
CHAT_COMPLETIONS_URL = f"{OPENAI_API_BASE}/chat/completions"
MODELS_URL = f"{OPENAI_API_BASE}/models"

CLEANUP_SYSTEM_PROMPT = (
    "You are a transcript editor. Clean transcripts by removing filler words "
    "(um, uh, like when not meaningful), stutters, and false starts; normalize "
    "numbers into numerals; correct punctuation and casing; and group lines into "
    "paragraphs. Add speaker labels as Speaker 1, Speaker 2, etc. If the source "
    "language is not English, keep that language. Output only clean Markdown as "
    "plain text. Do not wrap the output in code fences or backticks."
)

CLEANUP_USER_TEMPLATE = (
    "Raw transcript:\n\n{raw}\n\n"
    "Requirements:\n"
    "- Remove disfluencies and false starts\n"
    "- Normalize numbers to digits (e.g., twenty five -> 25)\n"
    "- Punctuate and paragraph appropriately\n"
    "- Label speakers as Speaker 1, Speaker 2, ...\n"
    "- Output in Markdown only"
)


def verify_api_key(api_key: str) -> tuple[bool, str]:
    """
    Verify an OpenAI API key with a lightweight request.
    Returns (success: bool, message: str).
    """
    try:
        resp = requests.get(
            MODELS_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=10,
        )
        if resp.status_code == 200:
            return True, "Key verified"
        elif resp.status_code in (401, 403):
            return False, "Key invalid or rejected"
        else:
            return False, f"Unexpected response: {resp.status_code}"
    except requests.exceptions.ConnectionError:
        return False, "Network error — could not reach OpenAI"
    except requests.exceptions.Timeout:
        return False, "Network error — request timed out"
    except requests.exceptions.RequestException as e:
        return False, f"Network error: {e}"


class _OpenAIClient:
    """Shared auth/session handling. The key is checked lazily on first call."""

    def __init__(self, api_key: str | None, session: requests.Session | None = None,
                 timeout: int = 600):
        self._api_key = api_key
        self._session = session or requests.Session()
        self.timeout = timeout

    def _headers(self) -> dict:
        if not self._api_key:
            raise ConfigurationError(
                "OPENAI_API_KEY is not configured. Please add it in settings.")
        return {"Authorization": f"Bearer {self._api_key}"}


class OpenAITranscriptionService(_OpenAIClient):
    """Converts one audio segment to raw text."""

    def __init__(self, api_key: str | None, model: str = TRANSCRIBE_MODEL, **kwargs):
        super().__init__(api_key, **kwargs)
        self.model = model

    def transcribe(self, audio_bytes: bytes, filename: str) -> str:
        headers = self._headers()
        try:
            resp = self._session.post(
                TRANSCRIPTIONS_URL,
                headers=headers,
                data={"model": self.model},
                files={"file": (filename, audio_bytes, "audio/mpeg")},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            raise TranscriptionServiceError(f"Transcription of {filename} timed out")
        except requests.exceptions.RequestException as e:
            raise TranscriptionServiceError(f"Transcription request failed for {filename}: {e}")

        if resp.status_code != 200:
            # Sanitize error message (never log API key)
            error_body = resp.text[:300] if resp.text else "No response body"
            raise TranscriptionServiceError(
                f"Transcription returned {resp.status_code} for {filename}: {error_body}")

        try:
            payload = resp.json()
        except (json.JSONDecodeError, ValueError):
            raise TranscriptionServiceError("Failed to parse transcription response JSON")

        return (payload.get('text') or '') if isinstance(payload, dict) else ''


class OpenAICleanupService(_OpenAIClient):
    """Turns a raw transcript into cleaned, speaker-labelled Markdown."""

    def __init__(self, api_key: str | None, model: str = CLEANUP_MODEL,
                 temperature: float = CLEANUP_TEMPERATURE, **kwargs):
        super().__init__(api_key, **kwargs)
        self.model = model
        self.temperature = temperature

    def build_messages(self, raw_text: str) -> list[dict]:
        return [
            {"role": "system", "content": CLEANUP_SYSTEM_PROMPT},
            {"role": "user", "content": CLEANUP_USER_TEMPLATE.format(raw=raw_text)},
        ]

    def clean(self, raw_text: str) -> str:
        headers = self._headers()
        body = {
            "model": self.model,
            "messages": self.build_messages(raw_text),
            "temperature": self.temperature,
        }
        try:
            resp = self._session.post(
                CHAT_COMPLETIONS_URL,
                headers=headers,
                json=body,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            raise CleanupServiceError("Transcript cleanup request timed out")
        except requests.exceptions.RequestException as e:
            raise CleanupServiceError(f"Transcript cleanup request failed: {e}")

        if resp.status_code != 200:
            error_body = resp.text[:300] if resp.text else "No response body"
            raise CleanupServiceError(f"Cleanup returned {resp.status_code}: {error_body}")

        try:
            payload = resp.json()
        except (json.JSONDecodeError, ValueError):
            raise CleanupServiceError("Failed to parse cleanup response JSON")

        return extract_message_text(payload)


def extract_message_text(completion: dict) -> str:
    """First choice's message content, trimmed; empty string if absent."""
    try:
        content = completion['choices'][0]['message']['content']
    except (IndexError, KeyError, TypeError) as e:
        logger.warning("Error extracting cleanup text: %s", e)
        return ""
    return (content or "").strip()
