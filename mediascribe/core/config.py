"""
Application configuration manager.
Settings come from defaults, then an optional JSON file, then environment
variables. Secrets are read from the environment only and never written.
"""

import os
import json
import logging
from pathlib import Path

from mediascribe.core.constants import (
    CONFIG_PATH, DEFAULT_OUTPUT_ROOT, DEFAULT_WORK_DIR, DEFAULT_AWS_REGION,
    DEFAULT_BITRATE_KBPS, DEFAULT_MAX_CHUNK_MB, DEFAULT_MAX_DURATION_SEC,
)

# Validation bounds
_BITRATE_MIN = 16
_BITRATE_MAX = 320
_CHUNK_MB_MIN = 1
_CHUNK_MB_MAX = 1024
_DURATION_MIN = 60
_DURATION_MAX = 86400

logger = logging.getLogger(__name__)

# env var -> config key
ENV_KEYS = {
    'OPENAI_API_KEY': 'openai_api_key',
    'AWS_ACCESS_KEY_ID': 'aws_access_key_id',
    'AWS_SECRET_ACCESS_KEY': 'aws_secret_access_key',
    'AWS_REGION': 'aws_region',
    'S3_BUCKET': 's3_bucket',
    'TRANSCRIBE_AUDIO_BITRATE_KBPS': 'bitrate_kbps',
    'TRANSCRIBE_MAX_CHUNK_MB': 'max_chunk_mb',
    'TRANSCRIBE_MAX_DURATION_SEC': 'max_duration_sec',
    'MEDIASCRIBE_WORK_DIR': 'work_dir',
    'MEDIASCRIBE_OUTPUT_ROOT': 'output_root',
}

SECRET_KEYS = {'openai_api_key', 'aws_access_key_id', 'aws_secret_access_key'}

# Needed for the full durable setup; the bucket alone selects S3.
REQUIRED_FOR_STATUS = [
    ('openai_api_key', 'OPENAI_API_KEY'),
    ('aws_access_key_id', 'AWS_ACCESS_KEY_ID'),
    ('aws_secret_access_key', 'AWS_SECRET_ACCESS_KEY'),
    ('aws_region', 'AWS_REGION'),
    ('s3_bucket', 'S3_BUCKET'),
]

_DEFAULTS = {
    'openai_api_key': '',
    'aws_access_key_id': '',
    'aws_secret_access_key': '',
    'aws_region': '',
    's3_bucket': '',
    'bitrate_kbps': DEFAULT_BITRATE_KBPS,
    'max_chunk_mb': DEFAULT_MAX_CHUNK_MB,
    'max_duration_sec': DEFAULT_MAX_DURATION_SEC,
    'work_dir': str(DEFAULT_WORK_DIR),
    'output_root': str(DEFAULT_OUTPUT_ROOT),
}


def _default_config_path() -> Path:
    override = os.environ.get('MEDIASCRIBE_CONFIG')
    return Path(override) if override else CONFIG_PATH


class AppConfig:
    """Manages application configuration stored as JSON plus env overrides."""

    def __init__(self, config_path: Path | None = None,
                 environ: dict | None = None, overrides: dict | None = None):
        self.path = config_path or _default_config_path()
        self._environ = os.environ if environ is None else environ
        self._data: dict = {}
        self.load()
        for key, value in (overrides or {}).items():
            self._data[key] = self._validate(key, value)

    def load(self):
        """Load config from disk and environment, merging with defaults."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    if key in SECRET_KEYS:
                        continue
                    self._data[key] = self._validate(key, value)
            except (OSError, ValueError) as e:
                logger.warning("Failed to load config: %s", e)

        for env_key, key in ENV_KEYS.items():
            value = self._environ.get(env_key)
            if value is None or str(value).strip() == '':
                continue
            self._data[key] = self._validate(key, value)

    def save(self):
        """Persist non-secret config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        public = {k: v for k, v in self._data.items() if k not in SECRET_KEYS}
        with open(self.path, 'w') as f:
            json.dump(public, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        if key not in SECRET_KEYS:
            self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key == 'bitrate_kbps':
            return self._clamp_int(key, value, DEFAULT_BITRATE_KBPS, _BITRATE_MIN, _BITRATE_MAX)

        if key == 'max_chunk_mb':
            return self._clamp_int(key, value, DEFAULT_MAX_CHUNK_MB, _CHUNK_MB_MIN, _CHUNK_MB_MAX)

        if key == 'max_duration_sec':
            return self._clamp_int(key, value, DEFAULT_MAX_DURATION_SEC, _DURATION_MIN, _DURATION_MAX)

        if isinstance(value, str):
            return value.strip()

        return value

    @staticmethod
    def _clamp_int(key: str, value, default: int, low: int, high: int) -> int:
        try:
            value = int(value)
        except (TypeError, ValueError):
            logger.warning("Invalid %s %r — using default", key, value)
            return default
        return max(low, min(high, value))

    def as_dict(self, redact: bool = True) -> dict:
        data = dict(self._data)
        if redact:
            for key in SECRET_KEYS:
                data[key] = bool(data.get(key))
        return data

    def status(self) -> dict:
        """Which settings are still missing for a fully configured setup."""
        missing = [env for key, env in REQUIRED_FOR_STATUS if not self._data.get(key)]
        return {'configured': not missing, 'missing': missing}

    @property
    def openai_api_key(self) -> str:
        return self._data.get('openai_api_key', '')

    @property
    def aws_access_key_id(self) -> str:
        return self._data.get('aws_access_key_id', '')

    @property
    def aws_secret_access_key(self) -> str:
        return self._data.get('aws_secret_access_key', '')

    @property
    def aws_region(self) -> str:
        return self._data.get('aws_region') or DEFAULT_AWS_REGION

    @property
    def s3_bucket(self) -> str:
        return self._data.get('s3_bucket', '')

    @property
    def bitrate_kbps(self) -> int:
        return self._data.get('bitrate_kbps', DEFAULT_BITRATE_KBPS)

    @property
    def max_chunk_mb(self) -> int:
        return self._data.get('max_chunk_mb', DEFAULT_MAX_CHUNK_MB)

    @property
    def max_duration_sec(self) -> int:
        return self._data.get('max_duration_sec', DEFAULT_MAX_DURATION_SEC)

    @property
    def work_dir(self) -> Path:
        return Path(self._data.get('work_dir', str(DEFAULT_WORK_DIR)))

    @property
    def output_root(self) -> Path:
        return Path(self._data.get('output_root', str(DEFAULT_OUTPUT_ROOT)))
