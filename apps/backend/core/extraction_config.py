"""
Extraction pipeline configuration.

All values come from environment variables (optionally loaded from .env by the
entry point). Keyword arguments override the environment, which is how tests
build deterministic configs.
"""

import os
import logging
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

PROVIDER_IDS = ['openai', 'gemini', 'anthropic', 'openrouter']

DEFAULT_MODELS = {
    'openai': 'gpt-4o-mini',
    'gemini': 'gemini-1.5-flash',
    'anthropic': 'claude-3-5-haiku-latest',
    'openrouter': 'openai/gpt-4o-mini',
}

DEFAULT_SITES_FILE = Path(__file__).parent.parent / 'config' / 'sites.yaml'


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"[config] Invalid integer for {name}={raw!r}, using {default}")
        return default
    if value < minimum:
        logger.warning(f"[config] {name}={value} below minimum {minimum}, using {default}")
        return default
    return value


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"[config] Invalid number for {name}={raw!r}, using {default}")
        return default
    if value < minimum:
        logger.warning(f"[config] {name}={value} below minimum {minimum}, using {default}")
        return default
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def mask_key(key: Optional[str]) -> str:
    """Mask a credential for logging."""
    if not key:
        return '<unset>'
    if len(key) <= 8:
        return '*' * len(key)
    return f"{key[:4]}...{key[-2:]}"


class ExtractionConfig:
    """Settings for reduction, packing, invocation and orchestration."""

    def __init__(self, **overrides):
        self.provider = os.getenv('EXTRACTION_PROVIDER', '').strip().lower()

        self.api_keys: Dict[str, Optional[str]] = {}
        self.models: Dict[str, str] = {}
        for provider_id in PROVIDER_IDS:
            prefix = provider_id.upper()
            self.api_keys[provider_id] = os.getenv(f'{prefix}_API_KEY') or None
            self.models[provider_id] = os.getenv(f'{prefix}_MODEL', DEFAULT_MODELS[provider_id])

        # Packing
        self.max_chunk_tokens = _env_int('EXTRACTION_MAX_CHUNK_TOKENS', 4000, minimum=1)
        self.chars_per_token = _env_int('EXTRACTION_CHARS_PER_TOKEN', 4, minimum=1)
        self.chunk_overlap_tokens = _env_int('EXTRACTION_CHUNK_OVERLAP_TOKENS', 50)

        # Quota and concurrency
        self.daily_quota = _env_int('EXTRACTION_DAILY_QUOTA', 30)
        self.daily_quota_overrides: Dict[str, int] = {}
        for provider_id in PROVIDER_IDS:
            name = f'EXTRACTION_DAILY_QUOTA_{provider_id.upper()}'
            if os.getenv(name):
                self.daily_quota_overrides[provider_id] = _env_int(name, self.daily_quota)
        self.max_concurrency = _env_int('EXTRACTION_MAX_CONCURRENCY', 1, minimum=1)

        # Pacing and backoff (seconds)
        self.call_interval = _env_float('EXTRACTION_CALL_INTERVAL_SECONDS', 5.0)
        self.retry_base_delay = _env_float('EXTRACTION_RETRY_BASE_SECONDS', 30.0)
        self.retry_multiplier = _env_float('EXTRACTION_RETRY_MULTIPLIER', 1.5, minimum=1.0)
        self.retry_max_delay = _env_float('EXTRACTION_RETRY_MAX_SECONDS', 300.0)
        self.max_attempts = _env_int('EXTRACTION_MAX_ATTEMPTS', 3, minimum=1)

        # Provider requests
        self.request_timeout = _env_float('EXTRACTION_REQUEST_TIMEOUT_SECONDS', 30.0, minimum=1.0)
        self.temperature = _env_float('EXTRACTION_TEMPERATURE', 0.1)
        self.detail_temperature = _env_float('EXTRACTION_DETAIL_TEMPERATURE', 0.05)
        self.max_output_tokens = _env_int('EXTRACTION_MAX_OUTPUT_TOKENS', 4000, minimum=1)

        # Orchestration
        self.detail_parallelism = _env_int('EXTRACTION_DETAIL_PARALLELISM', 1, minimum=1)
        self.detail_quota_reserve = _env_int('EXTRACTION_DETAIL_QUOTA_RESERVE', 5)
        self.enable_fallback = _env_bool('EXTRACTION_ENABLE_FALLBACK', True)
        self.enable_provider_fallback = _env_bool('EXTRACTION_ENABLE_PROVIDER_FALLBACK', True)
        self.sites_file = Path(os.getenv('EXTRACTION_SITES_FILE') or DEFAULT_SITES_FILE)

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise TypeError(f"Unknown extraction setting: {key}")
            setattr(self, key, value)

        logger.info(
            f"ExtractionConfig: provider={self.provider or 'auto'}, "
            f"keys={[p for p in PROVIDER_IDS if self.api_keys.get(p)]}, "
            f"max_chunk_tokens={self.max_chunk_tokens}, daily_quota={self.daily_quota}, "
            f"concurrency={self.max_concurrency}, interval={self.call_interval}s, "
            f"attempts={self.max_attempts}"
        )

    def quota_for(self, provider_id: str) -> int:
        """Daily call ceiling for a provider."""
        return self.daily_quota_overrides.get(provider_id, self.daily_quota)

    def has_credentials(self, provider_id: str) -> bool:
        return bool(self.api_keys.get(provider_id))

    def to_dict(self) -> Dict:
        return {
            'provider': self.provider or None,
            'api_keys': {p: mask_key(k) for p, k in self.api_keys.items()},
            'models': dict(self.models),
            'max_chunk_tokens': self.max_chunk_tokens,
            'chars_per_token': self.chars_per_token,
            'chunk_overlap_tokens': self.chunk_overlap_tokens,
            'daily_quota': self.daily_quota,
            'daily_quota_overrides': dict(self.daily_quota_overrides),
            'max_concurrency': self.max_concurrency,
            'call_interval': self.call_interval,
            'retry_base_delay': self.retry_base_delay,
            'retry_multiplier': self.retry_multiplier,
            'retry_max_delay': self.retry_max_delay,
            'max_attempts': self.max_attempts,
            'request_timeout': self.request_timeout,
            'detail_parallelism': self.detail_parallelism,
            'detail_quota_reserve': self.detail_quota_reserve,
            'enable_fallback': self.enable_fallback,
            'enable_provider_fallback': self.enable_provider_fallback,
            'sites_file': str(self.sites_file),
        }
