"""
Environment-driven settings.
"""

import os
from dataclasses import dataclass, field
from typing import List

from invoice_recon.llm_client import DEFAULT_BASE_URL

# Fallback models, most specific first. GEMINI_MODEL is always tried first.
DEFAULT_MODELS = [
    'gemini-2.5-flash',
    'gemini-2.0-flash',
    'gemini-1.5-pro',
    'gemini-1.5-pro-002',
    'gemini-1.5-flash',
    'gemini-1.5-flash-002',
    'gemini-1.5-pro-latest',
    'gemini-1.5-flash-latest',
]

# Models probed by the deep health check.
HEALTH_MODELS = ['gemini-2.5-flash', 'gemini-1.5-flash', 'gemini-1.5-pro']


def _csv_env(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [part.strip() for part in raw.split(',') if part.strip()]


def _unique(values: List[str]) -> List[str]:
    return list(dict.fromkeys(v for v in values if v))


@dataclass
class Settings:
    api_key: str = ''
    model: str = 'gemini-2.5-flash'
    fallback_models: List[str] = field(default_factory=lambda: list(DEFAULT_MODELS))
    api_versions: List[str] = field(default_factory=lambda: ['v1', 'v1beta'])
    base_url: str = DEFAULT_BASE_URL
    # Timeout for extraction calls; the health probe uses its own short timeout.
    llm_timeout: float = 60.0
    health_timeout: float = 4.0
    max_upload_size: int = 15 * 1024 * 1024
    workers: int = 1
    cors_origins: List[str] = field(default_factory=lambda: ['*'])

    @property
    def models(self) -> List[str]:
        return _unique([self.model] + self.fallback_models)

    @property
    def health_models(self) -> List[str]:
        return _unique([self.model] + HEALTH_MODELS)


def load_settings() -> Settings:
    """Read settings from the environment."""
    return Settings(
        api_key=os.getenv('GOOGLE_API_KEY', ''),
        model=os.getenv('GEMINI_MODEL', 'gemini-2.5-flash'),
        fallback_models=_csv_env('GEMINI_MODELS', DEFAULT_MODELS),
        api_versions=_csv_env('GEMINI_API_VERSIONS', ['v1', 'v1beta']),
        base_url=os.getenv('GEMINI_BASE_URL', DEFAULT_BASE_URL),
        llm_timeout=float(os.getenv('GEMINI_TIMEOUT', '60')),
        health_timeout=float(os.getenv('HEALTH_TIMEOUT', '4')),
        max_upload_size=int(os.getenv('MAX_UPLOAD_SIZE', str(15 * 1024 * 1024))),
        workers=max(1, int(os.getenv('EXTRACT_WORKERS', '1'))),
        cors_origins=_csv_env('CORS_ORIGINS', ['*']),
    )
