#!/usr/bin/env python3
"""
Scan configuration loaded from YAML

API keys may also be supplied through the environment; a missing key only
disables the collaborator that needs it.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

from mediacat import constants
from mediacat.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_OVERRIDES = {
    'tmdb_api_key': 'TMDB_API_KEY',
    'omdb_api_key': 'OMDB_API_KEY',
    'gemini_api_key': 'GEMINI_API_KEY',
    'hash_registry_url': 'HASH_API_URL',
}


@dataclass
class ScanSettings:
    share_path: Optional[str] = None
    folders: List[str] = field(default_factory=list)   # relative to share_path; empty = whole share
    database_path: Path = Path('output/catalog.db')
    cache_dir: Path = Path('output')
    tmdb_api_key: Optional[str] = None
    omdb_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    hash_registry_url: Optional[str] = None
    language: str = 'en-US'
    max_concurrency: int = constants.DEFAULT_MAX_CONCURRENCY
    max_retries: int = constants.DEFAULT_MAX_RETRIES
    retry_delay: float = constants.DEFAULT_RETRY_DELAY
    enable_identity: bool = True

    def validate(self):
        if not self.share_path:
            raise ConfigurationError("Share path not configured")
        if self.max_concurrency < 1:
            raise ConfigurationError(f"max_concurrency must be at least 1, got {self.max_concurrency}")
        if self.max_retries < 1:
            raise ConfigurationError(f"max_retries must be at least 1, got {self.max_retries}")


def load_config(config_path: Optional[Path]) -> ScanSettings:
    """Load configuration from YAML file, then apply environment overrides"""
    raw = {}
    if config_path is not None:
        with open(config_path, 'r', encoding='utf-8') as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    for key, env_name in ENV_OVERRIDES.items():
        if not raw.get(key) and os.environ.get(env_name):
            raw[key] = os.environ[env_name]

    unknown = set(raw) - set(ScanSettings.__dataclass_fields__)
    if unknown:
        logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")

    settings = ScanSettings()
    for key in ScanSettings.__dataclass_fields__:
        if raw.get(key) is None:
            continue
        value = raw[key]
        if key in ('database_path', 'cache_dir'):
            value = Path(value)
        elif key == 'folders':
            if isinstance(value, str):
                value = [value]
            elif not isinstance(value, list):
                raise ConfigurationError(f"'folders' must be a list of share folders, got {value!r}")
            value = [str(v) for v in value]
        elif key in ('max_concurrency', 'max_retries'):
            value = int(value)
        elif key == 'retry_delay':
            value = float(value)
        setattr(settings, key, value)
    return settings
