# =============================================================================
# sync_core/config.py
# Cache Configuration (Streamlit secrets, environment, overrides)
# =============================================================================
"""
Configuration for an OfflineCache instance.

Values are merged in increasing precedence:

1. ``[offline_cache]`` table of ``.streamlit/secrets.toml``
2. ``OFFLINE_CACHE_*`` environment variables
3. Keyword overrides passed to ``load_config``

Expected secrets.toml format:

    [offline_cache]
    directory = "local_data"
    remote_url = "https://pb.example.com"
    check_interval = 10
"""

from __future__ import annotations
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional
import logging

import streamlit as st

from sync_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "OFFLINE_CACHE_"
SECRETS_SECTION = "offline_cache"

# PocketBase refuses pages larger than this
MAX_PAGE_SIZE = 500

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class CacheConfig:
    """Settings for one cache instance."""
    directory: Optional[str] = None
    db_filename: str = "offline_cache"
    check_interval: float = 10.0        # Seconds between health checks
    default_max_items: int = MAX_PAGE_SIZE
    request_timeout: float = 30.0       # Seconds, remote HTTP calls
    test_mode: bool = False             # Disables the monitor thread
    remote_url: Optional[str] = None    # Used by the clients' from_config
    remote_key: Optional[str] = None    # Supabase anon key or PocketBase token

    def validate(self) -> CacheConfig:
        """Raise ConfigurationError for out-of-range values."""
        if self.check_interval <= 0:
            raise ConfigurationError(
                "check_interval must be positive",
                config_key="check_interval",
                expected_type="float > 0",
            )
        if not 0 < self.default_max_items <= MAX_PAGE_SIZE:
            raise ConfigurationError(
                f"default_max_items must be between 1 and {MAX_PAGE_SIZE}",
                config_key="default_max_items",
                expected_type="int",
            )
        if self.request_timeout <= 0:
            raise ConfigurationError(
                "request_timeout must be positive",
                config_key="request_timeout",
                expected_type="float > 0",
            )
        if not self.db_filename:
            raise ConfigurationError("db_filename must not be empty", config_key="db_filename")
        return self


def _load_secrets() -> Dict[str, Any]:
    """Read the [offline_cache] table from Streamlit secrets, if any."""
    try:
        if SECRETS_SECTION in st.secrets:
            return dict(st.secrets[SECRETS_SECTION])
    except Exception as e:
        # No secrets.toml outside a configured Streamlit app
        logger.debug(f"Streamlit secrets not available: {e}")
    return {}


def _load_env() -> Dict[str, Any]:
    """Read OFFLINE_CACHE_<FIELD> environment variables."""
    values = {}
    for f in fields(CacheConfig):
        raw = os.getenv(ENV_PREFIX + f.name.upper())
        if raw is not None:
            values[f.name] = raw
    return values


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw secrets/env value to the field's type."""
    if value is None:
        return None
    try:
        if name in ("check_interval", "request_timeout"):
            return float(value)
        if name == "default_max_items":
            return int(value)
        if name == "test_mode":
            if isinstance(value, bool):
                return value
            return str(value).strip().lower() in _TRUTHY
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid value for {name}: {value!r}",
            config_key=name,
        ) from e
    return str(value)


def load_config(**overrides: Any) -> CacheConfig:
    """
    Build a validated CacheConfig.

    Args:
        **overrides: Field values that win over secrets and environment.
            None values are ignored.

    Returns:
        CacheConfig
    """
    known = {f.name for f in fields(CacheConfig)}
    unknown = set(overrides) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown configuration keys: {sorted(unknown)}",
            config_key=",".join(sorted(unknown)),
        )

    merged: Dict[str, Any] = {}
    for source in (_load_secrets(), _load_env(), overrides):
        for key, value in source.items():
            if key in known and value is not None:
                merged[key] = _coerce(key, value)

    return CacheConfig(**merged).validate()
