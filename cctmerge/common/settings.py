"""Environment-driven settings for cctmerge runs."""

from __future__ import annotations

import os
from functools import lru_cache

DEFAULT_MAX_PROFILES = 32


def _truthy(value: str) -> bool:
    return value.lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=None)
def get_max_profiles() -> int:
    """Return the sanity cap on the number of profiles processed in one run.

    The cap only applies to the single-process path; ``--force`` bypasses it.
    Invalid or non-positive values fall back to the default of 32.
    """

    raw = os.getenv("CCTMERGE_MAX_PROFILES", "")
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_MAX_PROFILES
    return value if value > 0 else DEFAULT_MAX_PROFILES


@lru_cache(maxsize=None)
def get_log_verbosity() -> str:
    """Return the configured log verbosity (``debug``/``info``/``warning``/...)."""

    return os.getenv("CCTMERGE_LOG_VERBOSITY", "warning").lower()


@lru_cache(maxsize=None)
def stage_profiling_enabled() -> bool:
    return _truthy(os.getenv("CCTMERGE_PROFILE", "0"))


@lru_cache(maxsize=None)
def get_database_prefix() -> str:
    return os.getenv("CCTMERGE_DB_PREFIX", "cctmerge")


def reset_settings_cache() -> None:
    """Forget cached values so tests can change the environment."""

    for getter in (
        get_max_profiles,
        get_log_verbosity,
        stage_profiling_enabled,
        get_database_prefix,
    ):
        getter.cache_clear()


__all__ = [
    "DEFAULT_MAX_PROFILES",
    "get_max_profiles",
    "get_log_verbosity",
    "stage_profiling_enabled",
    "get_database_prefix",
    "reset_settings_cache",
]
