"""
ChartSync Repository
Introductory remarks: This module is part of the ChartSync codebase.

Central configuration constants and environment-driven settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from chartsync.utils.env import load_dotenv, read_float, read_int

# Repository layout ---------------------------------------------------------

DEFAULT_CHART_CONTENT_TYPE = "application/gzip"
"""Media type attached to uploaded chart archives unless overridden."""

INDEX_CONTENT_TYPE = "application/x-yaml"
"""Media type attached to the repository index object."""

INDEX_FILENAME = "index.yaml"
"""Object name of the repository index, relative to the repository prefix."""

LOCK_SUFFIX = ".lock"
"""Suffix appended to the index key to form the lock object key."""

INDEX_API_VERSION = "v1"
"""Schema version written to freshly created indexes."""

# Locking ------------------------------------------------------------------

DEFAULT_LOCK_TTL_SECONDS = 60.0
"""Age after which a lock object is considered abandoned."""

DEFAULT_LOCK_MAX_WAIT_SECONDS = 120.0
"""How long a publisher waits for the repository lock before giving up."""

LOCK_BACKOFF_INITIAL_SECONDS = 0.05
LOCK_BACKOFF_MAX_SECONDS = 2.0

# Retries ------------------------------------------------------------------

DEFAULT_RETRY_ATTEMPTS = 3
"""Total attempts for a single transient-failing store call."""

DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
"""Base delay between retries; doubles per attempt."""

DEFAULT_REPOSITORY_CONFIG = Path.home() / ".config" / "helm" / "repositories.yaml"


@dataclass(frozen=True)
class Settings:
    """Runtime knobs resolved from the environment."""

    lock_ttl: float = DEFAULT_LOCK_TTL_SECONDS
    lock_max_wait: float = DEFAULT_LOCK_MAX_WAIT_SECONDS
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_backoff: float = DEFAULT_RETRY_BACKOFF_SECONDS
    repository_config: Path = DEFAULT_REPOSITORY_CONFIG

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``CHARTSYNC_*`` variables (and ``.env``)."""
        load_dotenv()
        config_raw = (
            os.environ.get("CHARTSYNC_REPOSITORY_CONFIG")
            or os.environ.get("HELM_REPOSITORY_CONFIG")
        )
        return cls(
            lock_ttl=read_float(
                "CHARTSYNC_LOCK_TTL", DEFAULT_LOCK_TTL_SECONDS, minimum=1.0
            ),
            lock_max_wait=read_float(
                "CHARTSYNC_LOCK_MAX_WAIT",
                DEFAULT_LOCK_MAX_WAIT_SECONDS,
                minimum=0.0,
            ),
            retry_attempts=read_int(
                "CHARTSYNC_RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS, minimum=1
            ),
            retry_backoff=read_float(
                "CHARTSYNC_RETRY_BACKOFF",
                DEFAULT_RETRY_BACKOFF_SECONDS,
                minimum=0.0,
            ),
            repository_config=(
                Path(config_raw).expanduser()
                if config_raw
                else DEFAULT_REPOSITORY_CONFIG
            ),
        )
