from __future__ import annotations

"""Helpers for loading environment configuration."""

import logging
import os
from pathlib import Path
from typing import Optional, Tuple, Union

_ENV_LOADED = False

_LOGGER = logging.getLogger(__name__)


def load_dotenv(dotenv_path: Union[str, Path] = ".env") -> None:
    """Load environment variables from a simple ``.env`` file if present."""
    global _ENV_LOADED
    if _ENV_LOADED:
        return

    path = Path(dotenv_path)
    if path.exists():
        for line in path.read_text().splitlines():
            parsed = _parse_line(line)
            if parsed:
                key, value = parsed
                os.environ.setdefault(key, value)

    _ENV_LOADED = True


def _parse_line(line: str) -> Optional[Tuple[str, str]]:
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None

    if "=" not in stripped:
        return None

    key, value = stripped.split("=", 1)
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]
    return (key.strip(), value)


def truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    lowered = value.strip().lower()
    return lowered in {"1", "true", "yes", "on"}


def read_float(name: str, default: float, *, minimum: float) -> float:
    """Return ``name`` as a float, falling back to ``default`` when invalid.

    Values below ``minimum`` are rejected as well; a warning is logged so a
    mistyped variable does not silently change locking behaviour.
    """

    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        _LOGGER.warning("Ignoring %s=%r: not a number", name, raw)
        return default
    if value < minimum:
        _LOGGER.warning("Ignoring %s=%r: below %s", name, raw, minimum)
        return default
    return value


def read_int(name: str, default: int, *, minimum: int) -> int:
    """Integer counterpart of :func:`read_float`."""

    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        _LOGGER.warning("Ignoring %s=%r: not an integer", name, raw)
        return default
    if value < minimum:
        _LOGGER.warning("Ignoring %s=%r: below %s", name, raw, minimum)
        return default
    return value
