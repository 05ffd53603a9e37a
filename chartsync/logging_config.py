"""Central logging configuration driven by LOG_LEVEL and LOG_FILE."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

_CONFIGURED = False

# boto3 and friends are chatty at DEBUG; only let them through at level 3.
_NOISY_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3")


def configure_logging() -> None:
    """Configure global logging based on LOG_LEVEL and LOG_FILE.

    Logs only ever go to the file; stdout and stderr are reserved for the
    single user-facing message of each command.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    level = _read_level(os.getenv("LOG_LEVEL", "0"))
    log_path = os.getenv("LOG_FILE")

    if level is None or level <= 0 or not log_path:
        # Silent mode; a root handler keeps logging's last-resort stderr
        # output from mixing warnings into command output.
        logging.getLogger().addHandler(logging.NullHandler())
        _CONFIGURED = True
        return

    log_file = Path(log_path).expanduser()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=_map_level(level),
        filename=log_file,
        filemode="a",
        format="%(asctime)s %(levelname)s %(process)d %(name)s: %(message)s",
    )
    if level < 3:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    _CONFIGURED = True


def _read_level(raw: str) -> Optional[int]:
    try:
        return int(raw)
    except ValueError:
        return None


def _map_level(level: int) -> int:
    if level >= 2:
        return logging.DEBUG
    return logging.INFO
