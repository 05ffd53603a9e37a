"""
ChartSync Repository
Introductory remarks: This module is part of the ChartSync codebase.

Overwrite policy evaluation and artifact upload.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from chartsync.config import DEFAULT_CHART_CONTENT_TYPE
from chartsync.storage.errors import AlreadyExists, FlagConflict
from chartsync.storage.object_store import ObjectStore

_LOGGER = logging.getLogger(__name__)

FLAG_CONFLICT_MESSAGE = (
    "The --force and --ignore-if-exists flags are mutually exclusive and "
    "cannot be specified together."
)
ALREADY_EXISTS_MESSAGE = (
    "The chart already exists in the repository and cannot be overwritten "
    "without an explicit intent."
)


class OverwriteMode(str, Enum):
    """What to do when the target artifact already exists."""

    STRICT = "strict"
    FORCE = "force"
    IGNORE_IF_EXISTS = "ignore-if-exists"


class PublishResult(str, Enum):
    UPLOADED = "uploaded"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class PublishPolicy:
    """Overwrite mode plus the orthogonal dry-run modifier."""

    mode: OverwriteMode = OverwriteMode.STRICT
    dry_run: bool = False

    @classmethod
    def from_flags(
        cls,
        *,
        force: bool = False,
        ignore_if_exists: bool = False,
        dry_run: bool = False,
    ) -> "PublishPolicy":
        """Translate CLI-style flags, rejecting contradictory ones."""
        if force and ignore_if_exists:
            raise FlagConflict(FLAG_CONFLICT_MESSAGE)
        if force:
            mode = OverwriteMode.FORCE
        elif ignore_if_exists:
            mode = OverwriteMode.IGNORE_IF_EXISTS
        else:
            mode = OverwriteMode.STRICT
        return cls(mode=mode, dry_run=dry_run)


class ArtifactPublisher:
    """Upload artifacts while honouring the overwrite policy."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    def publish(
        self,
        data: bytes,
        key: str,
        *,
        content_type: str = DEFAULT_CHART_CONTENT_TYPE,
        policy: PublishPolicy = PublishPolicy(),
    ) -> PublishResult:
        """Upload ``data`` to ``key`` unless the policy says otherwise.

        :param data: archive bytes, uploaded verbatim
        :param key: object key inside the repository's store
        :param content_type: media type attached as-is, never sniffed
        :param policy: overwrite mode and dry-run switch
        :returns: ``UPLOADED`` (also under dry-run) or ``SKIPPED``
        :raises AlreadyExists: strict mode and ``key`` is already stored
        """
        existing = self._store.stat(key)
        if existing is not None:
            if policy.mode is OverwriteMode.STRICT:
                raise AlreadyExists(ALREADY_EXISTS_MESSAGE)
            if policy.mode is OverwriteMode.IGNORE_IF_EXISTS:
                _LOGGER.info("Keeping existing %s (ignore-if-exists)", key)
                return PublishResult.SKIPPED
            _LOGGER.info(
                "Overwriting %s last modified %s (force)",
                key,
                existing.last_modified,
            )

        if policy.dry_run:
            _LOGGER.info(
                "Dry run: would upload %d bytes to %s as %s",
                len(data),
                key,
                content_type,
            )
            return PublishResult.UPLOADED

        self._store.put(key, data, content_type=content_type)
        _LOGGER.info("Uploaded %d bytes to %s", len(data), key)
        return PublishResult.UPLOADED
