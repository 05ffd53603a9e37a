"""
ChartSync Repository
Introductory remarks: This module is part of the ChartSync codebase.

Repository operations composed from the publisher and the synchronizer.

A push runs in two phases. The artifact upload needs no lock because
distinct chart files never share a key; only the index update that follows
is serialized through the repository lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Callable, List, Optional

from chartsync.config import DEFAULT_CHART_CONTENT_TYPE, Settings
from chartsync.models.charts import ChartEntry
from chartsync.models.index import IndexFile
from chartsync.repositories import Repository
from chartsync.storage.errors import ChartArchiveError
from chartsync.storage.repository_lock import RepositoryLock

from .chart_archive import ChartArchive, read_chart_archive
from .publisher import ArtifactPublisher, PublishPolicy, PublishResult
from .synchronizer import IndexSynchronizer

_LOGGER = logging.getLogger(__name__)

CHART_SUFFIX = ".tgz"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def entry_urls(
    repository: Repository, filename: str, *, relative: bool
) -> List[str]:
    """URL list stored in the index for ``filename``."""
    if relative:
        return [filename]
    return [repository.artifact_url(filename)]


@dataclass(frozen=True)
class PushOutcome:
    result: PublishResult
    entry: ChartEntry
    index: IndexFile
    dry_run: bool = False


@dataclass(frozen=True)
class DeleteOutcome:
    entry: ChartEntry
    index: IndexFile
    deleted_keys: tuple[str, ...]
    dry_run: bool = False


class ChartRepositoryService:
    """Push, delete and reindex charts in one repository."""

    def __init__(
        self,
        repository: Repository,
        settings: Settings,
        *,
        lock: Optional[RepositoryLock] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or _utcnow
        store = repository.store
        self._publisher = ArtifactPublisher(store)
        self._synchronizer = IndexSynchronizer(
            store,
            lock
            or RepositoryLock(
                store,
                ttl=settings.lock_ttl,
                max_wait=settings.lock_max_wait,
            ),
            clock=clock,
        )

    @property
    def synchronizer(self) -> IndexSynchronizer:
        return self._synchronizer

    def push(
        self,
        archive: ChartArchive,
        *,
        policy: PublishPolicy,
        content_type: str = DEFAULT_CHART_CONTENT_TYPE,
        relative: bool = False,
    ) -> PushOutcome:
        """Upload ``archive`` and record it in the index."""
        location = self._repository.location
        key = location.key(archive.filename)
        result = self._publisher.publish(
            archive.data, key, content_type=content_type, policy=policy
        )
        indexed = archive
        if result is PublishResult.SKIPPED:
            # The index has to describe the bytes the store kept.
            indexed = read_chart_archive(
                archive.filename, self._repository.store.get(key)
            )
        entry = ChartEntry.from_chart(
            indexed.chart,
            urls=entry_urls(
                self._repository, archive.filename, relative=relative
            ),
            digest=indexed.digest,
            created=self._clock(),
        )
        # A skipped upload keeps whatever the index already says about it.
        index = self._synchronizer.update(
            location,
            entry,
            allow_replace=result is PublishResult.UPLOADED,
            dry_run=policy.dry_run,
        )
        _LOGGER.info(
            "Pushed %s %s to %s: %s",
            entry.name,
            entry.version,
            self._repository.url,
            result.value,
        )
        return PushOutcome(
            result=result, entry=entry, index=index, dry_run=policy.dry_run
        )

    def delete(
        self, name: str, version: str, *, dry_run: bool = False
    ) -> DeleteOutcome:
        """Remove a chart version from the index, then its artifact."""
        index, removed = self._synchronizer.remove(
            self._repository.location, name, version, dry_run=dry_run
        )
        keys = self._artifact_keys(removed)
        if not dry_run:
            for key in keys:
                self._repository.store.delete(key)
                _LOGGER.info("Deleted artifact %s", key)
        return DeleteOutcome(
            entry=removed, index=index, deleted_keys=keys, dry_run=dry_run
        )

    def reindex(
        self, *, relative: bool = False, dry_run: bool = False
    ) -> IndexFile:
        """Rebuild the index from the chart archives present in the store."""
        location = self._repository.location
        entries: List[ChartEntry] = []
        for info in self._repository.store.list(location.list_prefix):
            filename = info.key[len(location.list_prefix):]
            if "/" in filename or not filename.endswith(CHART_SUFFIX):
                continue
            try:
                archive = read_chart_archive(
                    filename, self._repository.store.get(info.key)
                )
            except ChartArchiveError as exc:
                _LOGGER.warning("Skipping %s during reindex: %s", info.key, exc)
                continue
            entries.append(
                ChartEntry.from_chart(
                    archive.chart,
                    urls=entry_urls(
                        self._repository, filename, relative=relative
                    ),
                    digest=archive.digest,
                    created=info.last_modified,
                )
            )
        _LOGGER.info(
            "Reindexing %s with %d chart(s)", self._repository.url, len(entries)
        )
        return self._synchronizer.rebuild(location, entries, dry_run=dry_run)

    def init(self, *, dry_run: bool = False) -> IndexFile:
        return self._synchronizer.initialize(
            self._repository.location, dry_run=dry_run
        )

    def _artifact_keys(self, entry: ChartEntry) -> tuple[str, ...]:
        location = self._repository.location
        keys: List[str] = []
        for url in entry.urls:
            filename = PurePosixPath(url).name
            if not filename:
                continue
            ours = "://" not in url or url == self._repository.artifact_url(
                filename
            )
            if ours:
                keys.append(location.key(filename))
            else:
                _LOGGER.warning(
                    "Not deleting %s: it is outside repository %s",
                    url,
                    self._repository.url,
                )
        return tuple(keys)

