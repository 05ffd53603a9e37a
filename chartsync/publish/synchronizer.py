"""
ChartSync Repository
Introductory remarks: This module is part of the ChartSync codebase.

Locked read-modify-write transactions on the repository index.

Implements the only code path that writes ``index.yaml``:
  (1) acquire the repository lock (bounded wait)
  (2) fetch the current index, or start from an empty one
  (3) parse it, failing fast on a malformed index
  (4) apply one mutation
  (5) skip the write when the mutation changed nothing
  (6) otherwise serialize and overwrite the index
and release the lock on every exit path. Dry runs perform (2)-(4) without
the lock and never write.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

from chartsync.config import INDEX_CONTENT_TYPE
from chartsync.models.charts import ChartEntry
from chartsync.models.index import (IndexFile, merge, next_generated,
                                    parse_index, remove, replace_all,
                                    serialize_index)
from chartsync.storage.errors import ChartNotFound, ObjectNotFound
from chartsync.storage.layout import RepositoryLocation
from chartsync.storage.object_store import ObjectStore
from chartsync.storage.repository_lock import RepositoryLock

_LOGGER = logging.getLogger(__name__)

Mutation = Callable[[IndexFile], IndexFile]


class IndexSynchronizer:
    """Serialize index mutations of a repository through its lock."""

    def __init__(
        self,
        store: ObjectStore,
        lock: RepositoryLock,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._lock = lock
        self._clock = clock

    def _now(self) -> Optional[datetime]:
        return self._clock() if self._clock is not None else None

    def fetch(self, location: RepositoryLocation) -> IndexFile:
        """Return the stored index, or an empty one if none exists yet."""
        try:
            data = self._store.get(location.index_key)
        except ObjectNotFound:
            _LOGGER.info("No index at %s; starting empty", location.index_key)
            return IndexFile.empty()
        return parse_index(data)

    def update(
        self,
        location: RepositoryLocation,
        entry: ChartEntry,
        *,
        allow_replace: bool,
        dry_run: bool = False,
    ) -> IndexFile:
        """Merge ``entry`` into the repository index."""
        return self._transact(
            location,
            lambda index: merge(
                index, entry, allow_replace=allow_replace, now=self._now()
            ),
            action=f"add {entry.name} {entry.version}",
            dry_run=dry_run,
        )

    def remove(
        self,
        location: RepositoryLocation,
        name: str,
        version: str,
        *,
        dry_run: bool = False,
    ) -> Tuple[IndexFile, ChartEntry]:
        """Drop ``name`` ``version`` from the index.

        Returns the new index together with the entry that was dropped, as
        seen under the lock. Raises ChartNotFound when it is not listed.
        """
        removed: List[ChartEntry] = []

        def _remove(index: IndexFile) -> IndexFile:
            entry = index.get(name, version)
            if entry is None:
                raise ChartNotFound(
                    f"Chart '{name}' version {version} is not in repository "
                    f"'{location.name}'"
                )
            removed.append(entry)
            return remove(index, name, version, now=self._now())

        index = self._transact(
            location, _remove, action=f"remove {name} {version}", dry_run=dry_run
        )
        return index, removed[0]

    def rebuild(
        self,
        location: RepositoryLocation,
        entries: Iterable[ChartEntry],
        *,
        dry_run: bool = False,
    ) -> IndexFile:
        """Replace every index entry with ``entries``."""
        collected = list(entries)
        return self._transact(
            location,
            lambda index: replace_all(index, collected, now=self._now()),
            action=f"rebuild with {len(collected)} entries",
            dry_run=dry_run,
        )

    def initialize(
        self, location: RepositoryLocation, *, dry_run: bool = False
    ) -> IndexFile:
        """Write an empty index unless the repository already has one."""
        if dry_run:
            return self.fetch(location)
        with self._lock.hold(location):
            if self._store.stat(location.index_key) is not None:
                _LOGGER.info("Index %s already exists", location.index_key)
                return self.fetch(location)
            empty = IndexFile.empty()
            index = IndexFile(
                entries={},
                generated=next_generated(empty.generated, self._now()),
            )
            self._write(location, index)
            return index

    def _transact(
        self,
        location: RepositoryLocation,
        mutation: Mutation,
        *,
        action: str,
        dry_run: bool,
    ) -> IndexFile:
        if dry_run:
            # Nothing durable happens, so no lock is taken.
            result = mutation(self.fetch(location))
            _LOGGER.info("Dry run: %s on %s", action, location.index_key)
            return result

        with self._lock.hold(location):
            current = self.fetch(location)
            updated = mutation(current)
            if updated is current:
                _LOGGER.info(
                    "Index %s unchanged by %s; not rewriting",
                    location.index_key,
                    action,
                )
                return current
            self._write(location, updated)
            _LOGGER.info(
                "Index %s updated (%s), generated=%s",
                location.index_key,
                action,
                updated.generated.isoformat(),
            )
            return updated

    def _write(self, location: RepositoryLocation, index: IndexFile) -> None:
        self._store.put(
            location.index_key,
            serialize_index(index),
            content_type=INDEX_CONTENT_TYPE,
        )
