"""
ChartSync Repository
Introductory remarks: This module is part of the ChartSync codebase.

In-memory model of a repository index plus its YAML codec.

The serialized form follows the Helm repository index schema::

    apiVersion: v1
    entries:
      foo:
      - name: foo
        version: 1.2.3
        urls: [foo-1.2.3.tgz]
        digest: <sha256>
        created: '2026-01-01T00:00:00+00:00'
        ...Chart.yaml fields...
    generated: '2026-01-01T00:00:00+00:00'

Every mutation returns a new :class:`IndexFile`; a mutation that changes
nothing returns the very same object, which callers use to skip writes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from chartsync.config import INDEX_API_VERSION
from chartsync.storage.errors import MalformedIndex

from .charts import (ChartEntry, format_timestamp, parse_timestamp,
                     version_sort_key)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class IndexFile:
    """Repository manifest: entries per chart, newest version first."""

    api_version: str = INDEX_API_VERSION
    entries: Mapping[str, Tuple[ChartEntry, ...]] = field(
        default_factory=dict, hash=False
    )
    generated: datetime = _EPOCH

    def __post_init__(self) -> None:
        frozen = {
            name: tuple(sorted_versions(versions))
            for name, versions in dict(self.entries).items()
            if versions
        }
        object.__setattr__(self, "entries", MappingProxyType(frozen))
        object.__setattr__(self, "generated", parse_timestamp(self.generated))

    @classmethod
    def empty(cls) -> "IndexFile":
        return cls(api_version=INDEX_API_VERSION, entries={}, generated=_EPOCH)

    def get(self, name: str, version: str) -> Optional[ChartEntry]:
        for entry in self.entries.get(name, ()):
            if entry.version == version:
                return entry
        return None

    def contains(self, name: str, version: str) -> bool:
        return self.get(name, version) is not None

    def __len__(self) -> int:
        return sum(len(versions) for versions in self.entries.values())


def sorted_versions(versions: Any) -> list[ChartEntry]:
    return sorted(
        versions,
        key=lambda entry: version_sort_key(entry.version),
        reverse=True,
    )


def next_generated(previous: datetime, now: Optional[datetime] = None) -> datetime:
    """Return ``now`` clamped strictly above ``previous``.

    When the clock has not moved past ``previous`` (coarse resolution or a
    slightly skewed publisher) the smallest representable step is added.
    """
    current = parse_timestamp(now) if now is not None else datetime.now(
        timezone.utc
    )
    if current <= previous:
        return previous + timedelta(microseconds=1)
    return current


def merge(
    index: IndexFile,
    entry: ChartEntry,
    *,
    allow_replace: bool,
    now: Optional[datetime] = None,
) -> IndexFile:
    """Insert or replace ``entry`` in ``index``.

    Without ``allow_replace`` an existing (name, version) wins: the same
    ``index`` object comes back and ``generated`` does not move.
    """
    existing = index.entries.get(entry.name, ())
    if not allow_replace and any(e.version == entry.version for e in existing):
        return index

    entries: Dict[str, Any] = dict(index.entries)
    versions = [e for e in existing if e.version != entry.version]
    versions.append(entry)
    entries[entry.name] = sorted_versions(versions)
    return IndexFile(
        api_version=index.api_version,
        entries=entries,
        generated=next_generated(index.generated, now),
    )


def remove(
    index: IndexFile,
    name: str,
    version: str,
    *,
    now: Optional[datetime] = None,
) -> IndexFile:
    """Drop one chart version; the chart key disappears with its last one."""
    existing = index.entries.get(name, ())
    remaining = [e for e in existing if e.version != version]
    if len(remaining) == len(existing):
        return index
    entries: Dict[str, Any] = dict(index.entries)
    if remaining:
        entries[name] = remaining
    else:
        entries.pop(name, None)
    return IndexFile(
        api_version=index.api_version,
        entries=entries,
        generated=next_generated(index.generated, now),
    )


def replace_all(
    index: IndexFile,
    new_entries: Any,
    *,
    now: Optional[datetime] = None,
) -> IndexFile:
    """Replace every entry of ``index`` with ``new_entries``.

    Later duplicates of a (name, version) win.
    """
    grouped: Dict[str, Dict[str, ChartEntry]] = {}
    for entry in new_entries:
        grouped.setdefault(entry.name, {})[entry.version] = entry
    return IndexFile(
        api_version=index.api_version,
        entries={
            name: list(versions.values()) for name, versions in grouped.items()
        },
        generated=next_generated(index.generated, now),
    )


def parse_index(data: bytes) -> IndexFile:
    """Decode a stored index, raising :class:`MalformedIndex` on any defect."""
    try:
        payload = yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise MalformedIndex(f"Index is not valid YAML: {exc}") from exc

    if not isinstance(payload, dict):
        raise MalformedIndex("Index must be a YAML mapping")

    api_version = payload.get("apiVersion")
    if not isinstance(api_version, str) or not api_version:
        raise MalformedIndex("Index is missing its apiVersion")

    raw_entries = payload.get("entries") or {}
    if not isinstance(raw_entries, dict):
        raise MalformedIndex("Index 'entries' must be a mapping")

    entries: Dict[str, list[ChartEntry]] = {}
    for name, versions in raw_entries.items():
        if not isinstance(versions, list):
            raise MalformedIndex(f"Entries for chart '{name}' must be a list")
        parsed: list[ChartEntry] = []
        seen: set[str] = set()
        for item in versions:
            if not isinstance(item, dict):
                raise MalformedIndex(
                    f"Entry for chart '{name}' must be a mapping"
                )
            try:
                entry = ChartEntry.from_dict(item)
            except ValueError as exc:
                raise MalformedIndex(
                    f"Invalid entry for chart '{name}': {exc}"
                ) from exc
            if entry.name != name:
                raise MalformedIndex(
                    f"Entry '{entry.name}' is listed under chart '{name}'"
                )
            if entry.version in seen:
                raise MalformedIndex(
                    f"Chart '{name}' lists version {entry.version} twice"
                )
            seen.add(entry.version)
            parsed.append(entry)
        entries[str(name)] = parsed

    generated_raw = payload.get("generated")
    try:
        generated = (
            parse_timestamp(generated_raw)
            if generated_raw is not None
            else _EPOCH
        )
    except ValueError as exc:
        raise MalformedIndex(f"Index 'generated' is invalid: {exc}") from exc

    return IndexFile(api_version=api_version, entries=entries, generated=generated)


def serialize_index(index: IndexFile) -> bytes:
    payload = {
        "apiVersion": index.api_version,
        "entries": {
            name: [entry.to_dict() for entry in versions]
            for name, versions in sorted(index.entries.items())
        },
        "generated": format_timestamp(index.generated),
    }
    return yaml.safe_dump(
        payload, sort_keys=False, default_flow_style=False
    ).encode("utf-8")
