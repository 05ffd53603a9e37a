"""
ChartSync Repository
Introductory remarks: This module is part of the ChartSync codebase.

Unit tests for the index model and its YAML codec.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import yaml

from chartsync.models.charts import ChartEntry
from chartsync.models.index import (IndexFile, merge, next_generated,
                                    parse_index, remove, replace_all,
                                    serialize_index)
from chartsync.storage.errors import MalformedIndex

T0 = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def _entry(version: str, name: str = "demo", digest: str = "d") -> ChartEntry:
    return ChartEntry(
        name=name,
        version=version,
        urls=[f"{name}-{version}.tgz"],
        digest=digest,
        created=T0,
        metadata={"apiVersion": "v2", "description": "test"},
    )


def test_empty_index_has_schema_version_and_no_entries() -> None:
    index = IndexFile.empty()
    assert index.api_version == "v1"
    assert len(index) == 0
    assert index.get("demo", "1.0.0") is None


def test_merge_inserts_and_sorts_descending() -> None:
    index = IndexFile.empty()
    for version in ("1.0.0", "1.10.0", "1.2.0", "2.0.0-rc.1"):
        index = merge(index, _entry(version), allow_replace=False, now=T0)

    versions = [entry.version for entry in index.entries["demo"]]
    assert versions == ["2.0.0-rc.1", "1.10.0", "1.2.0", "1.0.0"]


def test_merge_without_replace_is_identity_noop() -> None:
    index = merge(IndexFile.empty(), _entry("1.0.0"), allow_replace=False, now=T0)

    again = merge(
        index,
        _entry("1.0.0", digest="other"),
        allow_replace=False,
        now=T0 + timedelta(hours=1),
    )

    assert again is index
    assert again.get("demo", "1.0.0").digest == "d"


def test_merge_with_replace_swaps_entry_and_advances_generated() -> None:
    index = merge(IndexFile.empty(), _entry("1.0.0"), allow_replace=False, now=T0)

    replaced = merge(
        index, _entry("1.0.0", digest="new"), allow_replace=True, now=T0
    )

    assert replaced is not index
    assert replaced.get("demo", "1.0.0").digest == "new"
    assert len(replaced) == 1
    assert replaced.generated > index.generated


def test_next_generated_clamps_when_clock_stalls_or_goes_back() -> None:
    assert next_generated(T0, T0) == T0 + timedelta(microseconds=1)
    earlier = T0 - timedelta(seconds=5)
    assert next_generated(T0, earlier) == T0 + timedelta(microseconds=1)
    later = T0 + timedelta(seconds=5)
    assert next_generated(T0, later) == later


def test_remove_drops_version_and_empty_chart_key() -> None:
    index = IndexFile.empty()
    index = merge(index, _entry("1.0.0"), allow_replace=False, now=T0)
    index = merge(index, _entry("1.1.0"), allow_replace=False, now=T0)

    one_left = remove(index, "demo", "1.0.0", now=T0)
    assert [e.version for e in one_left.entries["demo"]] == ["1.1.0"]
    assert one_left.generated > index.generated

    none_left = remove(one_left, "demo", "1.1.0", now=T0)
    assert "demo" not in none_left.entries

    assert remove(none_left, "demo", "9.9.9", now=T0) is none_left


def test_replace_all_groups_entries_and_last_duplicate_wins() -> None:
    rebuilt = replace_all(
        IndexFile.empty(),
        [
            _entry("1.0.0"),
            _entry("0.1.0", name="other"),
            _entry("1.0.0", digest="later"),
        ],
        now=T0,
    )

    assert sorted(rebuilt.entries) == ["demo", "other"]
    assert rebuilt.get("demo", "1.0.0").digest == "later"
    assert len(rebuilt) == 2


def test_serialize_then_parse_preserves_index() -> None:
    index = IndexFile.empty()
    index = merge(index, _entry("1.0.0"), allow_replace=False, now=T0)
    index = merge(index, _entry("0.3.0", name="alpha"), allow_replace=False, now=T0)

    data = serialize_index(index)
    payload = yaml.safe_load(data)

    assert payload["apiVersion"] == "v1"
    assert list(payload["entries"]) == ["alpha", "demo"]
    assert payload["entries"]["demo"][0]["urls"] == ["demo-1.0.0.tgz"]
    assert parse_index(data) == index


def test_parse_index_accepts_helm_written_timestamps() -> None:
    data = b"""
apiVersion: v1
entries:
  demo:
  - apiVersion: v2
    name: demo
    version: 0.1.0
    urls:
    - https://charts.example.com/demo-0.1.0.tgz
    digest: abc
    created: 2026-01-02T03:04:05.123456789Z
generated: "2026-01-02T03:04:06.000000001Z"
"""
    index = parse_index(data)

    entry = index.get("demo", "0.1.0")
    assert entry is not None
    assert entry.created.year == 2026
    assert index.generated == datetime(2026, 1, 2, 3, 4, 6, tzinfo=timezone.utc)


def test_parse_index_accepts_trimmed_fractions() -> None:
    data = b"""
apiVersion: v1
entries:
  demo:
  - apiVersion: v2
    name: demo
    version: 0.1.0
    urls:
    - demo-0.1.0.tgz
    digest: abc
    created: "2026-01-02T03:04:05.12345Z"
generated: "2026-01-02T03:04:06.5Z"
"""
    index = parse_index(data)

    entry = index.get("demo", "0.1.0")
    assert entry is not None
    assert entry.created.microsecond == 123450
    assert index.generated.microsecond == 500000


def test_parse_index_without_generated_defaults_to_epoch() -> None:
    index = parse_index(b"apiVersion: v1\nentries: {}\n")
    assert index.generated == IndexFile.empty().generated
    assert len(index) == 0


@pytest.mark.parametrize(
    "data",
    [
        b"apiVersion: [unclosed\n",
        b"- just\n- a list\n",
        b"entries: {}\n",
        b"apiVersion: v1\nentries: [demo]\n",
        b"apiVersion: v1\nentries:\n  demo: {}\n",
        b"apiVersion: v1\nentries:\n  demo:\n  - not-a-mapping\n",
        b"apiVersion: v1\nentries:\n  demo:\n  - name: demo\n    version: 1.0\n"
        b"    urls: [a.tgz]\n    created: '2026-01-01T00:00:00Z'\n",
        b"apiVersion: v1\nentries:\n  demo:\n  - name: other\n"
        b"    version: 1.0.0\n    urls: [a.tgz]\n"
        b"    created: '2026-01-01T00:00:00Z'\n",
        b"apiVersion: v1\nentries:\n  demo:\n"
        b"  - {name: demo, version: 1.0.0, urls: [a.tgz],"
        b" created: '2026-01-01T00:00:00Z'}\n"
        b"  - {name: demo, version: 1.0.0, urls: [b.tgz],"
        b" created: '2026-01-01T00:00:00Z'}\n",
        b"apiVersion: v1\nentries: {}\ngenerated: yesterday\n",
    ],
)
def test_parse_index_rejects_malformed_documents(data: bytes) -> None:
    with pytest.raises(MalformedIndex):
        parse_index(data)
