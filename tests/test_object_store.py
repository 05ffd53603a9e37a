"""
ChartSync Repository
Introductory remarks: This module is part of the ChartSync codebase.

Tests for the in-memory and local-directory object stores.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from chartsync.storage.errors import (NetworkFailure, ObjectNotFound,
                                      RepositoryConfigError)
from chartsync.storage.object_store import (InMemoryObjectStore,
                                            LocalObjectStore)


def test_memory_store_basic_operations() -> None:
    store = InMemoryObjectStore("unit")

    assert store.stat("a/b.tgz") is None
    store.put("a/b.tgz", b"payload", content_type="application/gzip")
    info = store.stat("a/b.tgz")

    assert info is not None
    assert info.size == 7
    assert info.content_type == "application/gzip"
    assert store.get("a/b.tgz") == b"payload"
    assert [item.key for item in store.list("a/")] == ["a/b.tgz"]
    assert store.url("a/b.tgz") == "memory://unit/a/b.tgz"

    store.delete("a/b.tgz")
    store.delete("a/b.tgz")
    with pytest.raises(ObjectNotFound):
        store.get("a/b.tgz")


def test_memory_store_put_if_absent_only_creates_once() -> None:
    store = InMemoryObjectStore()

    assert store.put_if_absent("lock", b"first") is True
    assert store.put_if_absent("lock", b"second") is False
    assert store.get("lock") == b"first"
    assert store.calls["put_if_absent"] == 2


def test_memory_store_put_if_absent_is_atomic_across_threads() -> None:
    store = InMemoryObjectStore()
    barrier = threading.Barrier(8)
    winners = []

    def contender(index: int) -> None:
        barrier.wait()
        if store.put_if_absent("lock", str(index).encode()):
            winners.append(index)

    threads = [threading.Thread(target=contender, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1


def test_memory_store_mtime_strictly_increases_with_frozen_clock() -> None:
    frozen = datetime(2026, 1, 1, tzinfo=timezone.utc)
    store = InMemoryObjectStore(clock=lambda: frozen)

    store.put("k", b"1")
    first = store.stat("k")
    store.put("k", b"2")
    second = store.stat("k")

    assert first is not None and second is not None
    assert second.last_modified > first.last_modified


def test_memory_store_counts_every_call() -> None:
    store = InMemoryObjectStore()
    store.stat("x")
    store.put("x", b"")
    store.list()

    assert store.call_count == 3
    assert store.calls["list"] == 1


def test_local_store_round_trip_keeps_content_type(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path / "repo")

    store.put("charts/demo-0.1.0.tgz", b"bytes", content_type="application/x-tar")

    info = store.stat("charts/demo-0.1.0.tgz")
    assert info is not None
    assert info.size == 5
    assert info.content_type == "application/x-tar"
    assert (tmp_path / "repo" / "charts" / "demo-0.1.0.tgz").read_bytes() == (
        b"bytes"
    )
    assert store.url("charts/demo-0.1.0.tgz").startswith("file://")


def test_local_store_put_if_absent_and_delete(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path)

    assert store.put_if_absent("index.yaml.lock", b"{}") is True
    assert store.put_if_absent("index.yaml.lock", b"{}") is False
    store.delete("index.yaml.lock")
    assert store.stat("index.yaml.lock") is None
    assert store.put_if_absent("index.yaml.lock", b"{}") is True


def test_local_store_get_missing_raises(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path)
    with pytest.raises(ObjectNotFound):
        store.get("nope.tgz")


def test_local_store_list_hides_metadata_sidecars(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path)
    store.put("a.tgz", b"a", content_type="application/gzip")
    store.put("sub/b.tgz", b"b")

    keys = [info.key for info in store.list()]

    assert keys == ["a.tgz", "sub/b.tgz"]
    assert [info.key for info in store.list("sub/")] == ["sub/b.tgz"]


def test_local_store_rejects_base_dir_below_a_file(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("x")

    with pytest.raises(RepositoryConfigError):
        LocalObjectStore(blocker / "repo")


def test_local_store_wraps_filesystem_errors(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path)
    (tmp_path / "charts").write_text("x")

    with pytest.raises(NetworkFailure):
        store.put("charts/demo-0.1.0.tgz", b"data")
    with pytest.raises(NetworkFailure):
        store.put_if_absent("charts/index.yaml.lock", b"{}")
    assert [info.key for info in store.list()] == ["charts"]


@pytest.mark.parametrize("key", ["", "../escape", "a/./b", ".chartsync-meta/x"])
def test_local_store_rejects_unsafe_keys(tmp_path: Path, key: str) -> None:
    store = LocalObjectStore(tmp_path)
    with pytest.raises(ValueError):
        store.put(key, b"x")
