"""
ChartSync Repository
Introductory remarks: This module is part of the ChartSync codebase.

Shared fixtures: chart archive builders and isolated runtime environment.
"""

from __future__ import annotations

import io
import tarfile
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import pytest
import yaml

from chartsync.storage.layout import RepositoryLocation
from chartsync.storage.object_store import InMemoryObjectStore
from chartsync.utils import env

ChartBuilder = Callable[..., bytes]


def _build_chart(
    name: str = "demo",
    version: str = "0.1.0",
    *,
    extra: Optional[Dict[str, Any]] = None,
    manifest: Optional[bytes] = None,
    manifest_path: Optional[str] = None,
) -> bytes:
    chart: Dict[str, Any] = {
        "apiVersion": "v2",
        "name": name,
        "version": version,
        "description": f"{name} test chart",
    }
    chart.update(extra or {})
    raw = manifest if manifest is not None else yaml.safe_dump(chart).encode()
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        info = tarfile.TarInfo(manifest_path or f"{name}/Chart.yaml")
        info.size = len(raw)
        tar.addfile(info, io.BytesIO(raw))
        values = b"replicaCount: 1\n"
        values_info = tarfile.TarInfo(f"{name}/values.yaml")
        values_info.size = len(values)
        tar.addfile(values_info, io.BytesIO(values))
    return buffer.getvalue()


@pytest.fixture(autouse=True)
def _isolated_runtime_env(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path_factory: pytest.TempPathFactory,
) -> None:
    """Keep tests away from the developer's Helm config and .env file."""

    monkeypatch.setattr(env, "_ENV_LOADED", True)
    for name in (
        "CHARTSYNC_LOCK_TTL",
        "CHARTSYNC_LOCK_MAX_WAIT",
        "CHARTSYNC_RETRY_ATTEMPTS",
        "CHARTSYNC_RETRY_BACKOFF",
        "HELM_REPOSITORY_CONFIG",
        "LOG_LEVEL",
        "LOG_FILE",
    ):
        monkeypatch.delenv(name, raising=False)
    config_path = Path(tmp_path_factory.mktemp("helm")) / "repositories.yaml"
    monkeypatch.setenv("CHARTSYNC_REPOSITORY_CONFIG", str(config_path))


@pytest.fixture
def build_chart() -> ChartBuilder:
    return _build_chart


@pytest.fixture
def chart_file(tmp_path: Path) -> Callable[..., Path]:
    def _write(name: str = "demo", version: str = "0.1.0", **kwargs: Any) -> Path:
        path = tmp_path / f"{name}-{version}.tgz"
        path.write_bytes(_build_chart(name, version, **kwargs))
        return path

    return _write


@pytest.fixture
def memory_store() -> InMemoryObjectStore:
    return InMemoryObjectStore("test")


@pytest.fixture
def location() -> RepositoryLocation:
    return RepositoryLocation(name="test-repo", prefix="charts")
