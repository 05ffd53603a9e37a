"""Helpers for reading packaged chart archives prior to publishing."""

from __future__ import annotations

import hashlib
import io
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from chartsync.models.charts import validate_chart_name, validate_version
from chartsync.storage.errors import ChartArchiveError

CHART_MANIFEST = "Chart.yaml"


@dataclass(frozen=True)
class ChartArchive:
    """A packaged chart: raw bytes plus what the index needs to know."""

    filename: str
    data: bytes
    chart: Mapping[str, Any]
    digest: str

    @property
    def name(self) -> str:
        return str(self.chart["name"])

    @property
    def version(self) -> str:
        return str(self.chart["version"])


def load_chart_archive(path: Path) -> ChartArchive:
    """Read ``path`` and extract its ``Chart.yaml``."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ChartArchiveError(
            f"Failed to read chart archive '{path}': {exc}"
        ) from exc
    return read_chart_archive(path.name, data)


def read_chart_archive(filename: str, data: bytes) -> ChartArchive:
    """Parse an in-memory ``.tgz`` chart archive."""
    return ChartArchive(
        filename=filename,
        data=data,
        chart=_read_manifest(filename, data),
        digest=hashlib.sha256(data).hexdigest(),
    )


def _read_manifest(filename: str, data: bytes) -> Mapping[str, Any]:
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
            member = _find_manifest(tar)
            if member is None:
                raise ChartArchiveError(
                    f"Chart archive '{filename}' has no {CHART_MANIFEST}"
                )
            handle = tar.extractfile(member)
            if handle is None:
                raise ChartArchiveError(
                    f"{CHART_MANIFEST} in '{filename}' is not a regular file"
                )
            raw = handle.read()
    except (tarfile.TarError, OSError, EOFError) as exc:
        raise ChartArchiveError(
            f"'{filename}' is not a readable chart archive: {exc}"
        ) from exc

    try:
        chart = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ChartArchiveError(
            f"{CHART_MANIFEST} in '{filename}' is not valid YAML: {exc}"
        ) from exc
    if not isinstance(chart, dict):
        raise ChartArchiveError(
            f"{CHART_MANIFEST} in '{filename}' must be a mapping"
        )
    # YAML happily reads "1.0" as a float; versions are strings.
    if chart.get("version") is not None:
        chart["version"] = str(chart["version"])
    try:
        validate_chart_name(chart.get("name"))
        validate_version(chart.get("version"))
    except ValueError as exc:
        raise ChartArchiveError(f"'{filename}': {exc}") from exc
    return chart


def _find_manifest(tar: tarfile.TarFile) -> tarfile.TarInfo | None:
    # Helm packages a chart as <name>/Chart.yaml; dependencies live deeper.
    for member in tar.getmembers():
        parts = Path(member.name).parts
        if len(parts) == 2 and parts[1] == CHART_MANIFEST and member.isfile():
            return member
    return None
