"""
ChartSync Repository
Introductory remarks: This module is part of the ChartSync codebase.

Resolve repository names to object stores.

A repository argument is either a URL (``s3://bucket/prefix`` or
``file:///some/dir``) or the name of an entry in a Helm-style
``repositories.yaml``::

    repositories:
      - name: charts
        url: s3://my-bucket/charts
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
from urllib.parse import unquote, urlparse

import yaml

from chartsync.config import Settings
from chartsync.storage.errors import RepositoryConfigError
from chartsync.storage.layout import RepositoryLocation
from chartsync.storage.object_store import (LocalObjectStore, ObjectStore,
                                            S3ObjectStore)
from chartsync.storage.retry import RetryPolicy

_LOGGER = logging.getLogger(__name__)

SUPPORTED_SCHEMES = ("s3", "file")


@dataclass(frozen=True)
class Repository:
    """A resolved repository: its key layout plus the store holding it."""

    url: str
    location: RepositoryLocation
    store: ObjectStore

    def artifact_url(self, filename: str) -> str:
        return self.store.url(self.location.key(filename))


def _looks_like_url(value: str) -> bool:
    return "://" in value


def load_repository_config(path: Path) -> dict[str, str]:
    """Return a ``name -> url`` mapping from a repositories file."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        raise RepositoryConfigError(
            f"Failed to read repository config '{path}': {exc}"
        ) from exc
    try:
        payload: Any = yaml.safe_load(raw) or {}
    except yaml.YAMLError as exc:
        raise RepositoryConfigError(
            f"Repository config '{path}' is not valid YAML: {exc}"
        ) from exc
    if not isinstance(payload, dict):
        raise RepositoryConfigError(
            f"Repository config '{path}' must be a mapping"
        )
    mapping: dict[str, str] = {}
    for item in payload.get("repositories") or []:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        url = item.get("url")
        if isinstance(name, str) and isinstance(url, str):
            mapping[name] = url
    return mapping


def resolve_repository_url(name_or_url: str, config_path: Path) -> str:
    if _looks_like_url(name_or_url):
        return name_or_url
    repositories = load_repository_config(config_path)
    try:
        return repositories[name_or_url]
    except KeyError as exc:
        raise RepositoryConfigError(
            f"Repository '{name_or_url}' is not configured in {config_path}"
        ) from exc


def open_repository(
    name_or_url: str,
    settings: Settings,
    *,
    client: Optional[Any] = None,
) -> Repository:
    """Resolve ``name_or_url`` and build the matching object store.

    :param name_or_url: repository name from the config file, or a URL
    :param settings: runtime settings (config path, retry policy)
    :param client: pre-built boto3 S3 client, mainly for tests
    """
    url = resolve_repository_url(name_or_url, settings.repository_config)
    display_name = name_or_url if not _looks_like_url(name_or_url) else url
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()

    if scheme == "s3":
        if not parsed.netloc:
            raise RepositoryConfigError(f"S3 URL '{url}' has no bucket")
        store: ObjectStore = S3ObjectStore(
            parsed.netloc,
            client=client,
            retry=RetryPolicy(
                attempts=settings.retry_attempts,
                backoff=settings.retry_backoff,
            ),
        )
        location = RepositoryLocation(name=display_name, prefix=parsed.path)
    elif scheme == "file":
        if parsed.netloc not in ("", "localhost"):
            raise RepositoryConfigError(
                f"File URL '{url}' must not name a remote host"
            )
        if not parsed.path:
            raise RepositoryConfigError(f"File URL '{url}' has no path")
        store = LocalObjectStore(Path(unquote(parsed.path)))
        location = RepositoryLocation(name=display_name)
    else:
        raise RepositoryConfigError(
            f"Unsupported repository URL '{url}'; expected one of "
            + ", ".join(f"{s}://" for s in SUPPORTED_SCHEMES)
        )

    _LOGGER.debug("Resolved repository %s to %s", name_or_url, url)
    return Repository(url=url, location=location, store=store)
