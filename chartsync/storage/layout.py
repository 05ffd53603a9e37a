"""Object key layout of a chart repository inside its store."""

from __future__ import annotations

from dataclasses import dataclass

from chartsync.config import INDEX_FILENAME, LOCK_SUFFIX


@dataclass(frozen=True)
class RepositoryLocation:
    """Where a repository lives: a display name plus a key prefix.

    ``<prefix>/<chart>.tgz`` holds each artifact, ``<prefix>/index.yaml``
    the index and ``<prefix>/index.yaml.lock`` the ephemeral lock object.
    """

    name: str
    prefix: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "prefix", self.prefix.strip("/"))

    def key(self, filename: str) -> str:
        if not filename or "/" in filename:
            raise ValueError(f"Invalid artifact filename '{filename}'")
        return f"{self.prefix}/{filename}" if self.prefix else filename

    @property
    def index_key(self) -> str:
        return self.key(INDEX_FILENAME)

    @property
    def lock_key(self) -> str:
        return self.index_key + LOCK_SUFFIX

    @property
    def list_prefix(self) -> str:
        return f"{self.prefix}/" if self.prefix else ""
