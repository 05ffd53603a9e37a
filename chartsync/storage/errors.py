"""Common errors raised across the storage and publish layers."""

from __future__ import annotations


class ChartSyncError(RuntimeError):
    """Base class for every failure surfaced to callers."""


class FlagConflict(ChartSyncError):
    """Raised when mutually exclusive publish policy flags are combined."""


class AlreadyExists(ChartSyncError):
    """Raised when a strict publish finds the artifact already stored."""


class LockTimeout(ChartSyncError):
    """Raised when the repository lock cannot be acquired in time."""


class MalformedIndex(ChartSyncError):
    """Raised when the stored repository index cannot be parsed."""


class NetworkFailure(ChartSyncError):
    """Raised when object store I/O fails (after retries, if transient)."""


class TransientNetworkFailure(NetworkFailure):
    """Raised for store failures that are worth retrying."""


class ObjectNotFound(ChartSyncError):
    """Raised when a requested object key does not exist."""


class ChartArchiveError(ChartSyncError):
    """Raised when a chart archive is unreadable or lacks Chart.yaml."""


class ChartNotFound(ChartSyncError):
    """Raised when a chart version is not present in the index."""


class RepositoryConfigError(ChartSyncError):
    """Raised when a repository name or URL cannot be resolved."""
