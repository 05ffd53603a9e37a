"""Storage layer: object stores, repository layout, locking and errors."""

from .errors import (AlreadyExists, ChartArchiveError, ChartNotFound,
                     ChartSyncError, FlagConflict, LockTimeout,
                     MalformedIndex, NetworkFailure, ObjectNotFound,
                     RepositoryConfigError, TransientNetworkFailure)
from .layout import RepositoryLocation
from .object_store import (InMemoryObjectStore, LocalObjectStore, ObjectInfo,
                           ObjectStore, S3ObjectStore)
from .repository_lock import LockHandle, LockToken, RepositoryLock
from .retry import NO_RETRY, RetryPolicy, call_with_retries

__all__ = [
    "AlreadyExists",
    "ChartArchiveError",
    "ChartNotFound",
    "ChartSyncError",
    "FlagConflict",
    "LockTimeout",
    "MalformedIndex",
    "NetworkFailure",
    "ObjectNotFound",
    "RepositoryConfigError",
    "TransientNetworkFailure",
    "RepositoryLocation",
    "InMemoryObjectStore",
    "LocalObjectStore",
    "ObjectInfo",
    "ObjectStore",
    "S3ObjectStore",
    "LockHandle",
    "LockToken",
    "RepositoryLock",
    "NO_RETRY",
    "RetryPolicy",
    "call_with_retries",
]
