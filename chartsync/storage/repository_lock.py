"""
ChartSync Repository
Introductory remarks: This module is part of the ChartSync codebase.

Repository-wide mutual exclusion built on the object store itself.

Publishers may run on different machines, so the lock cannot be a process
primitive. Instead a small JSON token object is created next to the index
with ``put_if_absent``; whoever creates it owns the repository until the
token is deleted or grows older than its TTL.

Known weak point: taking over an expired token is not atomic. Two clients
that both decide a token is stale can each delete and recreate it, and for
a short window both believe they hold the lock. The takeover re-reads the
token first, which narrows the window but does not close it. Stores with
leases or fencing tokens can replace this class without touching the
synchronizer.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import random
import socket
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from chartsync.config import (DEFAULT_LOCK_MAX_WAIT_SECONDS,
                              DEFAULT_LOCK_TTL_SECONDS,
                              LOCK_BACKOFF_INITIAL_SECONDS,
                              LOCK_BACKOFF_MAX_SECONDS)

from .errors import LockTimeout, NetworkFailure, ObjectNotFound
from .layout import RepositoryLocation
from .object_store import ObjectStore

_LOGGER = logging.getLogger(__name__)

_LOCK_CONTENT_TYPE = "application/json"


def _new_owner_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex}"


@dataclass(frozen=True)
class LockToken:
    """Body of the lock object."""

    owner: str
    acquired_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.acquired_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_bytes(self) -> bytes:
        return json.dumps(
            {
                "owner": self.owner,
                "acquired_at": self.acquired_at,
                "ttl": self.ttl,
            },
            sort_keys=True,
        ).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "LockToken":
        payload = json.loads(data.decode("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("lock token must be a JSON object")
        return cls(
            owner=str(payload["owner"]),
            acquired_at=float(payload["acquired_at"]),
            ttl=float(payload["ttl"]),
        )


@dataclass(frozen=True)
class LockHandle:
    """Proof of ownership returned by :meth:`RepositoryLock.acquire`."""

    location: RepositoryLocation
    token: LockToken

    @property
    def key(self) -> str:
        return self.location.lock_key


class RepositoryLock:
    """Acquire and release the per-repository lock object.

    ``time_fn`` measures the wait deadline, ``wall_fn`` stamps and ages tokens
    (it must agree across machines), ``sleep_fn`` performs the back-off.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        ttl: float = DEFAULT_LOCK_TTL_SECONDS,
        max_wait: float = DEFAULT_LOCK_MAX_WAIT_SECONDS,
        time_fn: Optional[Callable[[], float]] = None,
        wall_fn: Optional[Callable[[], float]] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive.")
        if max_wait < 0:
            raise ValueError("max_wait must be non-negative.")
        self._store = store
        self._ttl = ttl
        self._max_wait = max_wait
        self._time_fn = time_fn or time.monotonic
        self._wall_fn = wall_fn or time.time
        self._sleep_fn = sleep_fn or time.sleep
        self._rng = rng or random.Random()

    def acquire(
        self,
        location: RepositoryLocation,
        *,
        ttl: Optional[float] = None,
        max_wait: Optional[float] = None,
    ) -> LockHandle:
        """Block until the lock is ours or raise :class:`LockTimeout`."""
        ttl = self._ttl if ttl is None else ttl
        max_wait = self._max_wait if max_wait is None else max_wait
        key = location.lock_key
        owner = _new_owner_id()
        deadline = self._time_fn() + max(0.0, max_wait)
        attempt = 0

        while True:
            token = LockToken(owner=owner, acquired_at=self._wall_fn(), ttl=ttl)
            if self._store.put_if_absent(
                key, token.to_bytes(), content_type=_LOCK_CONTENT_TYPE
            ):
                _LOGGER.debug("Acquired lock %s as %s", key, owner)
                return LockHandle(location=location, token=token)

            current = self._read_token(key, ttl)
            if current is not None:
                if current.owner == owner:
                    # Our create went through but its response was lost.
                    _LOGGER.debug("Recovered lock %s as %s", key, owner)
                    return LockHandle(location=location, token=current)
                if current.is_expired(self._wall_fn()):
                    _LOGGER.warning(
                        "Lock %s held by %s expired %.1fs ago; taking over",
                        key,
                        current.owner,
                        self._wall_fn() - current.expires_at,
                    )
                    self._take_over(key, current, ttl)
                    continue

            remaining = deadline - self._time_fn()
            if remaining <= 0:
                holder = current.owner if current is not None else "unknown"
                raise LockTimeout(
                    f"Timed out after {max_wait:.1f}s waiting for the lock on "
                    f"repository '{location.name}' (held by {holder})"
                )
            delay = self._backoff(attempt, remaining)
            _LOGGER.debug(
                "Lock %s busy, retrying in %.3fs (attempt %d)",
                key,
                delay,
                attempt + 1,
            )
            self._sleep_fn(delay)
            attempt += 1

    def release(self, handle: LockHandle) -> None:
        """Delete the lock object if it still belongs to ``handle``."""
        current = self._read_token(handle.key, handle.token.ttl)
        if current is None:
            _LOGGER.warning("Lock %s was already gone on release", handle.key)
            return
        if current.owner != handle.token.owner:
            _LOGGER.warning(
                "Lock %s was taken over by %s; leaving it in place",
                handle.key,
                current.owner,
            )
            return
        self._store.delete(handle.key)
        _LOGGER.debug("Released lock %s", handle.key)

    @contextlib.contextmanager
    def hold(
        self,
        location: RepositoryLocation,
        *,
        ttl: Optional[float] = None,
        max_wait: Optional[float] = None,
    ) -> Iterator[LockHandle]:
        """Scope the lock to a ``with`` block; release runs on every exit."""
        handle = self.acquire(location, ttl=ttl, max_wait=max_wait)
        try:
            yield handle
        except BaseException:
            try:
                self.release(handle)
            except Exception:  # noqa: BLE001
                _LOGGER.exception(
                    "Failed to release lock %s while handling an error",
                    handle.key,
                )
            raise
        else:
            try:
                self.release(handle)
            except NetworkFailure:
                # The guarded work already committed; the lock expires by TTL.
                _LOGGER.exception(
                    "Failed to release lock %s; it expires after %.1fs",
                    handle.key,
                    handle.token.ttl,
                )

    def _read_token(self, key: str, ttl: float) -> Optional[LockToken]:
        try:
            data = self._store.get(key)
        except ObjectNotFound:
            return None
        try:
            return LockToken.from_bytes(data)
        except (ValueError, KeyError, TypeError, UnicodeDecodeError):
            info = self._store.stat(key)
            if info is None:
                return None
            _LOGGER.warning("Lock %s is unreadable; aging it by mtime", key)
            return LockToken(
                owner="<unreadable>",
                acquired_at=info.last_modified.timestamp(),
                ttl=ttl,
            )

    def _take_over(self, key: str, stale: LockToken, ttl: float) -> None:
        # Only delete the token we judged stale, not a fresh one that
        # replaced it in the meantime.
        again = self._read_token(key, ttl)
        if again is None:
            return
        if again.owner == stale.owner and again.acquired_at == stale.acquired_at:
            self._store.delete(key)

    def _backoff(self, attempt: int, remaining: float) -> float:
        ceiling = min(
            LOCK_BACKOFF_MAX_SECONDS,
            LOCK_BACKOFF_INITIAL_SECONDS * (2 ** min(attempt, 16)),
        )
        return min(remaining, self._rng.uniform(0.0, ceiling))
