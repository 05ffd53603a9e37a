"""
ChartSync Repository
Introductory remarks: This module is part of the ChartSync codebase.

Object store abstractions used for chart artifacts, the index and locks.

Every implementation offers the same small capability set: stat, get, put,
delete, list and ``put_if_absent``. The last one is the only coordination
primitive the repository lock relies on, so backends with native
conditional writes (S3 ``If-None-Match``, ``O_EXCL`` on a local disk) plug
in without the lock knowing which one it talks to.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import (NetworkFailure, ObjectNotFound, RepositoryConfigError,
                     TransientNetworkFailure)
from .retry import NO_RETRY, RetryPolicy, call_with_retries

_TRANSIENT_ERROR_CODES = {
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "RequestTimeout",
    "RequestTimeoutException",
    "ServiceUnavailable",
    "InternalError",
    "ConditionalRequestConflict",
    "500",
    "503",
}

_MISSING_ERROR_CODES = {"404", "NoSuchKey", "NotFound"}


def _error_code(exc: Exception) -> str | None:
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        error = response.get("Error")
        if isinstance(error, dict):
            code = error.get("Code")
            if code is not None:
                return str(code)
    return None


def _looks_like_transient_cloud_failure(exc: Exception) -> bool:
    code = _error_code(exc)
    if code and code in _TRANSIENT_ERROR_CODES:
        return True
    name = exc.__class__.__name__
    if name in {
        "EndpointConnectionError",
        "ConnectTimeoutError",
        "ReadTimeoutError",
        "ConnectionClosedError",
    }:
        return True
    message = str(exc).lower()
    return any(
        token in message
        for token in (
            "timed out",
            "timeout",
            "temporarily unavailable",
            "service unavailable",
            "connection reset",
            "connection aborted",
            "connection refused",
            "endpoint connection error",
        )
    )


@dataclass(frozen=True)
class ObjectInfo:
    """Metadata about a stored object."""

    key: str
    size: int
    last_modified: datetime
    content_type: str | None = None


class ObjectStore(Protocol):
    """Interface implemented by concrete object stores."""

    def stat(self, key: str) -> Optional[ObjectInfo]:
        """Return object metadata, or ``None`` when the key is absent."""

    def get(self, key: str) -> bytes:
        """Return the object body or raise ObjectNotFound."""

    def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
    ) -> None:
        """Create or overwrite ``key``."""

    def put_if_absent(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
    ) -> bool:
        """Create ``key`` only if it does not exist; report whether it did."""

    def delete(self, key: str) -> None:
        """Remove ``key``; deleting a missing key is not an error."""

    def list(self, prefix: str = "") -> List[ObjectInfo]:
        """Return every object whose key starts with ``prefix``."""

    def url(self, key: str) -> str:
        """Return the fully qualified URL of ``key``."""


@dataclass
class _StoredObject:
    data: bytes
    content_type: str | None
    last_modified: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryObjectStore(ObjectStore):
    """Dictionary-backed store for tests and local runs.

    Writes are serialized by an internal lock so ``put_if_absent`` is atomic
    across threads. Modification times are strictly increasing store-wide,
    even when the clock does not advance between two writes. ``calls``
    counts every operation by name.
    """

    def __init__(
        self,
        name: str = "memory",
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._name = name
        self._clock = clock
        self._gate = threading.Lock()
        self._objects: Dict[str, _StoredObject] = {}
        self._last_tick: datetime | None = None
        self.calls: Counter[str] = Counter()

    @property
    def call_count(self) -> int:
        return sum(self.calls.values())

    def _tick(self) -> datetime:
        now = self._clock()
        if self._last_tick is not None and now <= self._last_tick:
            now = self._last_tick + timedelta(microseconds=1)
        self._last_tick = now
        return now

    def stat(self, key: str) -> Optional[ObjectInfo]:
        with self._gate:
            self.calls["stat"] += 1
            stored = self._objects.get(key)
            if stored is None:
                return None
            return ObjectInfo(
                key=key,
                size=len(stored.data),
                last_modified=stored.last_modified,
                content_type=stored.content_type,
            )

    def get(self, key: str) -> bytes:
        with self._gate:
            self.calls["get"] += 1
            stored = self._objects.get(key)
            if stored is None:
                raise ObjectNotFound(f"Object '{key}' does not exist")
            return stored.data

    def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
    ) -> None:
        with self._gate:
            self.calls["put"] += 1
            self._objects[key] = _StoredObject(
                bytes(data), content_type, self._tick()
            )

    def put_if_absent(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
    ) -> bool:
        with self._gate:
            self.calls["put_if_absent"] += 1
            if key in self._objects:
                return False
            self._objects[key] = _StoredObject(
                bytes(data), content_type, self._tick()
            )
            return True

    def delete(self, key: str) -> None:
        with self._gate:
            self.calls["delete"] += 1
            self._objects.pop(key, None)

    def list(self, prefix: str = "") -> List[ObjectInfo]:
        with self._gate:
            self.calls["list"] += 1
            return [
                ObjectInfo(
                    key=key,
                    size=len(stored.data),
                    last_modified=stored.last_modified,
                    content_type=stored.content_type,
                )
                for key, stored in sorted(self._objects.items())
                if key.startswith(prefix)
            ]

    def url(self, key: str) -> str:
        return f"memory://{self._name}/{key}"


class LocalObjectStore(ObjectStore):
    """Persist objects as files below a local directory.

    Content types live in JSON sidecars under ``.chartsync-meta`` so that
    the object files themselves stay byte-identical to what was uploaded.
    """

    META_DIR = ".chartsync-meta"

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir).expanduser().resolve()
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RepositoryConfigError(
                f"Cannot use '{self._base_dir}' as a repository: {exc}"
            ) from exc

    def _path(self, key: str) -> Path:
        parts = [part for part in key.split("/") if part]
        if not parts or any(part in {".", ".."} for part in parts):
            raise ValueError(f"Invalid object key '{key}'")
        if parts[0] == self.META_DIR:
            raise ValueError(f"Object key '{key}' is reserved")
        return self._base_dir.joinpath(*parts)

    def _meta_path(self, key: str) -> Path:
        relative = self._path(key).relative_to(self._base_dir)
        return self._base_dir / self.META_DIR / f"{relative}.json"

    def _write_meta(self, key: str, content_type: str | None) -> None:
        meta_path = self._meta_path(key)
        if content_type is None:
            meta_path.unlink(missing_ok=True)
            return
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        meta_path.write_text(
            json.dumps({"content_type": content_type}), encoding="utf-8"
        )

    def _read_meta(self, key: str) -> str | None:
        meta_path = self._meta_path(key)
        try:
            payload = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        value = payload.get("content_type") if isinstance(payload, dict) else None
        return value if isinstance(value, str) else None

    def _info(self, key: str, path: Path) -> ObjectInfo:
        stat = path.stat()
        return ObjectInfo(
            key=key,
            size=stat.st_size,
            last_modified=datetime.fromtimestamp(
                stat.st_mtime_ns / 1e9, tz=timezone.utc
            ),
            content_type=self._read_meta(key),
        )

    def stat(self, key: str) -> Optional[ObjectInfo]:
        path = self._path(key)
        if not path.is_file():
            return None
        try:
            return self._info(key, path)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise NetworkFailure(f"stat of '{key}' failed: {exc}") from exc

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise ObjectNotFound(f"Object '{key}' does not exist") from exc
        except OSError as exc:
            raise NetworkFailure(f"read of '{key}' failed: {exc}") from exc

    def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
    ) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write-then-rename so readers never observe a partial object.
            handle = tempfile.NamedTemporaryFile(
                dir=path.parent, prefix=".upload-", delete=False
            )
        except OSError as exc:
            raise NetworkFailure(f"write of '{key}' failed: {exc}") from exc
        try:
            with handle:
                handle.write(data)
            self._write_meta(key, content_type)
            os.replace(handle.name, path)
        except OSError as exc:
            Path(handle.name).unlink(missing_ok=True)
            raise NetworkFailure(f"write of '{key}' failed: {exc}") from exc

    def put_if_absent(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
    ) -> bool:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise NetworkFailure(f"create of '{key}' failed: {exc}") from exc
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as exc:
            raise NetworkFailure(f"create of '{key}' failed: {exc}") from exc
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            self._write_meta(key, content_type)
        except OSError as exc:
            path.unlink(missing_ok=True)
            raise NetworkFailure(f"create of '{key}' failed: {exc}") from exc
        return True

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
            self._meta_path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise NetworkFailure(f"delete of '{key}' failed: {exc}") from exc

    def list(self, prefix: str = "") -> List[ObjectInfo]:
        results: List[ObjectInfo] = []
        try:
            paths = sorted(self._base_dir.rglob("*"))
        except OSError as exc:
            raise NetworkFailure(
                f"listing of '{self._base_dir}' failed: {exc}"
            ) from exc
        for path in paths:
            if not path.is_file():
                continue
            relative = path.relative_to(self._base_dir)
            if relative.parts[0] == self.META_DIR:
                continue
            if relative.name.startswith(".upload-"):
                continue
            key = relative.as_posix()
            if not key.startswith(prefix):
                continue
            try:
                results.append(self._info(key, path))
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise NetworkFailure(f"stat of '{key}' failed: {exc}") from exc
        return results

    def url(self, key: str) -> str:
        return self._path(key).as_uri()


class S3ObjectStore(ObjectStore):
    """Store objects in an S3 bucket (or any S3-compatible endpoint).

    Conditional creation uses ``IfNoneMatch="*"``, which S3 answers with
    ``PreconditionFailed`` when the key already exists.
    """

    def __init__(
        self,
        bucket: str,
        *,
        client: Any | None = None,
        retry: RetryPolicy = NO_RETRY,
    ) -> None:
        if not bucket:
            raise RepositoryConfigError("bucket name must be provided")
        self._bucket = bucket
        self._retry = retry
        if client is None:
            region = (
                os.environ.get("ARTIFACT_STORAGE_REGION")
                or os.environ.get("AWS_REGION")
                or os.environ.get("AWS_DEFAULT_REGION")
            )
            endpoint_override = os.environ.get("ARTIFACT_STORAGE_ENDPOINT")
            client_kwargs: dict[str, Any] = {}
            if region:
                client_kwargs["region_name"] = region
            if endpoint_override:
                client_kwargs["endpoint_url"] = endpoint_override
            client = boto3.client("s3", **client_kwargs)
        self._s3 = client

    @property
    def bucket(self) -> str:
        return self._bucket

    def _call(self, action: str, key: str, operation: Callable[[], Any]) -> Any:
        def _guarded() -> Any:
            try:
                return operation()
            except (BotoCoreError, ClientError) as exc:
                if _looks_like_transient_cloud_failure(exc):
                    raise TransientNetworkFailure(
                        f"S3 {action} of '{key}' temporarily failed: {exc}"
                    ) from exc
                raise

        return call_with_retries(_guarded, self._retry, name=f"s3 {action}")

    def _fail(self, action: str, key: str, exc: Exception) -> NetworkFailure:
        return NetworkFailure(f"S3 {action} of '{key}' failed: {exc}")

    def stat(self, key: str) -> Optional[ObjectInfo]:
        try:
            response = self._call(
                "head",
                key,
                lambda: self._s3.head_object(Bucket=self._bucket, Key=key),
            )
        except (BotoCoreError, ClientError) as exc:
            if _error_code(exc) in _MISSING_ERROR_CODES:
                return None
            raise self._fail("head", key, exc) from exc
        return ObjectInfo(
            key=key,
            size=int(response.get("ContentLength", 0)),
            last_modified=response["LastModified"],
            content_type=response.get("ContentType"),
        )

    def get(self, key: str) -> bytes:
        def _read() -> bytes:
            response = self._s3.get_object(Bucket=self._bucket, Key=key)
            return response["Body"].read()

        try:
            return self._call("get", key, _read)
        except (BotoCoreError, ClientError) as exc:
            if _error_code(exc) in _MISSING_ERROR_CODES:
                raise ObjectNotFound(f"Object '{key}' does not exist") from exc
            raise self._fail("get", key, exc) from exc

    def _put_kwargs(
        self, key: str, data: bytes, content_type: str | None
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "Bucket": self._bucket,
            "Key": key,
            "Body": data,
        }
        if content_type:
            kwargs["ContentType"] = content_type
        return kwargs

    def put(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
    ) -> None:
        kwargs = self._put_kwargs(key, data, content_type)
        try:
            self._call("put", key, lambda: self._s3.put_object(**kwargs))
        except (BotoCoreError, ClientError) as exc:
            raise self._fail("put", key, exc) from exc

    def put_if_absent(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
    ) -> bool:
        kwargs = self._put_kwargs(key, data, content_type)
        kwargs["IfNoneMatch"] = "*"
        try:
            self._call(
                "conditional put", key, lambda: self._s3.put_object(**kwargs)
            )
        except (BotoCoreError, ClientError) as exc:
            if _error_code(exc) in {"PreconditionFailed", "412"}:
                return False
            raise self._fail("conditional put", key, exc) from exc
        return True

    def delete(self, key: str) -> None:
        try:
            self._call(
                "delete",
                key,
                lambda: self._s3.delete_object(Bucket=self._bucket, Key=key),
            )
        except (BotoCoreError, ClientError) as exc:
            if _error_code(exc) in _MISSING_ERROR_CODES:
                return
            raise self._fail("delete", key, exc) from exc

    def list(self, prefix: str = "") -> List[ObjectInfo]:
        results: List[ObjectInfo] = []
        token: str | None = None
        while True:
            params: dict[str, Any] = {"Bucket": self._bucket, "Prefix": prefix}
            if token:
                params["ContinuationToken"] = token
            try:
                response = self._call(
                    "list",
                    prefix,
                    lambda: self._s3.list_objects_v2(**params),
                )
            except (BotoCoreError, ClientError) as exc:
                raise self._fail("list", prefix, exc) from exc
            for item in response.get("Contents", []):
                results.append(
                    ObjectInfo(
                        key=item["Key"],
                        size=int(item.get("Size", 0)),
                        last_modified=item["LastModified"],
                    )
                )
            if not response.get("IsTruncated"):
                return results
            token = response.get("NextContinuationToken")

    def url(self, key: str) -> str:
        return f"s3://{self._bucket}/{key}"
