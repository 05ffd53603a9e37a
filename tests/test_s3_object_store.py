"""
ChartSync Repository
Introductory remarks: This module is part of the ChartSync codebase.

Tests for the boto3-backed S3 object store using an in-process fake client.
"""

from __future__ import annotations

import io
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from chartsync.storage.errors import (NetworkFailure, ObjectNotFound,
                                      RepositoryConfigError)
from chartsync.storage.object_store import S3ObjectStore
from chartsync.storage.retry import RetryPolicy

MODIFIED = datetime(2026, 2, 3, 4, 5, 6, tzinfo=timezone.utc)


def _client_error(code: str, operation: str = "Op") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class _FakeS3Client:
    """
    _FakeS3Client: Class description.
    """

    def __init__(self) -> None:
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple[str, Dict[str, Any]]] = []
        self.failures: List[Exception] = []
        self.page_size: Optional[int] = None

    def _maybe_fail(self) -> None:
        if self.failures:
            raise self.failures.pop(0)

    def head_object(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("head_object", kwargs))
        self._maybe_fail()
        stored = self.objects.get(kwargs["Key"])
        if stored is None:
            raise _client_error("404", "HeadObject")
        return {
            "ContentLength": len(stored["Body"]),
            "LastModified": MODIFIED,
            "ContentType": stored.get("ContentType"),
        }

    def get_object(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("get_object", kwargs))
        self._maybe_fail()
        stored = self.objects.get(kwargs["Key"])
        if stored is None:
            raise _client_error("NoSuchKey", "GetObject")
        return {"Body": io.BytesIO(stored["Body"])}

    def put_object(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("put_object", kwargs))
        self._maybe_fail()
        if kwargs.get("IfNoneMatch") == "*" and kwargs["Key"] in self.objects:
            raise _client_error("PreconditionFailed", "PutObject")
        self.objects[kwargs["Key"]] = dict(kwargs)
        return {}

    def delete_object(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("delete_object", kwargs))
        self._maybe_fail()
        self.objects.pop(kwargs["Key"], None)
        return {}

    def list_objects_v2(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("list_objects_v2", kwargs))
        self._maybe_fail()
        keys = sorted(k for k in self.objects if k.startswith(kwargs["Prefix"]))
        start = int(kwargs.get("ContinuationToken", 0))
        size = self.page_size or len(keys) or 1
        page = keys[start:start + size]
        response: Dict[str, Any] = {
            "Contents": [
                {
                    "Key": key,
                    "Size": len(self.objects[key]["Body"]),
                    "LastModified": MODIFIED,
                }
                for key in page
            ],
            "IsTruncated": start + size < len(keys),
        }
        if response["IsTruncated"]:
            response["NextContinuationToken"] = str(start + size)
        return response


@pytest.fixture
def fake_client() -> _FakeS3Client:
    return _FakeS3Client()


@pytest.fixture
def store(fake_client: _FakeS3Client) -> S3ObjectStore:
    return S3ObjectStore("charts-bucket", client=fake_client)


def test_put_and_stat_pass_content_type(
    store: S3ObjectStore, fake_client: _FakeS3Client
) -> None:
    store.put("charts/demo-0.1.0.tgz", b"abc", content_type="application/gzip")

    name, kwargs = fake_client.calls[-1]
    assert name == "put_object"
    assert kwargs["Bucket"] == "charts-bucket"
    assert kwargs["ContentType"] == "application/gzip"
    assert "IfNoneMatch" not in kwargs

    info = store.stat("charts/demo-0.1.0.tgz")
    assert info is not None
    assert info.size == 3
    assert info.last_modified == MODIFIED
    assert info.content_type == "application/gzip"


def test_missing_objects_map_to_none_and_object_not_found(
    store: S3ObjectStore,
) -> None:
    assert store.stat("missing") is None
    with pytest.raises(ObjectNotFound):
        store.get("missing")


def test_put_if_absent_uses_conditional_write(
    store: S3ObjectStore, fake_client: _FakeS3Client
) -> None:
    assert store.put_if_absent("index.yaml.lock", b"{}") is True
    assert fake_client.calls[-1][1]["IfNoneMatch"] == "*"
    assert store.put_if_absent("index.yaml.lock", b"{}") is False


def test_transient_errors_are_retried_then_succeed(
    fake_client: _FakeS3Client,
) -> None:
    sleeps: List[float] = []
    store = S3ObjectStore(
        "charts-bucket",
        client=fake_client,
        retry=RetryPolicy(attempts=3, backoff=0.1, sleep_fn=sleeps.append),
    )
    fake_client.failures = [
        _client_error("SlowDown"),
        EndpointConnectionError(endpoint_url="https://s3.example"),
    ]

    store.put("k", b"v")

    assert fake_client.objects["k"]["Body"] == b"v"
    assert sleeps == [0.1, 0.2]


def test_transient_errors_exhaust_into_network_failure(
    fake_client: _FakeS3Client,
) -> None:
    store = S3ObjectStore(
        "charts-bucket",
        client=fake_client,
        retry=RetryPolicy(attempts=2, backoff=0.0, sleep_fn=lambda _: None),
    )
    fake_client.failures = [_client_error("503"), _client_error("503")]

    with pytest.raises(NetworkFailure, match="after 2 attempt"):
        store.get("k")


def test_permanent_errors_are_not_retried(
    store: S3ObjectStore, fake_client: _FakeS3Client
) -> None:
    fake_client.failures = [_client_error("AccessDenied")]

    with pytest.raises(NetworkFailure, match="AccessDenied"):
        store.put("k", b"v")

    assert len(fake_client.calls) == 1


def test_list_follows_continuation_tokens(
    store: S3ObjectStore, fake_client: _FakeS3Client
) -> None:
    for index in range(5):
        store.put(f"charts/c-{index}.tgz", b"x")
    store.put("other/c.tgz", b"x")
    fake_client.page_size = 2

    keys = [info.key for info in store.list("charts/")]

    assert keys == [f"charts/c-{index}.tgz" for index in range(5)]
    list_calls = [c for c in fake_client.calls if c[0] == "list_objects_v2"]
    assert len(list_calls) == 3
    assert list_calls[1][1]["ContinuationToken"] == "2"


def test_delete_and_url(store: S3ObjectStore, fake_client: _FakeS3Client) -> None:
    store.put("charts/a.tgz", b"x")
    store.delete("charts/a.tgz")

    assert "charts/a.tgz" not in fake_client.objects
    assert store.url("charts/a.tgz") == "s3://charts-bucket/charts/a.tgz"


def test_client_is_built_from_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    captured: Dict[str, Any] = {}

    def fake_client(service: str, **kwargs: Any) -> _FakeS3Client:
        """
        fake_client: Function description.
        :param service:
        :param **kwargs:
        :returns:
        """

        captured["service"] = service
        captured.update(kwargs)
        return _FakeS3Client()

    import boto3

    monkeypatch.setattr(boto3, "client", fake_client)
    monkeypatch.setenv("ARTIFACT_STORAGE_REGION", "eu-west-1")
    monkeypatch.setenv("ARTIFACT_STORAGE_ENDPOINT", "http://localhost:9000")

    S3ObjectStore("charts-bucket")

    assert captured == {
        "service": "s3",
        "region_name": "eu-west-1",
        "endpoint_url": "http://localhost:9000",
    }


def test_empty_bucket_is_rejected(fake_client: _FakeS3Client) -> None:
    with pytest.raises(RepositoryConfigError):
        S3ObjectStore("", client=fake_client)
