"""Shared test fixtures for mocked S3, settings, and local build trees."""

import threading
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import boto3
import pytest
from moto import mock_aws

from blog_publisher.core.config import PublisherSettings
from blog_publisher.lib.publisher.errors import TransientStoreError
from blog_publisher.lib.publisher.storage import ObjectStore, S3ObjectStore
from blog_publisher.lib.publisher.types import ListPage

SITE_BUCKET = "site-bucket"
SOURCE_BUCKET = "source-bucket"
REGION = "us-east-1"


class RecordingStore:
    """ObjectStore wrapper that records calls and injects failures.

    Attributes:
        calls: ``(operation, detail)`` tuples in call order.
        fail_get: Keys whose ``get`` raises TransientStoreError.
        fail_put: Keys whose ``put`` raises TransientStoreError.
        sticky_keys: Keys that silently survive ``delete_batch``.
    """

    def __init__(self, inner: ObjectStore) -> None:
        self._inner = inner
        self._lock = threading.Lock()
        self.calls: list[tuple[str, Any]] = []
        self.fail_get: set[str] = set()
        self.fail_put: set[str] = set()
        self.sticky_keys: set[str] = set()

    def _record(self, operation: str, detail: Any) -> None:
        with self._lock:
            self.calls.append((operation, detail))

    def ops(self, operation: str) -> list[Any]:
        """Details of every recorded call of one operation."""
        with self._lock:
            return [detail for op, detail in self.calls if op == operation]

    def list_page(self, bucket: str, prefix: str, continuation_token: str | None = None) -> ListPage:
        self._record("list", prefix)
        return self._inner.list_page(bucket, prefix, continuation_token)

    def get(self, bucket: str, key: str) -> bytes:
        self._record("get", key)
        if key in self.fail_get:
            raise TransientStoreError("get", bucket, key, "injected failure")
        return self._inner.get(bucket, key)

    def put(self, bucket: str, key: str, body: bytes, content_type: str) -> None:
        self._record("put", key)
        if key in self.fail_put:
            raise TransientStoreError("put", bucket, key, "injected failure")
        self._inner.put(bucket, key, body, content_type)

    def delete_batch(self, bucket: str, keys: list[str]) -> None:
        self._record("delete", list(keys))
        self._inner.delete_batch(bucket, [key for key in keys if key not in self.sticky_keys])


@pytest.fixture
def s3_client() -> Generator[Any]:
    """Create a moto-mocked S3 client with the site and source buckets."""
    with mock_aws():
        client = boto3.client("s3", region_name=REGION)
        client.create_bucket(Bucket=SITE_BUCKET)
        client.create_bucket(Bucket=SOURCE_BUCKET)
        yield client


@pytest.fixture
def s3_store(s3_client: Any) -> S3ObjectStore:
    """S3ObjectStore over the mocked client."""
    return S3ObjectStore(s3_client)


@pytest.fixture
def recording_store(s3_store: S3ObjectStore) -> RecordingStore:
    """Recording wrapper over the mocked store."""
    return RecordingStore(s3_store)


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., PublisherSettings]:
    """Factory for settings rooted in ``tmp_path`` (no env file)."""

    def _make(**overrides: Any) -> PublisherSettings:
        values: dict[str, Any] = {
            "region": REGION,
            "prod_bucket": SITE_BUCKET,
            "prod_prefix": "blog",
            "blog_next_dir": str(tmp_path / "blog-next"),
            "artifact_dir": str(tmp_path / "out"),
            "snapshot_root": str(tmp_path / "S3log"),
            "transfer_workers": 4,
            "local_build": True,
        }
        values.update(overrides)
        return PublisherSettings(_env_file=None, **values)  # type: ignore[call-arg]

    return _make


@pytest.fixture
def write_tree() -> Callable[[Path, dict[str, str | bytes]], Path]:
    """Return a helper that writes ``{relative_path: content}`` under a root."""

    def _write(root: Path, files: dict[str, str | bytes]) -> Path:
        for relative, content in files.items():
            path = root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")
        return root

    return _write


@pytest.fixture
def seed_bucket(s3_client: Any) -> Callable[..., None]:
    """Return a helper that seeds a mocked bucket with ``{key: body}``."""

    def _seed(objects: dict[str, str | bytes], bucket: str = SITE_BUCKET) -> None:
        for key, body in objects.items():
            s3_client.put_object(Bucket=bucket, Key=key, Body=body.encode() if isinstance(body, str) else body)

    return _seed


@pytest.fixture
def bucket_keys(s3_client: Any) -> Callable[..., list[str]]:
    """Return a helper listing every key of a mocked bucket, sorted."""

    def _keys(bucket: str = SITE_BUCKET, prefix: str = "") -> list[str]:
        paginator = s3_client.get_paginator("list_objects_v2")
        keys: list[str] = []
        for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return sorted(keys)

    return _keys
