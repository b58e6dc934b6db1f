"""S3 storage operations for static site publishing.

Provides the object store capability consumed by the engine, its boto3
implementation, the paginated remote state lister, and key/prefix helpers.
"""

import re
from pathlib import PurePosixPath
from typing import Any, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from blog_publisher.lib.publisher.errors import TransientStoreError
from blog_publisher.lib.publisher.types import ListPage, RemoteEntry

# Upper bound of keys accepted by one DeleteObjects call
MAX_DELETE_BATCH = 1000

_DATED_FOLDER = re.compile(r"^\d{8}")

_CONTENT_TYPES: dict[str, str] = {
    ".html": "text/html; charset=utf-8",
    ".htm": "text/html; charset=utf-8",
    ".css": "text/css; charset=utf-8",
    ".js": "text/javascript; charset=utf-8",
    ".mjs": "text/javascript; charset=utf-8",
    ".json": "application/json; charset=utf-8",
    ".xml": "application/xml; charset=utf-8",
    ".txt": "text/plain; charset=utf-8",
    ".md": "text/markdown; charset=utf-8",
    ".map": "application/json; charset=utf-8",
    ".webmanifest": "application/manifest+json; charset=utf-8",
    ".ico": "image/x-icon",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
}

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def content_type_for(path: str) -> str:
    """Return the MIME type for a file name from the static extension table."""
    return _CONTENT_TYPES.get(PurePosixPath(path).suffix.lower(), DEFAULT_CONTENT_TYPE)


def normalize_prefix(prefix: str | None) -> str:
    """Strip leading and trailing slashes from a prefix."""
    return (prefix or "").strip("/")


def join_key(prefix: str, relative_path: str) -> str:
    """Build an object key from a normalized prefix and a relative path."""
    relative_path = relative_path.replace("\\", "/")
    return f"{prefix}/{relative_path}" if prefix else relative_path


def strip_prefix(key: str, prefix: str) -> str:
    """Return ``key`` relative to ``prefix`` (unchanged when outside it)."""
    normalized = normalize_prefix(prefix)
    if normalized and key.startswith(f"{normalized}/"):
        return key[len(normalized) + 1 :]
    return key


def top_level_folder(key: str, prefix: str) -> str:
    """Return the first path segment of ``key`` below ``prefix``."""
    return strip_prefix(key, prefix).split("/")[0]


def is_dated_folder_key(key: str, prefix: str) -> bool:
    """Whether a key lives under a ``YYYYMMDD...`` top-level folder."""
    return bool(_DATED_FOLDER.match(top_level_folder(key, prefix)))


def is_dated_folder_name(name: str) -> bool:
    return bool(_DATED_FOLDER.match(name))


class ObjectStore(Protocol):
    """Object store capability consumed by the engine.

    Implementations raise :class:`TransientStoreError` on any network or
    service failure and never retry internally.
    """

    def list_page(self, bucket: str, prefix: str, continuation_token: str | None = None) -> ListPage:
        """Return one page of objects under ``prefix``."""
        ...

    def get(self, bucket: str, key: str) -> bytes:
        """Return the full body of an object."""
        ...

    def put(self, bucket: str, key: str, body: bytes, content_type: str) -> None:
        """Create or replace an object."""
        ...

    def delete_batch(self, bucket: str, keys: list[str]) -> None:
        """Delete up to :data:`MAX_DELETE_BATCH` keys in one request."""
        ...


def create_s3_client(region: str) -> Any:
    """Create a boto3 S3 client for the given region.

    Args:
        region: AWS region name.

    Returns:
        Configured boto3 S3 client.
    """
    config = Config(
        retries={"max_attempts": 3, "mode": "standard"},
        max_pool_connections=64,
    )
    return boto3.client("s3", region_name=region, config=config)


class S3ObjectStore:
    """boto3-backed :class:`ObjectStore`.

    Args:
        client: boto3 S3 client.
        page_size: Maximum keys requested per list call.
    """

    def __init__(self, client: Any, page_size: int = 1000) -> None:
        self._client = client
        self._page_size = page_size

    def list_page(self, bucket: str, prefix: str, continuation_token: str | None = None) -> ListPage:
        params: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix, "MaxKeys": self._page_size}
        if continuation_token:
            params["ContinuationToken"] = continuation_token
        try:
            response = self._client.list_objects_v2(**params)
        except (ClientError, BotoCoreError) as exc:
            raise TransientStoreError("list", bucket, prefix, str(exc)) from exc

        entries = [
            RemoteEntry(
                key=obj["Key"],
                size=obj.get("Size", 0),
                etag=obj.get("ETag", "").replace('"', ""),
            )
            for obj in response.get("Contents", [])
            if obj.get("Key")
        ]
        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return ListPage(entries=entries, next_token=next_token)

    def get(self, bucket: str, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
            body = response["Body"].read()
        except (ClientError, BotoCoreError) as exc:
            raise TransientStoreError("get", bucket, key, str(exc)) from exc
        return body

    def put(self, bucket: str, key: str, body: bytes, content_type: str) -> None:
        try:
            self._client.put_object(Bucket=bucket, Key=key, Body=body, ContentType=content_type)
        except (ClientError, BotoCoreError) as exc:
            raise TransientStoreError("put", bucket, key, str(exc)) from exc

    def delete_batch(self, bucket: str, keys: list[str]) -> None:
        if len(keys) > MAX_DELETE_BATCH:
            msg = f"delete batch of {len(keys)} keys exceeds the limit of {MAX_DELETE_BATCH}"
            raise ValueError(msg)
        if not keys:
            return
        try:
            response = self._client.delete_objects(
                Bucket=bucket,
                Delete={"Objects": [{"Key": key} for key in keys], "Quiet": True},
            )
        except (ClientError, BotoCoreError) as exc:
            raise TransientStoreError("delete", bucket, None, str(exc)) from exc

        # Per-key errors are left for delete verification to catch
        for error in response.get("Errors", []):
            logger.warning("Delete failed for s3://{}/{}: {}", bucket, error.get("Key"), error.get("Message"))


def list_remote(store: ObjectStore, bucket: str, prefix: str) -> list[RemoteEntry]:
    """List every object under a prefix, following continuation tokens.

    An empty or absent prefix yields an empty list. A non-empty prefix is
    listed as a folder (``prefix/``) so sibling prefixes sharing the same
    leading characters are never included.

    Args:
        store: Object store capability.
        bucket: Bucket name.
        prefix: Normalized prefix, ``""`` for the bucket root.

    Returns:
        All entries in listing order.

    Raises:
        TransientStoreError: If any page request fails.
    """
    list_prefix = f"{prefix}/" if prefix else ""
    entries: list[RemoteEntry] = []
    token: str | None = None
    while True:
        page = store.list_page(bucket, list_prefix, token)
        entries.extend(page.entries)
        token = page.next_token
        if not token:
            break
    logger.debug("Listed {} objects under s3://{}/{}", len(entries), bucket, list_prefix)
    return entries
