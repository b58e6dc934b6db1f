"""Unified text diff of one key between the build output and the bucket."""

import difflib
from pathlib import Path

from blog_publisher.lib.publisher.errors import NotFoundError
from blog_publisher.lib.publisher.storage import ObjectStore, strip_prefix

MAX_DIFF_BYTES = 2 * 1024 * 1024


def text_diff(store: ObjectStore, bucket: str, prefix: str, key: str, out_dir: Path) -> str:
    """Diff the local copy of ``key`` against the remote object.

    Files larger than 2 MiB on either side are not diffed; a short notice
    is returned instead.

    Raises:
        NotFoundError: If the local file is missing.
        TransientStoreError: If the remote object cannot be read.
    """
    relative = strip_prefix(key, prefix)
    local_path = out_dir / relative
    if not local_path.is_file():
        raise NotFoundError(local_path, f"local file not found: {local_path}")
    if local_path.stat().st_size > MAX_DIFF_BYTES:
        return "diff skipped: local file is too large."

    body = store.get(bucket, key)
    if len(body) > MAX_DIFF_BYTES:
        return "diff skipped: S3 file is too large."

    local_text = local_path.read_text(encoding="utf-8", errors="replace")
    remote_text = body.decode("utf-8", errors="replace")
    return "".join(
        difflib.unified_diff(
            local_text.splitlines(keepends=True),
            remote_text.splitlines(keepends=True),
            fromfile=f"local:{relative}",
            tofile=f"s3:{key}",
            n=3,
        )
    )
