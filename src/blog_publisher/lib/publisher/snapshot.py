"""Snapshot engine and best-effort object download.

Copies every object under a remote prefix into a local directory before
any mutation. Per-object failures are recorded, not raised: callers that
need safety must refuse to mutate when ``failed_keys`` is non-empty.
"""

import threading
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

from blog_publisher.lib.publisher.errors import PublisherError, SnapshotIncompleteError
from blog_publisher.lib.publisher.manifest import objects_dir, write_manifest
from blog_publisher.lib.publisher.storage import ObjectStore, list_remote, strip_prefix
from blog_publisher.lib.publisher.types import (
    DownloadResult,
    FailurePolicy,
    RemoteEntry,
    SnapshotManifest,
    SnapshotResult,
)

TransferCallback = Callable[[int, int], None]


def _destination(target_dir: Path, relative: str) -> Path:
    dest = (target_dir / relative).resolve()
    if not dest.is_relative_to(target_dir.resolve()):
        msg = f"key escapes the target directory: {relative}"
        raise OSError(msg)
    return dest


def _copy_object(store: ObjectStore, bucket: str, key: str, dest: Path) -> None:
    body = store.get(bucket, key)
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_bytes(body)


def download_objects(
    store: ObjectStore,
    bucket: str,
    prefix: str,
    keys: Sequence[str],
    target_dir: Path,
    *,
    workers: int = 8,
    policy: FailurePolicy = FailurePolicy.CONTINUE_ON_ERROR,
    on_progress: TransferCallback | None = None,
) -> list[str]:
    """Download objects into ``target_dir`` mirroring their path below ``prefix``.

    Folder markers (keys ending in ``/``) are skipped. Transfers run on a
    bounded thread pool; the progress callback receives ``(done, total)``
    with ``total`` counting every key passed in.

    Args:
        store: Object store capability.
        bucket: Bucket name.
        prefix: Normalized prefix stripped from each key.
        keys: Keys to download, in the order failures should be reported.
        target_dir: Local root directory.
        workers: Maximum parallel downloads.
        policy: Continue past failures, or stop scheduling after the first.
        on_progress: Optional ``(done, total)`` callback.

    Returns:
        Keys that failed, in the order of ``keys``.
    """
    total = len(keys)
    done = 0
    lock = threading.Lock()
    failed: dict[int, str] = {}

    def _advance() -> None:
        nonlocal done
        with lock:
            done += 1
            current = done
        if on_progress:
            on_progress(current, total)

    def _task(index: int, key: str, dest: Path) -> None:
        try:
            _copy_object(store, bucket, key, dest)
        except (PublisherError, OSError) as exc:
            logger.warning("Download failed for s3://{}/{}: {}", bucket, key, exc)
            with lock:
                failed[index] = key
            raise
        finally:
            _advance()

    pending: list[Future[None]] = []
    with ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="download") as pool:
        for index, key in enumerate(keys):
            relative = strip_prefix(key, prefix)
            if not relative or relative.endswith("/"):
                _advance()
                continue
            try:
                dest = _destination(target_dir, relative)
            except OSError as exc:
                logger.warning("Skipping s3://{}/{}: {}", bucket, key, exc)
                failed[index] = key
                _advance()
                if policy is FailurePolicy.ABORT_ON_ERROR:
                    break
                continue
            pending.append(pool.submit(_task, index, key, dest))

        if policy is FailurePolicy.ABORT_ON_ERROR and pending:
            finished, _ = wait(pending, return_when=FIRST_EXCEPTION)
            if any(not f.cancelled() and f.exception() is not None for f in finished):
                for future in pending:
                    future.cancel()
        wait(pending)

    for future in pending:
        if future.cancelled():
            continue
        exc = future.exception()
        if exc is not None and not isinstance(exc, (PublisherError, OSError)):
            raise exc

    return [failed[index] for index in sorted(failed)]


def snapshot_prefix(
    store: ObjectStore,
    bucket: str,
    prefix: str,
    snapshot_dir: Path,
    *,
    workers: int = 8,
    policy: FailurePolicy = FailurePolicy.CONTINUE_ON_ERROR,
    on_progress: TransferCallback | None = None,
) -> SnapshotResult:
    """Copy the current contents of ``bucket/prefix`` into ``snapshot_dir``.

    Objects land under ``snapshot_dir/objects`` so a remote ``manifest.json``
    is backed up apart from the run manifest. The manifest is always
    written, even when some objects failed, so the caller can judge whether
    the snapshot is trustworthy.

    Args:
        store: Object store capability.
        bucket: Bucket to snapshot.
        prefix: Normalized prefix.
        snapshot_dir: Existing run directory that receives the mirror and manifest.
        workers: Maximum parallel downloads.
        policy: ``ABORT_ON_ERROR`` raises after writing the manifest.
        on_progress: Optional ``(done, total)`` callback.

    Returns:
        The snapshot manifest, directory, and the listed objects.

    Raises:
        TransientStoreError: If the prefix cannot be listed.
        SnapshotIncompleteError: With ``ABORT_ON_ERROR`` when any object failed.
    """
    objects: list[RemoteEntry] = list_remote(store, bucket, prefix)
    mirror_dir = objects_dir(snapshot_dir)
    mirror_dir.mkdir(parents=True, exist_ok=True)
    logger.info(
        "S3 snapshot: s3://{}/{} -> {} ({} objects)",
        bucket,
        prefix,
        snapshot_dir,
        len(objects),
    )

    failed_keys = download_objects(
        store,
        bucket,
        prefix,
        [obj.key for obj in objects],
        mirror_dir,
        workers=workers,
        policy=policy,
        on_progress=on_progress,
    )

    manifest = SnapshotManifest(
        timestamp_id=snapshot_dir.name,
        bucket=bucket,
        prefix=prefix,
        total_objects=len(objects),
        failed_keys=failed_keys,
        created_at=datetime.now(tz=UTC),
    )
    write_manifest(snapshot_dir, manifest)

    if failed_keys:
        logger.warning("S3 snapshot completed with failures: {}", len(failed_keys))
        if policy is FailurePolicy.ABORT_ON_ERROR:
            raise SnapshotIncompleteError(bucket, prefix, failed_keys, snapshot_dir)
    else:
        logger.info("S3 snapshot completed.")

    return SnapshotResult(manifest=manifest, snapshot_dir=snapshot_dir, objects=objects)


def download_keys(
    store: ObjectStore,
    bucket: str,
    prefix: str,
    keys: Sequence[str],
    target_dir: Path,
    *,
    workers: int = 8,
    on_progress: TransferCallback | None = None,
) -> DownloadResult:
    """Best-effort download of selected keys into ``target_dir``."""
    failed_keys = download_objects(
        store,
        bucket,
        prefix,
        keys,
        target_dir,
        workers=workers,
        on_progress=on_progress,
    )
    return DownloadResult(downloaded=len(keys) - len(failed_keys), target_dir=target_dir, failed_keys=failed_keys)
