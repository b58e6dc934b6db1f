"""Sync executor: batched delete, delete verification, then upload.

One executor instance drives one run through
``IDLE -> DELETING -> VERIFYING_DELETED -> UPLOADING -> DONE``; any failure
moves it to ``FAILED`` and aborts the run. Rollback is manual, from the
run's snapshot directory.
"""

import hashlib
import threading
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from enum import StrEnum
from pathlib import Path

from loguru import logger

from blog_publisher.lib.publisher.errors import DeleteIncompleteError, PublisherError, TransientStoreError
from blog_publisher.lib.publisher.local_index import file_md5
from blog_publisher.lib.publisher.manifest import write_journal
from blog_publisher.lib.publisher.storage import MAX_DELETE_BATCH, ObjectStore, is_dated_folder_key, list_remote
from blog_publisher.lib.publisher.types import ArtifactEntry, FailurePolicy, RunJournal, SyncResult

TransferCallback = Callable[[int, int], None]

# Uploaded keys are flushed to the journal every this many objects
_JOURNAL_FLUSH_EVERY = 100


class SyncState(StrEnum):
    """Executor lifecycle."""

    IDLE = "idle"
    DELETING = "deleting"
    VERIFYING_DELETED = "verifying-deleted"
    UPLOADING = "uploading"
    DONE = "done"
    FAILED = "failed"


def chunked(keys: list[str], size: int = MAX_DELETE_BATCH) -> list[list[str]]:
    """Split keys into consecutive batches of at most ``size``."""
    return [keys[i : i + size] for i in range(0, len(keys), size)]


class SyncExecutor:
    """Apply a destructive resync of one bucket prefix.

    Args:
        store: Object store capability.
        bucket: Target bucket.
        prefix: Normalized target prefix.
        workers: Maximum parallel uploads.
        upload_policy: Stop at the first failed upload, or finish and report all.
        journal: Phase record of this run; a loaded journal resumes a prior run.
        journal_dir: Snapshot directory where the journal is persisted.
    """

    def __init__(
        self,
        store: ObjectStore,
        bucket: str,
        prefix: str,
        *,
        workers: int = 8,
        upload_policy: FailurePolicy = FailurePolicy.ABORT_ON_ERROR,
        journal: RunJournal | None = None,
        journal_dir: Path | None = None,
    ) -> None:
        self._store = store
        self._bucket = bucket
        self._prefix = prefix
        self._workers = max(1, workers)
        self._upload_policy = upload_policy
        self._journal = journal or RunJournal()
        self._journal_dir = journal_dir
        self._lock = threading.Lock()
        self.state = SyncState.IDLE

    @property
    def journal(self) -> RunJournal:
        return self._journal

    def _transition(self, state: SyncState) -> None:
        logger.debug("Sync s3://{}/{}: {} -> {}", self._bucket, self._prefix, self.state, state)
        self.state = state

    def _save_journal(self) -> None:
        if self._journal_dir is None:
            return
        with self._lock:
            write_journal(self._journal_dir, self._journal)

    def _delete_batches(self, keys: list[str], on_progress: TransferCallback | None = None) -> int:
        total = len(keys)
        done = 0
        for batch in chunked(keys):
            self._store.delete_batch(self._bucket, batch)
            done += len(batch)
            if on_progress:
                on_progress(done, total)
        return total

    def delete(self, keys: Iterable[str], on_progress: TransferCallback | None = None) -> int:
        """Delete keys in batches of at most 1000, reporting progress per batch.

        Returns:
            Number of keys submitted for deletion.

        Raises:
            TransientStoreError: If a batch request fails.
        """
        keys = list(dict.fromkeys(keys))
        self._transition(SyncState.DELETING)
        if not keys:
            return 0
        logger.info("S3 delete start: s3://{}/{}", self._bucket, self._prefix)
        logger.info("S3 delete target count: {}", len(keys))
        try:
            return self._delete_batches(keys, on_progress)
        except PublisherError:
            self._transition(SyncState.FAILED)
            raise

    def _listed(self) -> list[str]:
        return [entry.key for entry in list_remote(self._store, self._bucket, self._prefix)]

    def verify_deleted(self, targets: Iterable[str]) -> None:
        """Re-list the prefix and make sure it is empty.

        Leftover targets are deleted once more. Keys that were never targeted
        (written after the snapshot, for instance) are never deleted here,
        since no backup of them exists; they fail the run instead.

        Args:
            targets: Keys submitted for deletion, all backed up beforehand.

        Raises:
            DeleteIncompleteError: If targets remain after the retry or untargeted keys appeared.
            TransientStoreError: If listing or the retry delete fails.
        """
        target_set = set(targets)
        self._transition(SyncState.VERIFYING_DELETED)
        try:
            listed = self._listed()
            remaining = [key for key in listed if key in target_set]
            if remaining:
                logger.info("S3 delete remaining count: {}", len(remaining))
                self._delete_batches(remaining)
                listed = self._listed()
                remaining = [key for key in listed if key in target_set]
            unexpected = [key for key in listed if key not in target_set]
            if unexpected:
                logger.error("S3 objects appeared after the snapshot, left untouched: {}", len(unexpected))
            if remaining or unexpected:
                stale = sum(1 for key in remaining if is_dated_folder_key(key, self._prefix))
                logger.error(
                    "S3 delete still remaining: {} ({} under dated folders)",
                    len(remaining) + len(unexpected),
                    stale,
                )
                raise DeleteIncompleteError(self._bucket, self._prefix, remaining + unexpected)
        except PublisherError:
            self._transition(SyncState.FAILED)
            raise

        logger.info("S3 delete remaining count: 0")
        self._journal.delete_verified = True
        self._save_journal()

    def _already_uploaded(self, artifact_root: Path, key: str, entry: ArtifactEntry) -> bool:
        recorded = self._journal.uploaded.get(key)
        return recorded is not None and recorded == file_md5(artifact_root / entry.relative_path)

    def upload(
        self,
        artifact_root: Path,
        entries: Mapping[str, ArtifactEntry],
        on_progress: TransferCallback | None = None,
    ) -> int:
        """Upload every artifact the journal does not record with its current content.

        A key recorded by an interrupted run is uploaded again when the local
        file no longer matches the recorded MD5 (the site was rebuilt).

        Args:
            artifact_root: Build output directory.
            entries: Artifacts keyed by remote key.
            on_progress: Optional ``(done, total)`` callback, once per file.

        Returns:
            Number of objects uploaded by this call.

        Raises:
            PublisherError: If delete verification has not happened for this run.
            TransientStoreError: If an upload fails.
            OSError: If a local file cannot be read.
        """
        if not self._journal.delete_verified:
            msg = f"refusing to upload to s3://{self._bucket}/{self._prefix} before delete verification"
            raise PublisherError(msg)

        self._transition(SyncState.UPLOADING)
        todo = sorted(key for key in entries if not self._already_uploaded(artifact_root, key, entries[key]))
        already = len(entries) - len(todo)
        total = len(entries)
        logger.info("S3 upload target: s3://{}/{}", self._bucket, self._prefix)
        logger.info("S3 upload files: {} ({} already uploaded)", len(todo), already)

        done = already
        uploaded = 0
        failures: list[str] = []

        def _task(key: str) -> None:
            nonlocal done, uploaded
            entry = entries[key]
            body = (artifact_root / entry.relative_path).read_bytes()
            self._store.put(self._bucket, key, body, entry.content_type)
            digest = hashlib.md5(body).hexdigest()  # noqa: S324
            with self._lock:
                self._journal.uploaded[key] = digest
                done += 1
                uploaded += 1
                current = done
                flush = uploaded % _JOURNAL_FLUSH_EVERY == 0
            if flush:
                self._save_journal()
            if on_progress:
                on_progress(current, total)

        futures: dict[Future[None], str] = {}
        first_error: BaseException | None = None
        with ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="upload") as pool:
            futures = {pool.submit(_task, key): key for key in todo}
            if self._upload_policy is FailurePolicy.ABORT_ON_ERROR and futures:
                finished, _ = wait(futures, return_when=FIRST_EXCEPTION)
                if any(not f.cancelled() and f.exception() is not None for f in finished):
                    for future in futures:
                        future.cancel()
            wait(futures)

        for future, key in futures.items():
            if future.cancelled():
                continue
            exc = future.exception()
            if exc is None:
                continue
            logger.error("Upload failed for s3://{}/{}: {}", self._bucket, key, exc)
            failures.append(key)
            if first_error is None:
                first_error = exc

        self._save_journal()
        if first_error is not None:
            self._transition(SyncState.FAILED)
            if self._upload_policy is FailurePolicy.CONTINUE_ON_ERROR and len(failures) > 1:
                raise TransientStoreError(
                    "put",
                    self._bucket,
                    self._prefix,
                    f"{len(failures)} uploads failed: {', '.join(sorted(failures))}",
                ) from first_error
            raise first_error
        return uploaded

    def run(
        self,
        delete_keys: Iterable[str],
        artifact_root: Path,
        entries: Mapping[str, ArtifactEntry],
        *,
        on_delete_progress: TransferCallback | None = None,
        on_upload_progress: TransferCallback | None = None,
    ) -> SyncResult:
        """Delete, verify, and upload in sequence.

        Verification only ever deletes ``delete_keys``; a journal that already
        records delete verification skips straight to uploading.

        Returns:
            Counts of deleted and uploaded objects.
        """
        deleted = 0
        if not self._journal.delete_verified:
            delete_keys = list(delete_keys)
            deleted = self.delete(delete_keys, on_delete_progress)
            self.verify_deleted(delete_keys)
        uploaded = self.upload(artifact_root, entries, on_upload_progress)

        self._journal.completed = True
        self._save_journal()
        self._transition(SyncState.DONE)
        logger.info("Sync complete: {} deleted, {} uploaded", deleted, uploaded)
        return SyncResult(deleted=deleted, uploaded=uploaded)
