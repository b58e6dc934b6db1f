"""Publish service: orchestrates build, snapshot, sync, and CDN invalidation.

Every entry point takes an explicit :class:`PublishSession` created by the
caller for one request; nothing is kept in module state between calls.
Stages run strictly in sequence: a failed snapshot aborts before any
mutation, a failed delete verification aborts before any upload, and a
failed CDN invalidation is reported as a flag only.
"""

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from blog_publisher.core.config import PublisherSettings, PublishTarget, TargetLocation, require_bucket
from blog_publisher.lib.publisher.articles import delete_article, list_articles
from blog_publisher.lib.publisher.build import SiteBuilder, ensure_artifact_dir
from blog_publisher.lib.publisher.cdn import CdnInvalidator, invalidate_prefix
from blog_publisher.lib.publisher.diff import text_diff
from blog_publisher.lib.publisher.errors import ConfigError, NotFoundError, SnapshotIncompleteError
from blog_publisher.lib.publisher.executor import SyncExecutor
from blog_publisher.lib.publisher.local_index import build_local_index, collect_files
from blog_publisher.lib.publisher.manifest import (
    create_snapshot_dir,
    objects_dir,
    read_journal,
    read_manifest,
)
from blog_publisher.lib.publisher.planner import plan, plan_folders
from blog_publisher.lib.publisher.progress import ProgressEmitter
from blog_publisher.lib.publisher.remote_build import build_environment, start_remote_build
from blog_publisher.lib.publisher.snapshot import download_keys, download_objects, snapshot_prefix
from blog_publisher.lib.publisher.source import PostSource, save_draft, upload_post_source, write_local_sources
from blog_publisher.lib.publisher.storage import ObjectStore, join_key, list_remote, normalize_prefix
from blog_publisher.lib.publisher.types import (
    DeleteArticleResult,
    DiffSummary,
    DownloadResult,
    OutArticle,
    ProgressPhase,
    PublishResult,
    SyncResult,
)


@dataclass(frozen=True)
class PublishSession:
    """Per-request context passed to every orchestrator call.

    Attributes:
        settings: Configuration resolved once for this request.
        target: Environment the request is aimed at.
        post: Post prepared for publishing, if any.
        progress: Sink receiving progress events.
    """

    settings: PublisherSettings
    target: PublishTarget = PublishTarget.PROD
    post: PostSource | None = None
    progress: ProgressEmitter = field(default_factory=ProgressEmitter)

    @property
    def location(self) -> TargetLocation:
        return self.settings.resolve_target(self.target)


def _target(session: PublishSession, operation: str) -> tuple[str, str, str | None]:
    """Pre-flight checks shared by remote operations.

    Returns:
        ``(bucket, normalized prefix, distribution id)``.

    Raises:
        ConfigError: If the region or the target bucket is not configured.
    """
    session.settings.require_region()
    location = session.location
    bucket = require_bucket(location, operation)
    return bucket, normalize_prefix(location.prefix), location.distribution_id


def replace_prefix(
    session: PublishSession,
    store: ObjectStore,
    artifact_dir: Path,
    bucket: str,
    prefix: str,
) -> SyncResult:
    """Snapshot the prefix, delete everything in it, verify, then upload all artifacts.

    The snapshot directory is left on disk whatever happens so an operator
    can restore by hand.

    Raises:
        NotFoundError: If the artifact directory is missing or empty.
        TransientStoreError: On any store failure.
        SnapshotIncompleteError: If any object could not be backed up; nothing is mutated.
        DeleteIncompleteError: If objects survive delete and retry; nothing is uploaded.
    """
    settings = session.settings
    ensure_artifact_dir(artifact_dir)
    entries = build_local_index(artifact_dir, prefix)

    snapshot_dir = create_snapshot_dir(settings.snapshot_path)
    snapshot = snapshot_prefix(
        store,
        bucket,
        prefix,
        snapshot_dir,
        workers=settings.transfer_workers,
        on_progress=lambda done, total: session.progress.emit(ProgressPhase.SNAPSHOT_PROGRESS, done, total),
    )
    if snapshot.manifest.failed_keys:
        raise SnapshotIncompleteError(bucket, prefix, snapshot.manifest.failed_keys, snapshot_dir)

    executor = SyncExecutor(
        store,
        bucket,
        prefix,
        workers=settings.transfer_workers,
        journal_dir=snapshot_dir,
    )
    result = executor.run(
        [obj.key for obj in snapshot.objects],
        artifact_dir,
        entries,
        on_delete_progress=lambda done, total: session.progress.emit(ProgressPhase.DELETE_PROGRESS, done, total),
        on_upload_progress=lambda done, total: session.progress.emit(ProgressPhase.PROD_UPLOAD_PROGRESS, done, total),
    )
    result.snapshot_dir = snapshot_dir
    return result


def publish(
    session: PublishSession,
    store: ObjectStore,
    *,
    invalidator: CdnInvalidator | None = None,
    builder: SiteBuilder | None = None,
    codebuild_client: Any = None,
) -> PublishResult:
    """Publish the session's post and, with local build enabled, the whole site.

    Sequence: source upload -> local build -> snapshot -> delete -> verify ->
    upload -> CDN invalidation. Without local build a configured CodeBuild
    project is started instead.

    Args:
        session: Request context; ``session.post`` may be None to republish the site.
        store: Object store capability.
        invalidator: CDN capability; invalidation is skipped when None.
        builder: Build collaborator; when None the configured artifact dir is used as built.
        codebuild_client: boto3 CodeBuild client for remote builds.

    Returns:
        PublishResult; CDN failure only clears ``cloudfront_invalidated``.

    Raises:
        ConfigError: Before any network call when required settings are missing.
    """
    settings = session.settings
    settings.require_region()
    location = session.location
    if not settings.source_bucket and not settings.local_build:
        raise ConfigError(
            "PUBLISHER_SOURCE_BUCKET is required unless PUBLISHER_LOCAL_BUILD=1.",
            setting="PUBLISHER_SOURCE_BUCKET",
        )
    if settings.local_build:
        require_bucket(location, "PUBLISHER_LOCAL_BUILD=1")

    post = session.post
    progress = session.progress
    result = PublishResult(slug=post.slug if post else None, local_build_enabled=settings.local_build)
    progress.emit(ProgressPhase.START)

    if post is not None and settings.source_bucket:
        progress.emit(ProgressPhase.SOURCE_PROGRESS, 0, 1 + len(post.images))
        result.uploaded_keys = upload_post_source(
            store,
            settings.source_bucket,
            post,
            posts_prefix=settings.posts_prefix,
            images_prefix=settings.images_prefix,
            on_uploaded=lambda done, total: progress.emit(ProgressPhase.SOURCE_PROGRESS, done, total),
        )
        logger.info("Uploaded {} source objects to s3://{}", len(result.uploaded_keys), settings.source_bucket)

    if settings.local_build:
        bucket, prefix, distribution_id = _target(session, "PUBLISHER_LOCAL_BUILD=1")
        if post is not None:
            write_local_sources(settings.blog_dir, post, settings.images_prefix)
        progress.emit(ProgressPhase.LOCAL_BUILD_START)
        artifact_dir = builder.build() if builder is not None else settings.artifact_path
        progress.emit(ProgressPhase.LOCAL_BUILD_DONE)
        ensure_artifact_dir(artifact_dir)
        if post is not None:
            save_draft(artifact_dir, post)

        result.sync = replace_prefix(session, store, artifact_dir, bucket, prefix)
        result.prod_upload_completed = True
        progress.emit(ProgressPhase.PROD_UPLOAD_DONE)

        result.cloudfront_invalidated = invalidate_prefix(invalidator, distribution_id, prefix)
        result.sync.cdn_invalidated = result.cloudfront_invalidated
        if result.cloudfront_invalidated:
            progress.emit(ProgressPhase.CLOUDFRONT_DONE)
    elif post is not None and settings.codebuild_project and codebuild_client is not None:
        environment = build_environment(
            post.slug,
            source_bucket=settings.source_bucket,
            posts_prefix=settings.posts_prefix,
            images_prefix=settings.images_prefix,
            prod_bucket=location.bucket,
            prod_prefix=location.prefix or None,
            distribution_id=location.distribution_id,
        )
        start_remote_build(codebuild_client, settings.codebuild_project, environment)
        result.codebuild_started = True
        progress.emit(ProgressPhase.CODEBUILD_DONE)

    progress.emit(ProgressPhase.DONE)
    logger.info(
        "Publish complete: slug={} prod_upload={} cloudfront={} codebuild={}",
        result.slug,
        result.prod_upload_completed,
        result.cloudfront_invalidated,
        result.codebuild_started,
    )
    return result


def sync(
    session: PublishSession,
    store: ObjectStore,
    *,
    invalidator: CdnInvalidator | None = None,
    builder: SiteBuilder | None = None,
) -> SyncResult:
    """Rebuild (optionally) and replace the target prefix with the build output.

    Raises:
        ConfigError: If region or target bucket is missing.
        NotFoundError: If no builder is given and the artifact directory does not exist.
    """
    bucket, prefix, distribution_id = _target(session, "sync")
    artifact_dir = session.settings.artifact_path
    if builder is None and not artifact_dir.is_dir():
        raise NotFoundError(artifact_dir)

    session.progress.emit(ProgressPhase.START)
    if builder is not None:
        session.progress.emit(ProgressPhase.LOCAL_BUILD_START)
        artifact_dir = builder.build()
        session.progress.emit(ProgressPhase.LOCAL_BUILD_DONE)

    result = replace_prefix(session, store, artifact_dir, bucket, prefix)
    session.progress.emit(ProgressPhase.PROD_UPLOAD_DONE)
    result.cdn_invalidated = invalidate_prefix(invalidator, distribution_id, prefix)
    if result.cdn_invalidated:
        session.progress.emit(ProgressPhase.CLOUDFRONT_DONE)
    session.progress.emit(ProgressPhase.DONE)
    return result


def _backed_up_keys(snapshot_dir: Path, prefix: str) -> set[str]:
    mirror_dir = objects_dir(snapshot_dir)
    if not mirror_dir.is_dir():
        return set()
    return {join_key(prefix, relative) for relative in collect_files(mirror_dir)}


def resume_sync(
    session: PublishSession,
    store: ObjectStore,
    snapshot_dir: Path,
    *,
    invalidator: CdnInvalidator | None = None,
) -> SyncResult:
    """Continue an interrupted sync from its snapshot directory.

    Skips the delete phase when the journal records it as verified. Keys
    the journal records as uploaded are skipped only while the local file
    still has the recorded MD5, so a rebuild in between is uploaded again.
    Before deleting, every object still under the prefix must have a copy in
    the snapshot, and verification never deletes anything else.

    Raises:
        ConfigError: If the snapshot belongs to another bucket or prefix.
        SnapshotIncompleteError: If the snapshot is incomplete or misses current objects.
    """
    bucket, prefix, distribution_id = _target(session, "resume")
    manifest = read_manifest(snapshot_dir)
    if manifest.bucket != bucket or normalize_prefix(manifest.prefix) != prefix:
        msg = (
            f"snapshot {snapshot_dir} was taken from s3://{manifest.bucket}/{manifest.prefix}, "
            f"not s3://{bucket}/{prefix}"
        )
        raise ConfigError(msg)
    if manifest.failed_keys:
        raise SnapshotIncompleteError(bucket, prefix, manifest.failed_keys, snapshot_dir)

    journal = read_journal(snapshot_dir)
    if journal.completed:
        logger.info("Run {} already completed; nothing to resume", manifest.timestamp_id)
        return SyncResult(snapshot_dir=snapshot_dir)

    artifact_dir = ensure_artifact_dir(session.settings.artifact_path)
    entries = build_local_index(artifact_dir, prefix)

    delete_keys: list[str] = []
    if not journal.delete_verified:
        current = [entry.key for entry in list_remote(store, bucket, prefix)]
        backed_up = _backed_up_keys(snapshot_dir, prefix)
        missing = [key for key in current if not key.endswith("/") and key not in backed_up]
        if missing:
            raise SnapshotIncompleteError(bucket, prefix, missing, snapshot_dir)
        delete_keys = current

    logger.info(
        "Resuming run {}: delete_verified={} uploaded={}/{}",
        manifest.timestamp_id,
        journal.delete_verified,
        len(entries.keys() & journal.uploaded.keys()),
        len(entries),
    )
    executor = SyncExecutor(
        store,
        bucket,
        prefix,
        workers=session.settings.transfer_workers,
        journal=journal,
        journal_dir=snapshot_dir,
    )
    result = executor.run(
        delete_keys,
        artifact_dir,
        entries,
        on_delete_progress=lambda done, total: session.progress.emit(ProgressPhase.DELETE_PROGRESS, done, total),
        on_upload_progress=lambda done, total: session.progress.emit(ProgressPhase.PROD_UPLOAD_PROGRESS, done, total),
    )
    result.snapshot_dir = snapshot_dir
    session.progress.emit(ProgressPhase.PROD_UPLOAD_DONE)
    result.cdn_invalidated = invalidate_prefix(invalidator, distribution_id, prefix)
    session.progress.emit(ProgressPhase.DONE)
    return result


def check_state(
    session: PublishSession,
    store: ObjectStore,
    *,
    folders: bool = False,
    compare_content: bool = False,
) -> DiffSummary:
    """Dry-run: compare the build output with the target prefix. Mutates nothing.

    Args:
        session: Request context.
        store: Object store capability.
        folders: Compare dated top-level article folders instead of object keys.
        compare_content: Detect ``update`` via MD5/ETag for object keys.

    Raises:
        ConfigError: If region or target bucket is missing.
        NotFoundError: If the artifact directory does not exist.
        TransientStoreError: If the listing fails.
    """
    bucket, prefix, _ = _target(session, "S3 state check")
    artifact_dir = session.settings.artifact_path
    if not artifact_dir.is_dir():
        raise NotFoundError(artifact_dir)

    remote = list_remote(store, bucket, prefix)
    if folders:
        result = plan_folders(artifact_dir, remote, prefix)
    else:
        result = plan(
            build_local_index(artifact_dir, prefix),
            remote,
            compare_content=compare_content,
            artifact_root=artifact_dir,
        )

    logger.info("State of s3://{}/{}: {}", bucket, prefix, result.counts)
    return DiffSummary(
        bucket=bucket,
        prefix=prefix,
        artifact_dir=artifact_dir,
        items=result.items,
        counts=result.counts,
    )


def download_prefix(session: PublishSession, store: ObjectStore) -> DownloadResult:
    """Replace the local build output with a copy of the target prefix.

    Best-effort: per-object failures are reported in ``failed_keys``.

    Raises:
        ConfigError: If region or target bucket is missing.
        TransientStoreError: If the prefix cannot be listed (the local directory is untouched).
    """
    bucket, prefix, _ = _target(session, "download")
    out_dir = session.settings.artifact_path
    objects = list_remote(store, bucket, prefix)

    shutil.rmtree(out_dir, ignore_errors=True)
    out_dir.mkdir(parents=True, exist_ok=True)

    session.progress.emit(ProgressPhase.START)
    failed_keys = download_objects(
        store,
        bucket,
        prefix,
        [obj.key for obj in objects],
        out_dir,
        workers=session.settings.transfer_workers,
        on_progress=lambda done, total: session.progress.emit(ProgressPhase.DOWNLOAD_PROGRESS, done, total),
    )
    session.progress.emit(ProgressPhase.DONE)

    if failed_keys:
        logger.warning("Download of s3://{}/{} finished with {} failures", bucket, prefix, len(failed_keys))
    return DownloadResult(downloaded=len(objects) - len(failed_keys), target_dir=out_dir, failed_keys=failed_keys)


def download_selected(session: PublishSession, store: ObjectStore, keys: list[str], target_dir: Path) -> DownloadResult:
    """Best-effort download of specific keys of the target prefix."""
    bucket, prefix, _ = _target(session, "download")
    return download_keys(store, bucket, prefix, keys, target_dir, workers=session.settings.transfer_workers)


def html_diff(session: PublishSession, store: ObjectStore, key: str) -> str:
    """Unified diff of one key: build output vs target bucket."""
    bucket, prefix, _ = _target(session, "diff")
    out_dir = session.settings.artifact_path
    if not out_dir.is_dir():
        raise NotFoundError(out_dir)
    return text_diff(store, bucket, prefix, key, out_dir)


def list_out_articles(settings: PublisherSettings) -> list[OutArticle]:
    return list_articles(settings.artifact_path)


def delete_out_article(settings: PublisherSettings, slug: str) -> DeleteArticleResult:
    return delete_article(settings.blog_dir, settings.artifact_path, slug)
