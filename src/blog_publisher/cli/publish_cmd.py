"""Publish CLI commands: post upload, prefix sync, resume, and state inspection."""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import typer
from loguru import logger
from tqdm import tqdm

from blog_publisher.core.config import PublisherSettings, PublishTarget, get_settings
from blog_publisher.lib.publisher.errors import PublisherError
from blog_publisher.lib.publisher.progress import ProgressEmitter, percent_for
from blog_publisher.lib.publisher.types import PlanStatus, PublishProgress

_TARGET_HELP = "Target environment (prod or stg)"


class _ProgressBar:
    """tqdm bar driven by publish progress events (0-100)."""

    def __init__(self, desc: str) -> None:
        self._bar = tqdm(total=100, desc=desc, unit="%", leave=True)

    def __call__(self, event: PublishProgress) -> None:
        percent = percent_for(event)
        if percent is not None and percent > self._bar.n:
            self._bar.update(percent - self._bar.n)
        if event.total:
            self._bar.set_postfix_str(f"{event.phase} {event.done or 0}/{event.total}")
        else:
            self._bar.set_postfix_str(str(event.phase))

    def close(self) -> None:
        self._bar.close()


@contextmanager
def _progress(desc: str) -> Iterator[ProgressEmitter]:
    bar = _ProgressBar(desc)
    emitter = ProgressEmitter([bar])
    try:
        yield emitter
    finally:
        emitter.close()
        bar.close()


def _create_store(settings: PublisherSettings) -> Any:
    """Create the S3 object store for the configured region.

    Raises:
        ConfigError: If no region is configured.
    """
    from blog_publisher.lib.publisher.storage import S3ObjectStore, create_s3_client

    return S3ObjectStore(create_s3_client(settings.require_region()))


def _create_invalidator(settings: PublisherSettings) -> Any:
    from blog_publisher.lib.publisher.cdn import CloudFrontInvalidator, create_cloudfront_client

    return CloudFrontInvalidator(create_cloudfront_client(settings.require_region()))


def _fail(action: str, exc: Exception) -> typer.Exit:
    logger.error("{} failed: {}", action, exc)
    typer.echo(f"Error: {exc}")
    return typer.Exit(code=1)


def _load_post(
    markdown: Path,
    hero: Path | None,
    image1: Path | None,
    image2: Path | None,
    image3: Path | None,
) -> Any:
    from blog_publisher.lib.publisher.source import ImageSlot, load_post_source

    images = {ImageSlot.HERO: hero, ImageSlot.IMAGE1: image1, ImageSlot.IMAGE2: image2, ImageSlot.IMAGE3: image3}
    return load_post_source(markdown, {slot: path for slot, path in images.items() if path is not None})


def preview_command(
    markdown: Path = typer.Argument(..., help="Markdown file of the post"),
    hero: Path | None = typer.Option(None, "--hero", help="Hero image"),
    image1: Path | None = typer.Option(None, "--image1", help="First figure"),
    image2: Path | None = typer.Option(None, "--image2", help="Second figure"),
    image3: Path | None = typer.Option(None, "--image3", help="Third figure"),
) -> None:
    """Show the slug and object keys a post would be published under."""
    from blog_publisher.lib.publisher.source import image_keys, post_key

    settings = get_settings()
    try:
        post = _load_post(markdown, hero, image1, image2, image3)
    except PublisherError as exc:
        raise _fail("Preview", exc) from exc

    typer.echo(f"Slug: {post.slug}")
    typer.echo(f"  {post_key(settings.posts_prefix, post.slug)}")
    for slot, key in image_keys(post, settings.images_prefix).items():
        typer.echo(f"  {key}  ({slot})")


def publish_command(
    markdown: Path = typer.Argument(..., help="Markdown file of the post"),
    hero: Path | None = typer.Option(None, "--hero", help="Hero image"),
    image1: Path | None = typer.Option(None, "--image1", help="First figure"),
    image2: Path | None = typer.Option(None, "--image2", help="Second figure"),
    image3: Path | None = typer.Option(None, "--image3", help="Third figure"),
    target: PublishTarget = typer.Option(PublishTarget.PROD, "--target", "-t", help=_TARGET_HELP),
) -> None:
    """Upload a post and publish the site (local build or CodeBuild)."""
    from blog_publisher.lib.publisher.build import NpmSiteBuilder
    from blog_publisher.lib.publisher.remote_build import create_codebuild_client
    from blog_publisher.services.publish_service import PublishSession, publish

    settings = get_settings()
    try:
        post = _load_post(markdown, hero, image1, image2, image3)
        store = _create_store(settings)
        invalidator = _create_invalidator(settings)
        builder = NpmSiteBuilder(settings.blog_dir, settings.artifact_path) if settings.local_build else None
        codebuild = None
        if settings.codebuild_project and not settings.local_build:
            codebuild = create_codebuild_client(settings.require_region())
        with _progress("publish") as emitter:
            session = PublishSession(settings=settings, target=target, post=post, progress=emitter)
            result = publish(session, store, invalidator=invalidator, builder=builder, codebuild_client=codebuild)
    except PublisherError as exc:
        raise _fail("Publish", exc) from exc

    typer.echo(f"\nPublished {result.slug}")
    for key in result.uploaded_keys:
        typer.echo(f"  s3://{settings.source_bucket}/{key}")
    if result.sync is not None:
        typer.echo(f"Deleted: {result.sync.deleted}  Uploaded: {result.sync.uploaded}")
        typer.echo(f"Snapshot: {result.sync.snapshot_dir}")
    if result.codebuild_started:
        typer.echo(f"CodeBuild started: {settings.codebuild_project}")
    if result.local_build_enabled and not result.cloudfront_invalidated:
        typer.echo("Warning: CloudFront cache was not invalidated.")


def sync_command(
    target: PublishTarget = typer.Option(PublishTarget.PROD, "--target", "-t", help=_TARGET_HELP),
    skip_build: bool = typer.Option(False, "--skip-build", help="Sync the existing build output without rebuilding"),
) -> None:
    """Replace the target prefix with the site build output."""
    from blog_publisher.lib.publisher.build import NpmSiteBuilder
    from blog_publisher.services.publish_service import PublishSession, sync

    settings = get_settings()
    try:
        store = _create_store(settings)
        invalidator = _create_invalidator(settings)
        builder = None if skip_build else NpmSiteBuilder(settings.blog_dir, settings.artifact_path)
        with _progress(f"sync {target}") as emitter:
            session = PublishSession(settings=settings, target=target, progress=emitter)
            result = sync(session, store, invalidator=invalidator, builder=builder)
    except PublisherError as exc:
        raise _fail("Sync", exc) from exc

    typer.echo(f"\nDeleted: {result.deleted}  Uploaded: {result.uploaded}")
    typer.echo(f"Snapshot: {result.snapshot_dir}")
    typer.echo(f"CloudFront invalidated: {'yes' if result.cdn_invalidated else 'no'}")


def resume_command(
    snapshot_dir: Path = typer.Argument(..., help="Snapshot directory of the interrupted run"),
    target: PublishTarget = typer.Option(PublishTarget.PROD, "--target", "-t", help=_TARGET_HELP),
) -> None:
    """Resume an interrupted sync from its snapshot directory."""
    from blog_publisher.services.publish_service import PublishSession, resume_sync

    settings = get_settings()
    try:
        store = _create_store(settings)
        invalidator = _create_invalidator(settings)
        with _progress(f"resume {target}") as emitter:
            session = PublishSession(settings=settings, target=target, progress=emitter)
            result = resume_sync(session, store, snapshot_dir, invalidator=invalidator)
    except (PublisherError, ValueError) as exc:
        raise _fail("Resume", exc) from exc

    typer.echo(f"\nDeleted: {result.deleted}  Uploaded: {result.uploaded}")


def check_state_command(
    target: PublishTarget = typer.Option(PublishTarget.PROD, "--target", "-t", help=_TARGET_HELP),
    folders: bool = typer.Option(False, "--folders", help="Compare dated article folders instead of keys"),
    compare_content: bool = typer.Option(False, "--compare-content", help="Detect changed objects via MD5/ETag"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="List unchanged keys too"),
) -> None:
    """Compare the build output with the target prefix without changing anything."""
    from blog_publisher.services.publish_service import PublishSession, check_state

    settings = get_settings()
    try:
        store = _create_store(settings)
        summary = check_state(
            PublishSession(settings=settings, target=target),
            store,
            folders=folders,
            compare_content=compare_content,
        )
    except PublisherError as exc:
        raise _fail("State check", exc) from exc

    typer.echo(f"s3://{summary.bucket}/{summary.prefix} vs {summary.artifact_dir}")
    typer.echo("─" * 60)
    for item in summary.items:
        if item.status is PlanStatus.SAME and not verbose:
            continue
        typer.echo(f"  {item.status.value:7s} {item.key}")
    counts = summary.counts
    typer.echo(
        f"\nadd: {counts['add']}  update: {counts['update']}  remove: {counts['remove']}  same: {counts['same']}"
    )


def download_prefix_command(
    target: PublishTarget = typer.Option(PublishTarget.PROD, "--target", "-t", help=_TARGET_HELP),
) -> None:
    """Replace the local build output with the contents of the target prefix."""
    from blog_publisher.services.publish_service import PublishSession, download_prefix

    settings = get_settings()
    try:
        store = _create_store(settings)
        with _progress(f"download {target}") as emitter:
            session = PublishSession(settings=settings, target=target, progress=emitter)
            result = download_prefix(session, store)
    except PublisherError as exc:
        raise _fail("Download", exc) from exc

    typer.echo(f"\nDownloaded {result.downloaded} objects to {result.target_dir}")
    if result.failed_keys:
        typer.echo(f"Failed ({len(result.failed_keys)}):")
        for key in result.failed_keys:
            typer.echo(f"  {key}")


def diff_command(
    key: str = typer.Argument(..., help="Object key under the target prefix"),
    target: PublishTarget = typer.Option(PublishTarget.PROD, "--target", "-t", help=_TARGET_HELP),
) -> None:
    """Show a unified diff between the local build output and the bucket for one key."""
    from blog_publisher.services.publish_service import PublishSession, html_diff

    settings = get_settings()
    try:
        store = _create_store(settings)
        text = html_diff(PublishSession(settings=settings, target=target), store, key)
    except PublisherError as exc:
        raise _fail("Diff", exc) from exc

    typer.echo(text or "No differences.")
