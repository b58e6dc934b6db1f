"""Unit tests for the publish orchestrator."""

import hashlib
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from blog_publisher.core.config import PublishTarget
from blog_publisher.lib.publisher.build import DRAFTS_DIR_NAME
from blog_publisher.lib.publisher.errors import (
    ConfigError,
    DeleteIncompleteError,
    NotFoundError,
    SnapshotIncompleteError,
)
from blog_publisher.lib.publisher.manifest import (
    MANIFEST_FILE,
    create_snapshot_dir,
    objects_dir,
    read_journal,
    read_manifest,
    write_journal,
)
from blog_publisher.lib.publisher.progress import ProgressEmitter
from blog_publisher.lib.publisher.snapshot import snapshot_prefix
from blog_publisher.lib.publisher.source import ImageSlot, load_post_source
from blog_publisher.lib.publisher.types import PlanStatus, ProgressPhase, PublishProgress, RunJournal
from blog_publisher.services.publish_service import (
    PublishSession,
    check_state,
    delete_out_article,
    download_prefix,
    download_selected,
    html_diff,
    list_out_articles,
    publish,
    resume_sync,
    sync,
)

_BUCKET = "site-bucket"
_SOURCE_BUCKET = "source-bucket"


def _md5(body: bytes) -> str:
    return hashlib.md5(body).hexdigest()  # noqa: S324


def _invalidator() -> MagicMock:
    invalidator = MagicMock()
    invalidator.invalidate.return_value = "I1"
    return invalidator


class TestPublish:
    """Tests for publish."""

    def test_replaces_prefix(self, make_settings, recording_store, seed_bucket, bucket_keys, write_tree) -> None:
        """New local page is uploaded and the stale remote page removed."""
        settings = make_settings(prod_cloudfront_distribution_id="E1")
        write_tree(settings.artifact_path, {"a.html": "<p>new</p>"})
        seed_bucket({"blog/b.html": "<p>stale</p>", "other/keep.html": "x"})
        invalidator = _invalidator()

        result = publish(PublishSession(settings=settings), recording_store, invalidator=invalidator)

        assert bucket_keys(prefix="blog/") == ["blog/a.html"]
        assert bucket_keys(prefix="other/") == ["other/keep.html"]
        assert result.prod_upload_completed
        assert result.cloudfront_invalidated
        assert result.success
        assert result.sync is not None
        assert (result.sync.deleted, result.sync.uploaded) == (1, 1)
        assert (objects_dir(result.sync.snapshot_dir) / "b.html").read_text() == "<p>stale</p>"
        invalidator.invalidate.assert_called_once_with("E1", ["/blog/*"])

    def test_unset_distribution_still_succeeds(self, make_settings, recording_store, write_tree) -> None:
        """Without a distribution id invalidation is skipped, not failed."""
        settings = make_settings()
        write_tree(settings.artifact_path, {"index.html": "x"})
        invalidator = _invalidator()

        result = publish(PublishSession(settings=settings), recording_store, invalidator=invalidator)

        invalidator.invalidate.assert_not_called()
        assert result.cloudfront_invalidated is False
        assert result.prod_upload_completed is True
        assert result.success

    def test_snapshot_failure_blocks_mutation(self, make_settings, recording_store, seed_bucket, write_tree) -> None:
        """One failed backup out of ten aborts before any delete or put."""
        settings = make_settings()
        write_tree(settings.artifact_path, {"index.html": "x"})
        seed_bucket({f"blog/{i}.html": str(i) for i in range(10)})
        recording_store.fail_get.add("blog/7.html")

        with pytest.raises(SnapshotIncompleteError) as exc_info:
            publish(PublishSession(settings=settings), recording_store)

        assert exc_info.value.failed_keys == ["blog/7.html"]
        assert recording_store.ops("delete") == []
        assert recording_store.ops("put") == []
        assert (exc_info.value.snapshot_dir / MANIFEST_FILE).is_file()

    def test_missing_region_fails_before_network(self, make_settings, recording_store) -> None:
        settings = make_settings(region="")
        with pytest.raises(ConfigError, match="PUBLISHER_AWS_REGION"):
            publish(PublishSession(settings=settings), recording_store)
        assert recording_store.calls == []

    def test_missing_bucket_fails_before_network(self, make_settings, recording_store) -> None:
        settings = make_settings(prod_bucket=None)
        with pytest.raises(ConfigError, match="PUBLISHER_PROD_BUCKET is required for PUBLISHER_LOCAL_BUILD=1"):
            publish(PublishSession(settings=settings), recording_store)
        assert recording_store.calls == []

    def test_remote_build_requires_source_bucket(self, make_settings, recording_store) -> None:
        settings = make_settings(local_build=False)
        with pytest.raises(ConfigError, match="PUBLISHER_SOURCE_BUCKET"):
            publish(PublishSession(settings=settings), recording_store)
        assert recording_store.calls == []

    def test_empty_build_output_aborts(self, make_settings, recording_store) -> None:
        settings = make_settings()
        settings.artifact_path.mkdir(parents=True)
        with pytest.raises(NotFoundError, match="empty"):
            publish(PublishSession(settings=settings), recording_store)
        assert recording_store.ops("list") == []

    def test_post_with_local_build(
        self, make_settings, recording_store, bucket_keys, tmp_path: Path, write_tree
    ) -> None:
        """Sources go to the source bucket and the site project; the draft ships with the site."""
        settings = make_settings(source_bucket=_SOURCE_BUCKET)
        write_tree(settings.artifact_path, {"index.html": "x"})
        write_tree(tmp_path / "drafts", {"Trip.md": "# Trip\n", "hero.png": b"\x89PNG"})
        post = load_post_source(tmp_path / "drafts" / "Trip.md", {ImageSlot.HERO: tmp_path / "drafts" / "hero.png"})
        builder = MagicMock()
        builder.build.return_value = settings.artifact_path

        result = publish(PublishSession(settings=settings, post=post), recording_store, builder=builder)

        builder.build.assert_called_once()
        assert result.slug == "trip"
        assert bucket_keys(_SOURCE_BUCKET) == ["images/posts/trip/hero.png", "posts/trip.md"]
        assert (settings.blog_dir / "content" / "posts" / "trip.md").is_file()
        assert f"blog/{DRAFTS_DIR_NAME}/trip.md" in bucket_keys(prefix="blog/")

    def test_remote_build(self, make_settings, recording_store, tmp_path: Path) -> None:
        """Without local build the CodeBuild project is started after the source upload."""
        settings = make_settings(local_build=False, source_bucket=_SOURCE_BUCKET, codebuild_project="blog-build")
        markdown = tmp_path / "post.md"
        markdown.write_text("body", encoding="utf-8")
        codebuild = MagicMock()
        codebuild.start_build.return_value = {"build": {"id": "blog-build:1"}}

        result = publish(
            PublishSession(settings=settings, post=load_post_source(markdown)),
            recording_store,
            codebuild_client=codebuild,
        )

        assert result.codebuild_started
        assert result.success
        assert result.sync is None
        overrides = codebuild.start_build.call_args.kwargs["environmentVariablesOverride"]
        env = {item["name"]: item["value"] for item in overrides}
        assert env["BLOG_SLUG"] == "post"
        assert env["PROD_BUCKET"] == _BUCKET
        assert recording_store.ops("delete") == []

    def test_progress_events(self, make_settings, recording_store, write_tree) -> None:
        settings = make_settings()
        write_tree(settings.artifact_path, {"index.html": "x"})
        received: list[PublishProgress] = []
        emitter = ProgressEmitter([received.append])

        publish(PublishSession(settings=settings, progress=emitter), recording_store)
        emitter.close()

        phases = [event.phase for event in received]
        assert phases[0] is ProgressPhase.START
        assert phases[-1] is ProgressPhase.DONE
        assert ProgressPhase.LOCAL_BUILD_DONE in phases
        assert ProgressPhase.PROD_UPLOAD_DONE in phases
        assert ProgressPhase.CLOUDFRONT_DONE not in phases
        assert phases.index(ProgressPhase.LOCAL_BUILD_DONE) < phases.index(ProgressPhase.PROD_UPLOAD_DONE)


class TestSync:
    """Tests for sync."""

    def test_sync_stg(self, make_settings, recording_store, seed_bucket, bucket_keys, write_tree) -> None:
        settings = make_settings(stg_bucket=_BUCKET, stg_prefix="stg")
        write_tree(settings.artifact_path, {"index.html": "x", "a/b.css": "y"})
        seed_bucket({"stg/old.html": "o", "blog/live.html": "l"})

        result = sync(PublishSession(settings=settings, target=PublishTarget.STG), recording_store)

        assert bucket_keys(prefix="stg/") == ["stg/a/b.css", "stg/index.html"]
        assert bucket_keys(prefix="blog/") == ["blog/live.html"]
        assert result.uploaded == 2
        assert result.cdn_invalidated is False

    def test_remote_manifest_json_is_backed_up(
        self, make_settings, recording_store, seed_bucket, bucket_keys, write_tree
    ) -> None:
        """A web app manifest under the prefix keeps its own backup apart from the run files."""
        settings = make_settings()
        write_tree(settings.artifact_path, {"index.html": "x"})
        web_manifest = b'{"name": "Salon", "icons": []}'
        seed_bucket({"blog/manifest.json": web_manifest, "blog/journal.json": b"{}", "blog/old.html": "old"})

        result = sync(PublishSession(settings=settings), recording_store)

        assert bucket_keys(prefix="blog/") == ["blog/index.html"]
        assert result.snapshot_dir is not None
        mirror = objects_dir(result.snapshot_dir)
        assert (mirror / "manifest.json").read_bytes() == web_manifest
        assert (mirror / "journal.json").read_bytes() == b"{}"
        assert read_manifest(result.snapshot_dir).total_objects == 3
        assert read_journal(result.snapshot_dir).completed

    def test_object_written_during_delete_survives(
        self, make_settings, recording_store, s3_client, seed_bucket, bucket_keys, write_tree, monkeypatch
    ) -> None:
        """An object with no backup is never deleted; the run fails before upload."""
        settings = make_settings()
        write_tree(settings.artifact_path, {"index.html": "x"})
        seed_bucket({"blog/old.html": "old"})
        delete_batch = recording_store.delete_batch

        def _delete_then_late_write(bucket: str, keys: list[str]) -> None:
            delete_batch(bucket, keys)
            s3_client.put_object(Bucket=_BUCKET, Key="blog/concurrent.html", Body=b"late")

        monkeypatch.setattr(recording_store, "delete_batch", _delete_then_late_write)

        with pytest.raises(DeleteIncompleteError) as exc_info:
            sync(PublishSession(settings=settings), recording_store)

        assert exc_info.value.remaining == ["blog/concurrent.html"]
        assert recording_store.ops("delete") == [["blog/old.html"]]
        assert recording_store.ops("put") == []
        assert bucket_keys(prefix="blog/") == ["blog/concurrent.html"]

    def test_stg_without_bucket(self, make_settings, recording_store) -> None:
        with pytest.raises(ConfigError, match="PUBLISHER_STG_BUCKET"):
            sync(PublishSession(settings=make_settings(), target=PublishTarget.STG), recording_store)
        assert recording_store.calls == []

    def test_missing_out_dir(self, make_settings, recording_store) -> None:
        with pytest.raises(NotFoundError):
            sync(PublishSession(settings=make_settings()), recording_store)
        assert recording_store.calls == []


class TestResumeSync:
    """Tests for resume_sync."""

    def _interrupted_run(self, settings, store, seed_bucket) -> Path:
        seed_bucket({"blog/old.html": "old"})
        snapshot_dir = create_snapshot_dir(settings.snapshot_path)
        snapshot_prefix(store, _BUCKET, "blog", snapshot_dir)
        return snapshot_dir

    def test_resumes_upload_after_verified_delete(
        self, make_settings, recording_store, s3_client, seed_bucket, bucket_keys, write_tree
    ) -> None:
        settings = make_settings()
        write_tree(settings.artifact_path, {"a.html": "a", "b.html": "b"})
        snapshot_dir = self._interrupted_run(settings, recording_store, seed_bucket)
        seed_bucket({"blog/a.html": "a"})
        s3_client.delete_object(Bucket=_BUCKET, Key="blog/old.html")
        write_journal(snapshot_dir, RunJournal(delete_verified=True, uploaded={"blog/a.html": _md5(b"a")}))
        recording_store.calls.clear()

        result = resume_sync(PublishSession(settings=settings), recording_store, snapshot_dir)

        assert recording_store.ops("put") == ["blog/b.html"]
        assert recording_store.ops("delete") == []
        assert bucket_keys(prefix="blog/") == ["blog/a.html", "blog/b.html"]
        assert result.uploaded == 1
        assert read_journal(snapshot_dir).completed

    def test_resumes_from_before_delete(
        self, make_settings, recording_store, seed_bucket, bucket_keys, write_tree
    ) -> None:
        settings = make_settings()
        write_tree(settings.artifact_path, {"a.html": "a"})
        snapshot_dir = self._interrupted_run(settings, recording_store, seed_bucket)

        result = resume_sync(PublishSession(settings=settings), recording_store, snapshot_dir)

        assert result.deleted == 1
        assert bucket_keys(prefix="blog/") == ["blog/a.html"]

    def test_rebuilt_file_is_uploaded_again(
        self, make_settings, recording_store, s3_client, seed_bucket, write_tree
    ) -> None:
        """A key recorded as uploaded is sent again when the build changed it."""
        settings = make_settings()
        write_tree(settings.artifact_path, {"a.html": "rebuilt"})
        snapshot_dir = self._interrupted_run(settings, recording_store, seed_bucket)
        s3_client.delete_object(Bucket=_BUCKET, Key="blog/old.html")
        seed_bucket({"blog/a.html": "a"})
        write_journal(snapshot_dir, RunJournal(delete_verified=True, uploaded={"blog/a.html": _md5(b"a")}))

        result = resume_sync(PublishSession(settings=settings), recording_store, snapshot_dir)

        assert result.uploaded == 1
        assert s3_client.get_object(Bucket=_BUCKET, Key="blog/a.html")["Body"].read() == b"rebuilt"

    def test_resumes_over_remote_manifest_json(
        self, make_settings, recording_store, seed_bucket, bucket_keys, write_tree
    ) -> None:
        settings = make_settings()
        write_tree(settings.artifact_path, {"a.html": "a"})
        seed_bucket({"blog/manifest.json": b'{"name": "Salon"}'})
        snapshot_dir = self._interrupted_run(settings, recording_store, seed_bucket)

        result = resume_sync(PublishSession(settings=settings), recording_store, snapshot_dir)

        assert result.deleted == 2
        assert bucket_keys(prefix="blog/") == ["blog/a.html"]

    def test_refuses_objects_missing_from_snapshot(
        self, make_settings, recording_store, seed_bucket, write_tree
    ) -> None:
        settings = make_settings()
        write_tree(settings.artifact_path, {"a.html": "a"})
        snapshot_dir = self._interrupted_run(settings, recording_store, seed_bucket)
        seed_bucket({"blog/new-since-snapshot.html": "n"})

        with pytest.raises(SnapshotIncompleteError) as exc_info:
            resume_sync(PublishSession(settings=settings), recording_store, snapshot_dir)

        assert exc_info.value.failed_keys == ["blog/new-since-snapshot.html"]
        assert recording_store.ops("delete") == []

    def test_refuses_other_prefix(self, make_settings, recording_store, seed_bucket) -> None:
        settings = make_settings()
        snapshot_dir = self._interrupted_run(settings, recording_store, seed_bucket)
        with pytest.raises(ConfigError, match="was taken from"):
            resume_sync(PublishSession(settings=make_settings(prod_prefix="other")), recording_store, snapshot_dir)

    def test_completed_run_is_noop(self, make_settings, recording_store, seed_bucket) -> None:
        settings = make_settings()
        snapshot_dir = self._interrupted_run(settings, recording_store, seed_bucket)
        write_journal(snapshot_dir, RunJournal(delete_verified=True, completed=True))
        recording_store.calls.clear()

        result = resume_sync(PublishSession(settings=settings), recording_store, snapshot_dir)

        assert (result.deleted, result.uploaded) == (0, 0)
        assert recording_store.calls == []


class TestCheckState:
    """Tests for the dry-run state check."""

    def test_plan_and_no_mutation(self, make_settings, recording_store, seed_bucket, write_tree) -> None:
        settings = make_settings()
        write_tree(settings.artifact_path, {"a.html": "a", "c.html": "c"})
        seed_bucket({"blog/b.html": "b", "blog/c.html": "c"})

        summary = check_state(PublishSession(settings=settings), recording_store)

        assert [(item.key, item.status) for item in summary.items] == [
            ("blog/a.html", PlanStatus.ADD),
            ("blog/b.html", PlanStatus.REMOVE),
            ("blog/c.html", PlanStatus.SAME),
        ]
        assert summary.counts == {"add": 1, "update": 0, "remove": 1, "same": 1}
        assert recording_store.ops("put") == []
        assert recording_store.ops("delete") == []

    def test_idempotent(self, make_settings, recording_store, seed_bucket, write_tree) -> None:
        settings = make_settings()
        write_tree(settings.artifact_path, {"a.html": "a", "x/y.js": "y"})
        seed_bucket({"blog/a.html": "a", "blog/z.css": "z"})
        session = PublishSession(settings=settings)

        assert check_state(session, recording_store).items == check_state(session, recording_store).items

    def test_compare_content(self, make_settings, recording_store, seed_bucket, write_tree) -> None:
        settings = make_settings()
        write_tree(settings.artifact_path, {"a.html": "new!", "b.html": "same"})
        seed_bucket({"blog/a.html": "old!", "blog/b.html": "same"})

        summary = check_state(PublishSession(settings=settings), recording_store, compare_content=True)

        assert {item.key: item.status for item in summary.items} == {
            "blog/a.html": PlanStatus.UPDATE,
            "blog/b.html": PlanStatus.SAME,
        }

    def test_folders(self, make_settings, recording_store, seed_bucket, write_tree) -> None:
        settings = make_settings()
        write_tree(settings.artifact_path, {"20240101-a/index.html": "a"})
        seed_bucket({"blog/20230101-z/index.html": "z"})

        summary = check_state(PublishSession(settings=settings), recording_store, folders=True)

        assert summary.counts["add"] == 1
        assert summary.counts["remove"] == 1

    def test_missing_out_dir_before_listing(self, make_settings, recording_store) -> None:
        with pytest.raises(NotFoundError):
            check_state(PublishSession(settings=make_settings()), recording_store)
        assert recording_store.ops("list") == []


class TestDownloadPrefix:
    """Tests for download_prefix and download_selected."""

    def test_replaces_out_dir(self, make_settings, recording_store, seed_bucket, write_tree) -> None:
        settings = make_settings()
        write_tree(settings.artifact_path, {"local-only.html": "x"})
        seed_bucket({"blog/a.html": "a", "blog/d/b.css": "b", "blog/d/": ""})

        result = download_prefix(PublishSession(settings=settings), recording_store)

        out = settings.artifact_path
        assert sorted(p.relative_to(out).as_posix() for p in out.rglob("*") if p.is_file()) == ["a.html", "d/b.css"]
        assert result.failed_keys == []
        assert result.target_dir == out

    def test_reports_failures_without_aborting(self, make_settings, recording_store, seed_bucket) -> None:
        settings = make_settings()
        seed_bucket({"blog/a.html": "a", "blog/b.html": "b"})
        recording_store.fail_get.add("blog/a.html")

        result = download_prefix(PublishSession(settings=settings), recording_store)

        assert result.failed_keys == ["blog/a.html"]
        assert (settings.artifact_path / "b.html").read_text() == "b"

    def test_download_selected(self, make_settings, recording_store, seed_bucket, tmp_path: Path) -> None:
        seed_bucket({"blog/a.html": "a", "blog/b.html": "b"})
        result = download_selected(
            PublishSession(settings=make_settings()), recording_store, ["blog/b.html"], tmp_path / "pick"
        )
        assert result.downloaded == 1
        assert (tmp_path / "pick" / "b.html").read_text() == "b"


class TestLocalHelpers:
    """Tests for diff and article helpers."""

    def test_html_diff(self, make_settings, recording_store, seed_bucket, write_tree) -> None:
        settings = make_settings()
        write_tree(settings.artifact_path, {"a.html": "new\n"})
        seed_bucket({"blog/a.html": "old\n"})
        text = html_diff(PublishSession(settings=settings), recording_store, "blog/a.html")
        assert "-new" in text
        assert "+old" in text

    def test_articles(self, make_settings, write_tree) -> None:
        settings = make_settings()
        write_tree(settings.artifact_path, {"20240101-a/index.html": "<title>A</title>"})

        assert [article.slug for article in list_out_articles(settings)] == ["20240101-a"]
        result = delete_out_article(settings, "20240101-a")
        assert settings.artifact_path / "20240101-a" in result.removed_paths
        assert list_out_articles(settings) == []
