"""Unit tests for snapshot manifest and run journal persistence."""

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from blog_publisher.lib.publisher.errors import NotFoundError
from blog_publisher.lib.publisher.manifest import (
    JOURNAL_FILE,
    MANIFEST_FILE,
    build_manifest,
    create_snapshot_dir,
    format_snapshot_id,
    read_journal,
    read_manifest,
    write_journal,
    write_manifest,
)
from blog_publisher.lib.publisher.types import RunJournal, SnapshotManifest


def _make_manifest(**overrides) -> SnapshotManifest:
    values = {
        "timestamp_id": "20260212_153000",
        "bucket": "site-bucket",
        "prefix": "blog",
        "total_objects": 3,
        "failed_keys": ["blog/b.html"],
        "created_at": datetime(2026, 2, 12, 15, 30, 0, tzinfo=UTC),
    }
    values.update(overrides)
    return SnapshotManifest(**values)


class TestSnapshotDirectory:
    """Tests for timestamped snapshot directories."""

    def test_format_snapshot_id(self) -> None:
        assert format_snapshot_id(datetime(2026, 2, 12, 9, 5, 7)) == "20260212_090507"

    def test_create_snapshot_dir(self, tmp_path: Path) -> None:
        """The directory is created under the root, creating the root too."""
        root = tmp_path / "S3log"
        path = create_snapshot_dir(root, datetime(2026, 2, 12, 9, 5, 7))
        assert path == root / "20260212_090507"
        assert path.is_dir()

    def test_same_second_never_overwrites(self, tmp_path: Path) -> None:
        """A second run within the same second gets a suffixed directory."""
        now = datetime(2026, 2, 12, 9, 5, 7)
        first = create_snapshot_dir(tmp_path, now)
        second = create_snapshot_dir(tmp_path, now)
        assert first != second
        assert second.name == "20260212_090507-1"


class TestManifest:
    """Tests for manifest.json."""

    def test_build_manifest_fields(self) -> None:
        """The manifest records totals and failed keys in camelCase."""
        data = build_manifest(_make_manifest())
        assert data["bucket"] == "site-bucket"
        assert data["prefix"] == "blog"
        assert data["totalObjects"] == 3
        assert data["failedKeys"] == ["blog/b.html"]
        assert data["timestampId"] == "20260212_153000"
        assert data["timestamp"] == "2026-02-12T15:30:00+00:00"

    def test_write_then_read(self, tmp_path: Path) -> None:
        write_manifest(tmp_path, _make_manifest())
        manifest = read_manifest(tmp_path)
        assert manifest.bucket == "site-bucket"
        assert manifest.failed_keys == ["blog/b.html"]
        assert manifest.created_at == datetime(2026, 2, 12, 15, 30, 0, tzinfo=UTC)
        assert not manifest.is_complete

    def test_read_missing_manifest(self, tmp_path: Path) -> None:
        with pytest.raises(NotFoundError):
            read_manifest(tmp_path)

    def test_read_rejects_incomplete_manifest(self, tmp_path: Path) -> None:
        """Required fields must be present."""
        (tmp_path / MANIFEST_FILE).write_text(json.dumps({"bucket": "b"}), encoding="utf-8")
        with pytest.raises(ValueError, match="prefix"):
            read_manifest(tmp_path)

    def test_read_rejects_non_object(self, tmp_path: Path) -> None:
        (tmp_path / MANIFEST_FILE).write_text("[]", encoding="utf-8")
        with pytest.raises(ValueError, match="JSON object"):
            read_manifest(tmp_path)


class TestJournal:
    """Tests for journal.json."""

    def test_missing_journal_is_empty(self, tmp_path: Path) -> None:
        journal = read_journal(tmp_path)
        assert journal == RunJournal()

    def test_round_trip(self, tmp_path: Path) -> None:
        """Written journals load back with the same phase state."""
        write_journal(tmp_path, RunJournal(delete_verified=True, uploaded={"blog/b": "bb", "blog/a": "aa"}))
        journal = read_journal(tmp_path)
        assert journal.delete_verified
        assert journal.uploaded == {"blog/a": "aa", "blog/b": "bb"}
        assert not journal.completed

        data = json.loads((tmp_path / JOURNAL_FILE).read_text(encoding="utf-8"))
        assert list(data["uploaded"]) == ["blog/a", "blog/b"]
        assert not list(tmp_path.glob("*.part"))
