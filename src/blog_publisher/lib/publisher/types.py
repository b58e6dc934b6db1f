"""Publisher data types for snapshot, reconciliation, and sync.

Dataclasses representing local artifacts, remote objects, plan items,
snapshot manifests, progress events, and operation results.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path

MARKUP_SUFFIXES = (".html", ".htm")


class PlanStatus(StrEnum):
    """Classification of one key in a reconciliation plan."""

    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"
    SAME = "same"


class FailurePolicy(StrEnum):
    """How a transfer phase reacts to a single object's failure."""

    CONTINUE_ON_ERROR = "continue-on-error"
    ABORT_ON_ERROR = "abort-on-error"


class ProgressPhase(StrEnum):
    """Phases reported to progress listeners."""

    START = "start"
    SOURCE_PROGRESS = "source-progress"
    LOCAL_BUILD_START = "local-build-start"
    LOCAL_BUILD_DONE = "local-build-done"
    SNAPSHOT_PROGRESS = "snapshot-progress"
    DELETE_PROGRESS = "delete-progress"
    PROD_UPLOAD_PROGRESS = "prod-upload-progress"
    PROD_UPLOAD_DONE = "prod-upload-done"
    DOWNLOAD_PROGRESS = "download-progress"
    CLOUDFRONT_DONE = "cloudfront-done"
    CODEBUILD_DONE = "codebuild-done"
    DONE = "done"


def is_markup_key(key: str) -> bool:
    """Whether a key names an HTML document."""
    return key.lower().endswith(MARKUP_SUFFIXES)


@dataclass(frozen=True)
class ArtifactEntry:
    """A file in the local build output.

    Attributes:
        relative_path: POSIX path relative to the artifact root.
        size: File size in bytes.
        content_type: MIME type derived from the file extension.
    """

    relative_path: str
    size: int
    content_type: str

    @property
    def is_markup(self) -> bool:
        return is_markup_key(self.relative_path)


@dataclass(frozen=True)
class RemoteEntry:
    """An object listed under a remote prefix (ETag quotes stripped)."""

    key: str
    size: int
    etag: str = ""


@dataclass(frozen=True)
class ListPage:
    """One page of a remote listing."""

    entries: list[RemoteEntry]
    next_token: str | None = None


@dataclass(frozen=True)
class PlanItem:
    """One key of a reconciliation plan."""

    key: str
    status: PlanStatus
    local_size: int | None = None
    remote_size: int | None = None
    is_markup: bool = False


@dataclass(frozen=True)
class ReconciliationPlan:
    """Plan items ordered by key, with aggregated counts."""

    items: list[PlanItem]

    @property
    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in PlanStatus}
        for item in self.items:
            counts[item.status.value] += 1
        return counts


@dataclass(frozen=True)
class DiffSummary:
    """Result of a dry-run state check against a target prefix."""

    bucket: str
    prefix: str
    artifact_dir: Path
    items: list[PlanItem]
    counts: dict[str, int]


@dataclass
class SnapshotManifest:
    """Rollback source of truth for one run, stored as ``manifest.json``.

    Attributes:
        timestamp_id: Name of the snapshot directory (``YYYYMMDD_HHMMSS``).
        bucket: Snapshotted bucket.
        prefix: Snapshotted prefix (normalized, no leading/trailing slash).
        total_objects: Objects listed under the prefix.
        failed_keys: Keys whose body could not be copied, in listing order.
        created_at: When the snapshot finished.
    """

    timestamp_id: str
    bucket: str
    prefix: str
    total_objects: int
    failed_keys: list[str] = field(default_factory=list)
    created_at: datetime | None = None

    @property
    def is_complete(self) -> bool:
        return not self.failed_keys


@dataclass
class SnapshotResult:
    """Manifest, on-disk location, and listing of a finished snapshot."""

    manifest: SnapshotManifest
    snapshot_dir: Path
    objects: list[RemoteEntry]


@dataclass
class RunJournal:
    """Per-run phase record used to resume an interrupted sync.

    Attributes:
        delete_verified: The prefix was verified empty of snapshotted keys.
        uploaded: MD5 hex digest of each uploaded body, keyed by object key.
        completed: Every artifact was uploaded.
    """

    delete_verified: bool = False
    uploaded: dict[str, str] = field(default_factory=dict)
    completed: bool = False


@dataclass(frozen=True)
class PublishProgress:
    """A progress event streamed to listeners."""

    phase: ProgressPhase
    done: int | None = None
    total: int | None = None


@dataclass
class SyncResult:
    """Outcome of one executor run."""

    deleted: int = 0
    uploaded: int = 0
    snapshot_dir: Path | None = None
    cdn_invalidated: bool = False


@dataclass
class PublishResult:
    """Outcome of a publish operation."""

    slug: str | None
    uploaded_keys: list[str] = field(default_factory=list)
    codebuild_started: bool = False
    local_build_enabled: bool = False
    prod_upload_completed: bool = False
    cloudfront_invalidated: bool = False
    sync: SyncResult | None = None

    @property
    def success(self) -> bool:
        """A publish succeeds when every requested content step completed.

        CDN invalidation never affects success.
        """
        if self.local_build_enabled:
            return self.prod_upload_completed
        return True


@dataclass
class DownloadResult:
    """Outcome of a best-effort download of remote objects."""

    downloaded: int
    target_dir: Path
    failed_keys: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class OutArticle:
    """A built article folder in the artifact directory."""

    slug: str
    title: str
    path: str


@dataclass
class DeleteArticleResult:
    """Paths removed (and not found) while deleting an article."""

    slug: str
    removed_paths: list[Path] = field(default_factory=list)
    missing_paths: list[Path] = field(default_factory=list)
