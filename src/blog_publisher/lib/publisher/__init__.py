"""Publisher library: public API for static site publishing.

Provides the object store and CDN capabilities, the local artifact index,
the snapshot engine, the reconciliation planner, and the sync executor
used to replace a bucket prefix with a freshly built site.
"""

from blog_publisher.lib.publisher.cdn import CdnInvalidator, CloudFrontInvalidator, invalidate_prefix
from blog_publisher.lib.publisher.errors import (
    BuildError,
    ConfigError,
    DeleteIncompleteError,
    InvalidationError,
    NotFoundError,
    PublisherError,
    SnapshotIncompleteError,
    TransientStoreError,
)
from blog_publisher.lib.publisher.executor import SyncExecutor, SyncState
from blog_publisher.lib.publisher.local_index import build_local_index
from blog_publisher.lib.publisher.manifest import read_journal, read_manifest
from blog_publisher.lib.publisher.planner import plan, plan_folders
from blog_publisher.lib.publisher.progress import ProgressEmitter, percent_for
from blog_publisher.lib.publisher.snapshot import download_keys, snapshot_prefix
from blog_publisher.lib.publisher.storage import ObjectStore, S3ObjectStore, create_s3_client, list_remote
from blog_publisher.lib.publisher.types import (
    ArtifactEntry,
    DiffSummary,
    DownloadResult,
    FailurePolicy,
    PlanItem,
    PlanStatus,
    ProgressPhase,
    PublishProgress,
    PublishResult,
    RemoteEntry,
    SnapshotManifest,
    SyncResult,
)

__all__ = [
    "ArtifactEntry",
    "BuildError",
    "CdnInvalidator",
    "CloudFrontInvalidator",
    "ConfigError",
    "DeleteIncompleteError",
    "DiffSummary",
    "DownloadResult",
    "FailurePolicy",
    "InvalidationError",
    "NotFoundError",
    "ObjectStore",
    "PlanItem",
    "PlanStatus",
    "ProgressEmitter",
    "ProgressPhase",
    "PublishProgress",
    "PublishResult",
    "PublisherError",
    "RemoteEntry",
    "S3ObjectStore",
    "SnapshotIncompleteError",
    "SnapshotManifest",
    "SyncExecutor",
    "SyncResult",
    "SyncState",
    "TransientStoreError",
    "build_local_index",
    "create_s3_client",
    "download_keys",
    "invalidate_prefix",
    "list_remote",
    "percent_for",
    "plan",
    "plan_folders",
    "read_journal",
    "read_manifest",
    "snapshot_prefix",
]
