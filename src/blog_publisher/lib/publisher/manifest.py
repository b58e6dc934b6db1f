"""Snapshot manifest and run journal persistence.

Each run owns one timestamped directory under the snapshot root holding a
mirror of the remote prefix under ``objects/`` next to ``manifest.json`` and
``journal.json``, so remote keys never collide with the run files.
Directories are never deleted automatically so an operator can restore by hand.
"""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from blog_publisher.lib.publisher.errors import NotFoundError
from blog_publisher.lib.publisher.types import RunJournal, SnapshotManifest

MANIFEST_FILE = "manifest.json"
JOURNAL_FILE = "journal.json"
OBJECTS_DIR = "objects"


def format_snapshot_id(now: datetime | None = None) -> str:
    """Format a local timestamp as ``YYYYMMDD_HHMMSS``."""
    now = now or datetime.now()
    return now.strftime("%Y%m%d_%H%M%S")


def create_snapshot_dir(root: Path, now: datetime | None = None) -> Path:
    """Create a fresh dated directory under ``root``.

    Runs started within the same second get a numeric suffix so an
    earlier snapshot is never overwritten.
    """
    root.mkdir(parents=True, exist_ok=True)
    base = format_snapshot_id(now)
    candidate = root / base
    suffix = 1
    while candidate.exists():
        candidate = root / f"{base}-{suffix}"
        suffix += 1
    candidate.mkdir()
    return candidate


def objects_dir(snapshot_dir: Path) -> Path:
    """Directory holding the byte-for-byte copy of the snapshotted objects."""
    return snapshot_dir / OBJECTS_DIR


def build_manifest(manifest: SnapshotManifest) -> dict[str, Any]:
    """Construct the ``manifest.json`` dict for a snapshot."""
    created_at = manifest.created_at or datetime.now(tz=UTC)
    return {
        "timestamp": created_at.isoformat(),
        "timestampId": manifest.timestamp_id,
        "bucket": manifest.bucket,
        "prefix": manifest.prefix,
        "totalObjects": manifest.total_objects,
        "failedKeys": list(manifest.failed_keys),
    }


def write_manifest(snapshot_dir: Path, manifest: SnapshotManifest) -> Path:
    """Write ``manifest.json`` into the snapshot directory."""
    path = snapshot_dir / MANIFEST_FILE
    path.write_text(json.dumps(build_manifest(manifest), indent=2), encoding="utf-8")
    return path


def read_manifest(snapshot_dir: Path) -> SnapshotManifest:
    """Load ``manifest.json`` from a snapshot directory.

    Raises:
        NotFoundError: If the directory has no manifest.
        ValueError: If the manifest is not a JSON object with the required fields.
    """
    path = snapshot_dir / MANIFEST_FILE
    if not path.is_file():
        raise NotFoundError(path, f"snapshot manifest not found: {path}")

    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        msg = "Snapshot manifest must be a JSON object"
        raise ValueError(msg)
    for required_key in ("bucket", "prefix", "totalObjects", "failedKeys"):
        if required_key not in data:
            msg = f"Snapshot manifest missing required field: {required_key!r}"
            raise ValueError(msg)

    try:
        created_at = datetime.fromisoformat(data.get("timestamp", ""))
    except (ValueError, TypeError):
        created_at = None

    return SnapshotManifest(
        timestamp_id=data.get("timestampId", snapshot_dir.name),
        bucket=data["bucket"],
        prefix=data["prefix"],
        total_objects=int(data["totalObjects"]),
        failed_keys=list(data["failedKeys"]),
        created_at=created_at,
    )


def write_journal(snapshot_dir: Path, journal: RunJournal) -> None:
    """Persist the run journal (written via a temp file and rename)."""
    data = {
        "deleteVerified": journal.delete_verified,
        "uploaded": dict(sorted(journal.uploaded.items())),
        "completed": journal.completed,
    }
    path = snapshot_dir / JOURNAL_FILE
    part_path = path.with_suffix(".json.part")
    part_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    part_path.replace(path)


def read_journal(snapshot_dir: Path) -> RunJournal:
    """Load the run journal, or an empty one when none was written."""
    path = snapshot_dir / JOURNAL_FILE
    if not path.is_file():
        return RunJournal()
    data = json.loads(path.read_text(encoding="utf-8"))
    return RunJournal(
        delete_verified=bool(data.get("deleteVerified", False)),
        uploaded=dict(data.get("uploaded", {})),
        completed=bool(data.get("completed", False)),
    )
