"""Reconciliation planner: diff local artifacts against remote objects.

Classification is a function of key presence only. Content comparison is
opt-in and only ever turns ``same`` into ``update``.
"""

from collections.abc import Iterable, Mapping
from pathlib import Path

from blog_publisher.lib.publisher.errors import NotFoundError
from blog_publisher.lib.publisher.local_index import file_md5
from blog_publisher.lib.publisher.storage import is_dated_folder_key, is_dated_folder_name, top_level_folder
from blog_publisher.lib.publisher.types import (
    ArtifactEntry,
    PlanItem,
    PlanStatus,
    ReconciliationPlan,
    RemoteEntry,
    is_markup_key,
)


def _content_differs(local_path: Path, remote: RemoteEntry, local_size: int) -> bool:
    if local_size != remote.size:
        return True
    # Multipart ETags are not content hashes
    if not remote.etag or "-" in remote.etag:
        return True
    return file_md5(local_path) != remote.etag.lower()


def plan(
    local: Mapping[str, ArtifactEntry],
    remote: Iterable[RemoteEntry],
    *,
    compare_content: bool = False,
    artifact_root: Path | None = None,
) -> ReconciliationPlan:
    """Build a reconciliation plan over the union of local and remote keys.

    Args:
        local: Local artifacts keyed by remote key.
        remote: Remote entries under the target prefix.
        compare_content: Mark both-present keys ``update`` when their content differs.
        artifact_root: Build output directory, required with ``compare_content``.

    Returns:
        Plan items sorted by key, one per key.
    """
    if compare_content and artifact_root is None:
        msg = "artifact_root is required when compare_content is set"
        raise ValueError(msg)

    remote_by_key = {entry.key: entry for entry in remote}
    items: list[PlanItem] = []
    for key in sorted(set(local) | set(remote_by_key)):
        artifact = local.get(key)
        remote_entry = remote_by_key.get(key)
        if remote_entry is None:
            status = PlanStatus.ADD
        elif artifact is None:
            status = PlanStatus.REMOVE
        else:
            status = PlanStatus.SAME
            if (
                compare_content
                and artifact_root is not None
                and _content_differs(artifact_root / artifact.relative_path, remote_entry, artifact.size)
            ):
                status = PlanStatus.UPDATE
        items.append(
            PlanItem(
                key=key,
                status=status,
                local_size=artifact.size if artifact else None,
                remote_size=remote_entry.size if remote_entry else None,
                is_markup=is_markup_key(key),
            )
        )
    return ReconciliationPlan(items=items)


def plan_folders(local_dir: Path, remote: Iterable[RemoteEntry], prefix: str) -> ReconciliationPlan:
    """Plan at the granularity of dated top-level article folders.

    Only folders whose name starts with eight digits (``YYYYMMDD...``) are
    compared, locally as directories and remotely as key segments.

    Raises:
        NotFoundError: If ``local_dir`` does not exist.
    """
    if not local_dir.is_dir():
        raise NotFoundError(local_dir)

    local_folders = {
        entry.name for entry in local_dir.iterdir() if entry.is_dir() and is_dated_folder_name(entry.name)
    }
    remote_folders = {top_level_folder(entry.key, prefix) for entry in remote if is_dated_folder_key(entry.key, prefix)}

    items: list[PlanItem] = []
    for name in sorted(local_folders | remote_folders):
        if name in local_folders and name not in remote_folders:
            status = PlanStatus.ADD
        elif name not in local_folders:
            status = PlanStatus.REMOVE
        else:
            status = PlanStatus.SAME
        items.append(PlanItem(key=name, status=status, is_markup=False))
    return ReconciliationPlan(items=items)
