"""Local artifact index over a build output directory."""

import hashlib
from pathlib import Path

from blog_publisher.lib.publisher.errors import NotFoundError
from blog_publisher.lib.publisher.storage import content_type_for, join_key
from blog_publisher.lib.publisher.types import ArtifactEntry


def collect_files(root: Path) -> list[str]:
    """Return POSIX paths of every file below ``root``, sorted.

    Raises:
        NotFoundError: If ``root`` is not an existing directory.
    """
    if not root.is_dir():
        raise NotFoundError(root)
    return sorted(path.relative_to(root).as_posix() for path in root.rglob("*") if path.is_file())


def file_md5(path: Path) -> str:
    """MD5 hex digest of a file, comparable with single-part S3 ETags."""
    h = hashlib.md5()  # noqa: S324
    with path.open("rb") as f:
        while chunk := f.read(1024 * 1024):
            h.update(chunk)
    return h.hexdigest()


def build_local_index(root: Path, prefix: str = "") -> dict[str, ArtifactEntry]:
    """Index a build output directory by remote key.

    Args:
        root: Build output directory.
        prefix: Normalized remote prefix prepended to every relative path.

    Returns:
        Mapping of object key to :class:`ArtifactEntry`. Directories are not listed.

    Raises:
        NotFoundError: If ``root`` does not exist (the build must run first).
    """
    index: dict[str, ArtifactEntry] = {}
    for relative_path in collect_files(root):
        index[join_key(prefix, relative_path)] = ArtifactEntry(
            relative_path=relative_path,
            size=(root / relative_path).stat().st_size,
            content_type=content_type_for(relative_path),
        )
    return index
