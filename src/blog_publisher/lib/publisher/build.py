"""Local static site build collaborator.

The engine treats the build as opaque: it runs the site's npm/node build
steps and afterwards only checks that the output directory exists and is
not empty.
"""

import os
import shutil
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Protocol

from loguru import logger

from blog_publisher.lib.publisher.errors import BuildError, NotFoundError

# Folder of raw article markdown kept inside the build output across rebuilds
DRAFTS_DIR_NAME = "記事原稿"


class SiteBuilder(Protocol):
    """Build collaborator: produce the artifact directory for a site."""

    def build(self) -> Path:
        """Run the build and return the output directory."""
        ...


def ensure_artifact_dir(path: Path) -> Path:
    """Check a build output directory exists and contains at least one file.

    Raises:
        NotFoundError: If the directory is missing or empty.
    """
    if not path.is_dir():
        raise NotFoundError(path)
    if not any(child.is_file() for child in path.rglob("*")):
        raise NotFoundError(path, f"out directory is empty: {path}")
    return path


def _npm_command() -> str:
    return "npm.cmd" if sys.platform == "win32" else "npm"


def _node_command() -> str:
    return os.environ.get("NODE_BINARY", "").strip() or "node"


def run_command(command: list[str], cwd: Path) -> None:
    """Run one build step, streaming its output.

    Raises:
        BuildError: If the command cannot start or exits non-zero.
    """
    logger.info("build: {} (cwd={})", " ".join(command), cwd)
    try:
        completed = subprocess.run(command, cwd=cwd, check=False)  # noqa: S603
    except OSError as exc:
        raise BuildError(command, str(exc)) from exc
    if completed.returncode != 0:
        reason = f"signal {-completed.returncode}" if completed.returncode < 0 else f"code {completed.returncode}"
        raise BuildError(command, reason)


def backup_drafts(out_dir: Path) -> Path | None:
    """Copy the drafts folder out of ``out_dir`` into a temp directory."""
    source = out_dir / DRAFTS_DIR_NAME
    if not source.is_dir():
        return None
    backup_dir = Path(tempfile.mkdtemp(prefix="blog-next-drafts-")) / DRAFTS_DIR_NAME
    shutil.copytree(source, backup_dir)
    return backup_dir


def restore_drafts(out_dir: Path, backup_dir: Path | None) -> None:
    """Copy a drafts backup into ``out_dir`` and remove the temp copy."""
    if backup_dir is None:
        return
    shutil.copytree(backup_dir, out_dir / DRAFTS_DIR_NAME, dirs_exist_ok=True)
    shutil.rmtree(backup_dir.parent, ignore_errors=True)


def clear_directory(path: Path) -> None:
    """Remove every entry inside ``path``, creating it when missing."""
    if not path.exists():
        path.mkdir(parents=True)
        return
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


class NpmSiteBuilder:
    """Build a Next.js static export with its pre/post build scripts.

    Args:
        blog_dir: Site project directory.
        out_dir: Export directory (default ``<blog_dir>/out``).
    """

    def __init__(self, blog_dir: Path, out_dir: Path | None = None) -> None:
        self.blog_dir = blog_dir
        self.out_dir = out_dir or blog_dir / "out"

    def steps(self) -> list[list[str]]:
        node = _node_command()
        scripts = self.blog_dir / "scripts"
        next_bin = self.blog_dir / "node_modules" / "next" / "dist" / "bin" / "next"
        return [
            [node, str(scripts / "prepare-image-folders.js")],
            [node, str(next_bin), "build"],
            [node, str(scripts / "generate-sitemap.js")],
            [node, str(scripts / "normalize-tag-paths.js")],
        ]

    def build(self) -> Path:
        """Install dependencies when needed, clear the output, and build.

        The drafts folder inside the output directory survives the rebuild,
        including a failed one.

        Raises:
            BuildError: If any build step fails.
        """
        if not (self.blog_dir / "node_modules").exists():
            run_command([_npm_command(), "ci"], self.blog_dir)

        drafts = backup_drafts(self.out_dir)
        clear_directory(self.out_dir)
        try:
            for step in self.steps():
                run_command(step, self.blog_dir)
        finally:
            if self.out_dir.exists():
                restore_drafts(self.out_dir, drafts)
        logger.info("build: done -> {}", self.out_dir)
        return self.out_dir
