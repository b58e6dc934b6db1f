"""Built article listing and removal in the site project."""

import re
import shutil
from pathlib import Path

from loguru import logger

from blog_publisher.lib.publisher.build import DRAFTS_DIR_NAME
from blog_publisher.lib.publisher.errors import NotFoundError
from blog_publisher.lib.publisher.local_index import collect_files
from blog_publisher.lib.publisher.storage import is_dated_folder_name
from blog_publisher.lib.publisher.types import DeleteArticleResult, OutArticle

_EXCLUDED_TOP_LEVEL = frozenset({"_next", "tags", "page", "salonbox", "search"})

_TITLE = re.compile(r"<title[^>]*>([^<]*)</title>", re.IGNORECASE)
_H1 = re.compile(r"<h1[^>]*>([^<]*)</h1>", re.IGNORECASE)


def extract_title(html: str) -> str:
    """Return the ``<title>`` text, else the first ``<h1>``, else ``""``."""
    for pattern in (_TITLE, _H1):
        match = pattern.search(html)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return ""


def list_articles(out_dir: Path) -> list[OutArticle]:
    """List article pages (``<YYYYMMDD...>/index.html``) in the build output.

    Raises:
        NotFoundError: If the output directory does not exist.
    """
    if not out_dir.is_dir():
        raise NotFoundError(out_dir)

    results: list[OutArticle] = []
    for relative in collect_files(out_dir):
        if not relative.endswith("/index.html"):
            continue
        top = relative.split("/")[0]
        if top in _EXCLUDED_TOP_LEVEL or not is_dated_folder_name(top):
            continue
        try:
            title = extract_title((out_dir / relative).read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError):
            title = ""
        results.append(OutArticle(slug=top, title=title or top, path=relative))

    results.sort(key=lambda article: article.slug)
    return results


def delete_article(blog_dir: Path, out_dir: Path, slug: str) -> DeleteArticleResult:
    """Remove every local trace of an article.

    Deletes the built folder, its draft, the markdown sources, and the
    published images folder, reporting which paths existed.

    Raises:
        ValueError: If ``slug`` is empty or contains a path separator.
    """
    if not slug or "/" in slug or "\\" in slug or slug in (".", ".."):
        msg = f"invalid article slug: {slug!r}"
        raise ValueError(msg)

    result = DeleteArticleResult(slug=slug)
    targets = [
        out_dir / slug,
        out_dir / DRAFTS_DIR_NAME / f"{slug}.md",
        blog_dir / "content" / "posts" / f"{slug}.md",
        blog_dir / "content" / "posts" / f"{slug}.mdx",
        blog_dir / "public" / "images" / "posts" / slug,
    ]
    for target in targets:
        if target.is_dir():
            shutil.rmtree(target)
            result.removed_paths.append(target)
        elif target.exists():
            target.unlink()
            result.removed_paths.append(target)
        else:
            result.missing_paths.append(target)

    logger.info(
        "Deleted article {}: {} removed, {} missing",
        slug,
        len(result.removed_paths),
        len(result.missing_paths),
    )
    return result
