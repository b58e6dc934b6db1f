"""Post source packaging: object keys, source-bucket upload, local staging.

A post is a markdown file plus up to four images. Rendering and
frontmatter handling belong to the site build; this module only moves
the files to where the build and the source bucket expect them.
"""

import re
import shutil
import unicodedata
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from blog_publisher.lib.publisher.build import DRAFTS_DIR_NAME
from blog_publisher.lib.publisher.errors import NotFoundError
from blog_publisher.lib.publisher.storage import ObjectStore, content_type_for, normalize_prefix


class ImageSlot(StrEnum):
    """Image positions of a post."""

    HERO = "hero"
    IMAGE1 = "image1"
    IMAGE2 = "image2"
    IMAGE3 = "image3"


_SLOT_FILE_BASE: dict[ImageSlot, str] = {
    ImageSlot.HERO: "hero",
    ImageSlot.IMAGE1: "figure-01",
    ImageSlot.IMAGE2: "figure-02",
    ImageSlot.IMAGE3: "figure-03",
}


@dataclass(frozen=True)
class PostSource:
    """A post prepared for publishing."""

    slug: str
    markdown: str
    source_path: Path
    images: dict[ImageSlot, Path] = field(default_factory=dict)


def slugify(value: str) -> str:
    """Lowercase, drop punctuation, and hyphenate whitespace (GitHub-style)."""
    value = unicodedata.normalize("NFKC", value).strip().lower()
    value = re.sub(r"[^\w\s-]", "", value)
    return re.sub(r"\s", "-", value)


def derive_slug(markdown_path: Path) -> str:
    """Slug from the markdown file name, ``untitled-post`` when nothing remains."""
    raw = re.sub(r"\.mdx?$", "", markdown_path.name, flags=re.IGNORECASE)
    return slugify(raw) or "untitled-post"


def load_post_source(markdown_path: Path, images: dict[ImageSlot, Path] | None = None) -> PostSource:
    """Read a markdown file and validate its image selection.

    Raises:
        NotFoundError: If the markdown or any selected image is missing.
    """
    if not markdown_path.is_file():
        raise NotFoundError(markdown_path, f"markdown file not found: {markdown_path}")
    selected = {slot: path for slot, path in (images or {}).items() if path is not None}
    for path in selected.values():
        if not path.is_file():
            raise NotFoundError(path, f"image not found: {path}")
    return PostSource(
        slug=derive_slug(markdown_path),
        markdown=markdown_path.read_text(encoding="utf-8"),
        source_path=markdown_path,
        images=selected,
    )


def post_key(posts_prefix: str, slug: str) -> str:
    return f"{normalize_prefix(posts_prefix)}/{slug}.md"


def image_key(images_prefix: str, slug: str, slot: ImageSlot, source_path: Path) -> str:
    """Key of a post image: ``<images>/posts/<slug>/<hero|figure-0N><ext>``."""
    ext = source_path.suffix.lower() or ".webp"
    return f"{normalize_prefix(images_prefix)}/posts/{slug}/{_SLOT_FILE_BASE[slot]}{ext}"


def image_keys(post: PostSource, images_prefix: str) -> dict[ImageSlot, str]:
    return {slot: image_key(images_prefix, post.slug, slot, path) for slot, path in post.images.items()}


def upload_post_source(
    store: ObjectStore,
    bucket: str,
    post: PostSource,
    *,
    posts_prefix: str,
    images_prefix: str,
    on_uploaded: Callable[[int, int], None] | None = None,
) -> list[str]:
    """Upload a post's markdown and images to the source bucket.

    Returns:
        Uploaded keys, markdown first.
    """
    total = 1 + len(post.images)
    key = post_key(posts_prefix, post.slug)
    store.put(bucket, key, post.markdown.encode("utf-8"), "text/markdown; charset=utf-8")
    uploaded = [key]
    if on_uploaded:
        on_uploaded(len(uploaded), total)

    for slot in ImageSlot:
        path = post.images.get(slot)
        if path is None:
            continue
        key = image_key(images_prefix, post.slug, slot, path)
        store.put(bucket, key, path.read_bytes(), content_type_for(path.name))
        uploaded.append(key)
        if on_uploaded:
            on_uploaded(len(uploaded), total)
    return uploaded


def write_local_sources(blog_dir: Path, post: PostSource, images_prefix: str) -> None:
    """Stage a post into the site project for a local build."""
    markdown_path = blog_dir / "content" / "posts" / f"{post.slug}.md"
    markdown_path.parent.mkdir(parents=True, exist_ok=True)
    markdown_path.write_text(post.markdown, encoding="utf-8")

    public_dir = blog_dir / "public"
    for slot, path in post.images.items():
        dest = public_dir / image_key(images_prefix, post.slug, slot, path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(path, dest)


def save_draft(out_dir: Path, post: PostSource) -> Path:
    """Keep the raw markdown in the drafts folder of the build output."""
    drafts_dir = out_dir / DRAFTS_DIR_NAME
    drafts_dir.mkdir(parents=True, exist_ok=True)
    dest = drafts_dir / f"{post.slug}.md"
    dest.write_text(post.markdown, encoding="utf-8")
    return dest
