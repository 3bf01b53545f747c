"""
Filename helpers for renamed videos.

Final names look like `{importance}_{slug}-{suffix}{ext}`, e.g.
`2_kids-birthday-party-x7q2.mov`. The random suffix keeps clips with the
same slug from colliding.
"""

import random
import re
import string
from pathlib import Path

SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
FALLBACK_SLUG = "video"


def sanitize_slug(text: str) -> str:
    """
    Reduce free text to a lowercase, hyphen-separated slug.

    Applying it twice gives the same result as applying it once.
    """
    slug = (text or "").strip().lower()
    slug = re.sub(r'[^a-z0-9-]', '-', slug)
    slug = re.sub(r'-+', '-', slug)
    return slug.strip('-')


def random_suffix(length: int = 4) -> str:
    return ''.join(random.choices(SUFFIX_ALPHABET, k=length))


def compose_filename(importance: int, slug: str, extension: str, suffix: str) -> str:
    slug = sanitize_slug(slug) or FALLBACK_SLUG
    return f"{importance}_{slug}-{suffix}{extension}"


def unique_target(directory: Path, importance: int, slug: str, extension: str, max_tries: int = 20) -> Path:
    """
    Pick a target path in `directory` that does not exist yet.

    Args:
        directory: Folder the video lives in
        importance: Rating 1-9
        slug: Short description (sanitized here)
        extension: Original extension including the dot

    Returns:
        Path for the renamed video
    """
    for _ in range(max_tries):
        candidate = directory / compose_filename(importance, slug, extension, random_suffix())
        if not candidate.exists():
            return candidate
    raise FileExistsError(f"Could not find a free name for '{slug}' in {directory}")
