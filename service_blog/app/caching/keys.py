"""
Cache key namespace.

These key shapes are shared with every other deployment reading the same
store, so they must not change.
"""

from typing import Tuple

BLOGS_ALL_KEY = "blogs:all"
BLOG_KEY_PREFIX = "blog:"

DEFAULT_TTL_SECONDS = 3600


def blog_key(blog_id: str) -> str:
    """Key of a single blog record."""
    return f"{BLOG_KEY_PREFIX}{blog_id}"


def keys_after_create() -> Tuple[str, ...]:
    # A new blog is not cached yet; only the published snapshot is stale.
    return (BLOGS_ALL_KEY,)


def keys_after_update(blog_id: str) -> Tuple[str, ...]:
    return (blog_key(blog_id), BLOGS_ALL_KEY)


def keys_after_delete(blog_id: str) -> Tuple[str, ...]:
    return (blog_key(blog_id), BLOGS_ALL_KEY)
