"""
Blog reads and writes through the cache.

Reads go through the cache-aside accessor. Writes hit the primary store
first and only invalidate once it has confirmed the change, so a failed
write never touches the cache.
"""

from typing import Any, Awaitable, Dict, Optional, TypeVar

from shared.errors import BlogNotFoundError, BlogServiceException, PrimaryStoreError
from shared.logging import get_logger

from ..caching.cache_aside import CacheAsideAccessor, CacheReadResult
from ..caching.invalidation import InvalidationCoordinator
from ..caching.keys import BLOGS_ALL_KEY, blog_key
from .repository import PUBLISHED_FIELD, Blog, BlogRepository, CommentRepository

T = TypeVar("T")


class BlogContentService:
    """Cache-aware access to blog records."""

    def __init__(
        self,
        blogs: BlogRepository,
        comments: CommentRepository,
        cache: CacheAsideAccessor,
        invalidation: InvalidationCoordinator,
        ttl_seconds: Optional[int] = None,
    ):
        self.blogs = blogs
        self.comments = comments
        self.cache = cache
        self.invalidation = invalidation
        self.ttl_seconds = ttl_seconds
        self.logger = get_logger("blog.content")

    async def list_published(self) -> CacheReadResult:
        """Published blogs, from the ``blogs:all`` snapshot when cached."""
        return await self.cache.read_through(BLOGS_ALL_KEY, self.blogs.find_published, self.ttl_seconds)

    async def get_blog(self, blog_id: str) -> CacheReadResult:
        """Single blog by id.

        Raises:
            BlogNotFoundError: if the primary store has no such blog
        """
        result = await self.cache.read_through(
            blog_key(blog_id),
            lambda: self.blogs.find_by_id(blog_id),
            self.ttl_seconds,
        )
        if result.value is None:
            raise BlogNotFoundError(blog_id)
        return result

    async def create_blog(self, blog: Blog) -> Blog:
        created = await self._primary("create", self.blogs.create(blog))
        await self.invalidation.after_create()
        self.logger.info("Blog created", blog_id=_id_of(created))
        return created

    async def update_blog(self, blog_id: str, changes: Dict[str, Any]) -> Blog:
        updated = await self._primary("update", self.blogs.update(blog_id, changes))
        if updated is None:
            raise BlogNotFoundError(blog_id)
        await self.invalidation.after_update(blog_id)
        return updated

    async def toggle_publish(self, blog_id: str) -> Blog:
        """Flip the published flag of a blog."""
        current = await self._primary("find", self.blogs.find_by_id(blog_id))
        if current is None:
            raise BlogNotFoundError(blog_id)

        updated = await self._primary(
            "toggle_publish",
            self.blogs.update(blog_id, {PUBLISHED_FIELD: not current.get(PUBLISHED_FIELD, False)}),
        )
        if updated is None:
            raise BlogNotFoundError(blog_id)

        await self.invalidation.after_update(blog_id)
        self.logger.info("Blog publish state toggled", blog_id=blog_id, published=updated.get(PUBLISHED_FIELD))
        return updated

    async def delete_blog(self, blog_id: str) -> None:
        """Delete a blog and its comments, then drop its cache entries.

        Once the blog itself is gone its cache entries are dropped even if
        the comment cascade fails; that failure is raised afterwards.
        """
        deleted = await self._primary("delete", self.blogs.delete(blog_id))
        if not deleted:
            raise BlogNotFoundError(blog_id)

        try:
            removed = await self._primary("delete_comments", self.comments.delete_for_blog(blog_id))
        finally:
            await self.invalidation.after_delete(blog_id)
        self.logger.info("Blog deleted", blog_id=blog_id, comments_removed=removed)

    async def _primary(self, operation: str, pending: Awaitable[T]) -> T:
        """Await a primary store write, normalising unexpected failures."""
        try:
            return await pending
        except BlogServiceException:
            raise
        except Exception as e:
            self.logger.error("Primary store operation failed", operation=operation, error=str(e))
            raise PrimaryStoreError(f"{operation} failed", {"error": str(e)}) from e


def _id_of(blog: Blog) -> Optional[str]:
    value = blog.get("_id", blog.get("id"))
    return str(value) if value is not None else None
