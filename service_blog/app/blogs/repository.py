"""
Primary store interfaces.

The authoritative blog and comment records live outside this service's
core (a document database in production). Records are plain dicts shaped
exactly as the API returns them to clients.
"""

from typing import Any, Dict, List, Optional, Protocol

Blog = Dict[str, Any]

PUBLISHED_FIELD = "isPublished"


class BlogRepository(Protocol):
    """Blog records in the primary store."""

    async def find_published(self) -> List[Blog]:
        ...

    async def find_by_id(self, blog_id: str) -> Optional[Blog]:
        ...

    async def create(self, blog: Blog) -> Blog:
        ...

    async def update(self, blog_id: str, changes: Dict[str, Any]) -> Optional[Blog]:
        """Apply ``changes``; returns the updated record, None if missing."""
        ...

    async def delete(self, blog_id: str) -> bool:
        """Delete a blog; returns False if it did not exist."""
        ...


class CommentRepository(Protocol):
    """Comment records in the primary store."""

    async def delete_for_blog(self, blog_id: str) -> int:
        """Delete every comment of a blog; returns how many were removed."""
        ...
