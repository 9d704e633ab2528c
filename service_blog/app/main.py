"""
Blog service for the Quill blog backend.

Wires the resilient shared store connection, the cache-aside accessor, the
invalidation coordinator and the rate limit gate into a FastAPI app. Every
request passes the rate limit gate first.
"""

from typing import Any, Dict, Optional

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config

from .blogs.repository import BlogRepository, CommentRepository
from .blogs.service import BlogContentService
from .caching.cache_aside import CacheAsideAccessor
from .caching.invalidation import InvalidationCoordinator
from .ratelimit.fixed_window import RateLimitGate
from .ratelimit.middleware import RateLimitMiddleware
from .store.connection import ClientFactory, ConnectionState, ResilientStoreConnection

SERVICE_NAME = "blog"
SERVICE_PORT = 8020


class BlogService(BaseService):
    """Blog service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        blog_repository: Optional[BlogRepository] = None,
        comment_repository: Optional[CommentRepository] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self._blog_repository = blog_repository
        self._comment_repository = comment_repository
        self._client_factory = client_factory
        self.last_store_error: Optional[Dict[str, Any]] = None

        super().__init__(
            SERVICE_NAME,
            SERVICE_PORT,
            config or get_config(SERVICE_NAME, SERVICE_PORT),
        )
        self._setup_blog_routes()

    def _setup_components(self):
        self.store = ResilientStoreConnection.from_config(
            self.config,
            client_factory=self._client_factory,
            metrics=self.metrics,
        )
        self.store.on_error(self._remember_store_error)

        self.cache = CacheAsideAccessor(self.store, self.config.cache_ttl_seconds, metrics=self.metrics)
        self.invalidation = InvalidationCoordinator(self.store, metrics=self.metrics)
        self.rate_limit_gate = RateLimitGate.from_config(self.store, self.config, metrics=self.metrics)
        self.rate_limit_middleware = RateLimitMiddleware(
            self.rate_limit_gate,
            header_style=self.config.rate_limit_header_style,
            trust_proxy=self.config.trust_proxy,
        )

        self.content: Optional[BlogContentService] = None
        if self._blog_repository is not None and self._comment_repository is not None:
            self.content = BlogContentService(
                self._blog_repository,
                self._comment_repository,
                self.cache,
                self.invalidation,
            )

    def _setup_service_middleware(self):
        self.app.middleware("http")(self.rate_limit_middleware)

    def _setup_blog_routes(self):
        """Set up blog-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "API is working",
                "version": "1.0.0",
                "capabilities": ["caching", "invalidation", "rate_limiting"]
            }

        if self.content is not None:
            self._setup_content_routes(self.content)

    def _setup_content_routes(self, content: BlogContentService):
        """Cached read routes, available when the primary store is wired in."""

        @self.app.get("/api/blog/all")
        async def all_blogs():
            result = await content.list_published()
            return {"success": True, "blogs": result.value, "fromCache": result.from_cache}

        @self.app.get("/api/blog/{blog_id}")
        async def blog_by_id(blog_id: str):
            result = await content.get_blog(blog_id)
            return {"success": True, "blog": result.value, "fromCache": result.from_cache}

    def _remember_store_error(self, error: Exception) -> None:
        self.last_store_error = {
            "code": getattr(error, "code", type(error).__name__),
            "message": str(error),
        }

    async def startup(self):
        state = await self.store.connect()
        self.logger.info("Blog service started", store_state=state.value)

    async def shutdown(self):
        await self.store.close()
        self.logger.info("Blog service stopped")

    async def _check_dependencies(self) -> Dict[str, str]:
        state = self.store.state
        return {"redis": "ok" if state is ConnectionState.CONNECTED else state.value}

    def _health_details(self) -> Dict[str, Any]:
        return {"store": {**self.store.describe(), "last_error": self.last_store_error}}


def create_app(
    blog_repository: Optional[BlogRepository] = None,
    comment_repository: Optional[CommentRepository] = None,
):
    """Create FastAPI application.

    Blog routes are only mounted when primary store repositories are given.
    """
    service = BlogService(blog_repository=blog_repository, comment_repository=comment_repository)
    return service.app


if __name__ == "__main__":
    service = BlogService()
    service.run()
