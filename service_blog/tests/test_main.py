"""
Tests for the blog service application.
"""

import pytest
from fastapi.testclient import TestClient

from service_blog.app.main import BlogService
from service_blog.app.store.connection import ConnectionState
from shared.config import get_config
from shared.test_helpers import (
    BlogDataFactory,
    FakeRedis,
    InMemoryBlogRepository,
    InMemoryCommentRepository,
    TestEnvironment,
)


def build_service(fake: FakeRedis, **overrides) -> BlogService:
    settings = TestEnvironment.get_mock_config(
        store_reconnect_base_delay_ms=1,
        store_reconnect_max_delay_ms=1,
        **overrides
    )
    return BlogService(
        config=get_config("blog", 8020, **settings),
        blog_repository=InMemoryBlogRepository(BlogDataFactory.create_test_blogs()),
        comment_repository=InMemoryCommentRepository(BlogDataFactory.create_test_comments()),
        client_factory=lambda url: fake,
    )


class TestBlogService:
    """Service wiring and HTTP surface."""

    @pytest.fixture
    def fake(self):
        return FakeRedis()

    def test_root_endpoint(self, fake):
        service = build_service(fake)

        with TestClient(service.app) as client:
            response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "API is working"
        assert data["service"] == "blog"
        assert response.headers["RateLimit-Limit"] == "3"

    def test_health_when_store_connected(self, fake):
        service = build_service(fake)

        with TestClient(service.app) as client:
            response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["dependencies"] == {"redis": "ok"}
        assert data["store"]["state"] == "connected"
        assert data["store"]["last_error"] is None

    def test_store_closed_on_shutdown(self, fake):
        service = build_service(fake)

        with TestClient(service.app):
            assert service.store.state is ConnectionState.CONNECTED

        assert service.store.state is ConnectionState.DISCONNECTED
        assert fake.closed is True

    def test_degraded_store_keeps_serving(self, fake):
        fake.ping_failures = 100
        service = build_service(fake)

        with TestClient(service.app) as client:
            response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "degraded"
        assert data["dependencies"] == {"redis": "degraded"}
        assert data["store"]["last_error"]["code"] == "RECONNECT_EXHAUSTED"
        assert fake.ping_calls == 3

    def test_rate_limit_enforced_with_shared_store(self, fake):
        service = build_service(fake)

        with TestClient(service.app) as client:
            statuses = [client.get("/").status_code for _ in range(4)]

        assert statuses == [200, 200, 200, 429]
        assert shared_counter(fake) == 4

    def test_rate_limit_enforced_while_degraded(self, fake):
        fake.ping_failures = 100
        service = build_service(fake)

        with TestClient(service.app) as client:
            responses = [client.get("/") for _ in range(4)]

        assert [r.status_code for r in responses] == [200, 200, 200, 429]
        assert responses[3].json() == {
            "success": False,
            "message": "Too many requests from this IP, please try again later.",
        }

    def test_rate_limit_bypass(self, fake):
        service = build_service(fake, rate_limit_bypass=True)

        with TestClient(service.app) as client:
            responses = [client.get("/") for _ in range(5)]

        assert all(r.status_code == 200 for r in responses)
        assert all("RateLimit-Limit" not in r.headers for r in responses)

    def test_blog_by_id_not_found_maps_to_404(self, fake):
        service = build_service(fake)

        with TestClient(service.app) as client:
            response = client.get("/api/blog/blog-9")

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "code": "BLOG_NOT_FOUND",
            "message": "Blog not found",
            "details": {"blog_id": "blog-9"},
        }
        assert fake._live("blog:blog-9") is None

    def test_all_blogs_served_from_cache(self, fake):
        service = build_service(fake)

        with TestClient(service.app) as client:
            first = client.get("/api/blog/all").json()
            second = client.get("/api/blog/all").json()

        assert first["success"] is True
        assert first["fromCache"] is False
        assert second["fromCache"] is True
        assert [b["_id"] for b in second["blogs"]] == ["blog-1", "blog-2"]

    def test_blog_by_id_served_from_cache(self, fake):
        service = build_service(fake)

        with TestClient(service.app) as client:
            first = client.get("/api/blog/blog-2").json()
            second = client.get("/api/blog/blog-2").json()

        assert first["fromCache"] is False
        assert second == {"success": True, "blog": first["blog"], "fromCache": True}
        assert second["blog"]["title"] == "Rate limits that degrade gracefully"

    def test_blog_routes_read_through_while_degraded(self, fake):
        fake.ping_failures = 100
        service = build_service(fake)

        with TestClient(service.app) as client:
            first = client.get("/api/blog/all").json()
            second = client.get("/api/blog/all").json()

        assert first["fromCache"] is False
        assert second["fromCache"] is False
        assert service.content.blogs.reads == 2

    def test_forwarded_for_ignored_without_trusted_proxy(self, fake):
        service = build_service(fake, trust_proxy=False)

        with TestClient(service.app) as client:
            statuses = [
                client.get("/", headers={"X-Forwarded-For": f"203.0.113.{n}"}).status_code
                for n in range(4)
            ]

        assert statuses == [200, 200, 200, 429]
        assert shared_counter(fake) == 4

    def test_request_id_echoed(self, fake):
        service = build_service(fake)

        with TestClient(service.app) as client:
            given = client.get("/health", headers={"X-Request-ID": "req-123"})
            generated = client.get("/health")

        assert given.headers["X-Request-ID"] == "req-123"
        assert generated.headers["X-Request-ID"]
        assert generated.headers["X-Request-ID"] != "req-123"

    def test_metrics_endpoint(self, fake):
        service = build_service(fake)

        with TestClient(service.app) as client:
            client.get("/")
            response = client.get("/metrics")

        assert response.status_code == 200
        assert "rate_limit_decisions_total" in response.text
        assert "store_state" in response.text

    def test_content_requires_repositories(self, fake):
        service = BlogService(
            config=get_config("blog", 8020, **TestEnvironment.get_mock_config()),
            client_factory=lambda url: fake,
        )

        assert service.content is None
        with TestClient(service.app) as client:
            assert client.get("/api/blog/all").status_code == 404


def shared_counter(fake: FakeRedis) -> int:
    """Hits recorded in the shared window of the test client."""
    entry = fake._live("rl:testclient")
    return int(entry[0]) if entry else 0
