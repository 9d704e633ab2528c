"""
Blog service package for the Quill blog backend.

The core sits between API handlers and two external services: the primary
document store holding blogs and comments, and a shared Redis used as cache
and rate limit counter store. It keeps serving when Redis is slow, down or
flapping.

Structure:
- app.main: FastAPI app, lifecycle and middleware wiring.
- app.store: Resilient shared store connection and endpoint resolution.
- app.caching: Cache-aside reads, key namespace and invalidation.
- app.ratelimit: Fixed window gate, local fallback counter and middleware.
- app.blogs: Primary store interfaces and cache-aware blog operations.
"""
