"""
HTTP boundary of the rate limit gate.

Maps decisions to standard ``RateLimit-*`` headers (IETF draft-6 by default,
the combined draft-7 ``RateLimit`` header on request) and turns denials into
429 responses.
"""

import math
import time
from typing import Awaitable, Callable, Dict

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from shared.logging import get_logger, set_client_context

from .fixed_window import RateLimitDecision, RateLimitGate, derive_identity

HEADER_STYLES = ("draft-6", "draft-7")


class RateLimitMiddleware:
    """Rate limiting middleware for FastAPI."""

    def __init__(
        self,
        gate: RateLimitGate,
        header_style: str = "draft-6",
        trust_proxy: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        if header_style not in HEADER_STYLES:
            raise ValueError(f"Unknown rate limit header style: {header_style}")
        self.gate = gate
        self.header_style = header_style
        self.trust_proxy = trust_proxy
        self.clock = clock
        self.logger = get_logger("blog.rate_limit_middleware")

    async def __call__(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        decision = await self.check_request(request)
        headers = self.build_headers(decision)

        if not decision.allowed:
            return JSONResponse(status_code=429, content=decision.to_body(), headers=headers)

        response = await call_next(request)
        response.headers.update(headers)
        return response

    async def check_request(self, request: Request) -> RateLimitDecision:
        """Check rate limit for request."""
        client_id = self._get_client_id(request)
        set_client_context(client_id)
        return await self.gate.admit(client_id)

    def _get_client_id(self, request: Request) -> str:
        """Extract client ID from request.

        X-Forwarded-For is client controlled unless a proxy rewrites it, so
        it is only read when the proxy is trusted.
        """
        forwarded_for = request.headers.get("x-forwarded-for") if self.trust_proxy else None
        return derive_identity(
            forwarded_for,
            request.client.host if request.client else None,
        )

    def build_headers(self, decision: RateLimitDecision) -> Dict[str, str]:
        if decision.backend == "bypass":
            return {}

        reset_seconds = max(0, math.ceil(decision.reset_at.timestamp() - self.clock()))
        window_seconds = self.gate.window_ms // 1000
        headers = {"RateLimit-Policy": f"{decision.limit};w={window_seconds}"}

        if self.header_style == "draft-7":
            headers["RateLimit"] = (
                f"limit={decision.limit}, remaining={decision.remaining}, reset={reset_seconds}"
            )
        else:
            headers["RateLimit-Limit"] = str(decision.limit)
            headers["RateLimit-Remaining"] = str(decision.remaining)
            headers["RateLimit-Reset"] = str(reset_seconds)

        if not decision.allowed:
            headers["Retry-After"] = str(reset_seconds)

        return headers
