"""
Base service class for Quill blog backend services.
"""

import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.config import ServiceConfig, get_config
from shared.errors import BlogNotFoundError, BlogServiceException
from shared.logging import configure_logging, get_logger, request_context
from shared.metrics import get_metrics_collector


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)

        configure_logging(service_name, self.config.log_level, json_logs=self.config.log_format == "json")
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        self._setup_components()

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()

    def _setup_components(self):
        """Build service dependencies. Override in subclasses."""

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.startup()
            try:
                yield
            finally:
                await self.shutdown()

        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Quill blog backend - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
            lifespan=lifespan,
        )

    async def startup(self):
        """Acquire external resources. Override in subclasses."""

    async def shutdown(self):
        """Release external resources. Override in subclasses."""

    def _setup_middleware(self):
        """Set up middleware.

        Starlette runs the last added middleware first, so service middleware
        is added before timing and CORS to sit innermost.
        """
        self._setup_service_middleware()

        @self.app.middleware("http")
        async def add_request_timing(request: Request, call_next):
            with request_context(request.headers.get("x-request-id")) as request_id:
                start_time = time.time()

                try:
                    response = await call_next(request)
                finally:
                    duration = time.time() - start_time

                self.metrics.record_http_request(
                    method=request.method,
                    endpoint=request.url.path,
                    status_code=response.status_code,
                    duration=duration
                )

                self.logger.info(
                    "HTTP request",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=round(duration * 1000, 2)
                )

            response.headers["X-Request-ID"] = request_id
            return response

        # Production only admits the configured origins (all, if none are
        # configured); elsewhere the request origin is reflected.
        origins = self.config.allowed_origins if self.config.is_production else []
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_origin_regex=None if origins else ".*",
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_service_middleware(self):
        """Add service-specific middleware. Override in subclasses."""

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            dependencies = await self._check_dependencies()
            status = "ok" if all(state == "ok" for state in dependencies.values()) else "degraded"
            self.metrics.record_health_check(status)

            # A degraded dependency still leaves the service able to serve
            return {
                "service": self.service_name,
                "status": status,
                "uptime_seconds": self._get_uptime(),
                "dependencies": dependencies,
                "version": "1.0.0",
                "commit": os.getenv("GIT_COMMIT", "unknown"),
                **self._health_details()
            }

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            from prometheus_client import CONTENT_TYPE_LATEST
            return Response(
                content=self.metrics.render(),
                media_type=CONTENT_TYPE_LATEST
            )

        @self.app.exception_handler(BlogServiceException)
        async def service_exception_handler(request: Request, exc: BlogServiceException):
            """Handle BlogServiceException."""
            status_code = 404 if isinstance(exc, BlogNotFoundError) else 400
            self.logger.warning(
                "Service error",
                code=exc.code,
                message=exc.message,
                details=exc.details
            )
            return JSONResponse(
                status_code=status_code,
                content=exc.to_response().model_dump()
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "code": "INTERNAL_ERROR",
                    "message": "Internal server error",
                    "details": {}
                }
            )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def _health_details(self) -> Dict[str, Any]:
        """Extra fields for the health response. Override in subclasses."""
        return {}

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
