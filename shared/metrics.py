"""
Shared metrics configuration for the Quill blog backend.
"""

from typing import Dict, Any, Optional

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry, generate_latest


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry unless one is passed in, so several
    services (or test instances) can coexist in one process.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._setup_store_metrics()

    def _setup_store_metrics(self):
        """Set up cache, invalidation and rate-limit metrics."""
        self._metrics["store_state"] = Gauge(
            "store_state",
            "Shared store connection state (1 for the current state)",
            ["state"],
            registry=self.registry
        )

        self._metrics["store_failures_total"] = Counter(
            "store_failures_total",
            "Failed shared store operations",
            ["operation"],
            registry=self.registry
        )

        self._metrics["cache_lookups_total"] = Counter(
            "cache_lookups_total",
            "Cache lookups by outcome",
            ["cache_type", "outcome"],
            registry=self.registry
        )

        self._metrics["cache_invalidations_total"] = Counter(
            "cache_invalidations_total",
            "Cache key invalidations by outcome",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["rate_limit_decisions_total"] = Counter(
            "rate_limit_decisions_total",
            "Rate limit decisions",
            ["decision", "backend"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def render(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def set_store_state(self, state: str, all_states):
        """Flag the current connection state, clearing the others."""
        for candidate in all_states:
            self._metrics["store_state"].labels(state=candidate).set(1 if candidate == state else 0)

    def record_store_failure(self, operation: str):
        self._metrics["store_failures_total"].labels(operation=operation).inc()

    def record_cache_lookup(self, cache_type: str, outcome: str):
        """Record a cache lookup outcome: ``hit``, ``miss`` or ``bypass``."""
        self._metrics["cache_lookups_total"].labels(cache_type=cache_type, outcome=outcome).inc()

    def record_invalidation(self, outcome: str):
        self._metrics["cache_invalidations_total"].labels(outcome=outcome).inc()

    def record_rate_limit_decision(self, allowed: bool, backend: str):
        """Record a rate limit decision."""
        self._metrics["rate_limit_decisions_total"].labels(
            decision="allowed" if allowed else "blocked",
            backend=backend
        ).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
