"""
Per-identity fixed window rate limiting.

While the shared store is healthy the window counter lives in Redis
(``rl:<identity>``) and is incremented by a Lua script, so increment and
expiry are atomic and every instance shares the same budget. Otherwise a
process-local counter with the same window and limit takes over; during
that time each instance enforces its own budget.
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from shared.config import BaseConfig
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..store.connection import ResilientStoreConnection

DEFAULT_WINDOW_MS = 15 * 60 * 1000
DEFAULT_MAX_REQUESTS = 100
KEY_PREFIX = "rl:"
UNKNOWN_IDENTITY = "unknown"
DENIAL_MESSAGE = "Too many requests from this IP, please try again later."

STORE_ERROR_POLICIES = ("allow", "deny", "local")

# KEYS[1] = counter key, ARGV[1] = window in milliseconds
# Returns: [hits in window, milliseconds until the window closes]
INCREMENT_SCRIPT = """
local hits = redis.call('INCR', KEYS[1])
local ttl = redis.call('PTTL', KEYS[1])
if hits == 1 or ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {hits, ttl}
"""


def derive_identity(forwarded_for: Optional[str], remote_addr: Optional[str]) -> str:
    """Rate limit identity of a client.

    The first address of the forwarded-for chain wins, then the peer
    address. Unidentifiable clients all share the ``unknown`` budget.
    """
    if forwarded_for:
        first = forwarded_for.strip().split(",")[0].strip()
        if first:
            return first
    if remote_addr and remote_addr.strip():
        return remote_addr.strip()
    return UNKNOWN_IDENTITY


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of a rate limit check."""

    allowed: bool
    remaining: int
    reset_at: datetime
    limit: int
    current_count: int
    backend: str  # "shared", "local", "bypass" or "error"

    def to_body(self) -> Dict[str, Any]:
        """Response body sent to a denied client."""
        return {"success": False, "message": DENIAL_MESSAGE}


class LocalWindowCounter:
    """Process-local fallback counter.

    Shared by every request handler of the process, hence the lock.
    """

    def __init__(self, prune_threshold: int = 10000):
        self.prune_threshold = prune_threshold
        self._windows: Dict[str, Tuple[float, int]] = {}  # key -> (window start, count)
        self._next_prune = 0.0
        self._lock = threading.Lock()

    def increment(self, key: str, window_ms: int, now: float) -> Tuple[int, float]:
        """Count one request; returns the count and when the window closes."""
        window = window_ms / 1000
        with self._lock:
            # At most one sweep per window length once over the threshold
            if len(self._windows) >= self.prune_threshold and now >= self._next_prune:
                self._prune(now, window)
                self._next_prune = now + window

            start, count = self._windows.get(key, (now, 0))
            if now >= start + window:
                start, count = now, 0

            count += 1
            self._windows[key] = (start, count)
            return count, start + window

    def _prune(self, now: float, window: float) -> None:
        self._windows = {
            key: (start, count)
            for key, (start, count) in self._windows.items()
            if now < start + window
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


class RateLimitGate:
    """Admission control per client identity."""

    def __init__(
        self,
        connection: ResilientStoreConnection,
        *,
        window_ms: int = DEFAULT_WINDOW_MS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        bypass: bool = False,
        store_error_policy: str = "allow",
        local_counter: Optional[LocalWindowCounter] = None,
        clock: Callable[[], float] = time.time,
        metrics: Optional[MetricsCollector] = None,
    ):
        if store_error_policy not in STORE_ERROR_POLICIES:
            raise ValueError(f"Unknown store error policy: {store_error_policy}")

        self.connection = connection
        self.window_ms = window_ms
        self.max_requests = max_requests
        self.bypass = bypass
        self.store_error_policy = store_error_policy
        self.local_counter = local_counter or LocalWindowCounter()
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("blog.rate_limiter")

    @classmethod
    def from_config(
        cls,
        connection: ResilientStoreConnection,
        config: BaseConfig,
        metrics: Optional[MetricsCollector] = None,
    ) -> "RateLimitGate":
        return cls(
            connection,
            window_ms=config.rate_limit_window_ms,
            max_requests=config.rate_limit_max,
            bypass=config.rate_limit_bypass,
            store_error_policy=config.rate_limit_store_error_policy,
            metrics=metrics,
        )

    async def admit(self, identity_key: str) -> RateLimitDecision:
        """Count a request for ``identity_key`` and decide whether to admit it."""
        now = self.clock()

        if self.bypass:
            return self._record(RateLimitDecision(
                allowed=True,
                remaining=self.max_requests,
                reset_at=_utc(now + self.window_ms / 1000),
                limit=self.max_requests,
                current_count=0,
                backend="bypass",
            ))

        if not self.connection.is_healthy():
            return self._count_locally(identity_key, now)

        result = await self.connection.run_script(
            "ratelimit_increment",
            INCREMENT_SCRIPT,
            keys=[f"{KEY_PREFIX}{identity_key}"],
            args=[self.window_ms],
        )
        if not result.ok:
            return self._on_store_error(identity_key, now)

        hits, ttl_ms = result.value
        return self._decide(identity_key, int(hits), now + int(ttl_ms) / 1000, "shared")

    def _count_locally(self, identity_key: str, now: float) -> RateLimitDecision:
        count, reset_at = self.local_counter.increment(identity_key, self.window_ms, now)
        return self._decide(identity_key, count, reset_at, "local")

    def _on_store_error(self, identity_key: str, now: float) -> RateLimitDecision:
        """Counter store failed mid-increment; apply the configured policy."""
        self.logger.warning(
            "Rate limit counter unavailable",
            identity=identity_key,
            policy=self.store_error_policy,
        )
        if self.store_error_policy == "local":
            return self._count_locally(identity_key, now)

        allowed = self.store_error_policy == "allow"
        return self._record(RateLimitDecision(
            allowed=allowed,
            remaining=self.max_requests if allowed else 0,
            reset_at=_utc(now + self.window_ms / 1000),
            limit=self.max_requests,
            current_count=0,
            backend="error",
        ))

    def _decide(self, identity_key: str, count: int, reset_at: float, backend: str) -> RateLimitDecision:
        decision = RateLimitDecision(
            allowed=count <= self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_at=_utc(reset_at),
            limit=self.max_requests,
            current_count=count,
            backend=backend,
        )
        if not decision.allowed:
            self.logger.warning(
                "Rate limit exceeded",
                identity=identity_key,
                current_count=count,
                limit=self.max_requests,
                backend=backend,
            )
        return self._record(decision)

    def _record(self, decision: RateLimitDecision) -> RateLimitDecision:
        if self.metrics:
            self.metrics.record_rate_limit_decision(decision.allowed, decision.backend)
        return decision


def _utc(epoch_seconds: float) -> datetime:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
