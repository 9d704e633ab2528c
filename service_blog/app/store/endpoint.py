"""
Shared store endpoint resolution.

Candidates are produced by an ordered list of named strategies:

1. ``explicit_url``: ``BLOG_REDIS_URL`` as given
2. ``host_port``: ``BLOG_REDIS_HOST`` + ``BLOG_REDIS_PORT``
3. ``container_default``: ``redis://<container host>:6379`` inside a container
4. ``loopback_default``: ``redis://localhost:6379``

The first candidate that passes validation wins. Invalid candidates are
logged and skipped, so a bad value never crashes startup.
"""

import os
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from shared.config import BaseConfig
from shared.errors import ConfigurationError
from shared.logging import get_logger

logger = get_logger("blog.store.endpoint")

SUPPORTED_SCHEMES = ("redis", "rediss", "unix")
DEFAULT_PORT = 6379
LOOPBACK_URL = f"redis://localhost:{DEFAULT_PORT}"
CONTAINER_MARKERS = ("/.dockerenv", "/run/.containerenv")


@dataclass(frozen=True)
class ResolvedEndpoint:
    """Endpoint chosen for the shared store and the strategy that produced it."""

    strategy: str
    url: str


EndpointStrategy = Tuple[str, Callable[[BaseConfig], Optional[str]]]


def explicit_url(config: BaseConfig) -> Optional[str]:
    return config.redis_url or None


def host_and_port(config: BaseConfig) -> Optional[str]:
    if not config.redis_host:
        return None
    port = (config.redis_port or "").strip() or str(DEFAULT_PORT)
    return f"redis://{config.redis_host.strip()}:{port}"


def container_default(config: BaseConfig) -> Optional[str]:
    if not running_in_container(config):
        return None
    return f"redis://{config.redis_container_host}:{DEFAULT_PORT}"


def loopback_default(config: BaseConfig) -> Optional[str]:
    return LOOPBACK_URL


def running_in_container(config: BaseConfig) -> bool:
    if config.running_in_container is not None:
        return config.running_in_container
    return any(os.path.exists(marker) for marker in CONTAINER_MARKERS)


DEFAULT_STRATEGIES: List[EndpointStrategy] = [
    ("explicit_url", explicit_url),
    ("host_port", host_and_port),
    ("container_default", container_default),
    ("loopback_default", loopback_default),
]


def validate_url(url: str) -> Optional[str]:
    """Return why ``url`` is unusable, or None when it is fine."""
    parsed = urlparse(url)
    if parsed.scheme not in SUPPORTED_SCHEMES:
        return f"unsupported scheme {parsed.scheme!r}"
    if parsed.scheme == "unix":
        return None if parsed.path else "missing socket path"
    if not parsed.hostname:
        return "missing host"
    try:
        parsed.port
    except ValueError:
        return "malformed port"
    return None


def redact(url: str) -> str:
    """Hide the password part of a store URL for logging."""
    parsed = urlparse(url)
    if not parsed.password:
        return url
    return url.replace(f":{parsed.password}@", ":***@", 1)


def resolve_endpoint(
    config: BaseConfig,
    strategies: Sequence[EndpointStrategy] = DEFAULT_STRATEGIES,
) -> ResolvedEndpoint:
    """Pick the shared store endpoint.

    Raises:
        ConfigurationError: if no strategy yields a valid URL. Cannot happen
            with the default strategies since the loopback default always
            applies.
    """
    for name, strategy in strategies:
        candidate = strategy(config)
        if not candidate:
            continue

        candidate = candidate.strip()
        problem = validate_url(candidate)
        if problem:
            logger.warning(
                "Ignoring invalid store endpoint",
                strategy=name,
                url=redact(candidate),
                reason=problem,
            )
            continue

        logger.info("Resolved store endpoint", strategy=name, url=redact(candidate))
        return ResolvedEndpoint(strategy=name, url=candidate)

    raise ConfigurationError(
        "No usable shared store endpoint",
        {"strategies": [name for name, _ in strategies]},
    )
