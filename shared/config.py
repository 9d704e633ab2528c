"""
Shared configuration management for the Quill blog backend.

Every setting can be overridden through the environment with the ``BLOG_``
prefix, e.g. ``BLOG_REDIS_URL=redis://cache:6379/0`` or
``BLOG_RATE_LIMIT_MAX=50``. Values are resolved once at startup.
"""

from typing import Any, List, Literal, Optional

from pydantic import Field, ValidationError, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.logging import get_logger

logger = get_logger("shared.config")


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="BLOG_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = "local"
    log_level: str = "info"
    # JSON lines for aggregation, or plain console output for development
    log_format: Literal["json", "console"] = "json"

    # Shared key-value store endpoint; see service_blog.app.store.endpoint
    # for the resolution order.
    redis_url: Optional[str] = None
    redis_host: Optional[str] = None
    redis_port: Optional[str] = None
    redis_container_host: str = "redis"
    running_in_container: Optional[bool] = Field(
        default=None,
        description="Force container detection on or off; autodetected when unset",
    )

    # Store timeouts (seconds)
    redis_connect_timeout: float = 2.0
    redis_operation_timeout: float = 1.0

    # Startup reconnection
    store_reconnect_max_attempts: int = 3
    store_reconnect_base_delay_ms: int = 200
    store_reconnect_max_delay_ms: int = 2000

    # Caching
    cache_ttl_seconds: int = 3600

    # Rate limiting
    rate_limit_window_ms: int = 15 * 60 * 1000
    rate_limit_max: int = 100
    rate_limit_bypass: bool = False
    rate_limit_store_error_policy: Literal["allow", "deny", "local"] = "allow"
    rate_limit_header_style: Literal["draft-6", "draft-7"] = "draft-6"

    # Honour X-Forwarded-For for client identity; turn off when not behind
    # a proxy that overwrites it
    trust_proxy: bool = True

    # CORS, comma separated; only enforced in production
    cors_origins: str = ""

    @field_validator(
        "redis_connect_timeout",
        "redis_operation_timeout",
        "store_reconnect_max_attempts",
        "store_reconnect_base_delay_ms",
        "store_reconnect_max_delay_ms",
        "cache_ttl_seconds",
        "rate_limit_window_ms",
        "rate_limit_max",
        mode="wrap",
    )
    @classmethod
    def _positive_or_default(cls, value: Any, handler, info: ValidationInfo) -> Any:
        """Coerce malformed or non-positive values to the field default."""
        default = cls.model_fields[info.field_name].default
        try:
            result = handler(value)
        except ValidationError:
            result = None
        if result is None or result <= 0:
            logger.warning(
                "Invalid configuration value, using default",
                field=info.field_name,
                value=value,
                default=default,
            )
            return default
        return result

    @field_validator(
        "rate_limit_bypass",
        "rate_limit_store_error_policy",
        "rate_limit_header_style",
        "trust_proxy",
        "log_format",
        mode="wrap",
    )
    @classmethod
    def _valid_or_default(cls, value: Any, handler, info: ValidationInfo) -> Any:
        try:
            return handler(value)
        except ValidationError:
            default = cls.model_fields[info.field_name].default
            logger.warning(
                "Invalid configuration value, using default",
                field=info.field_name,
                value=value,
                default=default,
            )
            return default

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"

    @property
    def allowed_origins(self) -> List[str]:
        """CORS origins parsed from the comma separated setting."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
