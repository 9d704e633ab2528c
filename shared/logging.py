"""
Shared logging configuration for the Quill blog backend.

Every event carries the service name. Events logged while a request is in
flight also carry its request id and, once the rate limiter has derived
it, the client identity.
"""

import sys
import structlog
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional
from contextvars import ContextVar

# Context variables for correlation IDs
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
client_ip_var: ContextVar[Optional[str]] = ContextVar('client_ip', default=None)

# Access lines duplicate the "HTTP request" event of the timing middleware
QUIET_LOGGERS = ("uvicorn.access",)

_service_name: Optional[str] = None


def configure_logging(service_name: str, log_level: str = "info", json_logs: bool = True) -> None:
    """Configure structured logging for a service.

    Args:
        service_name: stamped on every event as ``service``
        log_level: standard level name; unknown names fall back to INFO
        json_logs: JSON lines when true, plain console lines otherwise
    """
    global _service_name
    _service_name = service_name
    level = getattr(logging, log_level.upper(), logging.INFO)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_service_context,
        add_request_context,
    ]
    if json_logs:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(
            colors=False,
            exception_formatter=structlog.dev.plain_traceback,
        ))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Stamp the configured service name."""
    if _service_name:
        event_dict.setdefault("service", _service_name)
    return event_dict


def add_request_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add the request id and client identity of the current request."""
    request_id = request_id_var.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)

    client_ip = client_ip_var.get()
    if client_ip:
        event_dict.setdefault("client_ip", client_ip)

    return event_dict


@contextmanager
def request_context(request_id: Optional[str] = None) -> Iterator[str]:
    """Correlate log events for the duration of one request.

    Uses the caller's request id when given, otherwise generates one.
    Both context variables are restored on exit, so state never leaks into
    the next request handled by the same task.
    """
    request_id = request_id or str(uuid.uuid4())
    request_token = request_id_var.set(request_id)
    client_token = client_ip_var.set(None)
    try:
        yield request_id
    finally:
        client_ip_var.reset(client_token)
        request_id_var.reset(request_token)


def set_client_context(client_ip: Optional[str] = None):
    """Set the rate-limit identity of the current request in logging."""
    if client_ip:
        client_ip_var.set(client_ip)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
