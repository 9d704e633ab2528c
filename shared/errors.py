"""
Shared error handling for the Quill blog backend.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    success: bool = False
    code: str
    message: str
    details: Dict[str, Any] = {}


class BlogServiceException(Exception):
    """Base exception for blog backend services."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class StoreUnavailableError(BlogServiceException):
    """Transport failure talking to the shared key-value store.

    Never raised to request handlers: it travels inside a failed
    ``StoreResult`` and is handed to error observers.
    """

    def __init__(self, operation: str, message: str = "Shared store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_UNAVAILABLE", f"{operation}: {message}", details)
        self.operation = operation


class ReconnectExhaustedError(BlogServiceException):
    """Reconnection attempts to the shared store exceeded the maximum."""

    def __init__(self, attempts: int, message: str = "Reconnect attempts exhausted", details: Optional[Dict[str, Any]] = None):
        super().__init__("RECONNECT_EXHAUSTED", message, {"attempts": attempts, **(details or {})})
        self.attempts = attempts


class PrimaryStoreError(BlogServiceException):
    """Failure in the authoritative data path."""

    def __init__(self, message: str = "Primary store error", details: Optional[Dict[str, Any]] = None):
        super().__init__("PRIMARY_STORE_ERROR", message, details)


class BlogNotFoundError(PrimaryStoreError):
    """Requested blog does not exist in the primary store."""

    def __init__(self, blog_id: str):
        super().__init__("Blog not found", {"blog_id": blog_id})
        self.code = "BLOG_NOT_FOUND"
        self.blog_id = blog_id


class ConfigurationError(BlogServiceException):
    """Malformed or missing configuration with no safe default."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)
