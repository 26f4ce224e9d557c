"""
Shared error handling for the Content Gateway.
"""

from datetime import datetime, timezone
from typing import Dict, Any, Optional

from pydantic import BaseModel, Field


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=utc_timestamp)


class AccessLayerException(Exception):
    """Base exception for gateway errors."""

    status_code = 500
    title = "Internal server error"

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=self.title,
            code=self.code,
            message=self.message,
            details=self.details,
        )


class AuthenticationError(AccessLayerException):
    """Authentication-related errors."""

    status_code = 401
    title = "Authentication required"

    def __init__(self, message: str = "Please provide a valid API key or JWT token", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_REQUIRED", message, details)


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    status_code = 400
    title = "Validation failed"

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class RateLimitError(AccessLayerException):
    """Rate limiting errors."""

    status_code = 429
    title = "Rate limit exceeded"

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMITED", message, details)


class ServiceError(AccessLayerException):
    """Service-related errors."""

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class BackendUnavailableError(AccessLayerException):
    """Content engine call failed or timed out."""

    def __init__(self, title: str, message: str = "Content engine unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("BACKEND_UNAVAILABLE", message, details)
        self.title = title
