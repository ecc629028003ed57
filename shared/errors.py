"""
Shared error handling for the Access response cache.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class ResponseCacheException(Exception):
    """Base exception for the response cache."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class CacheStoreError(ResponseCacheException):
    """The cache backend could not complete an operation."""

    def __init__(self, operation: str, message: str = "Cache store error", details: Optional[Dict[str, Any]] = None):
        self.operation = operation
        super().__init__("CACHE_STORE_ERROR", f"{operation}: {message}", details)


class CacheConfigurationError(ResponseCacheException):
    """Configuration-related errors."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_CONFIGURATION_ERROR", message, details)
