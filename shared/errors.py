"""
Shared error handling for the Smart Cache CLI.
"""

from dataclasses import dataclass
from typing import Dict, Any, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error payload printed by the CLI."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class SmartCacheException(Exception):
    """Base exception for Smart Cache CLI operations."""

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


class TransportError(SmartCacheException):
    """Connectivity or protocol failure talking to Redis."""

    def __init__(self, message: str = "Redis transport error", details: Optional[Dict[str, Any]] = None):
        super().__init__("TRANSPORT_ERROR", message, details)


class OutOfSyncError(SmartCacheException):
    """A commit referenced rule positions that no longer match the stored list."""

    def __init__(self, message: str = "Rule list is out of sync", details: Optional[Dict[str, Any]] = None):
        super().__init__("OUT_OF_SYNC", message, details)


class ValidationError(SmartCacheException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


@dataclass
class DecodeWarning:
    """Non-fatal problem found while decoding a stored rule list."""
    field: str
    value: Optional[str]
    reason: str
