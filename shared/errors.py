"""
Shared error handling for QuotaGate.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class QuotaGateException(Exception):
    """Base exception for quota gate errors."""

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


class ConstructionError(QuotaGateException):
    """Bad gate arguments or failed initial script registration."""

    def __init__(self, message: str = "Quota gate construction failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONSTRUCTION_ERROR", message, details)


class SynchronizationError(QuotaGateException):
    """Failure to obtain a batch of quota from the shared counter."""

    def __init__(self, message: str = "Quota synchronization failed", details: Optional[Dict[str, Any]] = None,
                 code: str = "SYNCHRONIZATION_ERROR"):
        super().__init__(code, message, details)


class ScriptMissingError(SynchronizationError):
    """The counter store does not know the registered script handle."""

    def __init__(self, message: str = "Synchronization script missing", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="SCRIPT_MISSING")


class ScriptRegistrationError(SynchronizationError):
    """Re-registering the synchronization script exhausted its retries."""

    def __init__(self, message: str = "Script registration failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="SCRIPT_REGISTRATION_ERROR")


class CounterDecodeError(SynchronizationError):
    """The shared counter returned something other than an integer."""

    def __init__(self, message: str = "Invalid counter value", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="COUNTER_DECODE_ERROR")


class CounterStoreError(SynchronizationError):
    """Transport or server failure talking to the counter store."""

    def __init__(self, store: str, message: str = "Counter store error", details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{store}: {message}", details, code="COUNTER_STORE_ERROR")


class RateLimitError(QuotaGateException):
    """Rate limiting errors."""

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMIT_ERROR", message, details)
