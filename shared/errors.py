"""
Shared error handling for the ReBAC authorization service.

Authorization denials are never raised; they are ordinary results. The
exceptions below cover infrastructural failures only.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for the authorization service."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(AccessLayerException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ServiceError(AccessLayerException):
    """Service-related errors."""

    status_code = 500

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None,
                 code: str = "SERVICE_ERROR"):
        super().__init__(code, message, details)


class PolicyEngineNotInitializedError(ServiceError):
    """Raised when a check is requested before any policies were supplied."""

    def __init__(self, message: str = "Policy engine not initialized with policies",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="POLICY_ENGINE_NOT_INITIALIZED")


class ConditionRecursionError(ServiceError):
    """Raised when nested condition evaluation exceeds the configured depth."""

    def __init__(self, max_depth: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Condition evaluation exceeded maximum depth of {max_depth}",
            details,
            code="CONDITION_RECURSION_LIMIT",
        )
        self.max_depth = max_depth


class ExternalServiceError(AccessLayerException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)
