"""Error taxonomy and the standardized error response schema.

Domain errors raised by the store, graph and link services all derive from
DecisionMemoryError. Each carries a machine-readable code, a message, a details
dict and the HTTP status the API maps it to. Store and graph errors propagate
unchanged to callers; only provider failures are turned into tier downgrades,
and that happens in the search engine, not here.

Usage:
    from models.errors import NotFound

    raise NotFound("decision", decision_id)

Error response format:
{
    "error": "ValidationError",
    "message": "outcome must be one of pending, success, partial, failure, superseded",
    "details": {"code": "INVALID_INPUT", "field": "outcome", "received": "done"},
    "request_id": "abc-123-def-456",
    "timestamp": "2026-01-29T12:00:00Z",
    "path": "/api/decisions/decision_auth_strategy_1700000000000_a1b2/outcome"
}
"""

from datetime import UTC, datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""

    error: str = Field(..., description="Error type, e.g. 'NotFound'")
    message: str = Field(..., description="Human-readable message")
    details: Optional[dict[str, Any]] = Field(
        default=None, description="Machine-readable context such as the error code"
    )
    request_id: Optional[str] = Field(default=None, description="X-Request-ID of the call")
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    path: Optional[str] = None


class ValidationErrorDetail(BaseModel):
    field: str
    message: str
    type: str


class ValidationErrorResponse(ErrorResponse):
    """422 body with one entry per rejected field."""

    error: str = "ValidationError"
    validation_errors: list[ValidationErrorDetail] = Field(default_factory=list)


class ErrorType:
    """Values of ErrorResponse.error."""

    VALIDATION_ERROR = "ValidationError"
    NOT_FOUND = "NotFound"
    CONSTRAINT_VIOLATION = "ConstraintViolation"
    PROVIDER_UNAVAILABLE = "ProviderUnavailable"
    TIMEOUT = "Timeout"
    CONFLICT = "Conflict"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    INTERNAL_ERROR = "InternalError"
    BAD_REQUEST = "BadRequest"
    CIRCUIT_BREAKER_OPEN = "CircuitBreakerOpen"


def create_error_response(
    error: str,
    message: str,
    status_code: int = 500,
    details: Optional[dict[str, Any]] = None,
    request_id: Optional[str] = None,
    path: Optional[str] = None,
) -> dict[str, Any]:
    """Build an ErrorResponse payload for JSONResponse.

    status_code is not part of the body; it is accepted so call sites read
    the same as the response they build.
    """
    response = ErrorResponse(
        error=error,
        message=message,
        details=details,
        request_id=request_id,
        path=path,
    )
    return response.model_dump(exclude_none=True)


def create_validation_error_response(
    message: str,
    errors: list[dict[str, str]],
    request_id: Optional[str] = None,
    path: Optional[str] = None,
) -> dict[str, Any]:
    """Build a 422 payload from {"field", "message", "type"} dicts."""
    response = ValidationErrorResponse(
        message=message,
        validation_errors=[
            ValidationErrorDetail(
                field=e.get("field", "unknown"),
                message=e.get("message", "Validation failed"),
                type=e.get("type", "value_error"),
            )
            for e in errors
        ],
        request_id=request_id,
        path=path,
    )
    return response.model_dump(exclude_none=True)


# =============================================================================
# Domain errors
# =============================================================================


class DecisionMemoryError(Exception):
    """Base class for every error the memory services raise on purpose."""

    error_type: str = ErrorType.INTERNAL_ERROR
    status_code: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(
        self,
        request_id: Optional[str] = None,
        path: Optional[str] = None,
    ) -> dict[str, Any]:
        """Render as an ErrorResponse payload."""
        return create_error_response(
            error=self.error_type,
            message=self.message,
            status_code=self.status_code,
            details={"code": self.code, **self.details},
            request_id=request_id,
            path=path,
        )


class ValidationError(DecisionMemoryError):
    """Malformed, oversized or enum-violating input."""

    error_type = ErrorType.VALIDATION_ERROR
    status_code = 400

    def __init__(self, field: str, message: str, received: Any = None):
        details: dict[str, Any] = {"field": field}
        if received is not None:
            details["received"] = received
        super().__init__("INVALID_INPUT", message, details)
        self.field = field


class NotFound(DecisionMemoryError):
    """Unknown decision, link or checkpoint."""

    error_type = ErrorType.NOT_FOUND
    status_code = 404

    def __init__(self, resource_type: str, identifier: str):
        super().__init__(
            f"{resource_type.upper()}_NOT_FOUND",
            f"{resource_type.capitalize()} not found: {identifier}",
            {"resource_type": resource_type, "identifier": identifier},
        )
        self.resource_type = resource_type
        self.identifier = identifier


class ConstraintViolation(DecisionMemoryError):
    """Invalid, duplicate or cyclic edge, or an illegal link state transition."""

    error_type = ErrorType.CONSTRAINT_VIOLATION
    status_code = 409

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("CONSTRAINT_VIOLATION", message, details)


class ProviderUnavailable(DecisionMemoryError):
    """The embedding backend cannot be loaded or reached."""

    error_type = ErrorType.PROVIDER_UNAVAILABLE
    status_code = 503

    def __init__(self, provider: str, reason: str):
        super().__init__(
            "PROVIDER_UNAVAILABLE",
            f"Embedding provider '{provider}' unavailable: {reason}",
            {"provider": provider, "reason": reason},
        )
        self.provider = provider
        self.reason = reason


class Timeout(DecisionMemoryError):
    """An operation exceeded its wall-clock budget."""

    error_type = ErrorType.TIMEOUT
    status_code = 504

    def __init__(self, operation: str, timeout_ms: int):
        super().__init__(
            "OPERATION_TIMEOUT",
            f"Operation '{operation}' timed out after {timeout_ms}ms",
            {"operation": operation, "timeout_ms": timeout_ms},
        )
        self.operation = operation
        self.timeout_ms = timeout_ms
