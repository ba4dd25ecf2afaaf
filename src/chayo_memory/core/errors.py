"""Specific error types for the memory service.

Three kinds matter at the HTTP boundary: validation (400), not found (404)
and upstream failures (embedding model or vector store, 5xx).
"""

from .base import (
    ApplicationError,
    ErrorCode,
    ErrorDetails,
    ErrorLevel,
    ResourceErrorDetails,
    ServiceErrorDetails,
    ValidationErrorDetails,
)


class ValidationError(ApplicationError):
    """Missing or malformed input. Reported synchronously, never retried."""

    def __init__(self, message: str, details: ValidationErrorDetails | dict | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.INVALID_INPUT,
            level=ErrorLevel.WARNING,
            details=details,
        )


class DimensionMismatchError(ValidationError):
    """An embedding does not match the store's configured dimension."""

    def __init__(self, expected: int, actual: int, source: str = "vector_store", operation: str = "validate"):
        super().__init__(
            message=f"Embedding dimension mismatch: expected {expected}, got {actual}",
            details=ValidationErrorDetails(
                source=source,
                operation=operation,
                field="embedding",
                actual_value=actual,
                expected_type=f"list[float] of length {expected}",
                constraint="len(embedding) == configured dimensions",
            ),
        )
        self.code = ErrorCode.DB_VALIDATION
        self.expected = expected
        self.actual = actual


class NotFoundError(ApplicationError):
    """Referenced organization or segment does not exist."""

    def __init__(self, message: str, details: ResourceErrorDetails | dict | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.NOT_FOUND,
            level=ErrorLevel.INFO,
            details=details,
        )


class UpstreamError(ApplicationError):
    """Embedding generation or vector store call failed."""

    def __init__(
        self,
        message: str,
        details: ServiceErrorDetails | ErrorDetails | dict | None = None,
        code: ErrorCode = ErrorCode.SERVICE_UNAVAILABLE,
        level: ErrorLevel = ErrorLevel.ERROR,
    ):
        super().__init__(
            message=message,
            code=code,
            level=level,
            details=details
            or ServiceErrorDetails(source="service", operation="external_call", service_name="unknown"),
        )


class RateLimitError(UpstreamError):
    """Rate limiting errors."""

    def __init__(self, message: str, details: ServiceErrorDetails | dict | None = None):
        super().__init__(message=message, details=details, code=ErrorCode.RATE_LIMITED, level=ErrorLevel.WARNING)


class TimeoutError(UpstreamError):
    """Timeout errors."""

    def __init__(self, message: str, details: ServiceErrorDetails | dict | None = None):
        super().__init__(message=message, details=details, code=ErrorCode.TIMEOUT)


class AuthenticationError(UpstreamError):
    """Credentials for an upstream service are missing or rejected."""

    def __init__(self, message: str, details: ServiceErrorDetails | dict | None = None):
        super().__init__(message=message, details=details, code=ErrorCode.AUTHENTICATION_FAILED)


class ServiceUnavailableError(UpstreamError):
    """Circuit is open; the upstream is not being called."""

    def __init__(self, message: str, details: ServiceErrorDetails | dict | None = None):
        super().__init__(message=message, details=details, code=ErrorCode.CIRCUIT_OPEN)


class EmbeddingError(UpstreamError):
    """The embedding model returned an unusable response."""

    def __init__(self, message: str, details: ServiceErrorDetails | dict | None = None):
        super().__init__(message=message, details=details, code=ErrorCode.EMBEDDING_FAILED)


class StorageError(UpstreamError):
    """Vector store read or write failed."""

    def __init__(self, message: str, details: ServiceErrorDetails | dict | None = None):
        super().__init__(message=message, details=details, code=ErrorCode.DB_OPERATION)
