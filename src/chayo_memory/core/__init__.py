from .base import ApplicationError, ErrorCode, ErrorLevel, ServiceErrorDetails
from .circuit_breaker import CircuitBreaker, CircuitState, RetryWithCircuitBreaker
from .errors import (
    DimensionMismatchError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
