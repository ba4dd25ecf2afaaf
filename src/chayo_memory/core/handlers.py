"""Error handlers for different types of errors"""

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from chayo_memory.core.logging import get_logger

from .base import ApplicationError, ErrorCode, ErrorLevel, ValidationErrorDetails
from .error_context import ErrorContext, ErrorContextManager
from .errors import NotFoundError, ServiceUnavailableError, UpstreamError, ValidationError

logger = get_logger(__name__)

# Most specific first; the first isinstance match wins
STATUS_BY_ERROR: tuple[tuple[type[ApplicationError], int], ...] = (
    (ServiceUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (UpstreamError, status.HTTP_502_BAD_GATEWAY),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
)


def status_for(error: ApplicationError) -> int:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def request_validation_error(exc: RequestValidationError) -> ValidationError:
    """Report malformed request bodies like any other validation failure (400)."""
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body") or None
    return ValidationError(
        first.get("msg", "Invalid request"),
        details=ValidationErrorDetails(
            source="api",
            operation="parse_request",
            field=field,
            constraint=first.get("type"),
            extra={"errors": len(exc.errors())},
        ),
    )


class ErrorHandler:
    """Base class for error handlers"""

    def __init__(
        self,
        context_manager: ErrorContextManager,
    ):
        self.context_manager = context_manager

    def _format_response(
        self,
        error_context: ErrorContext,
        level: ErrorLevel,
        additional_context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Format error response"""
        response: dict[str, Any] = {
            "error": str(error_context.error),
            "error_code": (additional_context or {}).get("error_code", ErrorCode.PROCESSING_FAILED.value),
            "level": level.value,
            "trace_id": error_context.trace_id,
            "timestamp": error_context.timestamp.isoformat(),
        }

        if isinstance(error_context.error, ApplicationError):
            response["error_code"] = error_context.error.code.value
            response["details"] = error_context.error.details.model_dump(mode="json")

        return response

    async def handle_async(self, error: Exception, level: ErrorLevel, context: dict[str, Any]) -> dict[str, Any]:
        """Handle error asynchronously"""
        async with ErrorContextManager(error, **context) as error_context:
            return self._format_response(error_context, level, context)


class GlobalErrorHandler(ErrorHandler):
    """Global error handler for FastAPI application"""

    async def handle_application_error(self, request: Request, error: ApplicationError) -> JSONResponse:
        status_code = status_for(error)
        body = await self.handle_async(error, error.level, {"path": request.url.path})
        logger.log(
            error.level.to_logging_level(),
            f"{request.method} {request.url.path} failed: {error.message}",
            extra={"status_code": status_code, "error_code": error.code.value, "trace_id": body["trace_id"]},
        )
        return JSONResponse(status_code=status_code, content=body)

    async def handle_http_exception(self, request: Request, error: HTTPException) -> JSONResponse:
        """Handle HTTP exceptions"""
        level = ErrorLevel.ERROR if error.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR else ErrorLevel.WARNING
        error_context = self.context_manager.capture_context(error, status_code=error.status_code)
        body = self._format_response(error_context=error_context, level=level)
        body["error"] = error.detail if isinstance(error.detail, str) else str(error.detail)
        return JSONResponse(status_code=error.status_code, content=body, headers=getattr(error, "headers", None))


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the global handlers so every ApplicationError maps to its status code."""
    handler = GlobalErrorHandler(ErrorContextManager())

    async def _application_error(request: Request, exc: Exception) -> JSONResponse:
        assert isinstance(exc, ApplicationError)
        return await handler.handle_application_error(request, exc)

    async def _http_exception(request: Request, exc: Exception) -> JSONResponse:
        assert isinstance(exc, HTTPException)
        return await handler.handle_http_exception(request, exc)

    async def _request_validation(request: Request, exc: Exception) -> JSONResponse:
        assert isinstance(exc, RequestValidationError)
        return await handler.handle_application_error(request, request_validation_error(exc))

    app.add_exception_handler(ApplicationError, _application_error)
    app.add_exception_handler(HTTPException, _http_exception)
    app.add_exception_handler(RequestValidationError, _request_validation)
