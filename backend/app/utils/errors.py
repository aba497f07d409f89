"""
Centralized error handling utilities for the Armonyco billing API.

Every error leaves the service as JSON shaped like
``{"error": <short title>, "message": <human readable detail>}``.
"""

import logging
from typing import Optional, Dict, Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# Common error codes
class ErrorCodes:
    """Standard error codes used in logs and AppError instances."""
    INTERNAL_ERROR = "INTERNAL_ERROR"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    PROVISIONING_FAILED = "PROVISIONING_FAILED"
    LEDGER_CONFLICT = "LEDGER_CONFLICT"


class AppError(Exception):
    """Base application error with structured data."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = ErrorCodes.INTERNAL_ERROR

    def __init__(
        self,
        error: str,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error = error
        self.message = message or error
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationFailed(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = ErrorCodes.VALIDATION_ERROR


class ConfigurationError(AppError):
    """A provider secret or URL is missing from the environment."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = ErrorCodes.NOT_CONFIGURED


class SignatureError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = ErrorCodes.INVALID_SIGNATURE


class UpstreamError(AppError):
    """Stripe, Supabase or SendGrid returned an error."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = ErrorCodes.UPSTREAM_ERROR


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = ErrorCodes.NOT_FOUND


class ProvisioningError(AppError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = ErrorCodes.PROVISIONING_FAILED


class LedgerConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = ErrorCodes.LEDGER_CONFLICT


def handle_exception(
    error: Exception,
    operation: str,
    *,
    fallback_error: str = "Internal server error",
    user_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    resource_id: Optional[str] = None,
    log_level: str = "error"
) -> AppError:
    """
    Log an exception with context and convert it into an AppError.

    Args:
        error: The caught exception
        operation: Description of what failed (e.g., "create_checkout")
        fallback_error: Short error title used for non-AppError exceptions
        user_id: Optional user ID for context
        organization_id: Optional org ID for context
        resource_id: Optional resource ID for context
        log_level: Logging level ("error", "warning", "info")

    Returns:
        AppError ready to be raised from a route

    Example:
        try:
            # ... operation
        except Exception as e:
            raise handle_exception(e, "create_checkout", fallback_error="Failed to create checkout session")
    """
    context = {
        "operation": operation,
        "error_type": type(error).__name__,
        "error_message": str(error),
    }
    if user_id:
        context["user_id"] = user_id
    if organization_id:
        context["organization_id"] = organization_id
    if resource_id:
        context["resource_id"] = resource_id

    log_message = f"Error in {operation}: {error}"
    if log_level == "warning":
        logger.warning(log_message, extra=context, exc_info=True)
    elif log_level == "info":
        logger.info(log_message, extra=context)
    else:
        logger.error(log_message, extra=context, exc_info=True)

    if isinstance(error, AppError):
        return error

    error_str = str(error).lower()
    if "connection" in error_str or "timed out" in error_str or "timeout" in error_str:
        return AppError(
            "Service temporarily unavailable",
            "Service temporarily unavailable. Please try again.",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            code=ErrorCodes.SERVICE_UNAVAILABLE,
        )

    # Provider messages are passed through; they carry no secrets
    message = getattr(error, "user_message", None) or str(error) or fallback_error
    return UpstreamError(fallback_error, message)


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "header")]
        if loc:
            fields.append(".".join(loc))
    message = "Invalid request data."
    if fields:
        message = f"Missing or invalid fields: {', '.join(fields)}"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Missing required fields", "message": message},
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    app_error = handle_exception(exc, f"{request.method} {request.url.path}")
    return JSONResponse(status_code=app_error.status_code, content=app_error.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    """Install the JSON error handlers on the application."""
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
