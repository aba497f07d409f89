"""
Utility modules for the Armonyco billing backend.
"""

from .retry import (
    BackoffPolicy,
    retry_with_backoff,
)

from .errors import (
    handle_exception,
    register_exception_handlers,
    AppError,
    ConfigurationError,
    ErrorCodes,
    LedgerConflictError,
    NotFoundError,
    ProvisioningError,
    SignatureError,
    UpstreamError,
    ValidationFailed,
)

__all__ = [
    # Retry utilities
    "BackoffPolicy",
    "retry_with_backoff",
    # Error handling utilities
    "handle_exception",
    "register_exception_handlers",
    "AppError",
    "ConfigurationError",
    "ErrorCodes",
    "LedgerConflictError",
    "NotFoundError",
    "ProvisioningError",
    "SignatureError",
    "UpstreamError",
    "ValidationFailed",
]
