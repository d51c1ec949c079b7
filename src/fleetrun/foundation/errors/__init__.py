"""Unified error handling for fleetrun.

- ErrorCode / RemoteError hierarchy: typed failures with retryability and hints
- Result/Ok/Err: monadic error handling used on every remote call path
- parse_api_error / format_user_error: upstream error bodies in, display text out
"""

from .errors import (
    ApiError,
    AuthError,
    CircuitOpenError,
    ConflictError,
    DeadlineExceeded,
    ErrorCode,
    NetworkError,
    NotFoundError,
    OperationCancelled,
    PermanentError,
    QuotaError,
    RateLimitError,
    RemoteError,
    RequestValidationError,
    RetriesExhaustedError,
    ServerError,
    is_retryable,
    is_upstream_fault,
    root_cause,
)
from .messages import ApiErrorBody, format_user_error, parse_api_error, status_messages, status_text
from .result import Err, Ok, Result
from .types import JsonDict, JsonPrimitive, JsonValue

__all__ = [
    # Taxonomy
    "ErrorCode", "RemoteError", "NetworkError", "RateLimitError", "ServerError", "AuthError",
    "RequestValidationError", "NotFoundError", "QuotaError", "ConflictError", "ApiError",
    "CircuitOpenError", "PermanentError", "RetriesExhaustedError", "OperationCancelled", "DeadlineExceeded",
    # Classification
    "is_retryable", "is_upstream_fault", "root_cause",
    # Upstream bodies & display
    "ApiErrorBody", "parse_api_error", "format_user_error", "status_messages", "status_text",
    # Result monad
    "Result", "Ok", "Err",
    # JSON aliases
    "JsonDict", "JsonPrimitive", "JsonValue",
]
