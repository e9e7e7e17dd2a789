from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union


class ErrorCategory(str, Enum):
    """Categories for errors raised by the upstream data store."""

    NOT_FOUND = "not_found"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    CONFLICT = "conflict"
    FOREIGN_KEY = "foreign_key"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


# PostgREST codes (PGRST*) and Postgres SQLSTATE codes seen from the data API.
ERROR_CODE_CATEGORIES: Dict[str, ErrorCategory] = {
    "PGRST116": ErrorCategory.NOT_FOUND,
    "PGRST301": ErrorCategory.AUTHENTICATION,
    "PGRST302": ErrorCategory.AUTHENTICATION,
    "42501": ErrorCategory.AUTHORIZATION,
    "23505": ErrorCategory.CONFLICT,
    "23503": ErrorCategory.FOREIGN_KEY,
    "23502": ErrorCategory.VALIDATION,
    "23514": ErrorCategory.VALIDATION,
    "22P02": ErrorCategory.VALIDATION,
}

_HTTP_STATUS: Dict[ErrorCategory, int] = {
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.AUTHENTICATION: 401,
    ErrorCategory.AUTHORIZATION: 403,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.FOREIGN_KEY: 409,
    ErrorCategory.VALIDATION: 422,
    ErrorCategory.UNKNOWN: 500,
}


def _extract_code(error: Any) -> Optional[str]:
    if error is None:
        return None
    if isinstance(error, str):
        return error
    if isinstance(error, Mapping):
        code = error.get("code")
    else:
        code = getattr(error, "code", None)
    return str(code) if code is not None else None


# PUBLIC_INTERFACE
def classify_error(error: Union[BaseException, Mapping[str, Any], str, None]) -> ErrorCategory:
    """
    Map an upstream error (exception, error dict or bare code) to an ErrorCategory.

    Unknown or missing codes fall back to ErrorCategory.UNKNOWN.
    """
    code = _extract_code(error)
    if code is None:
        return ErrorCategory.UNKNOWN
    return ERROR_CODE_CATEGORIES.get(code, ErrorCategory.UNKNOWN)


# PUBLIC_INTERFACE
def http_status_for(category: ErrorCategory) -> int:
    """Return the HTTP status code used when an error of this category reaches the API."""
    return _HTTP_STATUS[category]


# PUBLIC_INTERFACE
def attach_call_context(error: BaseException, context: Mapping[str, Any]) -> None:
    """
    Attach call context to an exception as `call_context` without changing its type or message.

    Exceptions that refuse new attributes (e.g. built-ins with __slots__) are left as they are.
    """
    try:
        setattr(error, "call_context", dict(context))
    except (AttributeError, TypeError):
        pass
