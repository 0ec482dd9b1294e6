# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Standardized MIP responses.

Every response, success or failure, uses the MIP envelope:
{
    "meta": {"succeeded": false},
    "data": {
        "code": "ERROR_CODE",
        "error": "Human readable message"
    }
}

Error codes follow the pattern: DOMAIN_SPECIFIC_ERROR
Examples: VALIDATION_MISSING_FIELD, AUTH_INVALID_SIGNATURE, NOT_FOUND_CONNECTION
"""

from __future__ import annotations

import logging
import os
import sys
import traceback
from typing import Any

from starlette.responses import JSONResponse

from ..core.exceptions import (
    AuthenticationError,
    ConflictError,
    InvalidTransitionError,
    MipException,
    NotFoundError,
    TransportError,
    ValidationException,
)
from ..core.logging import current_scope, new_request_id

logger = logging.getLogger(__name__)

# Debug mode: include exception details in 500 responses.
# Set MIP_DEBUG=1 to enable (default: disabled).
_DEBUG = os.environ.get("MIP_DEBUG", "0") == "1"

# =============================================================================
# STANDARD ERROR CODES
# =============================================================================

# Validation errors (400)
VALIDATION_MISSING_FIELD = "VALIDATION_MISSING_FIELD"
VALIDATION_INVALID_VALUE = "VALIDATION_INVALID_VALUE"
VALIDATION_INVALID_JSON = "VALIDATION_INVALID_JSON"

# Authentication errors (401)
AUTH_INVALID_SIGNATURE = "AUTH_INVALID_SIGNATURE"
AUTH_INVALID_TOKEN = "AUTH_INVALID_TOKEN"

# Authorization errors (403)
FORBIDDEN_CONNECTION_NOT_ACTIVE = "FORBIDDEN_CONNECTION_NOT_ACTIVE"
FORBIDDEN_ADMIN = "FORBIDDEN_ADMIN"

# Not found errors (404)
NOT_FOUND_RESOURCE = "NOT_FOUND_RESOURCE"
NOT_FOUND_NODE = "NOT_FOUND_NODE"
NOT_FOUND_CONNECTION = "NOT_FOUND_CONNECTION"

# Conflict errors (409)
CONFLICT_INVALID_TRANSITION = "CONFLICT_INVALID_TRANSITION"
CONFLICT_STATE = "CONFLICT_STATE"

# Upstream errors (502)
PEER_UNREACHABLE = "PEER_UNREACHABLE"

# Server errors (500)
INTERNAL_ERROR = "INTERNAL_ERROR"

# Generic message for every authentication failure
AUTH_FAILED_MESSAGE = "Request authentication failed"


# =============================================================================
# RESPONSE HELPERS
# =============================================================================


def mip_response(data: dict[str, Any] | list[Any] | None = None, status_code: int = 200) -> JSONResponse:
    """Wrap data in a successful MIP envelope."""
    return JSONResponse({"meta": {"succeeded": True}, "data": data or {}}, status_code=status_code)


def error_response(
    code: str,
    message: str,
    status_code: int = 400,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code (e.g., VALIDATION_MISSING_FIELD)
        message: Human-readable error message
        status_code: HTTP status code (default 400)

    Returns:
        JSONResponse with the MIP error envelope
    """
    return JSONResponse(
        {
            "meta": {"succeeded": False},
            "data": {
                "code": code,
                "error": message,
            },
        },
        status_code=status_code,
    )


def validation_error(message: str, code: str = VALIDATION_INVALID_VALUE) -> JSONResponse:
    """Create a 400 validation error response."""
    return error_response(code, message, status_code=400)


def missing_field_error(field_name: str) -> JSONResponse:
    """Create a 400 error for missing required field."""
    return error_response(
        VALIDATION_MISSING_FIELD,
        f"{field_name} is required",
        status_code=400,
    )


def invalid_json_error() -> JSONResponse:
    """Create a 400 error for invalid JSON body."""
    return error_response(VALIDATION_INVALID_JSON, "Invalid JSON body", status_code=400)


def auth_error(message: str = AUTH_FAILED_MESSAGE, code: str = AUTH_INVALID_SIGNATURE) -> JSONResponse:
    """Create a 401 authentication error response."""
    return error_response(code, message, status_code=401)


def forbidden_error(message: str = "Permission denied", code: str = FORBIDDEN_CONNECTION_NOT_ACTIVE) -> JSONResponse:
    """Create a 403 forbidden error response."""
    return error_response(code, message, status_code=403)


def not_found_error(resource: str, code: str = NOT_FOUND_RESOURCE) -> JSONResponse:
    """Create a 404 not found error response."""
    return error_response(code, f"{resource} not found", status_code=404)


def conflict_error(message: str, code: str = CONFLICT_STATE) -> JSONResponse:
    """Create a 409 conflict error response."""
    return error_response(code, message, status_code=409)


def peer_error(message: str) -> JSONResponse:
    """Create a 502 response for a failed call to another node."""
    return error_response(PEER_UNREACHABLE, message, status_code=502)


def internal_error(
    message: str = "Internal server error",
    exc: BaseException | None = None,
) -> JSONResponse:
    """Create a 500 internal error response.

    Always includes a request_id for log correlation, reusing the open
    request scope's id. In debug mode (MIP_DEBUG=1) also includes the
    exception type and message.
    """
    scope = current_scope()
    request_id = scope.request_id if scope else new_request_id()

    error_body: dict[str, Any] = {
        "code": INTERNAL_ERROR,
        "error": message,
        "request_id": request_id,
    }

    if exc is None:
        exc = sys.exc_info()[1]

    if exc is not None:
        logger.error("request_id=%s %s: %s", request_id, type(exc).__name__, exc)
        if _DEBUG:
            error_body["exception"] = type(exc).__name__
            error_body["detail"] = str(exc)
            error_body["traceback"] = traceback.format_exception_only(type(exc), exc)[0].strip()

    return JSONResponse(
        {"meta": {"succeeded": False}, "data": error_body},
        status_code=500,
    )


def exception_response(exc: MipException) -> JSONResponse:
    """Map a domain exception to its HTTP response."""
    if isinstance(exc, ValidationException):
        if exc.field and exc.message.startswith("Missing required field"):
            return missing_field_error(exc.field)
        return validation_error(exc.message)
    if isinstance(exc, AuthenticationError):
        logger.warning(f"Authentication failed for {exc.sender or 'unknown sender'}: {exc.reason}")
        return auth_error()
    if isinstance(exc, NotFoundError):
        code = NOT_FOUND_CONNECTION if exc.resource_type == "connection" else NOT_FOUND_RESOURCE
        return not_found_error(exc.resource_type.capitalize(), code=code)
    if isinstance(exc, InvalidTransitionError):
        return conflict_error(exc.message, code=CONFLICT_INVALID_TRANSITION)
    if isinstance(exc, ConflictError):
        return conflict_error(exc.message)
    if isinstance(exc, TransportError):
        return peer_error(exc.message)
    return internal_error(exc=exc)
