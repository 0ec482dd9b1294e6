# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Custom exception hierarchy for the MIP node.

Provides specific exception types for the error categories of the protocol:
malformed requests, authentication failures, transport failures and
domain-precondition failures.
"""

from __future__ import annotations

from typing import Any


class MipException(Exception):  # noqa: N818
    """Base exception for all MIP node errors.

    All MIP-specific exceptions should inherit from this class.
    """

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationException(MipException):
    """Exception for malformed requests.

    Raised when:
    - Required MIP headers are missing
    - Required payload fields are missing
    - Field values are out of range
    """

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class AuthenticationError(MipException):
    """Exception for failed request authentication.

    ``reason`` is for local logs only. Responses must not tell a stale
    timestamp apart from a bad signature or an unknown sender.
    """

    def __init__(self, reason: str, sender: str | None = None):
        details = {}
        if sender:
            details["sender"] = sender
        super().__init__(reason, details)
        self.reason = reason
        self.sender = sender


class ConfigException(MipException):
    """Exception for configuration errors.

    Raised when:
    - The node config file is missing or invalid
    - A private key file cannot be read
    """

    def __init__(self, message: str, path: str | None = None):
        details = {}
        if path:
            details["path"] = path
        super().__init__(message, details)
        self.path = path


class NotFoundError(MipException):
    """Exception for resource not found errors.

    Raised when:
    - A connection for a MIP identifier doesn't exist
    - A search or COGS request doesn't exist
    - A member doesn't exist
    """

    def __init__(self, resource_type: str, resource_id: str):
        message = f"{resource_type} not found: {resource_id}"
        details = {
            "resource_type": resource_type,
            "resource_id": resource_id,
        }
        super().__init__(message, details)
        self.resource_type = resource_type
        self.resource_id = resource_id


class ConflictError(MipException):
    """Exception for state conflicts.

    Raised when:
    - An operation requires a record in a different state
    - A peer refuses an operation because of its own state
    """

    def __init__(self, message: str, existing_id: str | None = None):
        details = {}
        if existing_id:
            details["existing_id"] = existing_id
        super().__init__(message, details)
        self.existing_id = existing_id


class InvalidTransitionError(ConflictError):
    """Raised when a status transition is not allowed from the current status."""

    def __init__(self, record_type: str, current: str, target: str):
        super().__init__(f"Cannot move {record_type} from {current} to {target}")
        self.details.update({"record_type": record_type, "current": current, "target": target})
        self.record_type = record_type
        self.current = current
        self.target = target


class TransportError(MipException):
    """Exception for outbound call failures.

    Raised when:
    - A peer is unreachable or times out
    - A peer returns a body that is not JSON
    """

    def __init__(self, message: str, url: str | None = None):
        details = {}
        if url:
            details["url"] = url
        super().__init__(message, details)
        self.url = url
