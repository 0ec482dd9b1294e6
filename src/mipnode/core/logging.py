# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Logging setup for the MIP node.

Every inbound MIP request runs inside a request scope. Once the request
signature verifies, the sender's MIP identifier is bound to the scope, so
log lines written while the request is handled name the peer that caused
them. ``RequestScopeFilter`` copies the scope onto each record; both
formatters read it from there.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from collections.abc import Generator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

# Headers whose values never reach a log line
REDACTED_HEADERS = {
    "x-mip-signature",
    "x-mip-public-key",
    "authorization",
}

QUIET_LOGGERS = ("aiohttp", "asyncio", "uvicorn.access")


@dataclass
class RequestScope:
    request_id: str
    sender: str | None = None


_scope: ContextVar[RequestScope | None] = ContextVar("mip_request_scope", default=None)


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


def current_scope() -> RequestScope | None:
    return _scope.get()


@contextmanager
def request_scope(request_id: str | None = None) -> Generator[RequestScope, None, None]:
    """Open a logging scope for one inbound request.

    A caller-supplied ``X-Request-ID`` is reused; otherwise a short id is
    generated. Scopes nest, and the outer scope is restored on exit.
    """
    token = _scope.set(RequestScope(request_id=request_id or new_request_id()))
    try:
        yield _scope.get()
    finally:
        _scope.reset(token)


def bind_sender(mip_identifier: str) -> None:
    """Attach a verified sender to the current request scope, if any."""
    scope = _scope.get()
    if scope is not None:
        scope.sender = mip_identifier


class RequestScopeFilter(logging.Filter):
    """Stamp ``request_id`` and ``mip_sender`` onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        scope = _scope.get()
        record.request_id = scope.request_id if scope else None
        record.mip_sender = scope.sender if scope else None
        return True


def _scope_tag(record: logging.LogRecord) -> str:
    request_id = getattr(record, "request_id", None)
    if not request_id:
        return ""
    sender = getattr(record, "mip_sender", None)
    return f"[{request_id} {sender}] " if sender else f"[{request_id}] "


class JSONFormatter(logging.Formatter):
    """One JSON object per line; used for files and non-interactive output."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for attr in ("request_id", "mip_sender"):
            value = getattr(record, attr, None)
            if value:
                entry[attr] = value
        if record.levelno >= logging.WARNING:
            entry["at"] = f"{record.module}.{record.funcName}:{record.lineno}"
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


class TextFormatter(logging.Formatter):
    """Single-line text for terminals, prefixed with the request scope."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s %(name)s: %(scope_tag)s%(message)s",
            datefmt="%H:%M:%S",
        )

    def formatMessage(self, record: logging.LogRecord) -> str:  # noqa: N802
        return self._fmt % {**vars(record), "scope_tag": _scope_tag(record)}


def configure_logging(
    level: str | int | None = None,
    json_format: bool | None = None,
    log_file: str | None = None,
) -> None:
    """Install handlers on the root logger.

    Unset arguments fall back to MIP_LOG_LEVEL, MIP_LOG_FORMAT ("json",
    "text", or anything else to pick JSON when stderr is not a terminal)
    and MIP_LOG_FILE. The log file is always written as JSON.
    """
    from .config import get_config

    config = get_config()
    if level is None:
        level = config.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    if json_format is None:
        json_format = {"json": True, "text": False}.get(config.log_format.lower(), not sys.stderr.isatty())
    if log_file is None:
        log_file = config.log_file

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    handlers[0].setFormatter(JSONFormatter() if json_format else TextFormatter())
    if log_file:
        handlers.append(logging.FileHandler(log_file))
        handlers[-1].setFormatter(JSONFormatter())

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.setLevel(level)
    scope_filter = RequestScopeFilter()
    for handler in handlers:
        handler.addFilter(scope_filter)
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def summarize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Return the MIP headers of a request with secrets redacted.

    Only ``X-MIP-*`` headers and ``Authorization`` are kept. Signature,
    public key and bearer values are replaced by a length marker.
    """
    summary: dict[str, str] = {}
    for key, value in headers.items():
        lowered = key.lower()
        if not (lowered.startswith("x-mip-") or lowered == "authorization"):
            continue
        if lowered in REDACTED_HEADERS:
            summary[lowered] = f"[REDACTED {len(value)} chars]"
        else:
            summary[lowered] = value
    return summary
