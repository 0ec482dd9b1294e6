# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Request signatures for MIP.

Every request is signed over ``timestamp + path + raw_json_body``. The body is
used exactly as transmitted: re-serializing the JSON before verification
breaks the signature, so the server must hand over the raw request bytes.

The timestamp window bounds replay exposure without a nonce cache.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from . import crypto

logger = logging.getLogger(__name__)

DEFAULT_TIMESTAMP_WINDOW_SECONDS = 300


def build_signature_data(timestamp: str, path: str, json_body: str | bytes | None = None) -> str:
    """Build the canonical string covered by a request signature.

    Raises:
        UnicodeDecodeError: If a bytes body is not valid UTF-8.
    """
    data = f"{timestamp}{path}"
    if json_body:
        if isinstance(json_body, bytes):
            json_body = json_body.decode("utf-8")
        data += json_body
    return data


def sign_request(
    private_key_pem: str,
    timestamp: str,
    path: str,
    json_body: str | bytes | None = None,
) -> str:
    """Sign a request and return the base64 signature."""
    return crypto.sign(private_key_pem, build_signature_data(timestamp, path, json_body))


def verify_request(
    public_key_pem: str,
    signature: str,
    timestamp: str,
    path: str,
    json_body: str | bytes | None = None,
) -> bool:
    """Verify a request signature. Never raises."""
    try:
        data = build_signature_data(timestamp, path, json_body)
    except UnicodeDecodeError:
        return False
    return crypto.verify(public_key_pem, signature, data)


def current_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. ``2026-01-02T03:04:05.678Z``."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(timestamp: str) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC.

    Returns:
        Aware datetime, or None if the value is not ISO-8601
    """
    if not isinstance(timestamp, str) or not timestamp:
        return None
    try:
        parsed = datetime.fromisoformat(timestamp)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def timestamp_valid(
    timestamp: str,
    window_seconds: int = DEFAULT_TIMESTAMP_WINDOW_SECONDS,
    now: datetime | None = None,
) -> bool:
    """Check that a timestamp lies within ``window_seconds`` of now (inclusive)."""
    parsed = parse_timestamp(timestamp)
    if parsed is None:
        return False
    now = now or datetime.now(UTC)
    skew = abs((now - parsed).total_seconds())
    if skew > window_seconds:
        logger.debug(f"Timestamp outside window: {timestamp} ({skew:.0f}s skew)")
        return False
    return True
