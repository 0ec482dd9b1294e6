# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Inbound request authentication gate.

Expects headers:
- X-MIP-MIP-IDENTIFIER: the sender's MIP identifier
- X-MIP-TIMESTAMP: ISO-8601 time of signing (replay window)
- X-MIP-SIGNATURE: base64 signature over timestamp + path + raw body
- X-MIP-PUBLIC-KEY: base64 PEM key, only needed on first contact

The key on file for an existing connection always wins over the header key.
A header key only proves possession of the matching private key, not who the
sender is; identity is established later through endorsements or review.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from ..core.exceptions import AuthenticationError, ValidationException
from . import crypto, signature
from .models import Connection
from .store import NodeStore

logger = logging.getLogger(__name__)

HEADER_MIP_IDENTIFIER = "X-MIP-MIP-IDENTIFIER"
HEADER_TIMESTAMP = "X-MIP-TIMESTAMP"
HEADER_SIGNATURE = "X-MIP-SIGNATURE"
HEADER_PUBLIC_KEY = "X-MIP-PUBLIC-KEY"


@dataclass(frozen=True)
class VerifiedSender:
    """The authenticated origin of an inbound request."""

    mip_identifier: str
    public_key: str
    connection: Connection | None = None

    @property
    def is_first_contact(self) -> bool:
        return self.connection is None

    def has_active_connection(self) -> bool:
        return self.connection is not None and self.connection.is_active()


class RequestVerifier:
    """Verifies MIP request signatures against a node's store."""

    def __init__(
        self,
        store: NodeStore,
        window_seconds: int = signature.DEFAULT_TIMESTAMP_WINDOW_SECONDS,
    ):
        self.store = store
        self.window_seconds = window_seconds

    def verify(self, headers: Mapping[str, str], path: str, body: bytes | str | None) -> VerifiedSender:
        """Authenticate one request.

        Args:
            headers: Request headers (case-insensitive mapping)
            path: URL path exactly as requested, without host or query
            body: Raw request body as received

        Returns:
            The verified sender

        Raises:
            ValidationException: A required header is missing
            AuthenticationError: Stale timestamp, unknown sender or bad signature
        """
        mip_identifier = _header(headers, HEADER_MIP_IDENTIFIER)
        timestamp = _header(headers, HEADER_TIMESTAMP)
        request_signature = _header(headers, HEADER_SIGNATURE)
        public_key_header = _header(headers, HEADER_PUBLIC_KEY)

        missing = [
            name
            for name, value in (
                (HEADER_MIP_IDENTIFIER, mip_identifier),
                (HEADER_TIMESTAMP, timestamp),
                (HEADER_SIGNATURE, request_signature),
            )
            if not value
        ]
        if missing:
            raise ValidationException(f"Missing MIP headers: {', '.join(missing)}", field=missing[0])

        if not signature.timestamp_valid(timestamp, self.window_seconds):
            raise AuthenticationError(f"Timestamp outside {self.window_seconds}s window: {timestamp}", mip_identifier)

        connection = self.store.find_connection(mip_identifier)
        public_key: str | None = None
        if connection is not None and connection.public_key:
            public_key = connection.public_key
        elif public_key_header:
            public_key = crypto.decode_public_key_header(public_key_header)

        if not public_key:
            raise AuthenticationError("Unknown sender and no usable public key header", mip_identifier)

        if not signature.verify_request(public_key, request_signature, timestamp, path, body):
            raise AuthenticationError(f"Invalid signature for {path}", mip_identifier)

        return VerifiedSender(mip_identifier=mip_identifier, public_key=public_key, connection=connection)


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    if value is not None:
        value = value.strip()
    return value or None
