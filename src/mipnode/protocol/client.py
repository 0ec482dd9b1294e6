# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Outbound MIP client.

Signs every request with this node's key and posts it to a peer's MIP URL.
Each call carries a short total timeout so an unreachable peer cannot stall
the caller. Network failures raise TransportError; HTTP-level refusals come
back as a ClientResult with ``success`` False.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import aiohttp

from ..core.exceptions import TransportError
from . import crypto, signature
from .models import CogsRequest, Endorsement, NodeIdentity, SearchRequest
from .verifier import HEADER_MIP_IDENTIFIER, HEADER_PUBLIC_KEY, HEADER_SIGNATURE, HEADER_TIMESTAMP

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass
class ClientResult:
    """Outcome of one outbound call."""

    success: bool
    status: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def data(self) -> dict[str, Any]:
        data = self.body.get("data")
        return data if isinstance(data, dict) else {}

    @property
    def error(self) -> str | None:
        if self.success:
            return None
        return self.data.get("error") or self.body.get("error") or f"HTTP {self.status}"


def build_url(base_url: str, endpoint: str) -> str:
    return base_url.rstrip("/") + endpoint


class MipClient:
    """HTTP client for calling other MIP nodes."""

    def __init__(self, identity: NodeIdentity, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        self.identity = identity
        self.timeout_seconds = timeout_seconds

    # ==========================================================================
    # Connection lifecycle
    # ==========================================================================

    async def request_connection(self, target_url: str, endorsements: list[Endorsement] | None = None) -> ClientResult:
        """Ask a node for a connection, bundling endorsements of this node."""
        payload = {
            **self.identity.to_node_profile(),
            "endorsements": [e.to_payload() for e in endorsements or []],
        }
        return await self._post(build_url(target_url, "/mip_connections"), payload, include_public_key=True)

    async def approve_connection(self, target_url: str, daily_rate_limit: int) -> ClientResult:
        payload = {
            "node_profile": self.identity.to_node_profile(),
            "share_my_organization": self.identity.share_my_organization,
            "daily_rate_limit": daily_rate_limit,
        }
        return await self._post(build_url(target_url, "/mip_connections/approved"), payload)

    async def decline_connection(self, target_url: str, reason: str | None) -> ClientResult:
        payload = {"mip_identifier": self.identity.mip_identifier, "reason": reason}
        return await self._post(build_url(target_url, "/mip_connections/declined"), payload)

    async def revoke_connection(self, target_url: str, reason: str | None) -> ClientResult:
        payload = {"mip_identifier": self.identity.mip_identifier, "reason": reason}
        return await self._post(build_url(target_url, "/mip_connections/revoke"), payload)

    async def restore_connection(self, target_url: str) -> ClientResult:
        payload = {"mip_identifier": self.identity.mip_identifier}
        return await self._post(build_url(target_url, "/mip_connections/restore"), payload)

    async def send_endorsement(self, target_url: str, endorsement: Endorsement) -> ClientResult:
        return await self._post(build_url(target_url, "/endorsements"), endorsement.to_payload())

    # ==========================================================================
    # Member exchanges
    # ==========================================================================

    async def member_search(self, target_url: str, search: SearchRequest) -> ClientResult:
        return await self._post(build_url(target_url, "/mip_member_searches"), search.to_request_payload())

    async def member_search_reply(self, target_url: str, search: SearchRequest) -> ClientResult:
        return await self._post(build_url(target_url, "/mip_member_searches/reply"), search.to_reply_payload())

    async def request_cogs(self, target_url: str, cogs: CogsRequest) -> ClientResult:
        return await self._post(build_url(target_url, "/certificates_of_good_standing"), cogs.to_request_payload())

    async def cogs_reply(self, target_url: str, cogs: CogsRequest) -> ClientResult:
        return await self._post(build_url(target_url, "/certificates_of_good_standing/reply"), cogs.to_reply_payload())

    async def member_status_check(self, target_url: str, member_number: str) -> ClientResult:
        payload = {"member_number": member_number}
        return await self._post(build_url(target_url, "/member_status_checks"), payload)

    async def connected_organizations_query(self, target_url: str) -> ClientResult:
        return await self._get(build_url(target_url, "/connected_organizations_query"))

    # ==========================================================================
    # Signed transport
    # ==========================================================================

    def signed_headers(self, path: str, json_body: str | None, include_public_key: bool = False) -> dict[str, str]:
        """Build the MIP authentication headers for a request."""
        timestamp = signature.current_timestamp()
        headers = {
            HEADER_MIP_IDENTIFIER: self.identity.mip_identifier,
            HEADER_TIMESTAMP: timestamp,
            HEADER_SIGNATURE: signature.sign_request(self.identity.private_key, timestamp, path, json_body),
        }
        if include_public_key:
            headers[HEADER_PUBLIC_KEY] = crypto.encode_public_key_header(self.identity.public_key)
        return headers

    async def _post(self, url: str, payload: dict[str, Any], include_public_key: bool = False) -> ClientResult:
        json_body = json.dumps(payload)
        headers = self.signed_headers(urlparse(url).path, json_body, include_public_key)
        headers["Content-Type"] = "application/json"
        return await self._request("POST", url, headers, json_body.encode("utf-8"))

    async def _get(self, url: str) -> ClientResult:
        headers = self.signed_headers(urlparse(url).path, None)
        return await self._request("GET", url, headers, None)

    async def _request(self, method: str, url: str, headers: dict[str, str], body: bytes | None) -> ClientResult:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, url, headers=headers, data=body) as response:
                    text = await response.text()
                    status = response.status
        except asyncio.TimeoutError as e:
            raise TransportError(f"Request timed out after {self.timeout_seconds}s", url=url) from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Request failed: {e}", url=url) from e

        try:
            parsed = json.loads(text) if text else {}
        except json.JSONDecodeError:
            logger.warning(f"Non-JSON response from {url} (HTTP {status})")
            return ClientResult(success=False, status=status, body={"error": "Invalid JSON response"})

        if not isinstance(parsed, dict):
            parsed = {"data": parsed}
        meta = parsed.get("meta") if isinstance(parsed.get("meta"), dict) else {}
        success = 200 <= status < 300 and meta.get("succeeded", True) is not False
        logger.debug(f"{method} {url} -> {status}")
        return ClientResult(success=success, status=status, body=parsed)
