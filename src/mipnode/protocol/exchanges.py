# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Member search, certificate of good standing, and status check exchanges.

Searches and COGS requests are two-phase: the requesting node sends a request
carrying a ``shared_identifier``, the answering organization reviews it, and
its reply is posted back to the requester later under the same identifier.
Status checks are a single synchronous call.

Only ACTIVE connections may take part; the HTTP layer enforces that for
inbound calls and this module enforces it for outbound ones.
"""

from __future__ import annotations

import logging
from typing import Any

from ..core.config import CoreSettings, get_config
from ..core.exceptions import ConflictError, NotFoundError, TransportError, ValidationException
from . import crypto
from .client import MipClient
from .models import (
    CogsRequest,
    Connection,
    Direction,
    RequestStatus,
    SearchRequest,
    canonical_json,
    extract_search_params,
)
from .outbox import JobKind, Outbox, OutboundJob
from .store import NodeStore
from .verifier import VerifiedSender

logger = logging.getLogger(__name__)


def verify_certificate(certificate: dict[str, Any], issuer_public_key: str | None) -> bool:
    """Check a COGS certificate's signature against the issuer's key."""
    if not isinstance(certificate, dict) or not issuer_public_key:
        return False
    signature = certificate.get("signature")
    if not isinstance(signature, str):
        return False
    body = {k: v for k, v in certificate.items() if k != "signature"}
    return crypto.verify(issuer_public_key, signature, canonical_json(body))


class ExchangeService:
    """Runs member exchanges for one node."""

    def __init__(
        self,
        store: NodeStore,
        outbox: Outbox,
        client: MipClient | None = None,
        settings: CoreSettings | None = None,
    ):
        self.store = store
        self.outbox = outbox
        self.client = client or outbox.client
        self.settings = settings or get_config()

    # ==========================================================================
    # Member searches
    # ==========================================================================

    def start_search(
        self, target_mip_identifier: str, criteria: dict[str, Any], notes: str | None = None
    ) -> SearchRequest:
        """Send a search to an ACTIVE connection.

        Raises:
            ValidationException: No usable search criteria
            NotFoundError: Unknown connection
            ConflictError: Connection is not ACTIVE
        """
        search_params = extract_search_params(criteria)
        if not search_params:
            raise ValidationException("Search criteria required")
        with self.store.lock:
            connection = self._active_connection(target_mip_identifier)
            search = SearchRequest(
                direction=Direction.OUTBOUND,
                target_mip_identifier=connection.mip_identifier,
                target_org=connection.organization_name,
                search_params=search_params,
                notes=notes,
            )
            self.store.add_search_request(search)
            self._queue(
                JobKind.SEARCH_REQUEST,
                connection,
                f"member search to {connection.organization_name}",
                lambda client, url=connection.mip_url: client.member_search(url, search),
            )
            self.store.commit()
            return search

    def receive_search(self, sender: VerifiedSender, payload: dict[str, Any]) -> SearchRequest:
        """Record an inbound search for review."""
        with self.store.lock:
            existing = self.store.find_search_request(payload.get("shared_identifier"))
            if existing is not None:
                if existing.direction == Direction.INBOUND and existing.target_mip_identifier == sender.mip_identifier:
                    return existing
                raise ConflictError("shared_identifier already in use", existing_id=existing.shared_identifier)
            search = SearchRequest.from_request(payload, sender.mip_identifier, _org_name(sender))
            self.store.add_search_request(search)
            self.store.commit()
            return search

    def approve_search(self, shared_identifier: str) -> SearchRequest:
        """Run the search against local members and reply with the matches."""
        with self.store.lock:
            search = self._inbound(self.store.find_search_request(shared_identifier), "search", shared_identifier)
            matches = [m.to_search_result() for m in self.store.search_members(search.search_params)]
            search.approve(matches)
            self.store.log_activity(f"Approved search '{search.search_description()}': {len(matches)} match(es)")
            self._queue_search_reply(search)
            self.store.commit()
            return search

    def decline_search(self, shared_identifier: str, reason: str | None = None) -> SearchRequest:
        with self.store.lock:
            search = self._inbound(self.store.find_search_request(shared_identifier), "search", shared_identifier)
            search.decline(reason)
            self.store.log_activity(f"Declined search '{search.search_description()}'")
            self._queue_search_reply(search)
            self.store.commit()
            return search

    def receive_search_reply(self, sender: VerifiedSender, payload: dict[str, Any]) -> SearchRequest:
        """Apply a peer's answer to a search this node sent."""
        shared_identifier = payload.get("shared_identifier")
        with self.store.lock:
            search = self.store.find_search_request(shared_identifier)
            search = self._outbound(search, sender, "search", shared_identifier)
            if payload.get("status") == RequestStatus.APPROVED.value:
                matches = payload.get("matches") or []
                if not isinstance(matches, list):
                    raise ValidationException("matches must be a list", field="matches")
                search.approve(matches)
            else:
                search.decline(payload.get("reason"))
            self.store.log_activity(
                f"Search reply from {search.target_org}: {search.status.value} ({len(search.matches)} match(es))"
            )
            self.store.commit()
            return search

    def _queue_search_reply(self, search: SearchRequest) -> None:
        connection = self.store.find_connection(search.target_mip_identifier)
        if connection is None:
            logger.warning(f"No connection to reply to search {search.shared_identifier}")
            return
        self._queue(
            JobKind.SEARCH_REPLY,
            connection,
            f"search reply to {connection.organization_name}",
            lambda client, url=connection.mip_url: client.member_search_reply(url, search),
        )

    # ==========================================================================
    # Certificates of good standing
    # ==========================================================================

    def start_cogs(
        self,
        target_mip_identifier: str,
        requested_member_number: str,
        requesting_member: dict[str, Any] | None = None,
        notes: str | None = None,
    ) -> CogsRequest:
        if not requested_member_number:
            raise ValidationException("requested_member_number is required", field="requested_member_number")
        with self.store.lock:
            connection = self._active_connection(target_mip_identifier)
            cogs = CogsRequest(
                direction=Direction.OUTBOUND,
                target_mip_identifier=connection.mip_identifier,
                target_org=connection.organization_name,
                requesting_member=requesting_member or {},
                requested_member_number=str(requested_member_number),
                notes=notes,
            )
            self.store.add_cogs_request(cogs)
            self._queue(
                JobKind.COGS_REQUEST,
                connection,
                f"COGS request to {connection.organization_name}",
                lambda client, url=connection.mip_url: client.request_cogs(url, cogs),
            )
            self.store.commit()
            return cogs

    def receive_cogs(self, sender: VerifiedSender, payload: dict[str, Any]) -> CogsRequest:
        with self.store.lock:
            existing = self.store.find_cogs_request(payload.get("shared_identifier"))
            if existing is not None:
                if existing.direction == Direction.INBOUND and existing.target_mip_identifier == sender.mip_identifier:
                    return existing
                raise ConflictError("shared_identifier already in use", existing_id=existing.shared_identifier)
            cogs = CogsRequest.from_request(payload, sender.mip_identifier, _org_name(sender))
            self.store.add_cogs_request(cogs)
            self.store.commit()
            return cogs

    def approve_cogs(self, shared_identifier: str) -> CogsRequest:
        """Issue a signed certificate for the requested member.

        Raises:
            NotFoundError: Unknown request or member
        """
        with self.store.lock:
            cogs = self._inbound(self.store.find_cogs_request(shared_identifier), "cogs", shared_identifier)
            member = self.store.find_member(cogs.requested_member_number)
            if member is None:
                raise NotFoundError("member", str(cogs.requested_member_number))
            cogs.approve(member, self.store.identity, validity_days=self.settings.cogs_validity_days)
            self.store.log_activity(f"Issued COGS for member {member.member_number} to {cogs.target_org}")
            self._queue_cogs_reply(cogs)
            self.store.commit()
            return cogs

    def decline_cogs(self, shared_identifier: str, reason: str | None = None) -> CogsRequest:
        with self.store.lock:
            cogs = self._inbound(self.store.find_cogs_request(shared_identifier), "cogs", shared_identifier)
            cogs.decline(reason)
            self.store.log_activity(f"Declined COGS request from {cogs.target_org}")
            self._queue_cogs_reply(cogs)
            self.store.commit()
            return cogs

    def receive_cogs_reply(self, sender: VerifiedSender, payload: dict[str, Any]) -> CogsRequest:
        """Apply a peer's certificate (or refusal) to a COGS request this node sent.

        Raises:
            ValidationException: An approved certificate is not signed by the sender
        """
        shared_identifier = payload.get("shared_identifier")
        with self.store.lock:
            cogs = self.store.find_cogs_request(shared_identifier)
            cogs = self._outbound(cogs, sender, "cogs", shared_identifier)
            if payload.get("status") == RequestStatus.APPROVED.value:
                certificate = payload.get("certificate") or payload
                if not verify_certificate(certificate, sender.public_key):
                    raise ValidationException("Certificate signature is invalid", field="signature")
            cogs.apply_reply(payload)
            self.store.log_activity(f"COGS reply from {cogs.target_org}: {cogs.status.value}")
            self.store.commit()
            return cogs

    def _queue_cogs_reply(self, cogs: CogsRequest) -> None:
        connection = self.store.find_connection(cogs.target_mip_identifier)
        if connection is None:
            logger.warning(f"No connection to reply to COGS request {cogs.shared_identifier}")
            return
        self._queue(
            JobKind.COGS_REPLY,
            connection,
            f"COGS reply to {connection.organization_name}",
            lambda client, url=connection.mip_url: client.cogs_reply(url, cogs),
        )

    # ==========================================================================
    # Member status checks
    # ==========================================================================

    def member_status(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Answer an inbound status check."""
        member_number = payload.get("member_number")
        if not member_number:
            raise ValidationException("member_number is required", field="member_number")
        member = self.store.find_member(str(member_number))
        if member is None:
            return {"found": False, "member_number": str(member_number)}
        return member.to_status_check()

    async def check_member_status(self, target_mip_identifier: str, member_number: str) -> dict[str, Any]:
        """Ask an ACTIVE connection for a member's status and wait for the answer."""
        if not member_number:
            raise ValidationException("member_number is required", field="member_number")
        with self.store.lock:
            connection = self._active_connection(target_mip_identifier)
            url = connection.mip_url
        result = await self.client.member_status_check(url, member_number)
        if not result.success:
            raise TransportError(f"Status check refused: {result.error}", url=url)
        self.store.log_activity(f"Status check for member {member_number} at {connection.organization_name}")
        return result.data

    # ==========================================================================
    # Internals
    # ==========================================================================

    def _active_connection(self, mip_identifier: str) -> Connection:
        connection = self.store.find_connection(mip_identifier)
        if connection is None:
            raise NotFoundError("connection", mip_identifier)
        if not connection.is_active():
            raise ConflictError(f"Connection with {connection.organization_name} is not active")
        return connection

    @staticmethod
    def _inbound(record, record_type: str, shared_identifier: str):
        if record is None or record.direction != Direction.INBOUND:
            raise NotFoundError(record_type, shared_identifier)
        return record

    @staticmethod
    def _outbound(record, sender: VerifiedSender, record_type: str, shared_identifier: str | None):
        if (
            record is None
            or record.direction != Direction.OUTBOUND
            or record.target_mip_identifier != sender.mip_identifier
        ):
            raise NotFoundError(record_type, str(shared_identifier))
        return record

    def _queue(self, kind: JobKind, connection: Connection, description: str, send) -> None:
        self.outbox.enqueue(
            OutboundJob(
                kind=kind,
                target_mip_identifier=connection.mip_identifier,
                target_url=connection.mip_url,
                description=description,
                send=send,
            )
        )


def _org_name(sender: VerifiedSender) -> str:
    if sender.connection is not None:
        return sender.connection.organization_name
    return "Unknown"
