# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Connection lifecycle orchestration.

ConnectionManager owns every status change of a Connection, whether it comes
from an inbound request, a peer's lifecycle notification, or a local admin
action. Each change happens inside ``store.lock`` as one
read-evaluate-commit sequence with no awaits; the outbound notifications it
implies are queued on the Outbox and delivered after the lock is released.

Entering ACTIVE always queues this node's endorsement of the peer, and any
new ACTIVE connection or newly received endorsement triggers a re-evaluation
of every PENDING connection until no further connection activates.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from ..core.config import CoreSettings, get_config
from ..core.exceptions import ConflictError, NotFoundError, TransportError, ValidationException
from . import crypto
from .client import MipClient
from .models import Connection, ConnectionStatus, Direction, Endorsement
from .outbox import JobKind, Outbox, OutboundJob
from .store import NodeStore
from .trust import TrustEvaluator
from .verifier import VerifiedSender

logger = logging.getLogger(__name__)

MAX_BUNDLED_ENDORSEMENTS = 50


class ConnectionManager:
    """Drives the connection state machine for one node."""

    def __init__(
        self,
        store: NodeStore,
        evaluator: TrustEvaluator,
        outbox: Outbox,
        client: MipClient | None = None,
        settings: CoreSettings | None = None,
    ):
        self.store = store
        self.evaluator = evaluator
        self.outbox = outbox
        self.client = client or outbox.client
        self.settings = settings or get_config()

    @property
    def identity(self):
        return self.store.identity

    # ==========================================================================
    # Inbound connection requests
    # ==========================================================================

    def handle_connection_request(self, sender: VerifiedSender, payload: dict[str, Any]) -> Connection:
        """Handle ``POST mip_connections``.

        Idempotent per identifier: a repeat request returns the existing record
        unchanged, except that a DECLINED record is reopened when re-requests
        after decline are allowed.

        Raises:
            ValidationException: Payload is malformed or does not match the signer
        """
        if not isinstance(payload, dict):
            raise ValidationException("Connection request body must be an object")
        claimed_id = payload.get("mip_identifier")
        if claimed_id != sender.mip_identifier:
            raise ValidationException("mip_identifier does not match the signing node", field="mip_identifier")
        if claimed_id == self.identity.mip_identifier:
            raise ValidationException("A node cannot connect to itself", field="mip_identifier")
        bundled = payload.get("endorsements")
        if bundled is None:
            bundled = []
        if not isinstance(bundled, list):
            raise ValidationException("endorsements must be a list", field="endorsements")
        if len(bundled) > MAX_BUNDLED_ENDORSEMENTS:
            raise ValidationException(
                f"At most {MAX_BUNDLED_ENDORSEMENTS} endorsements may be bundled", field="endorsements"
            )

        with self.store.lock:
            connection = self.store.find_connection(sender.mip_identifier)

            if connection is not None:
                if connection.is_declined() and self.settings.allow_rerequest_after_decline:
                    connection.reopen(_without_key(payload))
                    self.store.log_activity(f"Connection re-requested by {connection.organization_name}")
                else:
                    logger.debug(f"Repeat connection request from {sender.mip_identifier}")
                    return connection
            else:
                if not _same_key(payload.get("public_key"), sender.public_key):
                    raise ValidationException(
                        "public_key does not match the key that signed the request", field="public_key"
                    )
                connection = Connection.from_request(payload, Direction.INBOUND)
                connection.public_key = sender.public_key
                self.store.add_connection(connection)

            self._retain_bundled_endorsements(connection, bundled)

            trusted = self.evaluator.trusted_count_on_file(connection.mip_identifier, connection.public_key)
            if self.evaluator.meets_threshold(trusted):
                connection.approve(self.settings.default_daily_rate_limit)
                self.store.log_activity(
                    f"Auto-approved {connection.organization_name} ({trusted} trusted endorsements)"
                )
                # The response itself carries ACTIVE, so only the endorsement goes out
                self._queue_endorsement(connection)
                self._reevaluate_locked()
            else:
                self.store.log_activity(
                    f"Connection request from {connection.organization_name} pending review "
                    f"({trusted}/{self.evaluator.threshold} trusted endorsements)"
                )
            self.store.commit()
            return connection

    def _retain_bundled_endorsements(self, connection: Connection, bundled: list[Any]) -> None:
        """Keep bundled endorsements of ``connection`` whose endorser is already known here.

        An endorser may still be PENDING; its endorsement then counts once it
        becomes ACTIVE. Endorsements from unknown nodes are dropped.
        """
        target_fingerprint = connection.public_key_fingerprint()
        for item in bundled:
            try:
                endorsement = Endorsement.from_payload(item)
            except ValidationException as e:
                logger.debug(f"Ignoring malformed bundled endorsement: {e.message}")
                continue
            if endorsement.endorsed_mip_identifier != connection.mip_identifier:
                continue
            if endorsement.endorsed_public_key_fingerprint != target_fingerprint:
                continue
            if endorsement.endorser_mip_identifier == connection.mip_identifier:
                continue
            endorser = self.store.find_connection(endorsement.endorser_mip_identifier)
            if endorser is None:
                logger.debug(f"Ignoring endorsement from unknown node {endorsement.endorser_mip_identifier}")
                continue
            if not endorsement.verify_signature(endorser.public_key):
                logger.debug(f"Ignoring endorsement {endorsement.id}: bad signature or expired")
                continue
            self.store.add_endorsement(endorsement)

    # ==========================================================================
    # Local (admin) transitions
    # ==========================================================================

    def approve(self, mip_identifier: str, daily_rate_limit: int | None = None) -> Connection:
        """Manually approve a PENDING connection and notify the peer."""
        with self.store.lock:
            connection = self._get(mip_identifier)
            rate = self.settings.default_daily_rate_limit if daily_rate_limit is None else daily_rate_limit
            connection.approve(rate)
            self.store.log_activity(f"Approved connection with {connection.organization_name}")
            self._queue_approved(connection)
            self._queue_endorsement(connection)
            self._reevaluate_locked()
            self.store.commit()
            return connection

    def decline(self, mip_identifier: str, reason: str | None = None) -> Connection:
        with self.store.lock:
            connection = self._get(mip_identifier)
            connection.decline(reason)
            self.store.log_activity(f"Declined connection with {connection.organization_name}")
            self._queue(
                JobKind.CONNECTION_DECLINED,
                connection,
                f"decline notice to {connection.organization_name}",
                lambda client, url=connection.mip_url: client.decline_connection(url, reason),
            )
            self.store.commit()
            return connection

    def revoke(self, mip_identifier: str, reason: str | None = None) -> Connection:
        with self.store.lock:
            connection = self._get(mip_identifier)
            connection.revoke(reason)
            self.store.log_activity(f"Revoked connection with {connection.organization_name}")
            self._queue(
                JobKind.CONNECTION_REVOKED,
                connection,
                f"revoke notice to {connection.organization_name}",
                lambda client, url=connection.mip_url: client.revoke_connection(url, reason),
            )
            self.store.commit()
            return connection

    def restore(self, mip_identifier: str) -> Connection:
        with self.store.lock:
            connection = self._get(mip_identifier)
            connection.restore()
            self.store.log_activity(f"Restored connection with {connection.organization_name}")
            self._queue(
                JobKind.CONNECTION_RESTORED,
                connection,
                f"restore notice to {connection.organization_name}",
                lambda client, url=connection.mip_url: client.restore_connection(url),
            )
            self._reevaluate_locked()
            self.store.commit()
            return connection

    # ==========================================================================
    # Peer lifecycle notifications
    # ==========================================================================

    def handle_approved(self, sender: VerifiedSender, payload: dict[str, Any]) -> Connection:
        """The peer approved our request: PENDING -> ACTIVE on this side too.

        Raises:
            ConflictError: The connection was requested by the peer, not by this node
        """
        with self.store.lock:
            connection = self._get_requested_by_us(sender.mip_identifier, "approve")
            profile = payload.get("node_profile") if isinstance(payload.get("node_profile"), dict) else None
            rate = payload.get("daily_rate_limit")
            if not isinstance(rate, int) or rate < 0:
                rate = self.settings.default_daily_rate_limit
            connection.approve(rate, _without_key(profile) if profile else None)
            if payload.get("share_my_organization") is not None:
                connection.share_my_organization = bool(payload["share_my_organization"])
            self.store.log_activity(f"{connection.organization_name} approved our connection")
            self._queue_endorsement(connection)
            self._reevaluate_locked()
            self.store.commit()
            return connection

    def handle_declined(self, sender: VerifiedSender, payload: dict[str, Any]) -> Connection:
        with self.store.lock:
            connection = self._get_requested_by_us(sender.mip_identifier, "decline")
            connection.decline(payload.get("reason"))
            self.store.log_activity(f"{connection.organization_name} declined our connection")
            self.store.commit()
            return connection

    def handle_revoked(self, sender: VerifiedSender, payload: dict[str, Any]) -> Connection:
        with self.store.lock:
            connection = self._get(sender.mip_identifier)
            connection.revoke(payload.get("reason"), by_peer=True)
            self.store.log_activity(f"{connection.organization_name} revoked our connection")
            self.store.commit()
            return connection

    def handle_restored(self, sender: VerifiedSender, payload: dict[str, Any]) -> Connection:
        """The peer lifts its own revocation.

        Raises:
            ConflictError: This node revoked the connection; only a local restore lifts it
        """
        with self.store.lock:
            connection = self._get(sender.mip_identifier)
            if connection.is_revoked() and not connection.revoked_by_peer:
                raise ConflictError(
                    "Connection was revoked by this node and cannot be restored by the peer",
                    existing_id=connection.mip_identifier,
                )
            connection.restore()
            self.store.log_activity(f"{connection.organization_name} restored our connection")
            self._reevaluate_locked()
            self.store.commit()
            return connection

    # ==========================================================================
    # Endorsements
    # ==========================================================================

    def receive_endorsement(self, sender: VerifiedSender, payload: dict[str, Any]) -> Endorsement:
        """Store an endorsement issued by an ACTIVE peer and re-evaluate.

        Raises:
            ValidationException: Malformed, not issued by the sender, or bad signature
            ConflictError: The sender is not an ACTIVE connection
        """
        endorsement = Endorsement.from_payload(payload)
        if endorsement.endorser_mip_identifier != sender.mip_identifier:
            raise ValidationException("Endorsement was not issued by the sender", field="endorser_mip_identifier")

        with self.store.lock:
            connection = self.store.find_connection(sender.mip_identifier)
            if connection is None or not connection.is_active():
                raise ConflictError("Endorsements are only accepted from active connections")
            if not endorsement.verify_signature(connection.public_key):
                raise ValidationException("Endorsement signature is invalid or expired", field="endorsement_signature")
            stored = self.store.add_endorsement(endorsement)
            self._reevaluate_locked()
            self.store.commit()
            return stored

    def issue_endorsement(self, connection: Connection, now: datetime | None = None) -> Endorsement:
        """Sign an endorsement of a peer's key and keep it on file."""
        endorsement = Endorsement.create(
            self.identity,
            connection.mip_identifier,
            connection.public_key,
            validity_days=self.settings.endorsement_validity_days,
            now=now,
        )
        return self.store.add_endorsement(endorsement)

    def endorsements_of_self(self) -> list[Endorsement]:
        """Unexpired endorsements other nodes have issued for this node."""
        own_fingerprint = self.identity.public_key_fingerprint()
        return [
            e for e in self.store.find_endorsements_for(self.identity.mip_identifier) if e.valid_for(own_fingerprint)
        ]

    # ==========================================================================
    # Re-evaluation
    # ==========================================================================

    def reevaluate_pending(self) -> list[Connection]:
        """Auto-approve every PENDING connection that now meets the threshold."""
        with self.store.lock:
            activated = self._reevaluate_locked()
            if activated:
                self.store.commit()
            return activated

    def _reevaluate_locked(self) -> list[Connection]:
        activated: list[Connection] = []
        changed = True
        while changed:
            changed = False
            for connection in self.store.pending_connections():
                trusted = self.evaluator.trusted_count_on_file(connection.mip_identifier, connection.public_key)
                if not self.evaluator.meets_threshold(trusted):
                    continue
                connection.approve(self.settings.default_daily_rate_limit)
                self.store.log_activity(
                    f"Auto-approved pending {connection.organization_name} ({trusted} trusted endorsements)"
                )
                self._queue_approved(connection)
                self._queue_endorsement(connection)
                activated.append(connection)
                changed = True
        return activated

    # ==========================================================================
    # Outbound initiation
    # ==========================================================================

    async def request_connection(self, target_url: str) -> Connection:
        """Ask a remote node for a connection and record the outcome.

        Raises:
            ConflictError: A connection with that node already exists
            TransportError: The node is unreachable or refused the request
        """
        target_url = target_url.rstrip("/")
        with self.store.lock:
            for existing in self.store.all_connections():
                if existing.mip_url.rstrip("/") == target_url:
                    raise ConflictError(
                        f"Connection already exists for {target_url}", existing_id=existing.mip_identifier
                    )
            bundle = self.endorsements_of_self()

        result = await self.client.request_connection(target_url, bundle)
        if not result.success:
            raise TransportError(f"Connection request refused: {result.error}", url=target_url)

        reply = result.data.get("mip_connection")
        if not isinstance(reply, dict) or not isinstance(reply.get("node_profile"), dict):
            raise TransportError("Connection reply is missing node_profile", url=target_url)
        profile = reply["node_profile"]
        if not profile.get("mip_identifier") or not crypto.is_valid_public_key(profile.get("public_key")):
            raise TransportError("Connection reply carries an unusable node profile", url=target_url)

        try:
            status = ConnectionStatus(reply.get("status", ConnectionStatus.PENDING.value))
        except ValueError as e:
            raise TransportError(f"Unknown connection status in reply: {reply.get('status')}", url=target_url) from e

        with self.store.lock:
            connection = Connection.from_request({"mip_url": target_url, **profile}, Direction.OUTBOUND)
            connection.status = status
            if isinstance(reply.get("daily_rate_limit"), int):
                connection.daily_rate_limit = reply["daily_rate_limit"]
            self.store.add_connection(connection)
            self.store.log_activity(f"Requested connection with {connection.organization_name}: {status.value}")
            if connection.is_active():
                self._queue_endorsement(connection)
                self._reevaluate_locked()
            self.store.commit()
            return connection

    # ==========================================================================
    # Queries
    # ==========================================================================

    def connected_organizations(self, requester_mip_identifier: str) -> list[dict[str, Any]]:
        """Profiles of ACTIVE, sharing connections other than the requester."""
        return [
            c.to_node_profile()
            for c in self.store.active_connections()
            if c.share_my_organization and c.mip_identifier != requester_mip_identifier
        ]

    def get(self, mip_identifier: str) -> Connection:
        return self._get(mip_identifier)

    # ==========================================================================
    # Internals
    # ==========================================================================

    def _get(self, mip_identifier: str) -> Connection:
        connection = self.store.find_connection(mip_identifier)
        if connection is None:
            raise NotFoundError("connection", mip_identifier)
        return connection

    def _get_requested_by_us(self, mip_identifier: str, action: str) -> Connection:
        connection = self._get(mip_identifier)
        if connection.direction != Direction.OUTBOUND:
            raise ConflictError(
                f"Peer cannot {action} a connection it requested itself",
                existing_id=mip_identifier,
            )
        return connection

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

    def _queue_approved(self, connection: Connection) -> None:
        rate = connection.daily_rate_limit
        self._queue(
            JobKind.CONNECTION_APPROVED,
            connection,
            f"approval notice to {connection.organization_name}",
            lambda client, url=connection.mip_url: client.approve_connection(url, rate),
        )

    def _queue_endorsement(self, connection: Connection) -> None:
        if not connection.public_key_fingerprint():
            logger.warning(f"Cannot endorse {connection.mip_identifier}: no usable public key")
            return
        endorsement = self.issue_endorsement(connection)
        self._queue(
            JobKind.ENDORSEMENT,
            connection,
            f"endorsement to {connection.organization_name}",
            lambda client, url=connection.mip_url: client.send_endorsement(url, endorsement),
        )


def _same_key(claimed: Any, verified: str) -> bool:
    if not isinstance(claimed, str) or not claimed.strip():
        return False
    try:
        return crypto.fingerprint(claimed) == crypto.fingerprint(verified)
    except ValueError:
        return False


def _without_key(profile: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in profile.items() if k != "public_key"}
