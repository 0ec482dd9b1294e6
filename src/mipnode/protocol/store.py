# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Per-node state tables.

One NodeStore is constructed at startup and handed to every component that
reads or writes node state. All tables share a single re-entrant lock:
callers that read, evaluate and then write (trust re-evaluation, duplicate
connection checks) hold ``store.lock`` across the whole sequence. Outbound
network calls must never run while the lock is held.

The store optionally snapshots connections, endorsements and exchanges to a
JSON file. The node's private key is never written here.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections import deque
from pathlib import Path
from typing import Any

from ..core.exceptions import ConflictError, ValidationException
from .models import (
    ActivityEntry,
    CogsRequest,
    Connection,
    ConnectionStatus,
    Endorsement,
    Member,
    NodeIdentity,
    SearchRequest,
)

logger = logging.getLogger(__name__)

DEFAULT_ACTIVITY_LOG_SIZE = 100
SNAPSHOT_VERSION = 1


class NodeStore:
    """In-memory tables for one MIP node, guarded by one lock."""

    def __init__(
        self,
        identity: NodeIdentity,
        persist_path: str | Path | None = None,
        activity_log_size: int = DEFAULT_ACTIVITY_LOG_SIZE,
    ):
        """Initialize the store.

        Args:
            identity: This node's identity
            persist_path: Optional JSON snapshot path, loaded if it exists
            activity_log_size: Number of activity entries kept
        """
        self.identity = identity
        self.lock = threading.RLock()
        self._connections: dict[str, Connection] = {}  # mip_identifier -> Connection
        self._members: dict[str, Member] = {}  # member_number -> Member
        self._endorsements: dict[tuple[str, str, str], Endorsement] = {}  # statement_key -> Endorsement
        self._searches: dict[str, SearchRequest] = {}  # shared_identifier -> SearchRequest
        self._cogs: dict[str, CogsRequest] = {}  # shared_identifier -> CogsRequest
        self._activity: deque[ActivityEntry] = deque(maxlen=activity_log_size)
        self._persist_path = Path(persist_path) if persist_path else None

        if self._persist_path and self._persist_path.exists():
            self._load()

    # ==========================================================================
    # Connections
    # ==========================================================================

    def add_connection(self, connection: Connection) -> Connection:
        """Add a new connection.

        Raises:
            ConflictError: If a connection for the identifier already exists.
        """
        with self.lock:
            if connection.mip_identifier in self._connections:
                raise ConflictError(
                    f"Connection already exists: {connection.mip_identifier}",
                    existing_id=connection.mip_identifier,
                )
            self._connections[connection.mip_identifier] = connection
            self.log_activity(f"Connection added: {connection.organization_name} ({connection.status.value})")
            return connection

    def find_connection(self, mip_identifier: str | None) -> Connection | None:
        if not mip_identifier:
            return None
        with self.lock:
            return self._connections.get(mip_identifier)

    def all_connections(self) -> list[Connection]:
        with self.lock:
            return list(self._connections.values())

    def connections_with_status(self, status: ConnectionStatus) -> list[Connection]:
        with self.lock:
            return [c for c in self._connections.values() if c.status == status]

    def active_connections(self) -> list[Connection]:
        return self.connections_with_status(ConnectionStatus.ACTIVE)

    def pending_connections(self) -> list[Connection]:
        return self.connections_with_status(ConnectionStatus.PENDING)

    # ==========================================================================
    # Endorsements
    # ==========================================================================

    def add_endorsement(self, endorsement: Endorsement) -> Endorsement:
        """Store an endorsement; an identical statement already on file is returned instead."""
        key = endorsement.statement_key()
        with self.lock:
            existing = self._endorsements.get(key)
            if existing is not None:
                return existing
            self._endorsements[key] = endorsement
            self.log_activity(
                f"Endorsement on file: {endorsement.endorser_mip_identifier} vouches for "
                f"{endorsement.endorsed_mip_identifier}"
            )
            return endorsement

    def all_endorsements(self) -> list[Endorsement]:
        with self.lock:
            return list(self._endorsements.values())

    def find_endorsements_for(self, mip_identifier: str) -> list[Endorsement]:
        with self.lock:
            return [e for e in self._endorsements.values() if e.endorsed_mip_identifier == mip_identifier]

    def find_endorsements_from(self, mip_identifier: str) -> list[Endorsement]:
        with self.lock:
            return [e for e in self._endorsements.values() if e.endorser_mip_identifier == mip_identifier]

    # ==========================================================================
    # Members
    # ==========================================================================

    def add_member(self, member: Member) -> None:
        with self.lock:
            self._members[member.member_number] = member

    def find_member(self, member_number: str | None) -> Member | None:
        if not member_number:
            return None
        with self.lock:
            return self._members.get(str(member_number))

    def all_members(self) -> list[Member]:
        with self.lock:
            return list(self._members.values())

    def search_members(self, search_params: dict[str, Any]) -> list[Member]:
        with self.lock:
            return [m for m in self._members.values() if m.matches(search_params)]

    # ==========================================================================
    # Search and COGS exchanges
    # ==========================================================================

    def add_search_request(self, search: SearchRequest) -> SearchRequest:
        with self.lock:
            self._searches[search.shared_identifier] = search
            self.log_activity(f"Search request: {search.direction.value} - {search.target_org}")
            return search

    def find_search_request(self, shared_identifier: str | None) -> SearchRequest | None:
        if not shared_identifier:
            return None
        with self.lock:
            return self._searches.get(shared_identifier)

    def all_search_requests(self) -> list[SearchRequest]:
        with self.lock:
            return list(self._searches.values())

    def add_cogs_request(self, cogs: CogsRequest) -> CogsRequest:
        with self.lock:
            self._cogs[cogs.shared_identifier] = cogs
            self.log_activity(f"COGS request: {cogs.direction.value} - {cogs.target_org}")
            return cogs

    def find_cogs_request(self, shared_identifier: str | None) -> CogsRequest | None:
        if not shared_identifier:
            return None
        with self.lock:
            return self._cogs.get(shared_identifier)

    def all_cogs_requests(self) -> list[CogsRequest]:
        with self.lock:
            return list(self._cogs.values())

    # ==========================================================================
    # Activity log
    # ==========================================================================

    def log_activity(self, message: str) -> None:
        """Record an activity entry (newest first) and mirror it to the log."""
        with self.lock:
            self._activity.appendleft(ActivityEntry(message=message))
        logger.info(message)

    def recent_activity(self, count: int = 20) -> list[ActivityEntry]:
        with self.lock:
            return list(self._activity)[:count]

    # ==========================================================================
    # Persistence
    # ==========================================================================

    def commit(self) -> None:
        """Write the snapshot if persistence is enabled."""
        if not self._persist_path:
            return
        with self.lock:
            snapshot = {
                "version": SNAPSHOT_VERSION,
                "mip_identifier": self.identity.mip_identifier,
                "connections": [c.to_dict() for c in self._connections.values()],
                "endorsements": [e.to_dict() for e in self._endorsements.values()],
                "searches": [s.to_dict() for s in self._searches.values()],
                "cogs": [c.to_dict() for c in self._cogs.values()],
            }
        try:
            serialized = json.dumps(snapshot, indent=2)
        except (TypeError, ValueError) as e:
            logger.error(f"Node state is not serializable, snapshot skipped: {e}")
            return
        try:
            self._persist_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._persist_path.with_suffix(self._persist_path.suffix + ".tmp")
            with open(tmp_path, "w") as f:
                f.write(serialized)
            os.replace(tmp_path, self._persist_path)
        except OSError as e:
            logger.warning(f"Failed to save node state: {e}")

    def _load(self) -> None:
        """Load the snapshot from disk."""
        if not self._persist_path:
            return
        try:
            with open(self._persist_path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load node state: {e}")
            return

        if data.get("mip_identifier") != self.identity.mip_identifier:
            logger.warning(
                f"Ignoring state file {self._persist_path}: written for node {data.get('mip_identifier')}"
            )
            return

        try:
            for item in data.get("connections", []):
                connection = Connection.from_dict(item)
                self._connections[connection.mip_identifier] = connection
            for item in data.get("endorsements", []):
                endorsement = Endorsement.from_dict(item)
                self._endorsements[endorsement.statement_key()] = endorsement
            for item in data.get("searches", []):
                search = SearchRequest.from_dict(item)
                self._searches[search.shared_identifier] = search
            for item in data.get("cogs", []):
                cogs = CogsRequest.from_dict(item)
                self._cogs[cogs.shared_identifier] = cogs
        except (KeyError, TypeError, ValueError, ValidationException) as e:
            logger.warning(f"Node state file is malformed, partially loaded: {e}")

        logger.info(
            f"Loaded {len(self._connections)} connections and {len(self._endorsements)} "
            f"endorsements from {self._persist_path}"
        )
