"""Tests for NodeStore tables, activity log and snapshots."""

from __future__ import annotations

import json
import logging
from datetime import date

import pytest

from mipnode.core.exceptions import ConflictError
from mipnode.protocol.models import ConnectionStatus, Endorsement, SearchRequest
from mipnode.protocol.store import NodeStore


@pytest.fixture
def store(local_identity):
    return NodeStore(local_identity)


class TestConnections:
    def test_add_and_find(self, store, connection_factory, alice):
        connection = store.add_connection(connection_factory(alice))
        assert store.find_connection(alice.mip_identifier) is connection
        assert store.find_connection(None) is None
        assert store.active_connections() == [connection]

    def test_duplicate_identifier_conflicts(self, store, connection_factory, alice):
        store.add_connection(connection_factory(alice))
        with pytest.raises(ConflictError) as exc_info:
            store.add_connection(connection_factory(alice, ConnectionStatus.PENDING))
        assert exc_info.value.existing_id == alice.mip_identifier
        assert len(store.all_connections()) == 1

    def test_filter_by_status(self, store, connection_factory, alice, bob):
        store.add_connection(connection_factory(alice))
        store.add_connection(connection_factory(bob, ConnectionStatus.PENDING))
        assert [c.mip_identifier for c in store.pending_connections()] == [bob.mip_identifier]
        assert store.connections_with_status(ConnectionStatus.REVOKED) == []


class TestEndorsements:
    def test_identical_statement_stored_once(self, store, endorsement_factory, alice, bob):
        endorsement = endorsement_factory(alice, bob)
        first = store.add_endorsement(endorsement)
        again = store.add_endorsement(endorsement)
        assert again is first
        assert len(store.all_endorsements()) == 1

    def test_received_copy_of_statement_stored_once(self, store, endorsement_factory, alice, bob):
        original = endorsement_factory(alice, bob)
        store.add_endorsement(original)
        copy = Endorsement.from_payload({**original.to_payload(), "id": "another-local-id"})

        assert store.add_endorsement(copy) is original
        assert len(store.all_endorsements()) == 1

    def test_lookup_by_endorser_and_endorsed(self, store, endorsement_factory, alice, bob, carol):
        store.add_endorsement(endorsement_factory(alice, bob))
        store.add_endorsement(endorsement_factory(alice, carol))
        store.add_endorsement(endorsement_factory(carol, bob))
        assert len(store.find_endorsements_for(bob.mip_identifier)) == 2
        assert len(store.find_endorsements_from(alice.mip_identifier)) == 2
        assert store.find_endorsements_for(alice.mip_identifier) == []


class TestMembers:
    def test_search(self, store, members):
        for member in members:
            store.add_member(member)
        assert store.find_member("1002").last_name == "Babbage"
        assert [m.member_number for m in store.search_members({"last_name": "x", "first_name": "a"})] == []
        assert len(store.search_members({"member_number": "100"})) == 2


class TestActivity:
    def test_newest_first(self, store):
        store.log_activity("first")
        store.log_activity("second")
        assert [a.message for a in store.recent_activity(2)] == ["second", "first"]

    def test_bounded(self, local_identity):
        store = NodeStore(local_identity, activity_log_size=3)
        for i in range(5):
            store.log_activity(f"entry {i}")
        assert [a.message for a in store.recent_activity(10)] == ["entry 4", "entry 3", "entry 2"]


class TestPersistence:
    def test_commit_and_reload(self, tmp_path, local_identity, connection_factory, endorsement_factory, alice, bob):
        path = tmp_path / "state" / "node.json"
        store = NodeStore(local_identity, persist_path=path)
        connection = store.add_connection(connection_factory(alice))
        connection.revoke("audit", by_peer=True)
        store.add_endorsement(endorsement_factory(alice, bob))
        store.add_search_request(
            SearchRequest.from_request({"member_number": "1001"}, alice.mip_identifier, alice.organization_name)
        )
        store.commit()

        reloaded = NodeStore(local_identity, persist_path=path)
        restored = reloaded.find_connection(alice.mip_identifier)
        assert restored.status == ConnectionStatus.REVOKED
        assert restored.revoke_reason == "audit"
        assert restored.revoked_by_peer is True
        assert len(reloaded.all_endorsements()) == 1
        assert len(reloaded.all_search_requests()) == 1

    def test_snapshot_has_no_private_key(self, tmp_path, local_identity):
        path = tmp_path / "node.json"
        NodeStore(local_identity, persist_path=path).commit()
        assert "PRIVATE KEY" not in path.read_text()

    def test_other_nodes_snapshot_ignored(self, tmp_path, local_identity, alice, connection_factory, bob):
        path = tmp_path / "node.json"
        store = NodeStore(alice, persist_path=path)
        store.add_connection(connection_factory(bob))
        store.commit()

        assert NodeStore(local_identity, persist_path=path).all_connections() == []

    def test_corrupt_snapshot_starts_empty(self, tmp_path, local_identity):
        path = tmp_path / "node.json"
        path.write_text("{not json")
        assert NodeStore(local_identity, persist_path=path).all_connections() == []

    def test_commit_without_path_is_noop(self, store):
        store.commit()

    def test_unserializable_state_keeps_last_snapshot(self, tmp_path, local_identity, alice, caplog):
        path = tmp_path / "node.json"
        store = NodeStore(local_identity, persist_path=path)
        store.commit()
        before = path.read_text()
        search = SearchRequest.from_request({"member_number": "1001"}, alice.mip_identifier, alice.organization_name)
        search.matches = [{"joined": date(2001, 5, 4)}]
        store.add_search_request(search)

        with caplog.at_level(logging.ERROR, logger="mipnode.protocol.store"):
            store.commit()

        assert path.read_text() == before
        assert "not serializable" in caplog.text

    def test_snapshot_format(self, tmp_path, local_identity):
        path = tmp_path / "node.json"
        NodeStore(local_identity, persist_path=path).commit()
        data = json.loads(path.read_text())
        assert data["version"] == 1
        assert data["mip_identifier"] == local_identity.mip_identifier
