"""Tests for the admin JSON API."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from starlette.testclient import TestClient

from mipnode.core.exceptions import TransportError
from mipnode.protocol.client import ClientResult, MipClient
from mipnode.protocol.models import ConnectionStatus, Direction
from mipnode.protocol.outbox import JobKind
from mipnode.protocol.verifier import VerifiedSender
from mipnode.server.app import create_app
from mipnode.server.config import ServerSettings


def sender_for(node, identity) -> VerifiedSender:
    connection = node.store.find_connection(identity.mip_identifier)
    return VerifiedSender(identity.mip_identifier, identity.public_key, connection)


@pytest.fixture
def admin(client, admin_headers):
    """Client that sends the admin bearer token."""
    client.headers.update(admin_headers)
    return client


# =============================================================================
# ACCESS CONTROL
# =============================================================================


class TestAdminAuth:
    def test_missing_token(self, client):
        response = client.get("/admin/node")
        assert response.status_code == 401
        assert response.json()["data"]["code"] == "AUTH_INVALID_TOKEN"

    def test_wrong_token(self, client):
        response = client.get("/admin/node", headers={"Authorization": "Bearer wrong"})
        assert response.status_code == 401

    def test_without_token_only_loopback(self, node, clean_env):
        app = create_app(node, ServerSettings(_env_file=None))
        response = TestClient(app).get("/admin/node")
        assert response.status_code == 403
        assert response.json()["data"]["code"] == "FORBIDDEN_ADMIN"


# =============================================================================
# NODE
# =============================================================================


class TestNodeInfo:
    def test_node_info(self, admin, node, add_connection, alice):
        add_connection(alice, ConnectionStatus.PENDING)
        info = admin.get("/admin/node").json()["data"]["node"]
        assert info["mip_identifier"] == node.identity.mip_identifier
        assert info["public_key_fingerprint"] == node.identity.public_key_fingerprint()
        assert info["connections"]["pending"] == 1
        assert info["members"] == 2
        assert "private_key" not in info

    def test_members(self, admin):
        members = admin.get("/admin/members").json()["data"]["members"]
        assert [m["member_number"] for m in members] == ["1001", "1002"]

    def test_activity(self, admin, node):
        node.store.log_activity("hello")
        entries = admin.get("/admin/activity?limit=1").json()["data"]["activity"]
        assert [e["message"] for e in entries] == ["hello"]

    def test_activity_bad_limit(self, admin):
        assert admin.get("/admin/activity?limit=many").status_code == 400


# =============================================================================
# CONNECTIONS
# =============================================================================


class TestConnections:
    def test_list_by_status(self, admin, add_connection, alice, bob):
        add_connection(alice, ConnectionStatus.PENDING)
        add_connection(bob, ConnectionStatus.ACTIVE)
        connections = admin.get("/admin/connections?status=pending").json()["data"]["connections"]
        assert [c["mip_identifier"] for c in connections] == [alice.mip_identifier]

    def test_unknown_status_filter(self, admin):
        assert admin.get("/admin/connections?status=sleeping").status_code == 400

    def test_get_unknown(self, admin):
        response = admin.get("/admin/connections/" + "0" * 32)
        assert response.status_code == 404
        assert response.json()["data"]["code"] == "NOT_FOUND_CONNECTION"

    def test_approve(self, admin, node, add_connection, alice):
        add_connection(alice, ConnectionStatus.PENDING)
        response = admin.post(f"/admin/connections/{alice.mip_identifier}/approve", json={"daily_rate_limit": 10})
        assert response.status_code == 200
        assert response.json()["data"]["connection"]["status"] == "ACTIVE"
        assert [job.kind for job in node.outbox.pending_jobs()] == [JobKind.CONNECTION_APPROVED, JobKind.ENDORSEMENT]

    @pytest.mark.parametrize("rate", [-1, "ten", True])
    def test_approve_rejects_bad_rate(self, admin, add_connection, alice, rate):
        add_connection(alice, ConnectionStatus.PENDING)
        response = admin.post(f"/admin/connections/{alice.mip_identifier}/approve", json={"daily_rate_limit": rate})
        assert response.status_code == 400

    def test_decline_revoke_restore(self, admin, add_connection, alice, bob):
        add_connection(alice, ConnectionStatus.PENDING)
        add_connection(bob, ConnectionStatus.ACTIVE)
        declined = admin.post(f"/admin/connections/{alice.mip_identifier}/decline", json={"reason": "unknown"})
        revoked = admin.post(f"/admin/connections/{bob.mip_identifier}/revoke", json={"reason": "audit"})
        restored = admin.post(f"/admin/connections/{bob.mip_identifier}/restore")
        assert declined.json()["data"]["connection"]["decline_reason"] == "unknown"
        assert revoked.json()["data"]["connection"]["status"] == "REVOKED"
        assert restored.json()["data"]["connection"]["status"] == "ACTIVE"

    def test_illegal_transition(self, admin, add_connection, alice):
        add_connection(alice, ConnectionStatus.PENDING)
        response = admin.post(f"/admin/connections/{alice.mip_identifier}/revoke")
        assert response.status_code == 409

    def test_invalid_json(self, admin, add_connection, alice):
        add_connection(alice, ConnectionStatus.PENDING)
        response = admin.post(
            f"/admin/connections/{alice.mip_identifier}/decline",
            content=b"{oops",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["data"]["code"] == "VALIDATION_INVALID_JSON"


class TestInitiateConnection:
    def test_url_required(self, admin):
        response = admin.post("/admin/connections", json={})
        assert response.status_code == 400
        assert response.json()["data"]["code"] == "VALIDATION_MISSING_FIELD"

    def test_pending_reply(self, admin, node, bob):
        client = AsyncMock(spec=MipClient)
        client.request_connection.return_value = ClientResult(
            success=True,
            status=200,
            body={
                "meta": {"succeeded": True},
                "data": {"mip_connection": {"status": "PENDING", "node_profile": bob.to_node_profile()}},
            },
        )
        node.connections.client = client

        response = admin.post("/admin/connections", json={"url": bob.mip_url})

        assert response.status_code == 201
        connection = node.store.find_connection(bob.mip_identifier)
        assert connection.is_pending()
        assert connection.direction == Direction.OUTBOUND

    def test_unreachable_peer(self, admin, node, bob):
        client = AsyncMock(spec=MipClient)
        client.request_connection.side_effect = TransportError("Request failed: refused", url=bob.mip_url)
        node.connections.client = client

        response = admin.post("/admin/connections", json={"url": bob.mip_url})

        assert response.status_code == 502
        assert response.json()["data"]["code"] == "PEER_UNREACHABLE"


# =============================================================================
# EXCHANGES
# =============================================================================


class TestExchanges:
    def test_initiate_search(self, admin, node, add_connection, alice):
        add_connection(alice, ConnectionStatus.ACTIVE)
        response = admin.post(
            "/admin/searches", json={"target_mip_identifier": alice.mip_identifier, "member_number": "5"}
        )
        assert response.status_code == 201
        assert response.json()["data"]["search"]["direction"] == "outbound"
        assert len(admin.get("/admin/searches").json()["data"]["searches"]) == 1

    def test_initiate_search_requires_target(self, admin):
        assert admin.post("/admin/searches", json={"member_number": "5"}).status_code == 400

    def test_search_to_pending_connection(self, admin, add_connection, alice):
        add_connection(alice, ConnectionStatus.PENDING)
        response = admin.post(
            "/admin/searches", json={"target_mip_identifier": alice.mip_identifier, "member_number": "5"}
        )
        assert response.status_code == 409

    def test_approve_inbound_search(self, admin, node, add_connection, alice):
        add_connection(alice, ConnectionStatus.ACTIVE)
        node.exchanges.receive_search(sender_for(node, alice), {"shared_identifier": "s-9", "member_number": "1001"})
        response = admin.post("/admin/searches/s-9/approve")
        assert response.json()["data"]["search"]["matches"][0]["member_number"] == "1001"

    def test_cogs_for_unknown_member(self, admin, node, add_connection, alice):
        add_connection(alice, ConnectionStatus.ACTIVE)
        node.exchanges.receive_cogs(
            sender_for(node, alice), {"shared_identifier": "c-9", "requested_member_number": "4040"}
        )
        response = admin.post("/admin/cogs/c-9/approve")
        assert response.status_code == 404
        assert admin.post("/admin/cogs/c-9/decline", json={"reason": "unknown member"}).status_code == 200

    def test_initiate_cogs(self, admin, add_connection, alice):
        add_connection(alice, ConnectionStatus.ACTIVE)
        response = admin.post(
            "/admin/cogs",
            json={"target_mip_identifier": alice.mip_identifier, "requested_member_number": "77"},
        )
        assert response.status_code == 201
        assert response.json()["data"]["cogs_request"]["requested_member_number"] == "77"

    def test_status_check(self, admin, node, add_connection, alice):
        add_connection(alice, ConnectionStatus.ACTIVE)
        client = AsyncMock(spec=MipClient)
        client.member_status_check.return_value = ClientResult(
            success=True, status=200, body={"meta": {"succeeded": True}, "data": {"found": False, "member_number": "1"}}
        )
        node.exchanges.client = client

        response = admin.post(
            "/admin/status_checks", json={"target_mip_identifier": alice.mip_identifier, "member_number": "1"}
        )

        assert response.json()["data"]["status_check"] == {"found": False, "member_number": "1"}
