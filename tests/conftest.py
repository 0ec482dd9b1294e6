"""Global test fixtures for the mipnode test suite."""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from typing import Any

import pytest

from mipnode.core.config import CoreSettings, clear_config_cache
from mipnode.protocol import crypto, identifier
from mipnode.protocol.client import MipClient
from mipnode.protocol.models import Connection, ConnectionStatus, Direction, Endorsement, Member, NodeIdentity
from mipnode.protocol.node import MipNode, create_node

# ============================================================================
# Key material
# ============================================================================

# RSA-2048 generation is slow; every test draws from one pool per session.
KEY_POOL_SIZE = 8


@pytest.fixture(scope="session")
def key_pool() -> list[crypto.KeyPair]:
    """Key pairs shared by the whole session."""
    return [crypto.generate_keypair() for _ in range(KEY_POOL_SIZE)]


def make_identity(
    keypair: crypto.KeyPair,
    organization_name: str,
    trust_threshold: int = 1,
    share_my_organization: bool = True,
) -> NodeIdentity:
    """Build a NodeIdentity with a fresh identifier and a predictable URL."""
    mip_identifier = identifier.generate(organization_name)
    host = organization_name.lower().replace(" ", "-")
    return NodeIdentity(
        mip_identifier=mip_identifier,
        private_key=keypair.private_key,
        public_key=keypair.public_key,
        organization_name=organization_name,
        mip_url=f"http://{host}.test/mip/node/{mip_identifier}",
        contact_person=f"{organization_name} Secretary",
        share_my_organization=share_my_organization,
        trust_threshold=trust_threshold,
    )


@pytest.fixture
def local_identity(key_pool) -> NodeIdentity:
    """The node under test."""
    return make_identity(key_pool[0], "Local Lodge")


@pytest.fixture
def alice(key_pool) -> NodeIdentity:
    return make_identity(key_pool[1], "Alice Lodge")


@pytest.fixture
def bob(key_pool) -> NodeIdentity:
    return make_identity(key_pool[2], "Bob Lodge")


@pytest.fixture
def carol(key_pool) -> NodeIdentity:
    return make_identity(key_pool[3], "Carol Lodge")


@pytest.fixture
def stranger_keys(key_pool) -> crypto.KeyPair:
    """A key pair no fixture identity uses."""
    return key_pool[7]


# ============================================================================
# Settings
# ============================================================================


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all MIP_ environment variables."""
    for key in list(os.environ.keys()):
        if key.startswith("MIP_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _reset_settings():
    """Reset the settings singletons around every test."""
    import mipnode.server.config as server_config

    clear_config_cache()
    server_config._settings = None
    yield
    clear_config_cache()
    server_config._settings = None


@pytest.fixture
def settings(clean_env) -> CoreSettings:
    return CoreSettings(_env_file=None)


# ============================================================================
# Nodes and records
# ============================================================================


@pytest.fixture
def members() -> list[Member]:
    return [
        Member.from_config(
            {
                "member_number": "1001",
                "first_name": "Ada",
                "last_name": "Lovelace",
                "birthdate": "1815-12-10",
                "years_in_good_standing": 12,
                "email": "ada@example.org",
                "affiliations": [{"local_name": "Lodge No. 1", "is_active": True, "member_type": "Regular"}],
            }
        ),
        Member.from_config(
            {
                "member_number": "1002",
                "first_name": "Charles",
                "last_name": "Babbage",
                "status": "Suspended",
                "is_active": False,
                "good_standing": False,
            }
        ),
    ]


@pytest.fixture
def node(local_identity, members, settings) -> MipNode:
    """A node with members and no connections. Outbound jobs stay queued."""
    return create_node(local_identity, members=members, settings=settings)


def connection_for(
    identity: NodeIdentity,
    status: ConnectionStatus = ConnectionStatus.ACTIVE,
    direction: Direction = Direction.INBOUND,
) -> Connection:
    """A Connection record describing ``identity`` as seen by another node."""
    connection = Connection.from_request(identity.to_node_profile(), direction)
    connection.status = status
    return connection


@pytest.fixture
def add_connection(node) -> Callable[..., Connection]:
    """Put a connection for an identity into the node's store."""

    def _add(identity: NodeIdentity, status: ConnectionStatus = ConnectionStatus.ACTIVE) -> Connection:
        return node.store.add_connection(connection_for(identity, status))

    return _add


def endorse(endorser: NodeIdentity, endorsed: NodeIdentity, **kwargs: Any) -> Endorsement:
    """``endorser`` vouches for ``endorsed``'s key."""
    return Endorsement.create(endorser, endorsed.mip_identifier, endorsed.public_key, **kwargs)


# ============================================================================
# Signed requests
# ============================================================================


def signed_request(
    sender: NodeIdentity,
    path: str,
    payload: dict[str, Any] | None = None,
    include_public_key: bool = False,
) -> tuple[dict[str, str], bytes]:
    """Headers and body of a request signed by ``sender``."""
    body = json.dumps(payload) if payload is not None else None
    headers = MipClient(sender).signed_headers(path, body, include_public_key)
    if body is None:
        return headers, b""
    headers["Content-Type"] = "application/json"
    return headers, body.encode("utf-8")


@pytest.fixture
def sign() -> Callable[..., tuple[dict[str, str], bytes]]:
    return signed_request


@pytest.fixture
def endorsement_factory() -> Callable[..., Endorsement]:
    return endorse


@pytest.fixture
def connection_factory() -> Callable[..., Connection]:
    return connection_for
