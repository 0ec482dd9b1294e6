"""Server-specific test fixtures."""

from __future__ import annotations

import pytest
from starlette.testclient import TestClient

from mipnode.server.app import create_app
from mipnode.server.config import ServerSettings

ADMIN_TOKEN = "test-admin-token-0123456789"


@pytest.fixture
def server_settings(clean_env) -> ServerSettings:
    return ServerSettings(_env_file=None, admin_token=ADMIN_TOKEN)


@pytest.fixture
def app(node, server_settings):
    return create_app(node, server_settings)


@pytest.fixture
def client(app) -> TestClient:
    """Test client without lifespan: outbound jobs stay queued on the node."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


@pytest.fixture
def mip_path(node):
    """Build a path under this node's MIP prefix."""

    def _path(endpoint: str) -> str:
        return f"/mip/node/{node.identity.mip_identifier}{endpoint}"

    return _path
