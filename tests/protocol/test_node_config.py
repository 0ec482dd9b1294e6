"""Tests for node YAML configuration and key loading."""

from __future__ import annotations

import stat
import textwrap

import pytest

from mipnode.core.exceptions import ConfigException
from mipnode.protocol import crypto, identifier
from mipnode.protocol.exchanges import verify_certificate
from mipnode.protocol.models import ConnectionStatus
from mipnode.protocol.node import create_node
from mipnode.protocol.node_config import build_identity, load_members, load_node_config, load_private_key
from mipnode.protocol.verifier import VerifiedSender

NODE_ID = "6f1c0a8e2d4b4c7f9a3e5d2b1c0f8e7a"


def write_config(tmp_path, body: str):
    path = tmp_path / "node.yml"
    path.write_text(textwrap.dedent(body))
    return path


@pytest.fixture
def config_path(tmp_path, key_pool):
    (tmp_path / "keys").mkdir()
    (tmp_path / "keys" / "node.pem").write_text(key_pool[4].private_key)
    return write_config(
        tmp_path,
        f"""
        organization_name: Grand Lodge of Example
        contact_person: Jane Secretary
        trust_threshold: 2
        port: 4001
        public_url: http://localhost:4001/
        mip_identifier: {NODE_ID}
        private_key_path: keys/node.pem
        members:
          - member_number: 1001
            first_name: Ada
            last_name: Lovelace
            birthdate: 1815-12-10
        """,
    )


class TestLoadNodeConfig:
    def test_loads_and_resolves_key_path(self, config_path, tmp_path):
        config = load_node_config(config_path)
        assert config.organization_name == "Grand Lodge of Example"
        assert config.trust_threshold == 2
        assert config.private_key_path == str(tmp_path / "keys" / "node.pem")
        assert config.base_url() == "http://localhost:4001"

    def test_defaults(self, tmp_path):
        config = load_node_config(write_config(tmp_path, "organization_name: Solo Lodge\n"))
        assert config.port == 4000
        assert config.trust_threshold == 1
        assert config.share_my_organization is True
        assert config.base_url() == "http://localhost:4000"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigException) as exc_info:
            load_node_config(tmp_path / "absent.yml")
        assert exc_info.value.path == str(tmp_path / "absent.yml")

    @pytest.mark.parametrize(
        "body",
        [
            "organization_name: [unclosed\n",
            "- just\n- a list\n",
            "contact_person: nobody\n",
            "organization_name: X\ntrust_threshold: 0\n",
            "organization_name: X\nmip_identifier: NOT-HEX\n",
            "organization_name: X\nmembers:\n  - first_name: Ada\n",
        ],
    )
    def test_invalid_config(self, tmp_path, body):
        with pytest.raises(ConfigException):
            load_node_config(write_config(tmp_path, body))


class TestPrivateKey:
    def test_generated_with_owner_only_permissions(self, tmp_path):
        key_path = tmp_path / "keys" / "new.pem"
        private_key = load_private_key(key_path)
        assert key_path.read_text() == private_key
        assert stat.S_IMODE(key_path.stat().st_mode) == 0o600

    def test_existing_key_is_reused(self, tmp_path, key_pool):
        key_path = tmp_path / "node.pem"
        key_path.write_text(key_pool[4].private_key)
        assert load_private_key(key_path) == key_pool[4].private_key

    def test_unparseable_key(self, tmp_path):
        key_path = tmp_path / "node.pem"
        key_path.write_text("not a key")
        with pytest.raises(ConfigException):
            load_private_key(key_path)

    def test_missing_key_not_generated_on_request(self, tmp_path):
        key_path = tmp_path / "keys" / "absent.pem"
        with pytest.raises(ConfigException):
            load_private_key(key_path, generate_missing=False)
        assert not key_path.exists()

    def test_no_key_path_without_generation(self):
        with pytest.raises(ConfigException):
            load_private_key(None, generate_missing=False)


class TestBuildIdentity:
    def test_identity_from_config(self, config_path, key_pool):
        identity = build_identity(load_node_config(config_path))
        assert identity.mip_identifier == NODE_ID
        assert identity.public_key == key_pool[4].public_key
        assert identity.mip_url == f"http://localhost:4001/mip/node/{NODE_ID}"
        assert identity.trust_threshold == 2

    def test_external_url_overrides(self, config_path):
        identity = build_identity(load_node_config(config_path), external_url="https://lodge.example.org/")
        assert identity.mip_url == f"https://lodge.example.org/mip/node/{NODE_ID}"

    def test_identifier_generated_when_absent(self, tmp_path, key_pool):
        (tmp_path / "node.pem").write_text(key_pool[4].private_key)
        path = write_config(tmp_path, "organization_name: Solo Lodge\nprivate_key_path: node.pem\n")
        identity = build_identity(load_node_config(path))
        assert identifier.is_valid(identity.mip_identifier)
        assert identity.public_key_fingerprint() == crypto.fingerprint(key_pool[4].public_key)

    def test_members(self, config_path):
        members = load_members(load_node_config(config_path))
        assert members[0].member_number == "1001"
        assert members[0].birthdate == "1815-12-10"

    def test_unquoted_yaml_dates_become_strings(self, tmp_path, key_pool, settings, connection_factory, alice):
        (tmp_path / "node.pem").write_text(key_pool[4].private_key)
        path = write_config(
            tmp_path,
            """
            organization_name: Dated Lodge
            private_key_path: node.pem
            members:
              - member_number: 2001
                first_name: Grace
                last_name: Hopper
                birthdate: 1906-12-09
                address: {city: Arlington, since: 1999-01-01}
                affiliations:
                  - local_name: Lodge No. 7
                    is_active: true
                    joined: 2001-05-04
                life_cycle_events:
                  - event: Raised
                    date: 2001-05-04
            """,
        )
        config = load_node_config(path)
        member = load_members(config)[0]

        assert member.birthdate == "1906-12-09"
        assert member.address["since"] == "1999-01-01"
        assert member.affiliations[0]["joined"] == "2001-05-04"
        assert member.life_cycle_events[0]["date"] == "2001-05-04"

        node = create_node(build_identity(config), members=[member], settings=settings)
        node.store.add_connection(connection_factory(alice, ConnectionStatus.ACTIVE))
        sender = VerifiedSender(
            mip_identifier=alice.mip_identifier,
            public_key=alice.public_key,
            connection=node.store.find_connection(alice.mip_identifier),
        )
        node.exchanges.receive_cogs(sender, {"shared_identifier": "c-9", "requested_member_number": "2001"})

        issued = node.exchanges.approve_cogs("c-9")

        assert verify_certificate(issued.certificate, node.identity.public_key)
