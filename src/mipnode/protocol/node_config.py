# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Node configuration loading.

A node is described by a YAML file:

    organization_name: Grand Lodge of Example
    contact_person: Jane Secretary
    contact_phone: "+1 555 0100"
    trust_threshold: 1
    port: 4001
    public_url: http://localhost:4001
    mip_identifier: 0f9c2d...          # optional; stable across restarts
    private_key_path: keys/node1.pem   # optional; generated if missing
    members:
      - member_number: "1001"
        first_name: Ada
        last_name: Lovelace

Relative ``private_key_path`` values resolve against the config file's
directory. The private key is created with mode 0600 and never leaves it.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..core.exceptions import ConfigException
from . import crypto, identifier
from .models import Member, NodeIdentity

logger = logging.getLogger(__name__)

DEFAULT_PORT = 4000


class MemberConfig(BaseModel):
    """One member record from the node YAML.

    Nested values are dumped in JSON mode, so unquoted YAML dates anywhere
    in the record come out as ISO strings.
    """

    member_number: str = Field(..., min_length=1)
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    prefix: str | None = None
    middle_name: str | None = None
    suffix: str | None = None
    honorific: str | None = None
    rank: str | None = None
    birthdate: date | str | None = None
    years_in_good_standing: int = Field(0, ge=0)
    status: str = "Active"
    is_active: bool = True
    good_standing: bool = True
    email: str | None = None
    phone: str | None = None
    cell: str | None = None
    address: dict[str, Any] = Field(default_factory=dict)
    affiliations: list[dict[str, Any]] = Field(default_factory=list)
    life_cycle_events: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("member_number", "phone", "cell", mode="before")
    @classmethod
    def _numbers_as_text(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    def to_member(self) -> Member:
        return Member.from_config(self.model_dump(mode="json"))


class NodeConfig(BaseModel):
    """Validated contents of a node YAML file."""

    organization_name: str = Field(..., min_length=1, description="Legal name of the organization")
    contact_person: str | None = Field(None, description="Who peers should contact")
    contact_phone: str | None = Field(None, description="Contact phone number")
    share_my_organization: bool = Field(True, description="Let peers list this node to their connections")
    trust_threshold: int = Field(1, ge=1, description="Trusted endorsements needed for auto-approval")
    port: int = Field(DEFAULT_PORT, ge=1, le=65535, description="Port the node listens on")
    public_url: str | None = Field(None, description="Base URL peers use to reach this node")
    mip_identifier: str | None = Field(None, description="Fixed MIP identifier for this node")
    private_key_path: str | None = Field(None, description="PEM private key file")
    members: list[MemberConfig] = Field(default_factory=list, description="Member records")

    @field_validator("mip_identifier")
    @classmethod
    def _check_identifier(cls, value: str | None) -> str | None:
        if value is not None and not identifier.is_valid(value):
            raise ValueError("mip_identifier must be 32 lowercase hex characters")
        return value

    def base_url(self) -> str:
        return (self.public_url or f"http://localhost:{self.port}").rstrip("/")


def load_node_config(path: str | Path) -> NodeConfig:
    """Read and validate a node YAML file.

    Raises:
        ConfigException: File missing, unreadable, not YAML, or invalid
    """
    path = Path(path)
    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigException(f"Cannot read node config: {e}", path=str(path)) from e
    except yaml.YAMLError as e:
        raise ConfigException(f"Node config is not valid YAML: {e}", path=str(path)) from e

    if not isinstance(raw, dict):
        raise ConfigException("Node config must be a mapping", path=str(path))

    try:
        config = NodeConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigException(f"Invalid node config: {e}", path=str(path)) from e

    if config.private_key_path and not Path(config.private_key_path).is_absolute():
        config.private_key_path = str(path.parent / config.private_key_path)
    return config


def load_private_key(key_path: str | Path | None, generate_missing: bool = True) -> str:
    """Load the node's PEM private key, generating it on first start.

    Without a path the key is ephemeral and the node gets a new key on
    every start. With ``generate_missing=False`` nothing is created and a
    missing key is an error.

    Raises:
        ConfigException: The file is missing (when not generating) or is not an RSA private key
    """
    if key_path is None:
        if not generate_missing:
            raise ConfigException("No private_key_path configured")
        logger.warning("No private_key_path configured; using an ephemeral key")
        return crypto.generate_keypair().private_key

    key_path = Path(key_path)
    if key_path.exists():
        try:
            private_key = key_path.read_text()
            crypto.public_key_from_private(private_key)
        except (OSError, ValueError, TypeError) as e:
            raise ConfigException(f"Cannot load private key: {e}", path=str(key_path)) from e
        return private_key

    if not generate_missing:
        raise ConfigException("Private key file not found", path=str(key_path))

    keypair = crypto.generate_keypair()
    try:
        key_path.parent.mkdir(parents=True, exist_ok=True)
        key_path.write_text(keypair.private_key)
        key_path.chmod(0o600)
    except OSError as e:
        raise ConfigException(f"Cannot write private key: {e}", path=str(key_path)) from e
    logger.info(f"Generated new private key at {key_path}")
    return keypair.private_key


def build_identity(
    config: NodeConfig,
    external_url: str | None = None,
    generate_missing_key: bool = True,
) -> NodeIdentity:
    """Create this node's identity from its config."""
    mip_identifier = config.mip_identifier
    if mip_identifier is None:
        mip_identifier = identifier.generate(config.organization_name)
        logger.warning(
            f"No mip_identifier configured; generated {mip_identifier}. "
            "Set it in the node config to keep connections across restarts."
        )

    private_key = load_private_key(config.private_key_path, generate_missing=generate_missing_key)
    base_url = (external_url or config.base_url()).rstrip("/")
    return NodeIdentity(
        mip_identifier=mip_identifier,
        private_key=private_key,
        public_key=crypto.public_key_from_private(private_key),
        organization_name=config.organization_name,
        mip_url=f"{base_url}/mip/node/{mip_identifier}",
        contact_person=config.contact_person,
        contact_phone=config.contact_phone,
        share_my_organization=config.share_my_organization,
        trust_threshold=config.trust_threshold,
    )


def load_members(config: NodeConfig) -> list[Member]:
    return [m.to_member() for m in config.members]
