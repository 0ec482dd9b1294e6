# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Data models for the Member Interchange Protocol.

These models represent the records a node keeps about itself and its peers:
its own identity, bilateral connections, endorsements, and the two-phase
member search and certificate-of-good-standing exchanges.

Raw JSON payloads are parsed into these dataclasses at the HTTP boundary
(``from_payload`` / ``from_request``) and rendered back with ``to_payload``.
``to_dict`` / ``from_dict`` are the local snapshot format.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from ..core.exceptions import InvalidTransitionError, ValidationException
from . import crypto

logger = logging.getLogger(__name__)

ENDORSEMENT_DOCUMENT_TYPE = "MIP_ENDORSEMENT_V1"
DEFAULT_DAILY_RATE_LIMIT = 100
DEFAULT_ENDORSEMENT_VALIDITY_DAYS = 365
DEFAULT_COGS_VALIDITY_DAYS = 90


# =============================================================================
# ENUMS
# =============================================================================


class ConnectionStatus(str, Enum):
    """Lifecycle status of a bilateral connection."""

    PENDING = "PENDING"  # Requested, awaiting approval
    ACTIVE = "ACTIVE"  # Approved; grants and consumes trust
    DECLINED = "DECLINED"  # Refused; terminal unless re-requests are allowed
    REVOKED = "REVOKED"  # Suspended; may be restored


class RequestStatus(str, Enum):
    """Status of a search or COGS exchange."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"


class Direction(str, Enum):
    """Which side initiated a record."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


# =============================================================================
# HELPERS
# =============================================================================


def utcnow() -> datetime:
    return datetime.now(UTC)


def isoformat(value: datetime) -> str:
    """Render a datetime the way MIP peers expect (UTC, milliseconds, ``Z``)."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 string; naive values are taken as UTC."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def canonical_json(obj: Any) -> str:
    """Compact, key-sorted JSON used for signed documents."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _require(payload: dict[str, Any], field_name: str) -> Any:
    value = payload.get(field_name)
    if value is None or value == "":
        raise ValidationException(f"Missing required field: {field_name}", field=field_name)
    return value


# =============================================================================
# NODE IDENTITY
# =============================================================================


@dataclass(frozen=True)
class NodeIdentity:
    """This node's own cryptographic identity.

    Created once at startup and immutable for the life of the process. The
    private key never leaves the node: ``to_node_profile`` omits it.
    """

    mip_identifier: str
    private_key: str = field(repr=False)
    public_key: str
    organization_name: str
    mip_url: str
    contact_person: str | None = None
    contact_phone: str | None = None
    share_my_organization: bool = True
    trust_threshold: int = 1

    def __post_init__(self) -> None:
        if self.trust_threshold < 1:
            raise ValueError(f"trust_threshold must be >= 1, got {self.trust_threshold}")

    def public_key_fingerprint(self) -> str:
        return crypto.fingerprint(self.public_key)

    def to_node_profile(self) -> dict[str, Any]:
        return {
            "mip_identifier": self.mip_identifier,
            "mip_url": self.mip_url,
            "organization_legal_name": self.organization_name,
            "contact_person": self.contact_person,
            "contact_phone": self.contact_phone,
            "public_key": self.public_key,
            "share_my_organization": self.share_my_organization,
        }

    def issuing_organization(self) -> dict[str, str]:
        return {
            "mip_identifier": self.mip_identifier,
            "organization_legal_name": self.organization_name,
        }


# =============================================================================
# CONNECTION
# =============================================================================


@dataclass
class Connection:
    """A bilateral relationship with one remote node.

    Transitions:
        PENDING -> ACTIVE     approve()
        PENDING -> DECLINED   decline()
        ACTIVE  -> REVOKED    revoke()
        REVOKED -> ACTIVE     restore()
        DECLINED -> PENDING   reopen() (only when re-requests are allowed)
    """

    mip_identifier: str
    mip_url: str
    organization_name: str
    direction: Direction
    public_key: str | None = None
    contact_person: str | None = None
    contact_phone: str | None = None
    status: ConnectionStatus = ConnectionStatus.PENDING
    share_my_organization: bool = True
    daily_rate_limit: int = DEFAULT_DAILY_RATE_LIMIT
    created_at: datetime = field(default_factory=utcnow)
    decline_reason: str | None = None
    revoke_reason: str | None = None
    revoked_by_peer: bool = False

    def is_active(self) -> bool:
        return self.status == ConnectionStatus.ACTIVE

    def is_pending(self) -> bool:
        return self.status == ConnectionStatus.PENDING

    def is_declined(self) -> bool:
        return self.status == ConnectionStatus.DECLINED

    def is_revoked(self) -> bool:
        return self.status == ConnectionStatus.REVOKED

    def _require_status(self, expected: ConnectionStatus, target: ConnectionStatus) -> None:
        if self.status != expected:
            raise InvalidTransitionError("connection", self.status.value, target.value)

    def approve(
        self,
        daily_rate_limit: int = DEFAULT_DAILY_RATE_LIMIT,
        node_profile: dict[str, Any] | None = None,
    ) -> None:
        self._require_status(ConnectionStatus.PENDING, ConnectionStatus.ACTIVE)
        self.status = ConnectionStatus.ACTIVE
        self.daily_rate_limit = daily_rate_limit
        if node_profile:
            self.update_from_profile(node_profile)

    def decline(self, reason: str | None = None) -> None:
        self._require_status(ConnectionStatus.PENDING, ConnectionStatus.DECLINED)
        self.status = ConnectionStatus.DECLINED
        self.decline_reason = reason or None

    def revoke(self, reason: str | None = None, by_peer: bool = False) -> None:
        self._require_status(ConnectionStatus.ACTIVE, ConnectionStatus.REVOKED)
        self.status = ConnectionStatus.REVOKED
        self.revoke_reason = reason or None
        self.revoked_by_peer = by_peer

    def restore(self) -> None:
        self._require_status(ConnectionStatus.REVOKED, ConnectionStatus.ACTIVE)
        self.status = ConnectionStatus.ACTIVE
        self.revoke_reason = None
        self.revoked_by_peer = False

    def reopen(self, node_profile: dict[str, Any] | None = None) -> None:
        """Put a DECLINED connection back to PENDING for a fresh request."""
        self._require_status(ConnectionStatus.DECLINED, ConnectionStatus.PENDING)
        self.status = ConnectionStatus.PENDING
        self.decline_reason = None
        if node_profile:
            self.update_from_profile(node_profile)

    def public_key_fingerprint(self) -> str | None:
        """Fingerprint of the stored key, or None if unknown or unparseable."""
        if not self.public_key:
            return None
        try:
            return crypto.fingerprint(self.public_key)
        except ValueError:
            return None

    def update_from_profile(self, profile: dict[str, Any]) -> None:
        """Merge non-empty fields from a node profile."""
        if profile.get("organization_legal_name"):
            self.organization_name = profile["organization_legal_name"]
        if profile.get("contact_person"):
            self.contact_person = profile["contact_person"]
        if profile.get("contact_phone"):
            self.contact_phone = profile["contact_phone"]
        if profile.get("mip_url"):
            self.mip_url = profile["mip_url"]
        if profile.get("public_key"):
            self.public_key = profile["public_key"]
        if profile.get("share_my_organization") is not None:
            self.share_my_organization = bool(profile["share_my_organization"])

    def to_node_profile(self) -> dict[str, Any]:
        return {
            "mip_identifier": self.mip_identifier,
            "mip_url": self.mip_url,
            "organization_legal_name": self.organization_name,
            "contact_person": self.contact_person,
            "contact_phone": self.contact_phone,
            "public_key": self.public_key,
            "share_my_organization": self.share_my_organization,
        }

    @classmethod
    def from_request(cls, payload: dict[str, Any], direction: Direction = Direction.INBOUND) -> Connection:
        """Create a PENDING connection from a connection request payload."""
        share = payload.get("share_my_organization")
        return cls(
            mip_identifier=_require(payload, "mip_identifier"),
            mip_url=_require(payload, "mip_url"),
            public_key=payload.get("public_key"),
            organization_name=payload.get("organization_legal_name") or "Unknown",
            contact_person=payload.get("contact_person"),
            contact_phone=payload.get("contact_phone"),
            share_my_organization=True if share is None else bool(share),
            direction=direction,
            status=ConnectionStatus.PENDING,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.to_node_profile(),
            "status": self.status.value,
            "direction": self.direction.value,
            "daily_rate_limit": self.daily_rate_limit,
            "created_at": isoformat(self.created_at),
            "decline_reason": self.decline_reason,
            "revoke_reason": self.revoke_reason,
            "revoked_by_peer": self.revoked_by_peer,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Connection:
        return cls(
            mip_identifier=data["mip_identifier"],
            mip_url=data["mip_url"],
            organization_name=data.get("organization_legal_name") or "Unknown",
            direction=Direction(data["direction"]),
            public_key=data.get("public_key"),
            contact_person=data.get("contact_person"),
            contact_phone=data.get("contact_phone"),
            status=ConnectionStatus(data.get("status", ConnectionStatus.PENDING.value)),
            share_my_organization=data.get("share_my_organization", True),
            daily_rate_limit=data.get("daily_rate_limit", DEFAULT_DAILY_RATE_LIMIT),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
            decline_reason=data.get("decline_reason"),
            revoke_reason=data.get("revoke_reason"),
            revoked_by_peer=bool(data.get("revoked_by_peer", False)),
        )


# =============================================================================
# ENDORSEMENT
# =============================================================================


@dataclass(frozen=True)
class Endorsement:
    """A signed, time-bound statement that a key belongs to a MIP identifier.

    "endorser attests that the holder of the public key with fingerprint F is
    endorsed_mip_identifier." The signature covers ``endorsement_document``;
    the envelope fields must agree with that document to count.
    """

    endorser_mip_identifier: str
    endorsed_mip_identifier: str
    endorsed_public_key_fingerprint: str
    endorsement_document: str
    endorsement_signature: str
    issued_at: str
    expires_at: str
    id: str = field(default_factory=lambda: str(uuid4()))

    def is_expired(self, now: datetime | None = None) -> bool:
        expires = parse_datetime(self.expires_at)
        if expires is None:
            return True
        return expires < (now or utcnow())

    def valid_for(self, public_key_fingerprint: str | None, now: datetime | None = None) -> bool:
        """Unexpired and vouching for the given key fingerprint."""
        if not public_key_fingerprint:
            return False
        return not self.is_expired(now) and self.endorsed_public_key_fingerprint == public_key_fingerprint

    def document_matches(self) -> bool:
        """Check that the signed document states what the envelope claims."""
        try:
            document = json.loads(self.endorsement_document)
        except (TypeError, ValueError):
            return False
        if not isinstance(document, dict):
            return False
        return (
            document.get("type") == ENDORSEMENT_DOCUMENT_TYPE
            and document.get("endorser_mip_identifier") == self.endorser_mip_identifier
            and document.get("endorsed_mip_identifier") == self.endorsed_mip_identifier
            and document.get("endorsed_public_key_fingerprint") == self.endorsed_public_key_fingerprint
            and document.get("expires_at") == self.expires_at
        )

    def verify_signature(self, endorser_public_key: str | None, now: datetime | None = None) -> bool:
        """Verify against the endorser's key. Expired endorsements never verify."""
        if not endorser_public_key or self.is_expired(now):
            return False
        if not self.document_matches():
            return False
        return crypto.verify(endorser_public_key, self.endorsement_signature, self.endorsement_document)

    def statement_key(self) -> tuple[str, str, str]:
        """Identity of the signed statement, independent of the local id."""
        return (self.endorser_mip_identifier, self.endorsed_mip_identifier, self.endorsement_signature)

    def same_statement(self, other: Endorsement) -> bool:
        return self.statement_key() == other.statement_key()

    def to_payload(self) -> dict[str, Any]:
        return {
            "endorser_mip_identifier": self.endorser_mip_identifier,
            "endorsed_mip_identifier": self.endorsed_mip_identifier,
            "endorsed_public_key_fingerprint": self.endorsed_public_key_fingerprint,
            "endorsement_document": self.endorsement_document,
            "endorsement_signature": self.endorsement_signature,
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
        }

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, **self.to_payload()}

    @classmethod
    def create(
        cls,
        endorser: NodeIdentity,
        endorsed_mip_identifier: str,
        endorsed_public_key: str,
        validity_days: int = DEFAULT_ENDORSEMENT_VALIDITY_DAYS,
        now: datetime | None = None,
    ) -> Endorsement:
        """Issue and sign an endorsement of another node's key."""
        issued = now or utcnow()
        fingerprint = crypto.fingerprint(endorsed_public_key)
        issued_at = isoformat(issued)
        expires_at = isoformat(issued + timedelta(days=validity_days))
        document = canonical_json(
            {
                "type": ENDORSEMENT_DOCUMENT_TYPE,
                "endorser_mip_identifier": endorser.mip_identifier,
                "endorsed_mip_identifier": endorsed_mip_identifier,
                "endorsed_public_key_fingerprint": fingerprint,
                "issued_at": issued_at,
                "expires_at": expires_at,
            }
        )
        return cls(
            endorser_mip_identifier=endorser.mip_identifier,
            endorsed_mip_identifier=endorsed_mip_identifier,
            endorsed_public_key_fingerprint=fingerprint,
            endorsement_document=document,
            endorsement_signature=crypto.sign(endorser.private_key, document),
            issued_at=issued_at,
            expires_at=expires_at,
        )

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Endorsement:
        """Parse a received endorsement payload.

        Raises:
            ValidationException: If the payload is not an object or lacks a field.
        """
        if not isinstance(payload, dict):
            raise ValidationException("Endorsement payload must be an object")
        return cls(
            endorser_mip_identifier=_require(payload, "endorser_mip_identifier"),
            endorsed_mip_identifier=_require(payload, "endorsed_mip_identifier"),
            endorsed_public_key_fingerprint=_require(payload, "endorsed_public_key_fingerprint"),
            endorsement_document=_require(payload, "endorsement_document"),
            endorsement_signature=_require(payload, "endorsement_signature"),
            issued_at=payload.get("issued_at") or "",
            expires_at=_require(payload, "expires_at"),
            id=payload.get("id") or str(uuid4()),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Endorsement:
        return cls.from_payload(data)


# =============================================================================
# MEMBER
# =============================================================================


@dataclass
class Member:
    """A member record held by this node's organization."""

    member_number: str
    first_name: str
    last_name: str
    prefix: str | None = None
    middle_name: str | None = None
    suffix: str | None = None
    honorific: str | None = None
    rank: str | None = None
    birthdate: str | None = None
    years_in_good_standing: int = 0
    status: str = "Active"
    is_active: bool = True
    good_standing: bool = True
    email: str | None = None
    phone: str | None = None
    cell: str | None = None
    address: dict[str, Any] = field(default_factory=dict)
    affiliations: list[dict[str, Any]] = field(default_factory=list)
    life_cycle_events: list[dict[str, Any]] = field(default_factory=list)

    def full_name(self) -> str:
        parts = [self.prefix, self.first_name, self.middle_name, self.last_name, self.suffix]
        return " ".join(p for p in parts if p)

    def party_short_name(self) -> str:
        initial = self.last_name[:1]
        return f"{self.first_name} {initial}".strip()

    def member_type(self) -> str:
        """Member type of the first active affiliation."""
        for affiliation in self.affiliations:
            if affiliation.get("is_active") and affiliation.get("member_type"):
                return affiliation["member_type"]
        return "Member"

    def group_status(self, include_good_standing: bool = True) -> dict[str, Any]:
        status: dict[str, Any] = {"status": self.status, "is_active": self.is_active}
        if include_good_standing:
            status["good_standing"] = self.good_standing
        return status

    def matches(self, search_params: dict[str, Any]) -> bool:
        """Member-number substring, or first+last name substrings (+ exact birthdate)."""
        member_number = search_params.get("member_number")
        if member_number:
            return str(member_number).lower() in self.member_number.lower()
        first_name = search_params.get("first_name")
        last_name = search_params.get("last_name")
        if first_name and last_name:
            name_match = (
                first_name.lower() in self.first_name.lower() and last_name.lower() in self.last_name.lower()
            )
            birthdate = search_params.get("birthdate")
            if birthdate:
                return name_match and self.birthdate == birthdate
            return name_match
        return False

    def to_search_result(self) -> dict[str, Any]:
        return {
            "member_number": self.member_number,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "birthdate": self.birthdate,
            "contact": {"email": self.email, "phone": self.phone, "address": self.address},
            "group_status": self.group_status(),
            "affiliations": [
                {
                    "local_name": a.get("local_name"),
                    "local_status": a.get("local_status") or a.get("status"),
                    "is_active": a.get("is_active"),
                    "member_type": a.get("member_type"),
                }
                for a in self.affiliations
            ],
        }

    def to_member_profile(self) -> dict[str, Any]:
        return {
            "member_number": self.member_number,
            "prefix": self.prefix,
            "first_name": self.first_name,
            "middle_name": self.middle_name,
            "last_name": self.last_name,
            "suffix": self.suffix,
            "honorific": self.honorific,
            "rank": self.rank,
            "birthdate": self.birthdate,
            "years_in_good_standing": self.years_in_good_standing,
            "group_status": self.group_status(include_good_standing=False),
            "contact": {
                "email": self.email,
                "phone": self.phone,
                "cell": self.cell,
                "address": self.address,
            },
            "affiliations": self.affiliations,
            "life_cycle_events": self.life_cycle_events,
        }

    def to_status_check(self) -> dict[str, Any]:
        return {
            "found": True,
            "member_number": self.member_number,
            "member_type": self.member_type(),
            "party_short_name": self.party_short_name(),
            "group_status": self.group_status(),
        }

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> Member:
        return cls(
            member_number=str(config["member_number"]),
            first_name=config["first_name"],
            last_name=config["last_name"],
            prefix=config.get("prefix"),
            middle_name=config.get("middle_name"),
            suffix=config.get("suffix"),
            honorific=config.get("honorific"),
            rank=config.get("rank"),
            birthdate=str(config["birthdate"]) if config.get("birthdate") else None,
            years_in_good_standing=config.get("years_in_good_standing") or 0,
            status=config.get("status") or "Active",
            is_active=config.get("is_active", True),
            good_standing=config.get("good_standing", True),
            email=config.get("email"),
            phone=config.get("phone"),
            cell=config.get("cell"),
            address=config.get("address") or {},
            affiliations=config.get("affiliations") or [],
            life_cycle_events=config.get("life_cycle_events") or [],
        )


# =============================================================================
# SEARCH AND COGS EXCHANGES
# =============================================================================

SEARCH_FIELDS = ("member_number", "first_name", "last_name", "birthdate")


def extract_search_params(payload: dict[str, Any]) -> dict[str, str]:
    """Keep the non-empty search criteria of a payload, stripped."""
    params: dict[str, str] = {}
    for name in SEARCH_FIELDS:
        value = payload.get(name)
        if value is not None and str(value).strip():
            params[name] = str(value).strip()
    return params


@dataclass
class _Exchange:
    """Shared status machine of the two-phase member exchanges."""

    direction: Direction
    target_mip_identifier: str
    target_org: str
    shared_identifier: str = field(default_factory=lambda: str(uuid4()))
    notes: str | None = None
    status: RequestStatus = RequestStatus.PENDING
    decline_reason: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    record_type = "request"

    def is_pending(self) -> bool:
        return self.status == RequestStatus.PENDING

    def is_approved(self) -> bool:
        return self.status == RequestStatus.APPROVED

    def is_declined(self) -> bool:
        return self.status == RequestStatus.DECLINED

    def _require_pending(self, target: RequestStatus) -> None:
        if self.status != RequestStatus.PENDING:
            raise InvalidTransitionError(self.record_type, self.status.value, target.value)


@dataclass
class SearchRequest(_Exchange):
    """One member-lookup exchange, correlated across nodes by ``shared_identifier``."""

    search_params: dict[str, str] = field(default_factory=dict)
    documents: list[Any] = field(default_factory=list)
    matches: list[dict[str, Any]] = field(default_factory=list)

    record_type = "search"

    def approve(self, matches: list[dict[str, Any]]) -> None:
        self._require_pending(RequestStatus.APPROVED)
        self.status = RequestStatus.APPROVED
        self.matches = list(matches)

    def decline(self, reason: str | None = None) -> None:
        self._require_pending(RequestStatus.DECLINED)
        self.status = RequestStatus.DECLINED
        self.decline_reason = reason or None

    def search_description(self) -> str:
        params = self.search_params
        if params.get("member_number"):
            return f"Member #{params['member_number']}"
        if params.get("first_name") and params.get("last_name"):
            name = f"{params['first_name']} {params['last_name']}"
            if params.get("birthdate"):
                name += f" ({params['birthdate']})"
            return name
        return "Unknown search"

    def to_request_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"shared_identifier": self.shared_identifier, **self.search_params}
        if self.notes:
            payload["notes"] = self.notes
        if self.documents:
            payload["documents"] = self.documents
        return payload

    def to_reply_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "shared_identifier": self.shared_identifier,
            "status": self.status.value,
            "matches": self.matches,
        }
        if self.decline_reason:
            payload["reason"] = self.decline_reason
        return payload

    @classmethod
    def from_request(cls, payload: dict[str, Any], sender_mip_identifier: str, sender_org: str) -> SearchRequest:
        search_params = extract_search_params(payload)
        if not search_params:
            raise ValidationException("Search criteria required")
        return cls(
            shared_identifier=payload.get("shared_identifier") or str(uuid4()),
            direction=Direction.INBOUND,
            target_mip_identifier=sender_mip_identifier,
            target_org=sender_org,
            search_params=search_params,
            notes=payload.get("notes"),
            documents=payload.get("documents") or [],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "shared_identifier": self.shared_identifier,
            "direction": self.direction.value,
            "target_mip_identifier": self.target_mip_identifier,
            "target_org": self.target_org,
            "search_params": self.search_params,
            "description": self.search_description(),
            "notes": self.notes,
            "documents": self.documents,
            "status": self.status.value,
            "matches": self.matches,
            "decline_reason": self.decline_reason,
            "created_at": isoformat(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SearchRequest:
        return cls(
            shared_identifier=data["shared_identifier"],
            direction=Direction(data["direction"]),
            target_mip_identifier=data["target_mip_identifier"],
            target_org=data.get("target_org") or "Unknown",
            search_params=data.get("search_params") or {},
            notes=data.get("notes"),
            documents=data.get("documents") or [],
            status=RequestStatus(data.get("status", RequestStatus.PENDING.value)),
            matches=data.get("matches") or [],
            decline_reason=data.get("decline_reason"),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
        )


@dataclass
class CogsRequest(_Exchange):
    """One Certificate-of-Good-Standing exchange."""

    requesting_member: dict[str, Any] = field(default_factory=dict)
    requested_member_number: str | None = None
    certificate: dict[str, Any] | None = None

    record_type = "cogs"

    def approve(
        self,
        member: Member,
        issuer: NodeIdentity,
        validity_days: int = DEFAULT_COGS_VALIDITY_DAYS,
        now: datetime | None = None,
    ) -> None:
        """Issue a certificate for ``member`` signed by this node."""
        self._require_pending(RequestStatus.APPROVED)
        issued = now or utcnow()
        certificate: dict[str, Any] = {
            "shared_identifier": self.shared_identifier,
            "status": RequestStatus.APPROVED.value,
            "good_standing": member.good_standing,
            "issued_at": isoformat(issued),
            "valid_until": isoformat(issued + timedelta(days=validity_days)),
            "issuing_organization": issuer.issuing_organization(),
            "member_profile": member.to_member_profile(),
        }
        certificate["signature"] = crypto.sign(issuer.private_key, canonical_json(certificate))
        self.status = RequestStatus.APPROVED
        self.certificate = certificate

    def decline(self, reason: str | None = None) -> None:
        self._require_pending(RequestStatus.DECLINED)
        self.status = RequestStatus.DECLINED
        self.decline_reason = reason or None
        self.certificate = {
            "shared_identifier": self.shared_identifier,
            "status": RequestStatus.DECLINED.value,
            "good_standing": False,
            "reason": reason,
        }

    def apply_reply(self, payload: dict[str, Any]) -> None:
        """Record the peer's answer to an outbound request."""
        if payload.get("status") == RequestStatus.APPROVED.value:
            self._require_pending(RequestStatus.APPROVED)
            self.status = RequestStatus.APPROVED
            self.certificate = payload.get("certificate") or payload
        else:
            self._require_pending(RequestStatus.DECLINED)
            self.status = RequestStatus.DECLINED
            self.decline_reason = payload.get("reason")
            self.certificate = payload

    def to_request_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "shared_identifier": self.shared_identifier,
            "requesting_member": self.requesting_member,
            "requested_member_number": self.requested_member_number,
        }
        if self.notes:
            payload["notes"] = self.notes
        return payload

    def to_reply_payload(self) -> dict[str, Any]:
        return self.certificate or {
            "shared_identifier": self.shared_identifier,
            "status": self.status.value,
        }

    @classmethod
    def from_request(cls, payload: dict[str, Any], sender_mip_identifier: str, sender_org: str) -> CogsRequest:
        return cls(
            shared_identifier=payload.get("shared_identifier") or str(uuid4()),
            direction=Direction.INBOUND,
            target_mip_identifier=sender_mip_identifier,
            target_org=sender_org,
            requesting_member=payload.get("requesting_member") or {},
            requested_member_number=_require(payload, "requested_member_number"),
            notes=payload.get("notes"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "shared_identifier": self.shared_identifier,
            "direction": self.direction.value,
            "target_mip_identifier": self.target_mip_identifier,
            "target_org": self.target_org,
            "requesting_member": self.requesting_member,
            "requested_member_number": self.requested_member_number,
            "notes": self.notes,
            "status": self.status.value,
            "certificate": self.certificate,
            "decline_reason": self.decline_reason,
            "created_at": isoformat(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CogsRequest:
        return cls(
            shared_identifier=data["shared_identifier"],
            direction=Direction(data["direction"]),
            target_mip_identifier=data["target_mip_identifier"],
            target_org=data.get("target_org") or "Unknown",
            requesting_member=data.get("requesting_member") or {},
            requested_member_number=data.get("requested_member_number"),
            notes=data.get("notes"),
            status=RequestStatus(data.get("status", RequestStatus.PENDING.value)),
            certificate=data.get("certificate"),
            decline_reason=data.get("decline_reason"),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
        )


# =============================================================================
# ACTIVITY
# =============================================================================


@dataclass(frozen=True)
class ActivityEntry:
    """One line of the node's human-readable activity log."""

    message: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, str]:
        return {"timestamp": isoformat(self.timestamp), "message": self.message}
