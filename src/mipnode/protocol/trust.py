# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Web-of-trust evaluation for MIP connection auto-approval.

A connection request is auto-approved when at least ``trust_threshold`` distinct
endorsers vouch for the requester's key, where an endorsement only counts
if all of the following hold:

1. Its endorser is a connection of ours that is currently ACTIVE. Endorsements
   from strangers, pending or revoked peers contribute nothing, so a requester
   cannot bundle self-made endorsements from parties we do not trust.
2. It is unexpired and its fingerprint equals the target key's fingerprint.
3. Its signature verifies against the endorser key *we have on file*, never
   against any key carried alongside the endorsement.

The evaluator is passive: it only looks at endorsements handed to it (bundled
in a request or already on file). It never asks a third node for vouching.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from ..core.exceptions import ValidationException
from . import crypto
from .models import Endorsement
from .store import NodeStore

logger = logging.getLogger(__name__)


def is_trusted(trusted_count: int, threshold: int) -> bool:
    """The auto-approval predicate."""
    return trusted_count >= threshold


class TrustEvaluator:
    """Counts trusted endorsements against the connections of one node.

    Callers that act on the result should hold ``store.lock`` so the set of
    ACTIVE connections cannot change between counting and committing.
    """

    def __init__(self, store: NodeStore):
        self.store = store

    @property
    def threshold(self) -> int:
        return self.store.identity.trust_threshold

    def count_trusted_endorsements(
        self,
        candidates: Iterable[Endorsement | dict[str, Any]],
        target_public_key: str | None,
        now: datetime | None = None,
    ) -> int:
        """Count the candidates that are trusted endorsements of ``target_public_key``.

        Args:
            candidates: Raw endorsement payloads or parsed Endorsements
            target_public_key: PEM key the endorsements must vouch for
            now: Reference time for expiry (defaults to current time)

        Returns:
            Number of distinct endorsers with a candidate passing every filter;
            malformed candidates are skipped
        """
        if not target_public_key:
            return 0
        try:
            target_fingerprint = crypto.fingerprint(target_public_key)
        except ValueError:
            logger.debug("Target key is not a valid public key; no endorsement can count")
            return 0

        trusted_endorsers: set[str] = set()
        for candidate in candidates:
            endorsement = self._parse(candidate)
            if endorsement is None:
                continue

            endorser = self.store.find_connection(endorsement.endorser_mip_identifier)
            if endorser is None or not endorser.is_active():
                logger.debug(f"Skipping endorsement from non-active endorser {endorsement.endorser_mip_identifier}")
                continue

            if not endorsement.valid_for(target_fingerprint, now):
                logger.debug(f"Skipping expired or mismatched endorsement {endorsement.id}")
                continue

            if not endorsement.verify_signature(endorser.public_key, now):
                logger.warning(
                    f"Endorsement {endorsement.id} does not verify against stored key of "
                    f"{endorsement.endorser_mip_identifier}"
                )
                continue

            trusted_endorsers.add(endorsement.endorser_mip_identifier)
        return len(trusted_endorsers)

    def trusted_count_on_file(self, mip_identifier: str, public_key: str | None, now: datetime | None = None) -> int:
        """Count trusted endorsements already stored for a node."""
        return self.count_trusted_endorsements(self.store.find_endorsements_for(mip_identifier), public_key, now)

    def meets_threshold(self, trusted_count: int) -> bool:
        return is_trusted(trusted_count, self.threshold)

    @staticmethod
    def _parse(candidate: Endorsement | dict[str, Any]) -> Endorsement | None:
        if isinstance(candidate, Endorsement):
            return candidate
        try:
            return Endorsement.from_payload(candidate)
        except ValidationException as e:
            logger.debug(f"Skipping malformed endorsement: {e.message}")
            return None
