# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""MIP identifier generation.

An identifier is MD5(random UUID + organization name) as 32 lowercase hex
characters. The organization name salts the random value so that two nodes
are unlikely to collide even with a weak random source.
"""

from __future__ import annotations

import hashlib
import re
import uuid

_IDENTIFIER_RE = re.compile(r"^[0-9a-f]{32}$")


def generate(organization_name: str) -> str:
    """Generate a fresh MIP identifier for an organization."""
    seed = f"{uuid.uuid4()}{organization_name}"
    return hashlib.md5(seed.encode("utf-8"), usedforsecurity=False).hexdigest()


def is_valid(identifier: str | None) -> bool:
    """Check that a value looks like a MIP identifier."""
    return bool(identifier) and _IDENTIFIER_RE.match(identifier) is not None
