# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""mipnode - a Member Interchange Protocol (MIP) node.

Independent organizations run a node each, form bilateral connections, and
exchange signed attestations about members without a central authority.

Architecture:
  protocol.crypto / identifier / signature
    → protocol.models (entities and their status machines)
    → protocol.store (one lock domain per node)
    → protocol.trust (web-of-trust endorsement counting)
    → protocol.connections (state machine orchestration, auto-approval)
    → protocol.verifier (inbound authentication gate)
  server (Starlette app exposing /mip/node/{id}/... and /admin)

CLI entry point: ``mipnode``
"""

__version__ = "1.0.0"
