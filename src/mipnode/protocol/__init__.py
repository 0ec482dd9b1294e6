# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Member Interchange Protocol: signing, trust, connections and exchanges."""

from .client import ClientResult, MipClient
from .connections import ConnectionManager
from .exchanges import ExchangeService
from .models import (
    CogsRequest,
    Connection,
    ConnectionStatus,
    Direction,
    Endorsement,
    Member,
    NodeIdentity,
    RequestStatus,
    SearchRequest,
)
from .node import MipNode, create_node
from .outbox import JobKind, OutboundJob, Outbox
from .store import NodeStore
from .trust import TrustEvaluator, is_trusted
from .verifier import RequestVerifier, VerifiedSender

__all__ = [
    "ClientResult",
    "CogsRequest",
    "Connection",
    "ConnectionManager",
    "ConnectionStatus",
    "Direction",
    "Endorsement",
    "ExchangeService",
    "JobKind",
    "Member",
    "MipClient",
    "MipNode",
    "NodeIdentity",
    "NodeStore",
    "OutboundJob",
    "Outbox",
    "RequestStatus",
    "RequestVerifier",
    "SearchRequest",
    "TrustEvaluator",
    "VerifiedSender",
    "create_node",
    "is_trusted",
]
