# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Assembly of one running MIP node.

Everything that shares node state is wired to the same NodeStore here, once,
at startup. The HTTP app receives the assembled MipNode; nothing reaches for
a module-level store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from ..core.config import CoreSettings, get_config
from .client import MipClient
from .connections import ConnectionManager
from .exchanges import ExchangeService
from .models import Member, NodeIdentity
from .outbox import Outbox
from .store import NodeStore
from .trust import TrustEvaluator
from .verifier import RequestVerifier

logger = logging.getLogger(__name__)


@dataclass
class MipNode:
    """The components of a node, all sharing one store."""

    identity: NodeIdentity
    store: NodeStore
    evaluator: TrustEvaluator
    verifier: RequestVerifier
    client: MipClient
    outbox: Outbox
    connections: ConnectionManager
    exchanges: ExchangeService
    settings: CoreSettings

    async def start(self) -> None:
        await self.outbox.start()
        logger.info(f"MIP node {self.identity.organization_name} ({self.identity.mip_identifier}) started")

    async def stop(self) -> None:
        await self.outbox.stop()
        self.store.commit()
        logger.info(f"MIP node {self.identity.mip_identifier} stopped")


def create_node(
    identity: NodeIdentity,
    members: list[Member] | None = None,
    settings: CoreSettings | None = None,
    state_file: str | Path | None = None,
    client: MipClient | None = None,
) -> MipNode:
    """Wire up a node around ``identity``.

    Args:
        identity: This node's identity
        members: Member records to serve
        settings: Protocol settings (defaults to the global config)
        state_file: Optional JSON snapshot path
        client: Outbound client override, mainly for tests
    """
    settings = settings or get_config()
    store = NodeStore(identity, persist_path=state_file, activity_log_size=settings.activity_log_size)
    for member in members or []:
        store.add_member(member)

    client = client or MipClient(identity, timeout_seconds=settings.outbound_timeout_seconds)
    outbox = Outbox(client, store)
    evaluator = TrustEvaluator(store)
    return MipNode(
        identity=identity,
        store=store,
        evaluator=evaluator,
        verifier=RequestVerifier(store, window_seconds=settings.timestamp_window_seconds),
        client=client,
        outbox=outbox,
        connections=ConnectionManager(store, evaluator, outbox, client=client, settings=settings),
        exchanges=ExchangeService(store, outbox, client=client, settings=settings),
        settings=settings,
    )
