# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Fire-and-forget delivery of outbound notifications.

Request handlers commit their local state change, enqueue an OutboundJob and
return. A single worker task drains the queue, one job at a time, in order.
A failed job is logged and written to the activity log; it is never retried
and never rolls back the state change that produced it.

Usage:
    outbox = Outbox(client, store)
    await outbox.start()
    outbox.enqueue(OutboundJob(kind=JobKind.ENDORSEMENT, ...))
    await outbox.stop()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from uuid import uuid4

from ..core.exceptions import TransportError
from .client import ClientResult, MipClient
from .store import NodeStore

logger = logging.getLogger(__name__)


class JobKind(str, Enum):
    """What an outbound job delivers."""

    CONNECTION_APPROVED = "connection_approved"
    CONNECTION_DECLINED = "connection_declined"
    CONNECTION_REVOKED = "connection_revoked"
    CONNECTION_RESTORED = "connection_restored"
    ENDORSEMENT = "endorsement"
    SEARCH_REQUEST = "search_request"
    SEARCH_REPLY = "search_reply"
    COGS_REQUEST = "cogs_request"
    COGS_REPLY = "cogs_reply"


@dataclass
class OutboundJob:
    """One outbound call, fully prepared before it is queued.

    ``send`` receives the client and performs the call; everything it needs
    is captured when the job is built, under the store lock.
    """

    kind: JobKind
    target_mip_identifier: str
    target_url: str
    description: str
    send: Callable[[MipClient], Awaitable[ClientResult]] = field(repr=False)
    id: str = field(default_factory=lambda: str(uuid4()))


class Outbox:
    """Queue of outbound jobs plus the worker that drains it."""

    def __init__(self, client: MipClient, store: NodeStore):
        self.client = client
        self.store = store
        self._queue: asyncio.Queue[OutboundJob] | None = None
        self._pending: list[OutboundJob] = []
        self._worker: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def enqueue(self, job: OutboundJob) -> None:
        """Hand a job to the worker. Safe to call while holding the store lock."""
        logger.debug(f"Queued {job.kind.value} for {job.target_mip_identifier}")
        if self._queue is None:
            # Worker not started yet; jobs are kept until start()
            self._pending.append(job)
        else:
            self._queue.put_nowait(job)

    def pending_jobs(self) -> list[OutboundJob]:
        """Jobs not yet handed to a running worker."""
        return list(self._pending)

    def clear(self) -> None:
        self._pending.clear()

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue()
        for job in self._pending:
            self._queue.put_nowait(job)
        self._pending.clear()
        self._worker = asyncio.create_task(self._run(), name="mip-outbox")
        logger.info("Outbox worker started")

    async def drain(self) -> None:
        """Wait until every queued job has been attempted."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        if self._queue is not None:
            while not self._queue.empty():
                self._pending.append(self._queue.get_nowait())
            self._queue = None
        logger.info(f"Outbox worker stopped ({len(self._pending)} jobs undelivered)")

    async def run_pending(self) -> list[bool]:
        """Deliver the queued jobs inline, without a worker.

        Returns:
            Delivery outcome per job, in order
        """
        jobs, self._pending = self._pending, []
        return [await self.deliver(job) for job in jobs]

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            job = await self._queue.get()
            try:
                await self.deliver(job)
            finally:
                self._queue.task_done()

    async def deliver(self, job: OutboundJob) -> bool:
        """Attempt one job. Failures are recorded, never raised."""
        try:
            result = await job.send(self.client)
        except TransportError as e:
            self.store.log_activity(f"Failed to deliver {job.description}: {e.message}")
            return False
        except Exception:
            logger.exception(f"Unexpected error delivering {job.description}")
            self.store.log_activity(f"Failed to deliver {job.description}: internal error")
            return False

        if not result.success:
            self.store.log_activity(f"{job.description} rejected by peer: {result.error}")
            return False

        self.store.log_activity(f"Delivered {job.description}")
        return True
