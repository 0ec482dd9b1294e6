"""Tests for outbound job delivery."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from mipnode.core.exceptions import TransportError
from mipnode.protocol.client import ClientResult
from mipnode.protocol.outbox import JobKind, OutboundJob, Outbox
from mipnode.protocol.store import NodeStore


def make_job(send, description="endorsement to Bob Lodge") -> OutboundJob:
    return OutboundJob(
        kind=JobKind.ENDORSEMENT,
        target_mip_identifier="b" * 32,
        target_url="http://bob.test/mip/node/" + "b" * 32,
        description=description,
        send=send,
    )


@pytest.fixture
def store(local_identity):
    return NodeStore(local_identity)


@pytest.fixture
def outbox(store):
    return Outbox(client=AsyncMock(), store=store)


def messages(store) -> list[str]:
    return [entry.message for entry in store.recent_activity()]


class TestDeliver:
    @pytest.mark.asyncio
    async def test_success_is_logged(self, outbox, store):
        send = AsyncMock(return_value=ClientResult(success=True, status=200))
        assert await outbox.deliver(make_job(send)) is True
        send.assert_awaited_once_with(outbox.client)
        assert messages(store) == ["Delivered endorsement to Bob Lodge"]

    @pytest.mark.asyncio
    async def test_transport_error_is_recorded(self, outbox, store):
        send = AsyncMock(side_effect=TransportError("Request timed out after 10.0s"))
        assert await outbox.deliver(make_job(send)) is False
        assert messages(store) == ["Failed to deliver endorsement to Bob Lodge: Request timed out after 10.0s"]

    @pytest.mark.asyncio
    async def test_peer_refusal_is_recorded(self, outbox, store):
        result = ClientResult(success=False, status=403, body={"data": {"error": "An active connection is required"}})
        assert await outbox.deliver(make_job(AsyncMock(return_value=result))) is False
        assert "rejected by peer: An active connection is required" in messages(store)[0]

    @pytest.mark.asyncio
    async def test_unexpected_error_never_raises(self, outbox, store):
        send = AsyncMock(side_effect=RuntimeError("boom"))
        assert await outbox.deliver(make_job(send)) is False
        assert messages(store) == ["Failed to deliver endorsement to Bob Lodge: internal error"]


class TestQueue:
    def test_jobs_wait_until_started(self, outbox):
        outbox.enqueue(make_job(AsyncMock()))
        assert len(outbox.pending_jobs()) == 1
        assert not outbox.running

    @pytest.mark.asyncio
    async def test_run_pending_delivers_in_order(self, outbox):
        order: list[str] = []

        def sender(name):
            async def send(client):
                order.append(name)
                return ClientResult(success=True, status=200)

            return send

        outbox.enqueue(make_job(sender("first")))
        outbox.enqueue(make_job(sender("second")))

        assert await outbox.run_pending() == [True, True]
        assert order == ["first", "second"]
        assert outbox.pending_jobs() == []

    @pytest.mark.asyncio
    async def test_worker_drains_queue(self, outbox, store):
        send = AsyncMock(return_value=ClientResult(success=True, status=200))
        outbox.enqueue(make_job(send))
        await outbox.start()
        assert outbox.running
        outbox.enqueue(make_job(send, description="approval notice to Bob Lodge"))

        await asyncio.wait_for(outbox.drain(), timeout=5)
        await outbox.stop()

        assert send.await_count == 2
        assert not outbox.running
        assert outbox.pending_jobs() == []

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_worker(self, outbox):
        failing = AsyncMock(side_effect=TransportError("refused"))
        ok = AsyncMock(return_value=ClientResult(success=True, status=200))
        await outbox.start()
        outbox.enqueue(make_job(failing))
        outbox.enqueue(make_job(ok))

        await asyncio.wait_for(outbox.drain(), timeout=5)
        await outbox.stop()

        ok.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, outbox):
        await outbox.stop()
        assert not outbox.running
