"""Tests for the offline worker command/event channel."""

import asyncio

import pytest

from conftest import CVL_URL, make_response, make_session
from tilevault.core.transfer_manager import RegionTransferManager
from tilevault.core.worker import (
    CacheResource,
    Completed,
    EvictResource,
    Failed,
    OfflineWorker,
    Progress,
)

BODY = b"0123456789abcdef"


async def _next_terminal(queue: asyncio.Queue, timeout: float = 2.0):
    """Drains events until a Completed or Failed one arrives."""
    progress = []
    while True:
        event = await asyncio.wait_for(queue.get(), timeout)
        if isinstance(event, Progress):
            progress.append(event)
            continue
        return event, progress


@pytest.fixture
def make_worker(store, metadata):
    def _make(*responses):
        manager = RegionTransferManager(
            store, metadata, session=make_session(*responses), chunk_size=4
        )
        return OfflineWorker(manager)

    return _make


class TestOfflineWorker:
    """Tests for OfflineWorker."""

    @pytest.mark.asyncio
    async def test_cache_publishes_progress_then_completed(
        self, make_worker, descriptor
    ):
        """Caching a resource streams Progress events and ends with Completed."""
        worker = make_worker(make_response(BODY))
        events = worker.subscribe()
        worker.start()
        try:
            worker.send(CacheResource(descriptor))
            event, progress = await _next_terminal(events)
        finally:
            await worker.stop()

        assert isinstance(event, Completed)
        assert event.metadata.byte_size == len(BODY)
        assert progress[-1].final is True
        assert progress[-1].received == len(BODY)

    @pytest.mark.asyncio
    async def test_query_and_evict(self, make_worker, descriptor):
        """Availability queries reflect cache and evict commands."""
        worker = make_worker(make_response(BODY))
        events = worker.subscribe()
        worker.start()
        try:
            assert await worker.query(CVL_URL) is False
            worker.send(CacheResource(descriptor))
            await _next_terminal(events)
            assert await worker.query(CVL_URL) is True

            worker.send(EvictResource(CVL_URL))
            assert await worker.query(CVL_URL) is False
        finally:
            await worker.stop()

    @pytest.mark.asyncio
    async def test_failure_is_published(self, make_worker, descriptor):
        """A failed transfer produces a Failed event."""
        worker = make_worker(make_response(b"", status=500))
        events = worker.subscribe()
        worker.start()
        try:
            worker.send(CacheResource(descriptor))
            event, _ = await _next_terminal(events)
        finally:
            await worker.stop()

        assert isinstance(event, Failed)
        assert event.url == CVL_URL
        assert "500" in event.error

    @pytest.mark.asyncio
    async def test_duplicate_cache_commands_share_transfer(
        self, make_worker, descriptor
    ):
        """A second cache command for a running transfer does not refetch."""
        gate = asyncio.Event()
        worker = make_worker(make_response(BODY, gate=gate))
        events = worker.subscribe()
        worker.start()
        try:
            worker.send(CacheResource(descriptor))
            worker.send(CacheResource(descriptor))
            await worker.query(CVL_URL)
            gate.set()
            event, _ = await _next_terminal(events)
        finally:
            await worker.stop()

        assert isinstance(event, Completed)
        assert worker.manager._session.get.call_count == 1

    @pytest.mark.asyncio
    async def test_unanswered_query_times_out_as_unavailable(self, make_worker):
        """A query to a worker that is not running reports False."""
        worker = make_worker()
        assert await worker.query(CVL_URL, timeout=0.05) is False

    @pytest.mark.asyncio
    async def test_unsubscribe(self, make_worker):
        """Unsubscribed queues receive nothing further."""
        worker = make_worker()
        queue = worker.subscribe()
        worker.unsubscribe(queue)
        worker._publish(Failed(CVL_URL, "x"))
        assert queue.empty()
