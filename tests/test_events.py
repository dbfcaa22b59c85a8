"""Tests for the progress event channel."""

import asyncio

import pytest

from lubelogger_sync.sync import EventChannel, SyncEventStatus, SyncOperation


class TestEventChannel:
    """Fan-out, bounded buffers and shutdown."""

    @pytest.mark.asyncio
    async def test_every_subscriber_gets_every_event(self):
        channel = EventChannel()
        first = channel.subscribe()
        second = channel.subscribe()

        channel.emit("Vehicle", SyncOperation.UPLOAD, SyncEventStatus.STARTED)

        assert (await first.get(timeout=1)).entity_type == "Vehicle"
        assert (await second.get(timeout=1)).status == SyncEventStatus.STARTED
        assert channel.published_count == 1

    def test_slow_subscriber_drops_oldest(self):
        channel = EventChannel()
        subscription = channel.subscribe(buffer_size=2)

        for name in ("a", "b", "c"):
            channel.emit(name, SyncOperation.DOWNLOAD, SyncEventStatus.COMPLETED)

        assert [e.entity_type for e in subscription.drain()] == ["b", "c"]
        assert subscription.dropped == 1

    def test_publishing_without_subscribers_is_fine(self):
        channel = EventChannel()
        event = channel.emit("All", SyncOperation.REFRESH, SyncEventStatus.SKIPPED, "why")
        assert event.message == "why"
        assert event.to_dict()["operation"] == "Refresh"

    @pytest.mark.asyncio
    async def test_close_ends_iteration(self):
        channel = EventChannel()
        subscription = channel.subscribe()
        channel.emit("Vehicle", SyncOperation.UPLOAD, SyncEventStatus.COMPLETED)
        channel.close()

        received = [event async for event in subscription]

        assert [e.entity_type for e in received] == ["Vehicle"]
        assert channel.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_get_times_out(self):
        subscription = EventChannel().subscribe()
        with pytest.raises(asyncio.TimeoutError):
            await subscription.get(timeout=0.01)

    def test_buffer_size_must_be_positive(self):
        with pytest.raises(ValueError):
            EventChannel(buffer_size=0)
