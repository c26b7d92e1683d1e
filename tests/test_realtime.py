# tests/test_realtime.py

from __future__ import annotations

import asyncio

import pytest

from fieldsync_client.channel import ChannelStatus
from fieldsync_client.realtime import ALL_TOPICS, CoalescedRefetch, RealtimeSubscriptionManager

from .fakes import FakeChannelFactory


class Recorder:
    def __init__(self):
        self.aggregates: list[str] = []

    async def __call__(self, aggregate: str) -> None:
        self.aggregates.append(aggregate)


def _manager(factory, refetch, **kwargs) -> RealtimeSubscriptionManager:
    kwargs.setdefault("confirm_timeout", 10)
    kwargs.setdefault("poll_interval", 0.01)
    return RealtimeSubscriptionManager(factory, refetch, **kwargs)


@pytest.mark.asyncio
async def test_coalesced_refetch_runs_once_more_after_burst() -> None:
    release = asyncio.Event()
    calls = []

    async def fetch() -> None:
        calls.append(True)
        await release.wait()

    refetch = CoalescedRefetch(fetch, name="tasks")
    refetch.request()
    await asyncio.sleep(0)
    assert refetch.running

    # Three events while the first fetch is in flight
    refetch.request()
    refetch.request()
    refetch.request()
    release.set()
    await refetch.wait()

    assert len(calls) == 2
    assert refetch.runs == 2


@pytest.mark.asyncio
async def test_coalesced_refetch_survives_failure() -> None:
    calls = []

    async def fetch() -> None:
        calls.append(True)
        raise RuntimeError("boom")

    refetch = CoalescedRefetch(fetch, name="tasks")
    refetch.request()
    await refetch.wait()
    refetch.request()
    await refetch.wait()

    assert len(calls) == 2
    assert not refetch.running


@pytest.mark.asyncio
async def test_unknown_topic_rejected() -> None:
    manager = _manager(FakeChannelFactory(), Recorder())

    with pytest.raises(ValueError):
        manager.subscribe("invoices")


@pytest.mark.asyncio
async def test_subscribe_is_idempotent() -> None:
    factory = FakeChannelFactory()
    manager = _manager(factory, Recorder())

    manager.subscribe("tasks")
    manager.subscribe("tasks")

    assert factory.opened == 1
    assert manager.topics == ["tasks"]
    assert manager.statuses["tasks"] == ChannelStatus.CONNECTING
    await manager.close()


@pytest.mark.asyncio
async def test_event_triggers_canonical_refetch() -> None:
    factory = FakeChannelFactory()
    refetch = Recorder()
    manager = _manager(factory, refetch)
    manager.subscribe("sms_code_requests")

    factory.channels["sms_code_requests"].emit("INSERT", "abc")
    await manager.wait_idle()

    assert refetch.aggregates == ["sms_requests"]
    await manager.close()


@pytest.mark.asyncio
async def test_assignment_events_refetch_tasks_too() -> None:
    factory = FakeChannelFactory()
    refetch = Recorder()
    manager = _manager(factory, refetch)
    manager.subscribe("task_assignments")

    factory.channels["task_assignments"].emit("INSERT")
    await manager.wait_idle()

    assert refetch.aggregates == ["tasks", "assignments"]
    await manager.close()


@pytest.mark.asyncio
async def test_burst_before_fetch_starts_is_one_refetch() -> None:
    factory = FakeChannelFactory()
    refetch = Recorder()
    manager = _manager(factory, refetch)
    manager.subscribe("notifications")

    for record_id in range(5):
        factory.channels["notifications"].emit("INSERT", str(record_id))
    await manager.wait_idle()

    assert refetch.aggregates == ["notifications"]
    await manager.close()


@pytest.mark.asyncio
async def test_subscribed_status_confirms_topic() -> None:
    factory = FakeChannelFactory()
    confirmed = []
    statuses = []
    manager = _manager(
        factory, Recorder(),
        on_confirmed=confirmed.append,
        on_status=lambda topic, status: statuses.append((topic, status)),
    )
    manager.subscribe("profiles")

    factory.channels["profiles"].set_status(ChannelStatus.SUBSCRIBED)

    assert confirmed == ["profiles"]
    assert statuses == [("profiles", ChannelStatus.SUBSCRIBED)]
    assert manager.statuses["profiles"] == ChannelStatus.SUBSCRIBED
    assert not manager.supervisor("profiles").polling
    await manager.close()


@pytest.mark.asyncio
async def test_handshake_refetches() -> None:
    factory = FakeChannelFactory()
    refetch = Recorder()
    manager = _manager(factory, refetch)
    manager.subscribe("tasks")

    # Rows committed before the handshake produce no event of their own
    factory.channels["tasks"].set_status(ChannelStatus.SUBSCRIBED)
    await manager.wait_idle()

    assert refetch.aggregates == ["tasks", "assignments"]
    await manager.close()


@pytest.mark.asyncio
async def test_reconnect_refetches_again() -> None:
    factory = FakeChannelFactory()
    refetch = Recorder()
    manager = _manager(factory, refetch)
    manager.subscribe("chat_messages")
    channel = factory.channels["chat_messages"]
    channel.set_status(ChannelStatus.SUBSCRIBED)
    await manager.wait_idle()

    channel.set_status(ChannelStatus.CHANNEL_ERROR)
    channel.set_status(ChannelStatus.SUBSCRIBED)
    await manager.wait_idle()

    assert refetch.aggregates == ["messages", "messages"]
    assert not manager.supervisor("chat_messages").polling
    await manager.close()


@pytest.mark.asyncio
async def test_unconfirmed_topic_polls_and_counts_as_confirmed() -> None:
    factory = FakeChannelFactory()
    refetch = Recorder()
    confirmed = []
    manager = _manager(factory, refetch, confirm_timeout=0.02, on_confirmed=confirmed.append)
    manager.subscribe("time_entries")

    await asyncio.sleep(0.08)

    assert confirmed == ["time_entries"]
    assert manager.supervisor("time_entries").polling
    assert "time_entries" in refetch.aggregates
    await manager.close()


@pytest.mark.asyncio
async def test_channel_error_starts_polling() -> None:
    factory = FakeChannelFactory()
    refetch = Recorder()
    manager = _manager(factory, refetch)
    manager.subscribe("documents")
    channel = factory.channels["documents"]
    channel.set_status(ChannelStatus.SUBSCRIBED)

    channel.set_status(ChannelStatus.CHANNEL_ERROR)
    await asyncio.sleep(0.03)

    assert manager.supervisor("documents").polling
    assert "documents" in refetch.aggregates

    # Reconnected
    channel.set_status(ChannelStatus.SUBSCRIBED)
    assert not manager.supervisor("documents").polling
    await manager.close()


@pytest.mark.asyncio
async def test_close_releases_every_channel() -> None:
    factory = FakeChannelFactory()
    manager = _manager(factory, Recorder())
    manager.subscribe_all()

    await manager.close()

    assert set(factory.channels) == set(ALL_TOPICS)
    assert all(channel.closed for channel in factory.channels.values())
    assert manager.topics == []
    assert manager.statuses == {}
