"""Realtime subscription manager.

One channel per topic. Any event on a topic triggers a canonical refetch of
the aggregates mapped to it; event payloads are never applied directly.
Refetches are coalesced per topic: at most one in flight, plus one trailing
rerun when more events arrived meanwhile. Every handshake (first subscribe or
reconnect) also refetches, since commits before it produced no event.

Task and assignment topics both refetch tasks and assignments because the
two topics carry no ordering relative to each other.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .channel import Channel, ChangeEvent, ChannelFactory, ChannelStatus
from .polling import PollingFallbackSupervisor

logger = logging.getLogger("fieldsync-client.realtime")

# Topic → aggregates to refetch
TOPIC_AGGREGATES: dict[str, tuple[str, ...]] = {
    "tasks": ("tasks", "assignments"),
    "task_assignments": ("tasks", "assignments"),
    "sms_code_requests": ("sms_requests",),
    "notifications": ("notifications",),
    "time_entries": ("time_entries",),
    "chat_messages": ("messages",),
    "profiles": ("profiles",),
    "documents": ("documents",),
}

ALL_TOPICS: tuple[str, ...] = tuple(TOPIC_AGGREGATES)


class CoalescedRefetch:
    """Runs ``fn`` with at most one call in flight and one trailing rerun."""

    def __init__(self, fn: Callable[[], Awaitable[None]], name: str = ""):
        self._fn = fn
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._rerun = False
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def request(self) -> None:
        if self.running:
            self._rerun = True
            return
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            self._rerun = False
            self.runs += 1
            try:
                await self._fn()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Refetch for {self.name} failed")
            if not self._rerun:
                break

    async def wait(self) -> None:
        while self.running:
            await asyncio.shield(self._task)

    async def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None


class RealtimeSubscriptionManager:
    """Keeps local aggregates fresh from push channels, with polling fallback."""

    def __init__(
        self,
        channel_factory: ChannelFactory,
        refetch: Callable[[str], Awaitable[None]],
        confirm_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        on_confirmed: Optional[Callable[[str], None]] = None,
        on_status: Optional[Callable[[str, ChannelStatus], None]] = None,
    ):
        """
        Args:
            channel_factory: Opens a channel for a topic
            refetch: Canonical refetch of one aggregate (e.g. ``"tasks"``)
            confirm_timeout: Seconds to wait for ``subscribed`` before polling
            poll_interval: Polling interval while a channel is unhealthy
            on_confirmed: Called per topic once it is live (subscribed, or polling took over)
            on_status: Called on every channel status change
        """
        self._channel_factory = channel_factory
        self._refetch = refetch
        self._confirm_timeout = confirm_timeout
        self._poll_interval = poll_interval
        self._on_confirmed = on_confirmed
        self._on_status = on_status
        self._channels: dict[str, Channel] = {}
        self._supervisors: dict[str, PollingFallbackSupervisor] = {}
        self._refetches: dict[str, CoalescedRefetch] = {}
        self.statuses: dict[str, ChannelStatus] = {}

    @property
    def topics(self) -> list[str]:
        return list(self._channels)

    def supervisor(self, topic: str) -> PollingFallbackSupervisor:
        return self._supervisors[topic]

    async def refetch_topic(self, topic: str) -> None:
        """Refetch every aggregate mapped to the topic."""
        for aggregate in TOPIC_AGGREGATES[topic]:
            await self._refetch(aggregate)

    def subscribe(self, topic: str) -> None:
        """
        Open the topic's channel and arm its polling fallback.

        Raises:
            ValueError: If the topic is unknown
        """
        if topic not in TOPIC_AGGREGATES:
            raise ValueError(f"Unknown topic: {topic}")
        if topic in self._channels:
            return

        self._refetches[topic] = CoalescedRefetch(lambda: self.refetch_topic(topic), name=topic)
        supervisor = PollingFallbackSupervisor(
            lambda: self.refetch_topic(topic),
            confirm_timeout=self._confirm_timeout,
            poll_interval=self._poll_interval,
            name=topic,
            on_fallback=lambda: self._confirmed(topic),
        )
        self._supervisors[topic] = supervisor
        supervisor.arm()

        channel = self._channel_factory(topic)
        channel.on_event(lambda change: self._handle_event(topic, change))
        channel.on_status_change(lambda status: self._handle_status(topic, status))
        self._channels[topic] = channel
        self.statuses[topic] = ChannelStatus.CONNECTING
        logger.info(f"Subscribed to {topic}")

    def subscribe_all(self, topics=ALL_TOPICS) -> None:
        for topic in topics:
            self.subscribe(topic)

    def _handle_event(self, topic: str, change: ChangeEvent) -> None:
        refetch = self._refetches.get(topic)
        if refetch is None:
            return
        logger.debug(f"{topic}: {change.event_type} {change.record_id}")
        refetch.request()

    def _handle_status(self, topic: str, status: ChannelStatus) -> None:
        supervisor = self._supervisors.get(topic)
        if supervisor is None:
            # Unsubscribed; the channel is reporting its own shutdown
            return
        self.statuses[topic] = status
        supervisor.on_status(status)
        if status == ChannelStatus.SUBSCRIBED:
            # Commits between the last fetch and the handshake carried no event
            self._refetches[topic].request()
            self._confirmed(topic)
        if self._on_status is not None:
            self._on_status(topic, status)

    def _confirmed(self, topic: str) -> None:
        if self._on_confirmed is not None:
            self._on_confirmed(topic)

    async def wait_idle(self) -> None:
        """Wait until no coalesced refetch is in flight."""
        for refetch in list(self._refetches.values()):
            await refetch.wait()

    async def unsubscribe(self, topic: str) -> None:
        supervisor = self._supervisors.pop(topic, None)
        refetch = self._refetches.pop(topic, None)
        channel = self._channels.pop(topic, None)
        self.statuses.pop(topic, None)
        if supervisor is not None:
            await supervisor.stop()
        if refetch is not None:
            await refetch.cancel()
        if channel is not None:
            await channel.close()
        logger.info(f"Unsubscribed from {topic}")

    async def close(self) -> None:
        """Close every channel and clear every timer."""
        for topic in list(self._channels):
            await self.unsubscribe(topic)
