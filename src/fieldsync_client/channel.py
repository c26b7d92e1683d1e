"""Typed push channels.

A channel delivers the change events of one topic and reports its health::

    channel.on_event(handler)          # handler(ChangeEvent)
    channel.on_status_change(handler)  # handler(ChannelStatus)
    await channel.close()

:class:`SseChannel` implements it over the store's server-sent event stream
and reconnects with exponential backoff. Tests substitute in-memory channels.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol
from uuid import UUID

import httpx

from .config import get_client_settings

logger = logging.getLogger("fieldsync-client.channel")


class ChannelStatus(str, Enum):
    """Health of a push channel."""

    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    CHANNEL_ERROR = "channel_error"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


# Statuses after which the channel is not delivering events
UNHEALTHY_STATUSES = (ChannelStatus.CHANNEL_ERROR, ChannelStatus.TIMED_OUT, ChannelStatus.CLOSED)


@dataclass(frozen=True)
class ChangeEvent:
    """A row change notice. Carries no row data."""

    topic: str
    event_type: str
    record_id: str
    committed_at: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict) -> "ChangeEvent":
        return cls(
            topic=payload["topic"],
            event_type=payload["event_type"],
            record_id=payload["record_id"],
            committed_at=payload.get("committed_at"),
        )


EventHandler = Callable[[ChangeEvent], None]
StatusHandler = Callable[[ChannelStatus], None]


class Channel(Protocol):
    """Push channel for one topic."""

    topic: str

    def on_event(self, handler: EventHandler) -> None: ...

    def on_status_change(self, handler: StatusHandler) -> None: ...

    async def close(self) -> None: ...


ChannelFactory = Callable[[str], Channel]


class BaseChannel:
    """Handler bookkeeping shared by channel implementations."""

    def __init__(self, topic: str):
        self.topic = topic
        self.status = ChannelStatus.CONNECTING
        self._event_handlers: list[EventHandler] = []
        self._status_handlers: list[StatusHandler] = []

    def on_event(self, handler: EventHandler) -> None:
        self._event_handlers.append(handler)

    def on_status_change(self, handler: StatusHandler) -> None:
        self._status_handlers.append(handler)

    def _emit_event(self, change: ChangeEvent) -> None:
        for handler in list(self._event_handlers):
            handler(change)

    def _set_status(self, status: ChannelStatus) -> None:
        if status == self.status and status != ChannelStatus.CONNECTING:
            return
        self.status = status
        logger.info(f"Channel {self.topic}: {status.value}")
        for handler in list(self._status_handlers):
            handler(status)


# =============================================================================
# Server-sent events
# =============================================================================

@dataclass(frozen=True)
class SseMessage:
    event: str
    data: str


class SseParser:
    """Incremental parser for ``text/event-stream`` lines.

    Feed it one line at a time (without the newline); a blank line completes
    a message. Comment lines (``:``) are keepalives and are skipped.
    """

    def __init__(self):
        self._event = ""
        self._data: list[str] = []

    def feed(self, line: str) -> Optional[SseMessage]:
        line = line.rstrip("\r")
        if not line:
            if not self._event and not self._data:
                return None
            message = SseMessage(event=self._event or "message", data="\n".join(self._data))
            self._event = ""
            self._data = []
            return message
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return None


class SseChannel(BaseChannel):
    """Channel over ``GET /realtime/{topic}`` with reconnect backoff."""

    def __init__(
        self,
        topic: str,
        user_id: UUID,
        base_url: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        reconnect_delay: Optional[float] = None,
        reconnect_max_delay: Optional[float] = None,
    ):
        super().__init__(topic)
        settings = get_client_settings()
        self.user_id = user_id
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=httpx.Timeout(settings.request_timeout, read=settings.stream_read_timeout),
        )
        self._reconnect_delay = reconnect_delay if reconnect_delay is not None else settings.reconnect_delay
        self._reconnect_max_delay = reconnect_max_delay if reconnect_max_delay is not None else settings.reconnect_max_delay
        self._closed = False
        self._handshake_done = False
        self._task: Optional[asyncio.Task] = None

    def start(self) -> "SseChannel":
        """Start streaming on the running loop."""
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"sse-{self.topic}")
        return self

    async def _consume(self) -> None:
        parser = SseParser()
        async with self._http.stream(
            "GET",
            f"/realtime/{self.topic}",
            headers={"X-User-Id": str(self.user_id), "Accept": "text/event-stream"},
        ) as response:
            if response.status_code != 200:
                raise httpx.HTTPStatusError(
                    f"Stream rejected with {response.status_code}",
                    request=response.request,
                    response=response,
                )
            async for line in response.aiter_lines():
                message = parser.feed(line)
                if message is None:
                    continue
                if message.event == "subscribed":
                    self._handshake_done = True
                    self._set_status(ChannelStatus.SUBSCRIBED)
                elif message.event == "change":
                    self._emit_event(ChangeEvent.from_payload(json.loads(message.data)))

    async def _run(self) -> None:
        delay = self._reconnect_delay
        while not self._closed:
            self._set_status(ChannelStatus.CONNECTING)
            self._handshake_done = False
            try:
                await self._consume()
                # Server ended the stream
                self._set_status(ChannelStatus.CHANNEL_ERROR)
            except httpx.TimeoutException as e:
                logger.warning(f"Channel {self.topic} timed out: {e}")
                self._set_status(ChannelStatus.TIMED_OUT)
            except (httpx.HTTPError, ValueError, KeyError) as e:
                logger.warning(f"Channel {self.topic} failed: {e}")
                self._set_status(ChannelStatus.CHANNEL_ERROR)

            # A stream that got through the handshake resets the backoff
            if self._handshake_done:
                delay = self._reconnect_delay
            await asyncio.sleep(delay)
            delay = min(delay * 2, self._reconnect_max_delay)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._owns_http:
            await self._http.aclose()
        self._set_status(ChannelStatus.CLOSED)


def sse_channel_factory(user_id: UUID, http: Optional[httpx.AsyncClient] = None) -> ChannelFactory:
    """Return a factory opening started SSE channels for the user."""

    def factory(topic: str) -> SseChannel:
        return SseChannel(topic, user_id, http=http).start()

    return factory
