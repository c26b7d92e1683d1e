# tests/test_channel.py

from __future__ import annotations

import asyncio
import json
from uuid import uuid4

import httpx
import pytest

from fieldsync_client.channel import ChangeEvent, ChannelStatus, SseChannel, SseParser


def _feed(parser: SseParser, text: str) -> list:
    messages = []
    for line in text.split("\n"):
        message = parser.feed(line)
        if message is not None:
            messages.append(message)
    return messages


def test_parser_reads_named_events() -> None:
    messages = _feed(SseParser(), 'event: change\ndata: {"a": 1}\n\n')

    assert [(m.event, m.data) for m in messages] == [("change", '{"a": 1}')]


def test_parser_joins_data_lines_and_defaults_event() -> None:
    messages = _feed(SseParser(), "data: one\ndata:two\n\n")

    assert [(m.event, m.data) for m in messages] == [("message", "one\ntwo")]


def test_parser_skips_keepalives_and_blank_runs() -> None:
    messages = _feed(SseParser(), ": keepalive\n\n\n\r\nevent: subscribed\r\ndata: {}\r\n\r\n")

    assert [(m.event, m.data) for m in messages] == [("subscribed", "{}")]


def test_change_event_from_payload() -> None:
    change = ChangeEvent.from_payload({"topic": "tasks", "event_type": "DELETE", "record_id": "42"})

    assert change == ChangeEvent(topic="tasks", event_type="DELETE", record_id="42", committed_at=None)


def _stream_body(*changes: dict) -> bytes:
    body = ": connected\n\nevent: subscribed\ndata: {}\n\n"
    for change in changes:
        body += f"event: change\ndata: {json.dumps(change)}\n\n"
    return body.encode()


@pytest.mark.asyncio
async def test_sse_channel_confirms_and_delivers() -> None:
    user_id = uuid4()
    seen_headers = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_headers.append(request.headers.get("X-User-Id"))
        assert request.url.path == "/api/v1/realtime/tasks"
        return httpx.Response(200, content=_stream_body(
            {"topic": "tasks", "event_type": "UPDATE", "record_id": "7", "committed_at": "2026-03-02T09:00:00"},
        ))

    statuses, events = [], []
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://store/api/v1") as http:
        channel = SseChannel("tasks", user_id, http=http, reconnect_delay=10)
        channel.on_status_change(statuses.append)
        channel.on_event(events.append)

        channel.start()
        await asyncio.sleep(0.05)
        await channel.close()

    assert seen_headers == [str(user_id)]
    assert statuses == [
        ChannelStatus.CONNECTING,
        ChannelStatus.SUBSCRIBED,
        # Stream ended
        ChannelStatus.CHANNEL_ERROR,
        ChannelStatus.CLOSED,
    ]
    assert [(e.event_type, e.record_id) for e in events] == [("UPDATE", "7")]


@pytest.mark.asyncio
async def test_rejected_stream_reports_error_and_retries() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(True)
        return httpx.Response(401, json={"detail": {"error": "unknown_user"}})

    statuses = []
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://store") as http:
        channel = SseChannel("profiles", uuid4(), http=http, reconnect_delay=0.01, reconnect_max_delay=0.02)
        channel.on_status_change(statuses.append)

        channel.start()
        await asyncio.sleep(0.1)
        await channel.close()

    assert ChannelStatus.SUBSCRIBED not in statuses
    assert ChannelStatus.CHANNEL_ERROR in statuses
    assert len(attempts) >= 2
    assert statuses[-1] == ChannelStatus.CLOSED


@pytest.mark.asyncio
async def test_close_is_idempotent() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_stream_body())

    statuses = []
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://store") as http:
        channel = SseChannel("documents", uuid4(), http=http, reconnect_delay=10)
        channel.on_status_change(statuses.append)
        channel.start()
        await asyncio.sleep(0.02)

        await channel.close()
        await channel.close()

    assert statuses.count(ChannelStatus.CLOSED) == 1
