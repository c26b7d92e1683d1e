"""Server-sent event stream of committed row changes."""
import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from fieldsync_core.api.dependencies import CurrentUser, get_current_user
from fieldsync_core.change_feed import TOPIC_NAMES, ChangeEvent, get_hub
from fieldsync_core.config import get_settings

from ...database import get_db

logger = logging.getLogger("fieldsync-core.realtime")

router = APIRouter(tags=["realtime"])


def format_event(event: str, data: dict) -> str:
    """Encode one SSE frame."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


@router.get("/{topic}")
async def stream_changes(
    topic: str,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Subscribe to one topic's change events.

    The stream starts with a ``subscribed`` event, then sends a ``change``
    event per committed row change the caller may see::

        event: change
        data: {"topic": "tasks", "event_type": "UPDATE", "record_id": "...", "committed_at": "..."}

    Events carry no row data; clients refetch through the regular endpoints.
    A comment line is sent every FIELDSYNC_REALTIME_KEEPALIVE_SECONDS.
    """
    if topic not in TOPIC_NAMES:
        raise HTTPException(
            status_code=404,
            detail={"error": "unknown_topic", "message": f"Unknown topic: {topic}", "topics": sorted(TOPIC_NAMES)},
        )
    # The stream may stay open for hours; give the connection back now
    db.close()

    hub = get_hub()
    subscription = hub.subscribe(topic, current_user.user_id, current_user.is_admin)
    keepalive = get_settings().realtime_keepalive_seconds

    async def _gen():
        try:
            yield format_event("subscribed", {"topic": topic})
            while True:
                if await request.is_disconnected():
                    break
                try:
                    change: ChangeEvent = await asyncio.wait_for(subscription.queue.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield format_event("change", change.to_payload())
        finally:
            hub.unsubscribe(subscription)

    headers = {
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
        "Connection": "keep-alive",
    }
    return StreamingResponse(_gen(), media_type="text/event-stream", headers=headers)
