"""Row-level change feed.

Captures committed inserts, updates and deletes of the tracked models and fans
them out to subscribers. Events never carry row data: subscribers re-read the
affected aggregate through the regular endpoints, which apply the same access
rules as any other read.

Capture works in two steps:
- ``after_flush`` collects the changed rows of the flushed unit of work
  (bulk ``Query.update``/``Query.delete`` calls register theirs through
  :func:`record_change`)
- ``after_commit`` publishes the collected events; a rollback discards them

The audience of every event is computed on the server from the row itself
(admins plus the users the row concerns), so clients never filter events.
"""
import asyncio
import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import event, select
from sqlalchemy.orm import Session

from . import models
from .models import utcnow

logger = logging.getLogger("fieldsync-core.change_feed")

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"

_PENDING_KEY = "fieldsync_pending_changes"

# Model → topic name
TOPICS: dict[type, str] = {
    models.Task: "tasks",
    models.TaskAssignment: "task_assignments",
    models.SmsCodeRequest: "sms_code_requests",
    models.Notification: "notifications",
    models.TimeEntry: "time_entries",
    models.ChatMessage: "chat_messages",
    models.Profile: "profiles",
    models.Document: "documents",
}

TOPIC_NAMES: frozenset[str] = frozenset(TOPICS.values())


@dataclass(frozen=True)
class ChangeEvent:
    """A committed row change on a topic, with the set of users allowed to see it."""

    topic: str
    event_type: str
    record_id: str
    user_ids: frozenset = frozenset()
    include_admins: bool = True
    broadcast: bool = False
    committed_at: Optional[datetime] = None

    def visible_to(self, user_id: UUID, is_admin: bool) -> bool:
        if self.broadcast:
            return True
        if is_admin and self.include_admins:
            return True
        return user_id in self.user_ids

    def to_payload(self) -> dict:
        return {
            "topic": self.topic,
            "event_type": self.event_type,
            "record_id": self.record_id,
            "committed_at": self.committed_at.isoformat() if self.committed_at else None,
        }


# =============================================================================
# Audience policy
# =============================================================================

def _task_audience(session: Session, task_id: UUID) -> frozenset:
    """Admins see every task; the current assignee sees theirs."""
    rows = session.connection().execute(
        select(models.TaskAssignment.user_id).where(models.TaskAssignment.task_id == task_id)
    ).scalars().all()
    return frozenset(rows)


def audience_for(session: Session, obj) -> dict:
    """Return ChangeEvent audience keyword arguments for a tracked row."""
    if isinstance(obj, models.Task):
        return {"user_ids": _task_audience(session, obj.id)}
    if isinstance(obj, models.Profile):
        return {"broadcast": True}
    if isinstance(obj, models.ChatMessage):
        if obj.is_group_message:
            return {"broadcast": True}
        return {"user_ids": frozenset({obj.sender_id, obj.recipient_id}), "include_admins": False}
    if isinstance(obj, models.Notification):
        return {"user_ids": frozenset({obj.user_id}), "include_admins": False}
    # Assignments, code requests, time entries and documents belong to one employee
    return {"user_ids": frozenset({obj.user_id})}


def _record_id(obj) -> str:
    if isinstance(obj, models.Profile):
        return str(obj.user_id)
    return str(obj.id)


# =============================================================================
# Capture (SQLAlchemy session events)
# =============================================================================

def _pending(session: Session) -> list[ChangeEvent]:
    return session.info.setdefault(_PENDING_KEY, [])


def record_change(
    session: Session,
    model: type,
    event_type: str,
    record_id,
    user_ids: Iterable = (),
    include_admins: bool = True,
    broadcast: bool = False,
) -> None:
    """
    Register a change made outside the ORM unit of work (bulk UPDATE/DELETE).

    The event is published when the session's transaction commits.

    Args:
        session: Session whose transaction carries the change
        model: Model class of the changed row
        event_type: INSERT, UPDATE or DELETE
        record_id: Primary key of the changed row
        user_ids: Users the row concerns
        include_admins: Whether admins see the event
        broadcast: Whether every subscriber sees the event
    """
    _pending(session).append(ChangeEvent(
        topic=TOPICS[model],
        event_type=event_type,
        record_id=str(record_id),
        user_ids=frozenset(u for u in user_ids if u is not None),
        include_admins=include_admins,
        broadcast=broadcast,
    ))


@event.listens_for(Session, "after_flush")
def _collect_flushed_changes(session: Session, flush_context) -> None:
    pending = _pending(session)
    for event_type, objects in (
        (INSERT, session.new),
        (UPDATE, session.dirty),
        (DELETE, session.deleted),
    ):
        for obj in objects:
            topic = TOPICS.get(type(obj))
            if topic is None:
                continue
            if event_type == UPDATE and not session.is_modified(obj, include_collections=False):
                continue
            pending.append(ChangeEvent(
                topic=topic,
                event_type=event_type,
                record_id=_record_id(obj),
                **audience_for(session, obj),
            ))


@event.listens_for(Session, "after_commit")
def _publish_committed_changes(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending:
        return
    committed_at = utcnow()
    hub = get_hub()
    for change in pending:
        hub.publish(ChangeEvent(
            topic=change.topic,
            event_type=change.event_type,
            record_id=change.record_id,
            user_ids=change.user_ids,
            include_admins=change.include_admins,
            broadcast=change.broadcast,
            committed_at=committed_at,
        ))


@event.listens_for(Session, "after_soft_rollback")
def _discard_rolled_back_changes(session: Session, previous_transaction) -> None:
    session.info.pop(_PENDING_KEY, None)


# =============================================================================
# Fan-out
# =============================================================================

@dataclass(eq=False)
class Subscription:
    """One subscriber's view of a topic, bound to the event loop that consumes it."""

    id: int
    topic: str
    user_id: UUID
    is_admin: bool
    loop: asyncio.AbstractEventLoop
    queue: asyncio.Queue = field(repr=False)

    def _put(self, change: ChangeEvent) -> None:
        # Events only trigger a refetch, so the oldest one can go when the consumer lags
        if self.queue.full():
            self.queue.get_nowait()
            logger.warning(f"Subscriber {self.id} on {self.topic} is lagging; dropped oldest event")
        self.queue.put_nowait(change)


class ChangeFeedHub:
    """Thread-safe registry of subscriptions.

    Publishing happens on whatever thread committed the transaction (the
    request threadpool for sync endpoints); delivery hops onto each
    subscriber's loop with ``call_soon_threadsafe``.
    """

    def __init__(self, queue_size: int = 1000):
        self._queue_size = queue_size
        self._subscriptions: dict[int, Subscription] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def subscribe(
        self,
        topic: str,
        user_id: UUID,
        is_admin: bool,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> Subscription:
        """
        Register a subscriber for a topic.

        Must be called from the consuming event loop unless ``loop`` is given.

        Raises:
            ValueError: If the topic is unknown
        """
        if topic not in TOPIC_NAMES:
            raise ValueError(f"Unknown topic: {topic}")
        subscription = Subscription(
            id=next(self._ids),
            topic=topic,
            user_id=user_id,
            is_admin=is_admin,
            loop=loop or asyncio.get_running_loop(),
            queue=asyncio.Queue(maxsize=self._queue_size),
        )
        with self._lock:
            self._subscriptions[subscription.id] = subscription
        logger.info(f"Subscriber {subscription.id} joined {topic} (user {user_id})")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            removed = self._subscriptions.pop(subscription.id, None)
        if removed is not None:
            logger.info(f"Subscriber {subscription.id} left {subscription.topic}")

    def subscriber_count(self, topic: Optional[str] = None) -> int:
        with self._lock:
            if topic is None:
                return len(self._subscriptions)
            return sum(1 for s in self._subscriptions.values() if s.topic == topic)

    def publish(self, change: ChangeEvent) -> int:
        """
        Deliver an event to every subscriber of its topic allowed to see it.

        Returns:
            Number of subscribers the event was handed to
        """
        with self._lock:
            targets = [
                s for s in self._subscriptions.values()
                if s.topic == change.topic and change.visible_to(s.user_id, s.is_admin)
            ]
        delivered = 0
        for subscription in targets:
            try:
                subscription.loop.call_soon_threadsafe(subscription._put, change)
                delivered += 1
            except RuntimeError:
                # Consumer loop is closed
                logger.info(f"Dropping subscriber {subscription.id}: event loop closed")
                self.unsubscribe(subscription)
        logger.debug(f"Published {change.event_type} {change.topic}/{change.record_id} to {delivered} subscribers")
        return delivered


_hub: Optional[ChangeFeedHub] = None
_hub_lock = threading.Lock()


def get_hub() -> ChangeFeedHub:
    """Return the process-wide change feed hub."""
    global _hub
    if _hub is None:
        with _hub_lock:
            if _hub is None:
                from .config import get_settings

                _hub = ChangeFeedHub(queue_size=get_settings().realtime_queue_size)
    return _hub
