"""Pure reducer over the client's view of the store.

Every canonical refetch replaces one aggregate wholesale (last write wins),
so overlapping refetches from push and polling converge on the newest
response. Optimistic edits are overwritten by the next refetch.
"""
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from .models import (
    Assignment,
    ChatMessage,
    Document,
    Notification,
    Profile,
    SmsCodeRequest,
    Task,
    TimeEntry,
)

# Aggregate name → SyncState field
AGGREGATES: tuple[str, ...] = (
    "tasks",
    "assignments",
    "sms_requests",
    "notifications",
    "time_entries",
    "messages",
    "profiles",
    "documents",
)


@dataclass(frozen=True)
class SyncState:
    """Immutable snapshot of everything a panel renders."""

    tasks: tuple[Task, ...] = ()
    assignments: tuple[Assignment, ...] = ()
    sms_requests: tuple[SmsCodeRequest, ...] = ()
    notifications: tuple[Notification, ...] = ()
    time_entries: tuple[TimeEntry, ...] = ()
    messages: tuple[ChatMessage, ...] = ()
    profiles: tuple[Profile, ...] = ()
    documents: tuple[Document, ...] = ()


def apply_snapshot(state: SyncState, aggregate: str, rows: Iterable) -> SyncState:
    """
    Replace one aggregate with a freshly fetched snapshot.

    Raises:
        ValueError: If the aggregate is unknown
    """
    if aggregate not in AGGREGATES:
        raise ValueError(f"Unknown aggregate: {aggregate}")
    return replace(state, **{aggregate: tuple(rows)})


def with_profile_status(state: SyncState, user_id: UUID, status: str) -> SyncState:
    """Optimistically set a user's presence status."""
    profiles = tuple(
        p.model_copy(update={"status": status}) if p.user_id == user_id else p
        for p in state.profiles
    )
    return replace(state, profiles=profiles)


def with_messages_read(state: SyncState, message_ids: Iterable[UUID], read_at: datetime) -> SyncState:
    """Optimistically mark messages read; an existing read time is kept."""
    ids = set(message_ids)
    messages = tuple(
        m.model_copy(update={"read_at": read_at}) if m.id in ids and m.read_at is None else m
        for m in state.messages
    )
    return replace(state, messages=messages)


# =============================================================================
# Selectors
# =============================================================================

def task_by_id(state: SyncState, task_id: UUID) -> Optional[Task]:
    return next((t for t in state.tasks if t.id == task_id), None)


def profile_by_id(state: SyncState, user_id: UUID) -> Optional[Profile]:
    return next((p for p in state.profiles if p.user_id == user_id), None)


def assignment_for_task(state: SyncState, task_id: UUID) -> Optional[Assignment]:
    return next((a for a in state.assignments if a.task_id == task_id), None)


def current_sms_request(state: SyncState, task_id: UUID) -> Optional[SmsCodeRequest]:
    """Newest request of the task with a code, else the newest request."""
    requests = sorted(
        (r for r in state.sms_requests if r.task_id == task_id),
        key=lambda r: r.requested_at,
        reverse=True,
    )
    with_code = next((r for r in requests if r.sms_code is not None), None)
    return with_code or (requests[0] if requests else None)


def unread_messages_for(state: SyncState, user_id: UUID, sender_id: Optional[UUID] = None) -> list[ChatMessage]:
    """Unread direct messages addressed to the user, optionally from one sender."""
    return [
        m for m in state.messages
        if not m.is_group_message
        and m.recipient_id == user_id
        and m.read_at is None
        and (sender_id is None or m.sender_id == sender_id)
    ]
