# tests/test_state.py

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

import pytest

from fieldsync_client import state as st
from fieldsync_client.state import SyncState

from .fakes import T0, make_assignment, make_message, make_profile, make_sms_request, make_task


def test_snapshot_replaces_aggregate() -> None:
    first, second = make_task(title="First"), make_task(title="Second")
    state = st.apply_snapshot(SyncState(), "tasks", [first, second])

    state = st.apply_snapshot(state, "tasks", [second])

    assert state.tasks == (second,)


def test_last_snapshot_wins() -> None:
    stale = make_task(status="assigned")
    fresh = stale.model_copy(update={"status": "in_progress"})

    state = st.apply_snapshot(SyncState(), "tasks", [fresh])
    state = st.apply_snapshot(state, "tasks", [stale])

    assert state.tasks[0].status == "assigned"


def test_unknown_aggregate() -> None:
    with pytest.raises(ValueError):
        st.apply_snapshot(SyncState(), "invoices", [])


def test_snapshot_leaves_original_untouched() -> None:
    original = SyncState()

    st.apply_snapshot(original, "tasks", [make_task()])

    assert original.tasks == ()


def test_optimistic_profile_status() -> None:
    me, other = make_profile(status="online"), make_profile(first_name="Olga", status="online")
    state = SyncState(profiles=(me, other))

    state = st.with_profile_status(state, me.user_id, "busy")

    assert st.profile_by_id(state, me.user_id).status == "busy"
    assert st.profile_by_id(state, other.user_id).status == "online"


def test_optimistic_read_keeps_existing_time() -> None:
    me, sender = uuid4(), uuid4()
    unread = make_message(sender, me)
    read = make_message(sender, me, read_at=T0)
    later = datetime(2026, 3, 2, 12)

    state = st.with_messages_read(SyncState(messages=(unread, read)), [unread.id, read.id], later)

    assert [m.read_at for m in state.messages] == [later, T0]


def test_unread_messages_for() -> None:
    me, admin, other = uuid4(), uuid4(), uuid4()
    messages = (
        make_message(admin, me, "one"),
        make_message(other, me, "two"),
        make_message(admin, me, "read", read_at=T0),
        make_message(admin, None, "group"),
        make_message(me, admin, "mine"),
    )
    state = SyncState(messages=messages)

    assert [m.message for m in st.unread_messages_for(state, me)] == ["one", "two"]
    assert [m.message for m in st.unread_messages_for(state, me, sender_id=admin)] == ["one"]


def test_current_sms_request_prefers_code() -> None:
    task, user = make_task(), uuid4()
    with_code = make_sms_request(task.id, user, sms_code="123456", minutes=0)
    newer = make_sms_request(task.id, user, minutes=5)
    state = SyncState(sms_requests=(with_code, newer))

    assert st.current_sms_request(state, task.id) == with_code
    assert st.current_sms_request(SyncState(sms_requests=(newer,)), task.id) == newer
    assert st.current_sms_request(state, uuid4()) is None


def test_selectors() -> None:
    task, user = make_task(), uuid4()
    assignment = make_assignment(task.id, user)
    state = SyncState(tasks=(task,), assignments=(assignment,))

    assert st.task_by_id(state, task.id) == task
    assert st.assignment_for_task(state, task.id) == assignment
    assert st.task_by_id(state, uuid4()) is None
