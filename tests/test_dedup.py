# tests/test_dedup.py

from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest

from fieldsync_client.dedup import GatePhase, NotificationDedupEngine, StartupGate
from fieldsync_client.state import SyncState

from .fakes import (
    T0,
    make_assignment,
    make_message,
    make_notification,
    make_profile,
    make_sms_request,
    make_task,
)

ME = uuid4()


def _live_engine() -> NotificationDedupEngine:
    gate = StartupGate(settle_delay=0)
    gate.phase = GatePhase.LIVE
    return NotificationDedupEngine(ME, gate)


# =============================================================================
# Startup gate
# =============================================================================

@pytest.mark.asyncio
async def test_gate_phases() -> None:
    gate = StartupGate(settle_delay=0.02)
    assert gate.phase == GatePhase.LOADING

    gate.expect(["tasks", "chat_messages"])
    assert gate.phase == GatePhase.CONFIRMING

    gate.confirm("tasks")
    assert gate.phase == GatePhase.CONFIRMING

    gate.confirm("chat_messages")
    assert gate.phase == GatePhase.SETTLING
    assert not gate.live

    await asyncio.sleep(0.05)
    assert gate.live


@pytest.mark.asyncio
async def test_early_confirmation_counts() -> None:
    gate = StartupGate(settle_delay=10)
    gate.confirm("tasks")
    gate.confirm("unrelated")

    gate.expect(["tasks"])

    assert gate.phase == GatePhase.SETTLING
    gate.close()


@pytest.mark.asyncio
async def test_rearm_goes_back_to_loading() -> None:
    gate = StartupGate(settle_delay=0.01)
    gate.expect([])
    await asyncio.sleep(0.03)
    assert gate.live

    gate.rearm()

    assert gate.phase == GatePhase.LOADING
    gate.expect(["tasks"])
    assert gate.phase == GatePhase.CONFIRMING


@pytest.mark.asyncio
async def test_resettle_after_reconnect() -> None:
    gate = StartupGate(settle_delay=0.01)
    gate.expect([])
    await asyncio.sleep(0.03)
    assert gate.live

    gate.resettle()

    assert gate.phase == GatePhase.SETTLING
    await asyncio.sleep(0.03)
    assert gate.live


@pytest.mark.asyncio
async def test_resettle_leaves_unconfirmed_gate_alone() -> None:
    gate = StartupGate(settle_delay=0.01)
    gate.resettle()
    assert gate.phase == GatePhase.LOADING

    gate.expect(["tasks"])
    gate.resettle()
    assert gate.phase == GatePhase.CONFIRMING


@pytest.mark.asyncio
async def test_close_cancels_pending_go_live() -> None:
    gate = StartupGate(settle_delay=0.01)
    gate.expect([])

    gate.close()
    await asyncio.sleep(0.03)

    assert gate.phase == GatePhase.SETTLING


# =============================================================================
# Dedup engine
# =============================================================================

def test_snapshots_before_live_only_seed_baseline() -> None:
    gate = StartupGate(settle_delay=0)
    engine = NotificationDedupEngine(ME, gate)
    task = make_task()
    state = SyncState(tasks=(task,), assignments=(make_assignment(task.id, ME),))

    assert engine.observe(state) == []

    gate.phase = GatePhase.LIVE
    assert engine.observe(state) == []


def test_new_assignment_alerts_once() -> None:
    engine = _live_engine()
    engine.observe(SyncState())
    task = make_task(title="Meter reading")
    state = SyncState(tasks=(task,), assignments=(make_assignment(task.id, ME),))

    alerts = engine.observe(state)

    assert [(a.kind, a.body, a.tab, a.task_id) for a in alerts] == [("task_assigned", "Meter reading", "tasks", task.id)]
    assert engine.observe(state) == []


def test_other_users_assignments_ignored() -> None:
    engine = _live_engine()
    task = make_task()

    assert engine.observe(SyncState(tasks=(task,), assignments=(make_assignment(task.id, uuid4()),))) == []


def test_sms_code_alerts_when_it_arrives() -> None:
    engine = _live_engine()
    task = make_task(title="Bank ident")
    request = make_sms_request(task.id, ME)

    assert engine.observe(SyncState(tasks=(task,), sms_requests=(request,))) == []

    fulfilled = request.model_copy(update={"sms_code": "424242", "status": "fulfilled"})
    alerts = engine.observe(SyncState(tasks=(task,), sms_requests=(fulfilled,)))

    assert [(a.kind, a.body) for a in alerts] == [("sms_code_received", "Code for Bank ident")]


def test_chat_alerts_name_the_sender() -> None:
    engine = _live_engine()
    admin = make_profile(first_name="Alice", last_name="Admin", role="admin")
    direct = make_message(admin.user_id, ME, "Call the customer")
    group = make_message(admin.user_id, None, "Morning")
    already_read = make_message(admin.user_id, ME, "Old", read_at=T0)

    alerts = engine.observe(SyncState(profiles=(admin,), messages=(direct, group, already_read)))

    assert [(a.title, a.body, a.tab) for a in alerts] == [("New message from Alice Admin", "Call the customer", "chat")]


def test_image_message_from_unknown_sender() -> None:
    engine = _live_engine()
    message = make_message(uuid4(), ME, "")

    alerts = engine.observe(SyncState(messages=(message,)))

    assert (alerts[0].title, alerts[0].body) == ("New message from Unknown", "Image")


def test_covered_notification_rows_are_skipped() -> None:
    engine = _live_engine()
    task_id = uuid4()
    rows = (
        make_notification(ME, "task_assigned", "New task"),
        make_notification(ME, "sms_code_received", "Code"),
        make_notification(ME, "task_cancelled", "Task cancelled", related_task_id=task_id),
        make_notification(ME, "sms_code_requested", "General"),
        make_notification(uuid4(), "task_cancelled", "Not mine"),
    )

    alerts = engine.observe(SyncState(notifications=rows))

    assert [(a.title, a.tab) for a in alerts] == [("Task cancelled", "tasks"), ("General", "notifications")]


def test_reset_forgets_baseline() -> None:
    engine = _live_engine()
    task = make_task()
    state = SyncState(tasks=(task,), assignments=(make_assignment(task.id, ME),))
    assert len(engine.observe(state)) == 1

    engine.reset()

    assert engine.gate.phase == GatePhase.LOADING
    # Seeds again while loading
    assert engine.observe(state) == []
    engine.gate.phase = GatePhase.LIVE
    assert engine.observe(state) == []
