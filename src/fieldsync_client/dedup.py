"""Notification dedup.

Initial loads, catch-up events after a (re)connect and polling all produce
snapshots; only changes that are new since the session went live may alert,
and each alert key alerts once per session.

The startup gate moves through:

    LOADING → CONFIRMING → SETTLING → LIVE

- LOADING: initial fetch in progress
- CONFIRMING: waiting until every expected topic is confirmed (subscribed, or
  handed to polling)
- SETTLING: ``settle_delay`` grace period; arriving changes are catch-up traffic
- LIVE: snapshot diffs surface alerts

A channel reconnecting sends a live gate back to SETTLING; a stopped session
starts again from LOADING. Snapshots observed before LIVE only seed the baseline.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional
from uuid import UUID

from .config import get_client_settings
from .state import SyncState, profile_by_id, task_by_id

logger = logging.getLogger("fieldsync-client.dedup")

# Notification row types already covered by the assignment and code rules
COVERED_NOTIFICATION_TYPES = ("task_assigned", "sms_code_received")


class GatePhase(str, Enum):
    LOADING = "loading"
    CONFIRMING = "confirming"
    SETTLING = "settling"
    LIVE = "live"


class StartupGate:
    """Per-session gate deciding when snapshot changes may alert."""

    def __init__(self, settle_delay: Optional[float] = None):
        self.settle_delay = settle_delay if settle_delay is not None else get_client_settings().settle_delay
        self.phase = GatePhase.LOADING
        self._expected: set[str] = set()
        self._confirmed: set[str] = set()
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def live(self) -> bool:
        return self.phase == GatePhase.LIVE

    def expect(self, topics: Iterable[str]) -> None:
        """Initial load finished; wait for these topics to be confirmed."""
        self._expected = set(topics)
        self._confirmed &= self._expected
        if self.phase == GatePhase.LOADING:
            self.phase = GatePhase.CONFIRMING
        self._maybe_settle()

    def confirm(self, topic: str) -> None:
        self._confirmed.add(topic)
        self._maybe_settle()

    def _maybe_settle(self) -> None:
        if self.phase != GatePhase.CONFIRMING:
            return
        if not self._expected <= self._confirmed:
            return
        self.phase = GatePhase.SETTLING
        logger.debug(f"All topics confirmed; live in {self.settle_delay}s")
        self._timer = asyncio.get_running_loop().call_later(self.settle_delay, self._go_live)

    def _go_live(self) -> None:
        self._timer = None
        self.phase = GatePhase.LIVE
        logger.info("Notification gate is live")

    def resettle(self) -> None:
        """A channel reconnected: treat what arrives next as catch-up traffic.

        The baseline is kept; the gate goes back to SETTLING and restarts the
        settle delay. A gate still confirming or loading is left alone.
        """
        if self.phase not in (GatePhase.SETTLING, GatePhase.LIVE):
            return
        self.close()
        self.phase = GatePhase.SETTLING
        logger.debug(f"Channel reconnected; live again in {self.settle_delay}s")
        self._timer = asyncio.get_running_loop().call_later(self.settle_delay, self._go_live)

    def rearm(self) -> None:
        """Back to LOADING (reconnect or remount)."""
        self.close()
        self.phase = GatePhase.LOADING
        self._expected = set()
        self._confirmed = set()

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


@dataclass(frozen=True)
class Alert:
    """Something worth surfacing to the user.

    ``tab`` is where clicking the alert should navigate.
    """

    key: str
    kind: str
    title: str
    body: str
    tab: str
    task_id: Optional[UUID] = None


class NotificationDedupEngine:
    """Diffs snapshots against the session baseline and emits each alert once."""

    def __init__(self, user_id: UUID, gate: StartupGate):
        self.user_id = user_id
        self.gate = gate
        self._seen: set[str] = set()

    def candidates(self, state: SyncState) -> list[Alert]:
        """Every alert the snapshot could justify, regardless of history."""
        alerts = []
        for assignment in state.assignments:
            if assignment.user_id != self.user_id:
                continue
            task = task_by_id(state, assignment.task_id)
            alerts.append(Alert(
                key=f"assignment:{assignment.id}",
                kind="task_assigned",
                title="New task",
                body=task.title if task else "You have been assigned a new task",
                tab="tasks",
                task_id=assignment.task_id,
            ))

        for request in state.sms_requests:
            if request.user_id != self.user_id or request.sms_code is None:
                continue
            task = task_by_id(state, request.task_id)
            alerts.append(Alert(
                key=f"sms_code:{request.id}",
                kind="sms_code_received",
                title="SMS code received",
                body=f"Code for {task.title}" if task else "Your SMS code has arrived",
                tab="tasks",
                task_id=request.task_id,
            ))

        for message in state.messages:
            if message.is_group_message or message.recipient_id != self.user_id or message.read_at is not None:
                continue
            sender = profile_by_id(state, message.sender_id)
            sender_name = sender.full_name if sender else "Unknown"
            alerts.append(Alert(
                key=f"chat:{message.id}",
                kind="chat_message",
                title=f"New message from {sender_name}",
                body=message.message or "Image",
                tab="chat",
            ))

        for notification in state.notifications:
            if notification.user_id != self.user_id or notification.read_at is not None:
                continue
            if notification.type in COVERED_NOTIFICATION_TYPES:
                continue
            alerts.append(Alert(
                key=f"notification:{notification.id}",
                kind=notification.type,
                title=notification.title,
                body=notification.message,
                tab="tasks" if notification.related_task_id else "notifications",
                task_id=notification.related_task_id,
            ))
        return alerts

    def observe(self, state: SyncState) -> list[Alert]:
        """
        Feed a new snapshot.

        Returns:
            Alerts to surface (empty until the gate is live)
        """
        candidates = self.candidates(state)
        if not self.gate.live:
            self._seen.update(alert.key for alert in candidates)
            return []

        fresh = [alert for alert in candidates if alert.key not in self._seen]
        self._seen.update(alert.key for alert in fresh)
        if fresh:
            logger.info(f"Surfacing {len(fresh)} new alerts")
        return fresh

    def reset(self) -> None:
        """Start a new session: forget the baseline and re-arm the gate."""
        self._seen.clear()
        self.gate.rearm()
