"""Panel session: everything one signed-in user's client runs.

``start()`` loads every aggregate once (seeding the dedup baseline), then
subscribes the topics; the gate goes live once they are confirmed and the
settle delay passed. A channel that drops and subscribes again sends the gate
back to settling, so its catch-up refetch only seeds the baseline. Navigation
is injected as ``on_navigate(tab)``.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from .api_client import StoreClient
from .channel import UNHEALTHY_STATUSES, ChannelFactory, ChannelStatus, sse_channel_factory
from .config import ClientSettings, get_client_settings
from .dedup import Alert, NotificationDedupEngine, StartupGate
from .exceptions import StoreError
from .models import Profile
from .notifications import LocalNotification, LocalNotificationCenter
from .realtime import ALL_TOPICS, RealtimeSubscriptionManager
from .state import AGGREGATES, SyncState, apply_snapshot, unread_messages_for, with_messages_read, with_profile_status

logger = logging.getLogger("fieldsync-client.session")


class PanelSession:
    """Realtime-synchronized state for one user."""

    def __init__(
        self,
        client: StoreClient,
        channel_factory: Optional[ChannelFactory] = None,
        settings: Optional[ClientSettings] = None,
        notification_center: Optional[LocalNotificationCenter] = None,
        on_navigate: Optional[Callable[[str], None]] = None,
        on_state: Optional[Callable[[SyncState], None]] = None,
    ):
        settings = settings or get_client_settings()
        self.client = client
        self.user_id = client.user_id
        self.state = SyncState()
        self.me: Optional[Profile] = None
        self.on_navigate = on_navigate
        self.on_state = on_state

        self.gate = StartupGate(settle_delay=settings.settle_delay)
        self.dedup = NotificationDedupEngine(self.user_id, self.gate)
        self.notifications = notification_center or LocalNotificationCenter(timeout=settings.notification_timeout)
        self.notifications.on_click = self._handle_click
        self.realtime = RealtimeSubscriptionManager(
            channel_factory or sse_channel_factory(self.user_id),
            self.refetch,
            confirm_timeout=settings.confirm_timeout,
            poll_interval=settings.poll_interval,
            on_confirmed=self.gate.confirm,
            on_status=self._handle_channel_status,
        )
        # Topics whose channel dropped since it last subscribed
        self._dropped: set[str] = set()
        self._fetchers = {
            "tasks": client.fetch_tasks,
            "assignments": client.fetch_assignments,
            "sms_requests": client.fetch_sms_requests,
            "notifications": client.fetch_notifications,
            "time_entries": client.fetch_time_entries,
            "messages": client.fetch_messages,
            "profiles": client.fetch_profiles,
            "documents": client.fetch_documents,
        }
        self.started = False

    @property
    def is_admin(self) -> bool:
        return self.me is not None and self.me.role == "admin"

    def _set_state(self, state: SyncState) -> None:
        self.state = state
        if self.on_state is not None:
            self.on_state(state)

    async def refetch(self, aggregate: str) -> None:
        """Canonical refetch of one aggregate, then alert on what is new."""
        rows = await self._fetchers[aggregate]()
        self._set_state(apply_snapshot(self.state, aggregate, rows))
        for alert in self.dedup.observe(self.state):
            self._surface(alert)

    def _surface(self, alert: Alert) -> None:
        self.notifications.show_notification(alert.title, alert.body, tag=alert.key, data=alert.tab)

    def _handle_channel_status(self, topic: str, status: ChannelStatus) -> None:
        if status in UNHEALTHY_STATUSES:
            self._dropped.add(topic)
        elif status == ChannelStatus.SUBSCRIBED and topic in self._dropped:
            self._dropped.discard(topic)
            logger.info(f"{topic} reconnected; settling before alerts resume")
            self.gate.resettle()

    def _handle_click(self, notification: LocalNotification) -> None:
        if self.on_navigate is not None and notification.data:
            self.on_navigate(notification.data)

    async def start(self) -> None:
        """Initial load, then subscribe every topic."""
        if self.started:
            return
        self.me = await self.client.fetch_me()
        await asyncio.gather(*(self.refetch(aggregate) for aggregate in AGGREGATES))
        self.gate.expect(ALL_TOPICS)
        self.realtime.subscribe_all(ALL_TOPICS)
        self.started = True
        logger.info(f"Session started for {self.user_id} ({self.me.role})")

    async def stop(self) -> None:
        """Unsubscribe every channel and clear every timer."""
        await self.realtime.close()
        # The next start confirms every topic again
        self.gate.rearm()
        self._dropped.clear()
        self.notifications.close()
        self.started = False
        logger.info(f"Session stopped for {self.user_id}")

    async def remount(self) -> None:
        """Tear down and start again with a fresh dedup baseline."""
        await self.stop()
        self.dedup.reset()
        await self.start()

    # ========================================================================
    # Optimistic actions
    # ========================================================================

    async def set_status(self, status: str) -> None:
        """Show the new status at once; the next profiles refetch reconciles it."""
        previous = self.state
        self._set_state(with_profile_status(self.state, self.user_id, status))
        try:
            await self.client.set_status(status)
        except StoreError:
            self._set_state(previous)
            raise

    async def read_conversation(self, sender_id) -> int:
        """Mark every unread message from ``sender_id`` read."""
        unread = unread_messages_for(self.state, self.user_id, sender_id)
        if not unread:
            return 0
        read_at = datetime.now(timezone.utc).replace(tzinfo=None)
        self._set_state(with_messages_read(self.state, [m.id for m in unread], read_at))
        try:
            return await self.client.mark_conversation_read(sender_id)
        except StoreError:
            await self.refetch("messages")
            raise

    async def sign_out(self) -> None:
        """Write offline, then tear down."""
        try:
            await self.client.sign_out()
        finally:
            await self.stop()
