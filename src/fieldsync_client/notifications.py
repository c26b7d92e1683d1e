"""Local (in-app/system) notifications.

``show_notification(title, body, icon, tag)`` displays a notification that
dismisses itself after ``notification_timeout`` seconds. A newer
notification with the same tag replaces the older one. Clicking focuses the
app through the ``on_click`` callback.
"""
import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from .config import get_client_settings

logger = logging.getLogger("fieldsync-client.notifications")


@dataclass
class LocalNotification:
    id: int
    title: str
    body: str = ""
    icon: Optional[str] = None
    tag: Optional[str] = None
    data: Any = None
    _timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)


class NotificationDisplay(Protocol):
    """Where notifications are rendered (system tray, toast area, ...)."""

    def show(self, notification: LocalNotification) -> None: ...

    def hide(self, notification: LocalNotification) -> None: ...


class LocalNotificationCenter:
    """Tracks visible notifications and their auto-dismiss timers."""

    def __init__(
        self,
        display: Optional[NotificationDisplay] = None,
        timeout: Optional[float] = None,
        on_click: Optional[Callable[[LocalNotification], None]] = None,
    ):
        self.display = display
        self.timeout = timeout if timeout is not None else get_client_settings().notification_timeout
        self.on_click = on_click
        self.visible: dict[int, LocalNotification] = {}
        self._ids = itertools.count(1)

    def show_notification(
        self,
        title: str,
        body: str = "",
        icon: Optional[str] = None,
        tag: Optional[str] = None,
        data: Any = None,
    ) -> LocalNotification:
        """Display a notification; it is dismissed automatically after ``timeout`` seconds."""
        if tag is not None:
            for existing in [n for n in self.visible.values() if n.tag == tag]:
                self.dismiss(existing.id)

        notification = LocalNotification(id=next(self._ids), title=title, body=body, icon=icon, tag=tag, data=data)
        notification._timer = asyncio.get_running_loop().call_later(self.timeout, self.dismiss, notification.id)
        self.visible[notification.id] = notification
        if self.display is not None:
            self.display.show(notification)
        logger.debug(f"Showing notification {notification.id}: {title}")
        return notification

    def dismiss(self, notification_id: int) -> None:
        notification = self.visible.pop(notification_id, None)
        if notification is None:
            return
        if notification._timer is not None:
            notification._timer.cancel()
        if self.display is not None:
            self.display.hide(notification)

    def click(self, notification_id: int) -> None:
        """Handle a click: focus the app, then close the notification."""
        notification = self.visible.get(notification_id)
        if notification is None:
            return
        if self.on_click is not None:
            self.on_click(notification)
        self.dismiss(notification_id)

    def close(self) -> None:
        for notification_id in list(self.visible):
            self.dismiss(notification_id)
