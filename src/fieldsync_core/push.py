"""Web push payloads, click handling and best-effort delivery.

Payload shape (what the browser's service worker renders)::

    {title, body, icon, badge, data: {url}, tag, renotify, vibrate,
     actions: [{action: "open", title}, {action: "close", title}]}

Transport encryption is the push service's concern; the dispatcher posts the
JSON payload to each registered endpoint and prunes endpoints the push
service reports as gone (404/410).
"""
import logging
from dataclasses import dataclass
from typing import Iterable, Optional
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from . import models
from .config import get_settings

logger = logging.getLogger("fieldsync-core.push")

DEFAULT_TITLE = "New message"
DEFAULT_BODY = "You have received a new message"
DEFAULT_TAG = "chat-notification"
VIBRATE_PATTERN = [200, 100, 200]
ACTION_OPEN = "open"
ACTION_CLOSE = "close"
GONE_STATUSES = (404, 410)
PUSH_TTL_SECONDS = 86400


def build_push_payload(
    title: Optional[str] = None,
    body: Optional[str] = None,
    url: Optional[str] = None,
    tag: Optional[str] = None,
    icon: Optional[str] = None,
    badge: Optional[str] = None,
) -> dict:
    """Build a push payload, filling every missing field with its default."""
    settings = get_settings()
    return {
        "title": title or DEFAULT_TITLE,
        "body": body or DEFAULT_BODY,
        "icon": icon or settings.push_icon,
        "badge": badge or settings.push_icon,
        "data": {"url": url or settings.push_default_url},
        "tag": tag or DEFAULT_TAG,
        "renotify": True,
        "vibrate": list(VIBRATE_PATTERN),
        "actions": [
            {"action": ACTION_OPEN, "title": "Open"},
            {"action": ACTION_CLOSE, "title": "Close"},
        ],
    }


@dataclass(frozen=True)
class ClickResolution:
    """What a notification click should do: nothing, focus an open window, or open a URL."""

    kind: str  # "none" | "focus" | "open"
    target: Optional[str] = None


def resolve_notification_click(
    action: Optional[str],
    payload_data: Optional[dict],
    open_window_urls: Iterable[str],
) -> ClickResolution:
    """
    Decide how to handle a click on a push notification.

    - ``close`` action: nothing
    - a window on the panel is open: focus it
    - otherwise: open ``data.url`` (default panel URL)
    """
    if action == ACTION_CLOSE:
        return ClickResolution("none")

    panel_path = get_settings().push_default_url
    for window_url in open_window_urls:
        if panel_path in window_url:
            return ClickResolution("focus", window_url)

    url = (payload_data or {}).get("url") or panel_path
    return ClickResolution("open", url)


@dataclass
class PushResult:
    sent: int = 0
    failed: int = 0


class PushDispatcher:
    """Posts payloads to a user's registered endpoints."""

    def __init__(self, client: Optional[httpx.Client] = None, timeout: Optional[float] = None):
        self._client = client or httpx.Client(timeout=timeout or get_settings().push_timeout_seconds)

    def close(self) -> None:
        self._client.close()

    def send_to_user(self, db: Session, user_id: UUID, payload: dict) -> PushResult:
        """
        Send a payload to every endpoint of a user.

        Endpoints answering 404/410 are removed. Failures are counted, never raised.
        """
        subscriptions = db.query(models.PushSubscription).filter(
            models.PushSubscription.user_id == user_id
        ).all()
        if not subscriptions:
            logger.info(f"No push subscriptions for user {user_id}")
            return PushResult()

        result = PushResult()
        pruned = False
        for subscription in subscriptions:
            try:
                response = self._client.post(
                    subscription.endpoint,
                    json=payload,
                    headers={"TTL": str(PUSH_TTL_SECONDS)},
                )
            except httpx.HTTPError as e:
                logger.error(f"Push to {subscription.endpoint} failed: {e}")
                result.failed += 1
                continue

            if response.is_success:
                result.sent += 1
                continue

            result.failed += 1
            logger.warning(f"Push to {subscription.endpoint} failed with status {response.status_code}")
            if response.status_code in GONE_STATUSES:
                logger.info(f"Removing invalid subscription: {subscription.endpoint}")
                db.delete(subscription)
                pruned = True

        if pruned:
            db.commit()
        logger.info(f"Push results for {user_id}: {result.sent} successful, {result.failed} failed")
        return result
