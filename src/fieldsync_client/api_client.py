"""Async HTTP client for the FieldSync store.

Reads return snapshot rows (see :mod:`fieldsync_client.models`); mutations
return the store's JSON. Inputs the client can check locally are validated
before anything is sent.
"""
import logging
from typing import Any, Optional
from uuid import UUID

import httpx

from .config import get_client_settings
from .exceptions import (
    Conflict,
    GuardFailed,
    PermissionDenied,
    StoreError,
    TransportError,
    ValidationFailed,
)
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

logger = logging.getLogger("fieldsync-client.api_client")

USER_HEADER = "X-User-Id"
MAX_MESSAGE_LENGTH = 5000
USER_STATUSES = ("online", "away", "busy", "offline")
TIME_ENTRY_TYPES = ("check_in", "check_out", "pause_start", "pause_end")


def _detail_message(detail: Any) -> str:
    if isinstance(detail, dict):
        return str(detail.get("message") or detail.get("error") or detail)
    if isinstance(detail, list):
        # pydantic request validation errors
        return "; ".join(str(item.get("msg", item)) if isinstance(item, dict) else str(item) for item in detail)
    return str(detail)


def error_from_response(response: httpx.Response) -> StoreError:
    """
    Map an error response to a client exception.

    - 401/403 → PermissionDenied
    - 404/409 → Conflict
    - 422 with ``guard_failed`` → GuardFailed(guard)
    - 400/422 → ValidationFailed
    - anything else → StoreError
    """
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = response.text
    message = _detail_message(detail)
    status = response.status_code

    if status in (401, 403):
        return PermissionDenied(message, status)
    if status in (404, 409):
        return Conflict(message, status)
    if status == 422 and isinstance(detail, dict) and detail.get("error") == "guard_failed":
        return GuardFailed(detail.get("guard", ""), message)
    if status in (400, 422):
        return ValidationFailed(message, status)
    return StoreError(message, status)


class StoreClient:
    """Store access for one signed-in user."""

    def __init__(
        self,
        user_id: UUID,
        base_url: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_client_settings()
        self.user_id = user_id
        self.base_url = base_url or settings.api_base_url
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.request_timeout,
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _request(self, method: str, path: str, json: Any = None, params: Optional[dict] = None) -> Any:
        try:
            response = await self._http.request(
                method,
                path,
                json=json,
                params=params,
                headers={USER_HEADER: str(self.user_id)},
            )
        except httpx.HTTPError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise TransportError(f"Store unreachable: {e}") from e

        if response.status_code == 204:
            return None
        if response.is_success:
            return response.json()

        error = error_from_response(response)
        logger.info(f"{method} {path} rejected with {response.status_code}: {error.message}")
        raise error

    # ========================================================================
    # Aggregate reads
    # ========================================================================

    async def fetch_me(self) -> Profile:
        return Profile.model_validate(await self._request("GET", "/users/me"))

    async def fetch_profiles(self) -> list[Profile]:
        return [Profile.model_validate(row) for row in await self._request("GET", "/users/")]

    async def fetch_tasks(self) -> list[Task]:
        return [Task.model_validate(row) for row in await self._request("GET", "/tasks/")]

    async def fetch_assignments(self) -> list[Assignment]:
        return [Assignment.model_validate(row) for row in await self._request("GET", "/assignments/")]

    async def fetch_sms_requests(self) -> list[SmsCodeRequest]:
        return [SmsCodeRequest.model_validate(row) for row in await self._request("GET", "/sms-requests/")]

    async def fetch_notifications(self) -> list[Notification]:
        return [Notification.model_validate(row) for row in await self._request("GET", "/notifications/")]

    async def fetch_time_entries(self) -> list[TimeEntry]:
        today = await self._request("GET", "/time-entries/today")
        return [TimeEntry.model_validate(row) for row in today["entries"]]

    async def fetch_messages(self) -> list[ChatMessage]:
        return [ChatMessage.model_validate(row) for row in await self._request("GET", "/messages/")]

    async def fetch_documents(self) -> list[Document]:
        return [Document.model_validate(row) for row in await self._request("GET", "/documents/")]

    async def has_role(self, user_id: UUID, role: str) -> bool:
        result = await self._request("GET", f"/users/{user_id}/has-role/{role}")
        return bool(result["has_role"])

    # ========================================================================
    # Task lifecycle
    # ========================================================================

    async def create_task(self, title: str, customer_name: str, **fields) -> dict:
        if not title or not title.strip():
            raise ValidationFailed("Title is required")
        if not customer_name or not customer_name.strip():
            raise ValidationFailed("Customer name is required")
        compensation = fields.get("special_compensation")
        if compensation is not None and float(compensation) < 0:
            raise ValidationFailed("Special compensation must not be negative")
        payload = {"title": title.strip(), "customer_name": customer_name.strip(), **fields}
        return await self._request("POST", "/tasks/", json=payload)

    async def assign_task(self, task_id: UUID, user_id: UUID) -> dict:
        return await self._request("POST", f"/tasks/{task_id}/assign", json={"user_id": str(user_id)})

    async def accept_task(self, task_id: UUID) -> dict:
        return await self._request("POST", f"/tasks/{task_id}/accept")

    async def request_sms_code(self, task_id: UUID) -> dict:
        return await self._request("POST", f"/tasks/{task_id}/sms-requests")

    async def fulfill_sms_code(self, request_id: UUID, sms_code: str) -> dict:
        if not sms_code or not sms_code.strip():
            raise ValidationFailed("SMS code must not be blank")
        return await self._request("POST", f"/sms-requests/{request_id}/fulfill", json={"sms_code": sms_code.strip()})

    async def complete_task(self, task_id: UUID, notes: Optional[str] = None) -> dict:
        return await self._request("POST", f"/tasks/{task_id}/complete", json={"notes": notes})

    async def return_task(self, task_id: UUID) -> dict:
        return await self._request("POST", f"/tasks/{task_id}/return")

    async def cancel_task(self, task_id: UUID) -> dict:
        return await self._request("POST", f"/tasks/{task_id}/cancel")

    async def delete_task(self, task_id: UUID) -> None:
        await self._request("DELETE", f"/tasks/{task_id}")

    # ========================================================================
    # Presence, chat, time, documents, notifications
    # ========================================================================

    async def set_status(self, status: str) -> dict:
        if status not in USER_STATUSES:
            raise ValidationFailed(f"Unknown status: {status}")
        return await self._request("PUT", "/users/me/status", json={"status": status})

    async def sign_out(self) -> dict:
        return await self._request("POST", "/users/me/sign-out")

    async def send_message(
        self,
        message: str = "",
        recipient_id: Optional[UUID] = None,
        image_url: Optional[str] = None,
    ) -> dict:
        """Send a direct message (``recipient_id``) or a group message (no recipient)."""
        message = (message or "").strip()
        if not message and not image_url:
            raise ValidationFailed("Message text or image is required")
        if len(message) > MAX_MESSAGE_LENGTH:
            raise ValidationFailed(f"Message is too long (maximum {MAX_MESSAGE_LENGTH} characters)")
        if recipient_id is not None and recipient_id == self.user_id:
            raise ValidationFailed("Cannot send a direct message to yourself")
        payload = {
            "recipient_id": str(recipient_id) if recipient_id else None,
            "is_group_message": recipient_id is None,
            "message": message,
            "image_url": image_url,
        }
        return await self._request("POST", "/messages/", json=payload)

    async def mark_message_read(self, message_id: UUID) -> dict:
        return await self._request("POST", f"/messages/{message_id}/read")

    async def mark_conversation_read(self, sender_id: UUID) -> int:
        result = await self._request("POST", f"/messages/conversations/{sender_id}/read")
        return result["updated"]

    async def record_time_entry(self, entry_type: str) -> dict:
        if entry_type not in TIME_ENTRY_TYPES:
            raise ValidationFailed(f"Unknown time entry type: {entry_type}")
        return await self._request("POST", "/time-entries/", json={"entry_type": entry_type})

    async def register_document(self, **fields) -> dict:
        return await self._request("POST", "/documents/", json=fields)

    async def mark_notification_read(self, notification_id: UUID) -> dict:
        return await self._request("POST", f"/notifications/{notification_id}/read")
