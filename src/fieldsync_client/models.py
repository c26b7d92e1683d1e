"""Row models as the client sees them (read-only snapshots of store rows)."""
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class Row(BaseModel):
    """Base for snapshot rows: immutable, unknown fields ignored."""

    model_config = ConfigDict(frozen=True, extra="ignore")


class Task(Row):
    id: UUID
    title: str
    description: Optional[str] = None
    customer_name: str
    deadline: Optional[datetime] = None
    priority: str
    status: str
    created_at: datetime
    updated_at: datetime


class Assignment(Row):
    id: UUID
    task_id: UUID
    user_id: UUID
    assigned_at: datetime
    accepted_at: Optional[datetime] = None
    progress_notes: Optional[str] = None
    workflow_step: int = 0


class SmsCodeRequest(Row):
    id: UUID
    task_id: UUID
    user_id: UUID
    status: str
    sms_code: Optional[str] = None
    requested_at: datetime
    fulfilled_at: Optional[datetime] = None


class Profile(Row):
    user_id: UUID
    first_name: str
    last_name: str
    email: str
    avatar_url: Optional[str] = None
    status: str
    role: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ChatMessage(Row):
    id: UUID
    sender_id: UUID
    recipient_id: Optional[UUID] = None
    is_group_message: bool
    message: str
    image_url: Optional[str] = None
    read_at: Optional[datetime] = None
    created_at: datetime


class Notification(Row):
    id: UUID
    user_id: UUID
    type: str
    title: str
    message: str
    related_task_id: Optional[UUID] = None
    read_at: Optional[datetime] = None
    created_at: datetime


class TimeEntry(Row):
    id: UUID
    user_id: UUID
    entry_type: str
    timestamp: datetime


class Document(Row):
    id: UUID
    user_id: UUID
    task_id: Optional[UUID] = None
    file_name: str
    file_path: str
    file_size: int
    document_type: str
    uploaded_at: datetime
