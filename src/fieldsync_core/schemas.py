"""Pydantic schemas for request/response validation."""
import re
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from .models import (
    AppRole,
    UserStatus,
    TaskStatus,
    TaskPriority,
    TaskChangeType,
    SmsRequestStatus,
    NotificationType,
    TimeEntryType,
    DocumentType,
)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NAME_PATTERN = re.compile(r"^[a-zA-ZäöüÄÖÜß\s\-']+$")


def _strip_required(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


# ============================================================================
# User Schemas
# ============================================================================


class ProfileResponse(BaseModel):
    """Schema for a user profile."""

    user_id: UUID
    first_name: str
    last_name: str
    email: str
    avatar_url: Optional[str] = None
    status: UserStatus
    role: Optional[AppRole] = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class StatusUpdate(BaseModel):
    """Schema for a presence status change."""

    status: UserStatus


class UserCreate(BaseModel):
    """Schema for creating a user (admin only).

    Credentials are issued by the identity provider; only profile and role are stored here.
    """

    email: str = Field(..., max_length=255)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    role: AppRole = AppRole.EMPLOYEE

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Invalid email format")
        return value

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        value = _strip_required(value)
        if not NAME_PATTERN.match(value):
            raise ValueError("Name may only contain letters, spaces, hyphens and apostrophes")
        return value


class HasRoleResponse(BaseModel):
    """Schema for a role check."""

    user_id: UUID
    role: AppRole
    has_role: bool

    model_config = ConfigDict(use_enum_values=True)


# ============================================================================
# Task Schemas
# ============================================================================


class TaskCreate(BaseModel):
    """Schema for creating a new task."""

    title: str = Field(..., min_length=1, max_length=200, description="Task title")
    description: Optional[str] = Field(None, max_length=5000, description="Task description")
    customer_name: str = Field(..., min_length=1, max_length=200, description="Customer the work is done for")
    customer_phone: Optional[str] = Field(None, max_length=50)
    deadline: Optional[datetime] = Field(None, description="Deadline (optional)")
    priority: TaskPriority = Field(TaskPriority.MEDIUM, description="Task priority")
    special_compensation: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    test_email: Optional[str] = Field(None, max_length=255)
    test_password: Optional[str] = Field(None, max_length=255)
    web_ident_url: Optional[str] = Field(None, max_length=500)

    @field_validator("title", "customer_name")
    @classmethod
    def not_blank(cls, value: str) -> str:
        return _strip_required(value)


class TaskUpdate(BaseModel):
    """Schema for editing task details. Status changes go through lifecycle endpoints."""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    customer_name: Optional[str] = Field(None, min_length=1, max_length=200)
    customer_phone: Optional[str] = Field(None, max_length=50)
    deadline: Optional[datetime] = None
    priority: Optional[TaskPriority] = None
    special_compensation: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    test_email: Optional[str] = Field(None, max_length=255)
    test_password: Optional[str] = Field(None, max_length=255)
    web_ident_url: Optional[str] = Field(None, max_length=500)


class TaskAssign(BaseModel):
    """Schema for assigning an employee to a task."""

    user_id: UUID = Field(..., description="Employee to assign")


class TaskComplete(BaseModel):
    """Schema for completing a task."""

    notes: Optional[str] = Field(None, max_length=5000, description="Final progress notes")


class ProgressUpdate(BaseModel):
    """Schema for assignee progress updates."""

    progress_notes: Optional[str] = Field(None, max_length=5000)
    workflow_step: Optional[int] = Field(None, ge=0, le=100)
    workflow_digital: Optional[bool] = None


class TaskResponse(BaseModel):
    """Schema for full task response."""

    id: UUID
    title: str
    description: Optional[str] = None
    customer_name: str
    customer_phone: Optional[str] = None
    deadline: Optional[datetime] = None
    priority: TaskPriority
    status: TaskStatus
    special_compensation: Optional[Decimal] = None
    test_email: Optional[str] = None
    test_password: Optional[str] = None
    web_ident_url: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class AssignmentResponse(BaseModel):
    """Schema for a task assignment."""

    id: UUID
    task_id: UUID
    user_id: UUID
    assigned_at: datetime
    accepted_at: Optional[datetime] = None
    progress_notes: Optional[str] = None
    workflow_step: int = 0
    workflow_digital: Optional[bool] = None

    model_config = ConfigDict(from_attributes=True)


class TaskHistoryResponse(BaseModel):
    """Schema for task history entries."""

    id: UUID
    task_id: UUID
    change_type: TaskChangeType
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    comment: Optional[str] = None
    changed_by: Optional[UUID] = None
    changed_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ============================================================================
# SMS Code Schemas
# ============================================================================


class SmsCodeRequestResponse(BaseModel):
    """Schema for a one-time code request row."""

    id: UUID
    task_id: UUID
    user_id: UUID
    status: SmsRequestStatus
    sms_code: Optional[str] = None
    requested_at: datetime
    fulfilled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class SmsCodeFulfill(BaseModel):
    """Schema for an admin delivering a code."""

    sms_code: str = Field(..., min_length=1, max_length=50)

    @field_validator("sms_code")
    @classmethod
    def not_blank(cls, value: str) -> str:
        return _strip_required(value)


# ============================================================================
# Chat Schemas
# ============================================================================


class ChatMessageCreate(BaseModel):
    """Schema for sending a chat message.

    Direct messages require a recipient; group messages must not have one.
    Either text or an image reference is required.
    """

    recipient_id: Optional[UUID] = None
    is_group_message: bool = False
    message: str = Field("", max_length=5000)
    image_url: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def check_shape(self):
        if self.is_group_message and self.recipient_id is not None:
            raise ValueError("Group messages must not have a recipient")
        if not self.is_group_message and self.recipient_id is None:
            raise ValueError("Direct messages require a recipient")
        self.message = self.message.strip()
        if not self.message and not self.image_url:
            raise ValueError("Message text or image is required")
        return self


class ChatMessageResponse(BaseModel):
    """Schema for a chat message."""

    id: UUID
    sender_id: UUID
    recipient_id: Optional[UUID] = None
    is_group_message: bool
    message: str
    image_url: Optional[str] = None
    read_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MarkReadResult(BaseModel):
    """Schema for a batched read receipt."""

    updated: int


class UnreadCount(BaseModel):
    """Unread direct messages from one sender."""

    sender_id: UUID
    count: int


# ============================================================================
# Notification Schemas
# ============================================================================


class NotificationResponse(BaseModel):
    """Schema for an in-app notification."""

    id: UUID
    user_id: UUID
    type: NotificationType
    title: str
    message: str
    related_task_id: Optional[UUID] = None
    read_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PushKeys(BaseModel):
    p256dh: Optional[str] = Field(None, max_length=255)
    auth: Optional[str] = Field(None, max_length=255)


class PushSubscriptionCreate(BaseModel):
    """Schema for registering a browser push endpoint."""

    endpoint: str = Field(..., min_length=1, max_length=1000)
    keys: PushKeys = Field(default_factory=PushKeys)


class PushSubscriptionResponse(BaseModel):
    id: UUID
    user_id: UUID
    endpoint: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PushSendRequest(BaseModel):
    """Schema for sending a push notification to a user (admin only)."""

    user_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field("", max_length=1000)
    url: Optional[str] = Field(None, max_length=500)
    tag: Optional[str] = Field(None, max_length=100)


class PushSendResult(BaseModel):
    sent: int
    failed: int


# ============================================================================
# Time Tracking Schemas
# ============================================================================


class TimeEntryCreate(BaseModel):
    """Schema for recording a clock event."""

    entry_type: TimeEntryType


class TimeEntryResponse(BaseModel):
    id: UUID
    user_id: UUID
    entry_type: TimeEntryType
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ClockStateResponse(BaseModel):
    """Schema for a user's clock state today."""

    user_id: UUID
    state: str = Field(description="out, in or paused")
    checked_in: bool
    worked_seconds: int
    entries: list[TimeEntryResponse]


# ============================================================================
# Document Schemas
# ============================================================================


class DocumentCreate(BaseModel):
    """Schema for registering an uploaded document."""

    file_name: str = Field(..., min_length=1, max_length=255)
    file_path: str = Field(..., min_length=1, max_length=500)
    file_type: Optional[str] = Field(None, max_length=100)
    file_size: int = Field(..., ge=0)
    document_type: DocumentType = DocumentType.OTHER
    task_id: Optional[UUID] = None


class DocumentResponse(BaseModel):
    id: UUID
    user_id: UUID
    task_id: Optional[UUID] = None
    file_name: str
    file_path: str
    file_type: Optional[str] = None
    file_size: int
    document_type: DocumentType
    uploaded_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ============================================================================
# Statistics Schemas
# ============================================================================


class EmployeeStats(BaseModel):
    user_id: UUID
    full_name: str
    status: UserStatus
    total_tasks: int
    completed_tasks: int
    active_tasks: int
    hours_today: float

    model_config = ConfigDict(use_enum_values=True)


class StatsResponse(BaseModel):
    """Schema for the admin overview."""

    total_tasks: int
    pending_tasks: int
    active_tasks: int
    completed_tasks: int
    cancelled_tasks: int
    employees: int
    employees_online: int
    open_sms_requests: int
    per_employee: list[EmployeeStats]
