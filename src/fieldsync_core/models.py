"""SQLAlchemy database models."""
from datetime import datetime, timezone
from uuid import uuid4
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Numeric,
    DateTime,
    ForeignKey,
    Enum,
    CheckConstraint,
    Boolean,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship, declarative_base

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Current time as naive UTC, the storage convention for every timestamp column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum(enum_cls):
    # Use values_callable to serialize enum values (lowercase) instead of names (UPPERCASE)
    return Enum(enum_cls, values_callable=lambda obj: [e.value for e in obj], native_enum=False, validate_strings=True)


# =============================================================================
# Enums
# =============================================================================

class AppRole(str, enum.Enum):
    """Role granted to a user."""

    ADMIN = "admin"
    EMPLOYEE = "employee"


class UserStatus(str, enum.Enum):
    """Presence status shown next to a user."""

    ONLINE = "online"
    AWAY = "away"
    BUSY = "busy"
    OFFLINE = "offline"


class TaskStatus(str, enum.Enum):
    """Task lifecycle status enum."""

    PENDING = "pending"  # Created, nobody assigned
    ASSIGNED = "assigned"  # Assigned, not yet accepted
    IN_PROGRESS = "in_progress"  # Accepted by the assignee
    SMS_REQUESTED = "sms_requested"  # Waiting for a one-time code from an admin
    PENDING_REVIEW = "pending_review"  # Completed by the assignee, awaiting admin approval
    COMPLETED = "completed"  # Done
    CANCELLED = "cancelled"  # Withdrawn by an admin


class TaskPriority(str, enum.Enum):
    """Task priority enum."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class SmsRequestStatus(str, enum.Enum):
    """One-time code request status."""

    PENDING = "pending"
    RESEND_REQUESTED = "resend_requested"
    FULFILLED = "fulfilled"


class NotificationType(str, enum.Enum):
    """Kinds of in-app notification rows."""

    TASK_ASSIGNED = "task_assigned"
    TASK_ACCEPTED = "task_accepted"
    TASK_RETURNED = "task_returned"
    TASK_COMPLETED = "task_completed"
    TASK_CANCELLED = "task_cancelled"
    SMS_REQUESTED = "sms_requested"
    SMS_CODE_RECEIVED = "sms_code_received"


class TimeEntryType(str, enum.Enum):
    """Clock events recorded by employees."""

    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"
    PAUSE_START = "pause_start"
    PAUSE_END = "pause_end"


class DocumentType(str, enum.Enum):
    """Category of an uploaded document."""

    ID_CARD = "id_card"
    PASSPORT = "passport"
    CONTRACT = "contract"
    CERTIFICATE = "certificate"
    OTHER = "other"


class TaskChangeType(str, enum.Enum):
    """Task history change type enum."""

    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    ASSIGNED = "assigned"
    REASSIGNED = "reassigned"
    UNASSIGNED = "unassigned"
    ACCEPTED = "accepted"
    PROGRESS_UPDATED = "progress_updated"
    SMS_REQUESTED = "sms_requested"
    SMS_CODE_DELIVERED = "sms_code_delivered"
    COMPLETED = "completed"
    APPROVED = "approved"
    RETURNED = "returned"
    CANCELLED = "cancelled"


# =============================================================================
# Users
# =============================================================================

class Profile(Base):
    """Public profile of a user, keyed by the identity provider's user id."""

    __tablename__ = "profiles"

    user_id = Column(Uuid, primary_key=True, default=uuid4)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    avatar_url = Column(String(500), nullable=True)
    status = Column(_enum(UserStatus), nullable=False, default=UserStatus.OFFLINE)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    role = relationship("UserRole", uselist=False, back_populates="profile", cascade="all, delete-orphan")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<Profile {self.email}>"


class UserRole(Base):
    """Role assignment; every user holds exactly one role."""

    __tablename__ = "user_roles"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("profiles.user_id", ondelete="CASCADE"), nullable=False, unique=True)
    role = Column(_enum(AppRole), nullable=False, default=AppRole.EMPLOYEE, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    profile = relationship("Profile", back_populates="role")

    def __repr__(self) -> str:
        return f"<UserRole {self.user_id}: {self.role.value}>"


# =============================================================================
# Tasks
# =============================================================================

class Task(Base):
    """A unit of field work created by an admin and carried out by one employee."""

    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint("special_compensation IS NULL OR special_compensation >= 0", name="ck_task_compensation_non_negative"),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    customer_name = Column(String(200), nullable=False)
    customer_phone = Column(String(50), nullable=True)
    deadline = Column(DateTime, nullable=True, index=True)
    priority = Column(_enum(TaskPriority), nullable=False, default=TaskPriority.MEDIUM, index=True)
    status = Column(_enum(TaskStatus), nullable=False, default=TaskStatus.PENDING, index=True)
    special_compensation = Column(Numeric(10, 2), nullable=True)

    # Test credentials handed to the assignee for the customer's identification flow
    test_email = Column(String(255), nullable=True)
    test_password = Column(String(255), nullable=True)
    web_ident_url = Column(String(500), nullable=True)

    # Audit fields
    created_by = Column(Uuid, ForeignKey("profiles.user_id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    creator = relationship("Profile", foreign_keys=[created_by])
    assignment = relationship("TaskAssignment", uselist=False, back_populates="task", cascade="all, delete-orphan")
    sms_requests = relationship(
        "SmsCodeRequest",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="SmsCodeRequest.requested_at",
    )
    history = relationship("TaskHistory", back_populates="task", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Task {self.id}: {self.title[:30]}>"


class TaskAssignment(Base):
    """The single current assignment of a task.

    The unique constraint on ``task_id`` is the storage half of the
    one-assignee rule; lifecycle operations supply the other half with a
    conditional status update in the same transaction.
    """

    __tablename__ = "task_assignments"
    __table_args__ = (
        UniqueConstraint("task_id", name="uq_task_assignment_task"),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid, ForeignKey("profiles.user_id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_at = Column(DateTime, nullable=False, default=utcnow)
    accepted_at = Column(DateTime, nullable=True)
    progress_notes = Column(Text, nullable=True)
    workflow_step = Column(Integer, nullable=False, default=0)
    workflow_digital = Column(Boolean, nullable=True)

    task = relationship("Task", back_populates="assignment")
    user = relationship("Profile")

    def __repr__(self) -> str:
        return f"<TaskAssignment {self.task_id} -> {self.user_id}>"


class SmsCodeRequest(Base):
    """One-time code request raised by the assignee. Rows are never rewritten by the requester."""

    __tablename__ = "sms_code_requests"

    id = Column(Uuid, primary_key=True, default=uuid4)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("profiles.user_id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(_enum(SmsRequestStatus), nullable=False, default=SmsRequestStatus.PENDING)
    sms_code = Column(String(50), nullable=True)
    requested_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    fulfilled_at = Column(DateTime, nullable=True)

    task = relationship("Task", back_populates="sms_requests")

    def __repr__(self) -> str:
        return f"<SmsCodeRequest {self.task_id}: {self.status.value}>"


class TaskHistory(Base):
    """Task change history for audit trail."""

    __tablename__ = "task_history"

    id = Column(Uuid, primary_key=True, default=uuid4)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)

    change_type = Column(_enum(TaskChangeType), nullable=False)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    comment = Column(Text, nullable=True)

    changed_by = Column(Uuid, ForeignKey("profiles.user_id", ondelete="SET NULL"), nullable=True)
    changed_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    task = relationship("Task", back_populates="history")

    def __repr__(self) -> str:
        return f"<TaskHistory {self.task_id}: {self.change_type.value}>"


# =============================================================================
# Messaging
# =============================================================================

class ChatMessage(Base):
    """Direct (one recipient) or group (broadcast) chat message."""

    __tablename__ = "chat_messages"
    __table_args__ = (
        CheckConstraint(
            "(is_group_message AND recipient_id IS NULL) OR (NOT is_group_message AND recipient_id IS NOT NULL)",
            name="ck_chat_message_recipient",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    sender_id = Column(Uuid, ForeignKey("profiles.user_id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_id = Column(Uuid, ForeignKey("profiles.user_id", ondelete="CASCADE"), nullable=True, index=True)
    is_group_message = Column(Boolean, nullable=False, default=False)
    message = Column(Text, nullable=False, default="")
    image_url = Column(String(500), nullable=True)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    sender = relationship("Profile", foreign_keys=[sender_id])

    def __repr__(self) -> str:
        return f"<ChatMessage {self.id} from {self.sender_id}>"


class Notification(Base):
    """In-app notification for a single user."""

    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("profiles.user_id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(_enum(NotificationType), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    related_task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<Notification {self.type.value} -> {self.user_id}>"


class PushSubscription(Base):
    """Browser push endpoint registered by a user."""

    __tablename__ = "push_subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("profiles.user_id", ondelete="CASCADE"), nullable=False, index=True)
    endpoint = Column(String(1000), nullable=False, unique=True)
    p256dh = Column(String(255), nullable=True)
    auth = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


# =============================================================================
# Time tracking and documents
# =============================================================================

class TimeEntry(Base):
    """A single clock event."""

    __tablename__ = "time_entries"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("profiles.user_id", ondelete="CASCADE"), nullable=False, index=True)
    entry_type = Column(_enum(TimeEntryType), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<TimeEntry {self.user_id}: {self.entry_type.value} @ {self.timestamp}>"


class Document(Base):
    """Metadata for an uploaded document; the blob itself lives in external storage."""

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint("file_size >= 0", name="ck_document_size_non_negative"),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("profiles.user_id", ondelete="CASCADE"), nullable=False, index=True)
    task_id = Column(Uuid, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True)
    file_name = Column(String(255), nullable=False)
    file_path = Column(String(500), nullable=False)
    file_type = Column(String(100), nullable=True)
    file_size = Column(Integer, nullable=False)
    document_type = Column(_enum(DocumentType), nullable=False, default=DocumentType.OTHER)
    uploaded_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<Document {self.file_name}>"
