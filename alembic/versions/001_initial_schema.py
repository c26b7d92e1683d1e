"""Initial schema: profiles, tasks, SMS code requests, chat, notifications, time tracking, documents.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _enum(name: str, *values: str) -> sa.Enum:
    # Stored as VARCHAR + CHECK so new values do not need a type migration
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True)


def upgrade() -> None:
    # Users
    op.create_table(
        'profiles',
        sa.Column('user_id', sa.Uuid, primary_key=True),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('avatar_url', sa.String(500)),
        sa.Column('status', _enum('userstatus', 'online', 'away', 'busy', 'offline'), nullable=False, server_default='offline'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_profiles_email', 'profiles', ['email'])

    op.create_table(
        'user_roles',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('profiles.user_id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('role', _enum('approle', 'admin', 'employee'), nullable=False, server_default='employee'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_user_roles_role', 'user_roles', ['role'])

    # Tasks
    op.create_table(
        'tasks',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('customer_name', sa.String(200), nullable=False),
        sa.Column('customer_phone', sa.String(50)),
        sa.Column('deadline', sa.DateTime),
        sa.Column('priority', _enum('taskpriority', 'low', 'medium', 'high', 'urgent'), nullable=False, server_default='medium'),
        sa.Column(
            'status',
            _enum('taskstatus', 'pending', 'assigned', 'in_progress', 'sms_requested', 'pending_review', 'completed', 'cancelled'),
            nullable=False,
            server_default='pending',
        ),
        sa.Column('special_compensation', sa.Numeric(10, 2)),
        sa.Column('test_email', sa.String(255)),
        sa.Column('test_password', sa.String(255)),
        sa.Column('web_ident_url', sa.String(500)),
        sa.Column('created_by', sa.Uuid, sa.ForeignKey('profiles.user_id', ondelete='SET NULL')),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "special_compensation IS NULL OR special_compensation >= 0",
            name='ck_task_compensation_non_negative'
        )
    )
    op.create_index('idx_tasks_status', 'tasks', ['status'])
    op.create_index('idx_tasks_priority', 'tasks', ['priority'])
    op.create_index('idx_tasks_deadline', 'tasks', ['deadline'])
    op.create_index('idx_tasks_created_at', 'tasks', ['created_at'])

    op.create_table(
        'task_assignments',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('task_id', sa.Uuid, sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('profiles.user_id', ondelete='CASCADE'), nullable=False),
        sa.Column('assigned_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('accepted_at', sa.DateTime),
        sa.Column('progress_notes', sa.Text),
        sa.Column('workflow_step', sa.Integer, nullable=False, server_default='0'),
        sa.Column('workflow_digital', sa.Boolean),
        # At most one assignment per task
        sa.UniqueConstraint('task_id', name='uq_task_assignment_task'),
    )
    op.create_index('idx_task_assignments_user', 'task_assignments', ['user_id'])

    op.create_table(
        'sms_code_requests',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('task_id', sa.Uuid, sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('profiles.user_id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', _enum('smsrequeststatus', 'pending', 'resend_requested', 'fulfilled'), nullable=False, server_default='pending'),
        sa.Column('sms_code', sa.String(50)),
        sa.Column('requested_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('fulfilled_at', sa.DateTime),
    )
    op.create_index('idx_sms_code_requests_task', 'sms_code_requests', ['task_id'])
    op.create_index('idx_sms_code_requests_user', 'sms_code_requests', ['user_id'])
    op.create_index('idx_sms_code_requests_requested_at', 'sms_code_requests', ['requested_at'])

    op.create_table(
        'task_history',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('task_id', sa.Uuid, sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column(
            'change_type',
            _enum(
                'taskchangetype',
                'created', 'updated', 'status_changed', 'assigned', 'reassigned', 'unassigned', 'accepted',
                'progress_updated', 'sms_requested', 'sms_code_delivered', 'completed', 'approved', 'returned',
                'cancelled',
            ),
            nullable=False,
        ),
        sa.Column('old_value', sa.Text),
        sa.Column('new_value', sa.Text),
        sa.Column('comment', sa.Text),
        sa.Column('changed_by', sa.Uuid, sa.ForeignKey('profiles.user_id', ondelete='SET NULL')),
        sa.Column('changed_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_task_history_task', 'task_history', ['task_id'])
    op.create_index('idx_task_history_changed_at', 'task_history', ['changed_at'])

    # Messaging
    op.create_table(
        'chat_messages',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('sender_id', sa.Uuid, sa.ForeignKey('profiles.user_id', ondelete='CASCADE'), nullable=False),
        sa.Column('recipient_id', sa.Uuid, sa.ForeignKey('profiles.user_id', ondelete='CASCADE')),
        sa.Column('is_group_message', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('message', sa.Text, nullable=False, server_default=''),
        sa.Column('image_url', sa.String(500)),
        sa.Column('read_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "(is_group_message AND recipient_id IS NULL) OR (NOT is_group_message AND recipient_id IS NOT NULL)",
            name='ck_chat_message_recipient'
        )
    )
    op.create_index('idx_chat_messages_sender', 'chat_messages', ['sender_id'])
    op.create_index('idx_chat_messages_recipient', 'chat_messages', ['recipient_id'])
    op.create_index('idx_chat_messages_created_at', 'chat_messages', ['created_at'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('profiles.user_id', ondelete='CASCADE'), nullable=False),
        sa.Column(
            'type',
            _enum(
                'notificationtype',
                'task_assigned', 'task_accepted', 'task_returned', 'task_completed', 'task_cancelled',
                'sms_requested', 'sms_code_received',
            ),
            nullable=False,
        ),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('related_task_id', sa.Uuid, sa.ForeignKey('tasks.id', ondelete='CASCADE')),
        sa.Column('read_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_notifications_user', 'notifications', ['user_id'])
    op.create_index('idx_notifications_related_task', 'notifications', ['related_task_id'])
    op.create_index('idx_notifications_created_at', 'notifications', ['created_at'])

    op.create_table(
        'push_subscriptions',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('profiles.user_id', ondelete='CASCADE'), nullable=False),
        sa.Column('endpoint', sa.String(1000), nullable=False, unique=True),
        sa.Column('p256dh', sa.String(255)),
        sa.Column('auth', sa.String(255)),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_push_subscriptions_user', 'push_subscriptions', ['user_id'])

    # Time tracking and documents
    op.create_table(
        'time_entries',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('profiles.user_id', ondelete='CASCADE'), nullable=False),
        sa.Column('entry_type', _enum('timeentrytype', 'check_in', 'check_out', 'pause_start', 'pause_end'), nullable=False),
        sa.Column('timestamp', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_time_entries_user', 'time_entries', ['user_id'])
    op.create_index('idx_time_entries_timestamp', 'time_entries', ['timestamp'])

    op.create_table(
        'documents',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('profiles.user_id', ondelete='CASCADE'), nullable=False),
        sa.Column('task_id', sa.Uuid, sa.ForeignKey('tasks.id', ondelete='SET NULL')),
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('file_path', sa.String(500), nullable=False),
        sa.Column('file_type', sa.String(100)),
        sa.Column('file_size', sa.Integer, nullable=False),
        sa.Column(
            'document_type',
            _enum('documenttype', 'id_card', 'passport', 'contract', 'certificate', 'other'),
            nullable=False,
            server_default='other',
        ),
        sa.Column('uploaded_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('file_size >= 0', name='ck_document_size_non_negative'),
    )
    op.create_index('idx_documents_user', 'documents', ['user_id'])
    op.create_index('idx_documents_task', 'documents', ['task_id'])
    op.create_index('idx_documents_uploaded_at', 'documents', ['uploaded_at'])


def downgrade() -> None:
    # Drop tables (children first)
    op.drop_table('documents')
    op.drop_table('time_entries')
    op.drop_table('push_subscriptions')
    op.drop_table('notifications')
    op.drop_table('chat_messages')
    op.drop_table('task_history')
    op.drop_table('sms_code_requests')
    op.drop_table('task_assignments')
    op.drop_table('tasks')
    op.drop_table('user_roles')
    op.drop_table('profiles')
