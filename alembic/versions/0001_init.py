"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  op.create_table(
    "users",
    sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("email", sa.String(), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("password_hash", sa.String(), nullable=False),
    sa.Column("avatar_url", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_users_email", "users", ["email"], unique=True)

  op.create_table(
    "sessions",
    sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("user_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("token_hash", sa.String(), nullable=False),
    sa.Column("created_ip", sa.String(), nullable=True),
    sa.Column("user_agent", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_sessions_user_id", "sessions", ["user_id"], unique=False)
  op.create_index("ix_sessions_token_hash", "sessions", ["token_hash"], unique=True)

  op.create_table(
    "todo_lists",
    sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("name", sa.String(50), nullable=False),
    sa.Column("owner_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_todo_lists_owner_id", "todo_lists", ["owner_id"], unique=False)

  op.create_table(
    "todo_list_members",
    sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("todo_list_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("todo_lists.id"), nullable=False),
    sa.Column("user_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.UniqueConstraint("todo_list_id", "user_id", name="ux_todo_list_member"),
  )
  op.create_index("ix_todo_list_members_todo_list_id", "todo_list_members", ["todo_list_id"], unique=False)
  op.create_index("ix_todo_list_members_user_id", "todo_list_members", ["user_id"], unique=False)

  op.create_table(
    "tasks",
    sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("todo_list_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("todo_lists.id"), nullable=False),
    sa.Column("parent_task_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("tasks.id"), nullable=True),
    sa.Column("title", sa.String(200), nullable=False),
    sa.Column("description", sa.Text(), nullable=False),
    sa.Column("priority", sa.String(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("tags", postgresql.JSONB(), nullable=False),
    sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
    sa.Column("completed", sa.Boolean(), nullable=False),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("completed_by_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("assigned_to_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("assigned_by_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_by_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("deleted_by_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_tasks_todo_list_id", "tasks", ["todo_list_id"], unique=False)
  op.create_index("ix_tasks_parent_task_id", "tasks", ["parent_task_id"], unique=False)
  op.create_index("ix_tasks_assigned_to_id", "tasks", ["assigned_to_id"], unique=False)
  op.create_index("ix_tasks_created_by_id", "tasks", ["created_by_id"], unique=False)
  op.create_index("ix_tasks_is_deleted", "tasks", ["is_deleted"], unique=False)

  op.create_table(
    "task_comments",
    sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("task_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("tasks.id"), nullable=False),
    sa.Column("author_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("body", sa.Text(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_task_comments_task_id", "task_comments", ["task_id"], unique=False)

  op.create_table(
    "task_activity",
    sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("task_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("tasks.id"), nullable=False),
    sa.Column("actor_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("action", sa.String(), nullable=False),
    sa.Column("details", postgresql.JSONB(), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_task_activity_task_id", "task_activity", ["task_id"], unique=False)

  op.create_table(
    "task_attachments",
    sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("task_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("tasks.id"), nullable=False),
    sa.Column("filename", sa.String(), nullable=False),
    sa.Column("mime", sa.String(), nullable=True),
    sa.Column("size_bytes", sa.Integer(), nullable=False),
    sa.Column("url", sa.String(), nullable=False),
    sa.Column("uploaded_by_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_task_attachments_task_id", "task_attachments", ["task_id"], unique=False)

  op.create_table(
    "notifications",
    sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
    sa.Column("user_id", postgresql.UUID(as_uuid=False), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("type", sa.String(), nullable=False),
    sa.Column("title", sa.String(100), nullable=False),
    sa.Column("message", sa.String(500), nullable=False),
    sa.Column("data", postgresql.JSONB(), nullable=False),
    sa.Column("priority", sa.String(), nullable=False, server_default=sa.text("'MEDIUM'")),
    sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
  )
  op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)
  op.create_index("ix_notifications_expires_at", "notifications", ["expires_at"], unique=False)
  op.create_index("ix_notifications_created_at", "notifications", ["created_at"], unique=False)


def downgrade() -> None:
  op.drop_table("notifications")
  op.drop_table("task_attachments")
  op.drop_table("task_activity")
  op.drop_table("task_comments")
  op.drop_table("tasks")
  op.drop_table("todo_list_members")
  op.drop_table("todo_lists")
  op.drop_table("sessions")
  op.drop_table("users")
