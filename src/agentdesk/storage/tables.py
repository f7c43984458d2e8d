"""SQLModel ORM tables."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint, text
from sqlmodel import Field, SQLModel


class Workspace(SQLModel, table=True):
    __tablename__ = "workspaces"  # type: ignore[bad-override]

    id: str = Field(primary_key=True)
    title: str
    description: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    working_directory_mode: str = Field(default="temp")
    working_directory_path: str | None = None
    auto_delete_done_tasks: bool = Field(default=False)
    retention_days: int = Field(default=7)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Agent(SQLModel, table=True):
    __tablename__ = "agents"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("workspace_id", "name", name="uq_agents_workspace_name"),
        Index("idx_agents_workspace_order", "workspace_id", "order"),
    )

    id: str = Field(primary_key=True)
    workspace_id: str = Field(
        sa_column=Column(
            ForeignKey("workspaces.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    name: str
    instruction: str = Field(sa_column=Column(Text, nullable=False))
    cli_type: str
    order: int
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Task(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_workspace_status", "workspace_id", "status"),)

    id: str = Field(primary_key=True)
    workspace_id: str = Field(
        sa_column=Column(
            ForeignKey("workspaces.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    summary: str
    description: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    status: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskComment(SQLModel, table=True):
    __tablename__ = "task_comments"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_comments_task_time", "task_id", "created_at"),)

    id: str = Field(primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    workspace_id: str
    user_id: str | None = None
    agent_id: str | None = None
    content: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskLog(SQLModel, table=True):
    __tablename__ = "task_logs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_logs_task_time", "task_id", "created_at"),)

    id: str = Field(primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    workspace_id: str
    event_type: str
    actor_type: str
    actor_id: str | None = None
    metadata_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskQueueItem(SQLModel, table=True):
    __tablename__ = "task_queue"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_task_queue_workspace_status", "workspace_id", "status", "updated_at"),
        Index("idx_task_queue_task_status", "task_id", "status"),
        Index(
            "uq_task_queue_task_active",
            "task_id",
            unique=True,
            sqlite_where=text("status IN ('queued', 'in_progress')"),
        ),
    )

    id: str = Field(primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    workspace_id: str
    status: str
    is_priority: bool = Field(default=False)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Chat(SQLModel, table=True):
    __tablename__ = "chats"  # type: ignore[bad-override]

    id: str = Field(primary_key=True)
    workspace_id: str = Field(
        sa_column=Column(
            ForeignKey("workspaces.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    agent_id: str | None = Field(
        default=None,
        sa_column=Column(ForeignKey("agents.id", ondelete="SET NULL"), nullable=True),
    )
    cli_type: str | None = None
    title: str = Field(default="Untitled chat")
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ChatMessage(SQLModel, table=True):
    __tablename__ = "chat_messages"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_chat_messages_chat_time", "chat_id", "created_at"),)

    id: str = Field(primary_key=True)
    chat_id: str = Field(
        sa_column=Column(
            ForeignKey("chats.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    role: str
    message: str = Field(sa_column=Column(Text, nullable=False))
    actions_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ChatQueueItem(SQLModel, table=True):
    __tablename__ = "chat_queue"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_chat_queue_status", "status", "updated_at"),)

    id: str = Field(primary_key=True)
    chat_id: str = Field(
        sa_column=Column(
            ForeignKey("chats.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    workspace_id: str
    status: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class SettingEntry(SQLModel, table=True):
    __tablename__ = "settings"  # type: ignore[bad-override]

    key: str = Field(primary_key=True)
    value: str = Field(sa_column=Column(Text, nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
