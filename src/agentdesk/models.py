"""Domain models for workspaces, tasks, chats and their queues."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

DEFAULT_USER_ID = "local_user"


class TaskStatus(str, Enum):
    """Task board columns."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"


ACTIONABLE_TASK_STATUSES = (TaskStatus.TODO, TaskStatus.IN_PROGRESS)


class QueueStatus(str, Enum):
    """Queue item lifecycle states."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_QUEUE_STATUSES = (QueueStatus.QUEUED, QueueStatus.IN_PROGRESS)
TERMINAL_QUEUE_STATUSES = (QueueStatus.COMPLETED, QueueStatus.FAILED)


class ActorType(str, Enum):
    """Who caused a task event."""

    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class TaskEvent(str, Enum):
    """Audit log event types."""

    TASK_CREATED = "task_created"
    STATUS_CHANGED = "status_changed"
    COMMENT_ADDED = "comment_added"
    AGENT_STARTED = "agent_started"
    AGENT_FINISHED = "agent_finished"
    TASK_CANCELLED = "task_cancelled"
    TASK_PRIORITIZED = "task_prioritized"
    TASK_DEPRIORITIZED = "task_deprioritized"


class CliType(str, Enum):
    """Supported agent command-line tools."""

    CLAUDE = "claude"
    GEMINI = "gemini"
    CODEX = "codex"
    OPENCODE = "opencode"


# Preference order when picking a healthy CLI automatically.
CLI_PREFERENCE = (CliType.CLAUDE, CliType.CODEX, CliType.GEMINI, CliType.OPENCODE)


class WorkingDirectoryMode(str, Enum):
    """Where agent subprocesses run."""

    STATIC = "static"
    TEMP = "temp"


class ChatRole(str, Enum):
    """Author of a chat message."""

    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class HealthStatus(str, Enum):
    """Outcome of a CLI health probe."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    NOT_FOUND = "not_found"


@dataclass(slots=True)
class WorkspaceCreate:
    """Input payload for a new workspace."""

    title: str
    description: str = ""
    working_directory_mode: WorkingDirectoryMode = WorkingDirectoryMode.TEMP
    working_directory_path: str | None = None
    auto_delete_done_tasks: bool = False
    retention_days: int = 7


@dataclass(slots=True)
class WorkspaceUpdate:
    """Partial workspace update; None leaves a field unchanged."""

    title: str | None = None
    description: str | None = None
    working_directory_mode: WorkingDirectoryMode | None = None
    working_directory_path: str | None = None


@dataclass(slots=True)
class WorkspaceView:
    """Readable workspace row."""

    id: str
    title: str
    description: str
    working_directory_mode: WorkingDirectoryMode
    working_directory_path: str | None
    auto_delete_done_tasks: bool
    retention_days: int
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class AgentCreate:
    """Input payload for a new agent."""

    workspace_id: str
    name: str
    instruction: str
    cli_type: CliType = CliType.CLAUDE
    order: int | None = None


@dataclass(slots=True)
class AgentUpdate:
    """Partial agent update; None leaves a field unchanged."""

    name: str | None = None
    instruction: str | None = None
    cli_type: CliType | None = None


@dataclass(slots=True)
class AgentView:
    """Readable agent row."""

    id: str
    workspace_id: str
    name: str
    instruction: str
    cli_type: CliType
    order: int
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskCreate:
    """Input payload for a new task."""

    workspace_id: str
    summary: str
    description: str = ""


@dataclass(slots=True)
class TaskView:
    """Readable task row."""

    id: str
    workspace_id: str
    summary: str
    description: str
    status: TaskStatus
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskCommentView:
    """Comment on a task; neither user nor agent means system-authored."""

    id: str
    task_id: str
    workspace_id: str
    user_id: str | None
    agent_id: str | None
    content: str
    created_at: datetime
    updated_at: datetime

    @property
    def author_type(self) -> ActorType:
        if self.user_id is not None:
            return ActorType.USER
        if self.agent_id is not None:
            return ActorType.AGENT
        return ActorType.SYSTEM


@dataclass(slots=True)
class TaskLogView:
    """Immutable audit entry."""

    id: str
    task_id: str
    workspace_id: str
    event_type: str
    actor_type: ActorType
    actor_id: str | None
    metadata: dict[str, Any] | None
    created_at: datetime


@dataclass(slots=True)
class TaskQueueItemView:
    """Readable task queue row."""

    id: str
    task_id: str
    workspace_id: str
    status: QueueStatus
    is_priority: bool
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class ChatView:
    """Readable chat row."""

    id: str
    workspace_id: str
    agent_id: str | None
    cli_type: CliType | None
    title: str
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class ChatMessageView:
    """One message in a chat conversation."""

    id: str
    chat_id: str
    role: ChatRole
    message: str
    actions: list[dict[str, Any]] | None
    created_at: datetime


@dataclass(slots=True)
class ChatQueueItemView:
    """Readable chat queue row."""

    id: str
    chat_id: str
    workspace_id: str
    status: QueueStatus
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class CleanupReport:
    """Rows removed by one cleanup run."""

    task_queue_items: int = 0
    chat_queue_items: int = 0
    done_tasks: int = 0
