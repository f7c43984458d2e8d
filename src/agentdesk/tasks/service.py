"""Task state transitions with their audit log and queue side effects."""

from __future__ import annotations

import logging

from agentdesk.models import (
    DEFAULT_USER_ID,
    ActorType,
    AgentView,
    TaskCommentView,
    TaskCreate,
    TaskEvent,
    TaskStatus,
    TaskView,
)
from agentdesk.runner.registry import ProcessRegistry
from agentdesk.tasks.repository import TaskRepository
from agentdesk.workspaces.repository import WorkspaceRepository

logger = logging.getLogger(__name__)

CANCELLED_COMMENT = "Task cancelled by user"


class TaskService:
    """Collaborator writes used by the CLI and the task processor."""

    def __init__(
        self,
        *,
        tasks: TaskRepository,
        workspaces: WorkspaceRepository,
        processes: ProcessRegistry | None = None,
    ) -> None:
        self.tasks = tasks
        self.workspaces = workspaces
        self.processes = processes

    def create_task(self, payload: TaskCreate) -> TaskView:
        """Create a todo task, queue it and record ``task_created``."""

        self.workspaces.require_workspace(workspace_id=payload.workspace_id)
        task = self.tasks.create_task(payload)
        self.tasks.create_queue_item(task_id=task.id, workspace_id=task.workspace_id)
        self.tasks.add_log(
            task_id=task.id,
            workspace_id=task.workspace_id,
            event_type=TaskEvent.TASK_CREATED.value,
            actor_type=ActorType.USER,
            actor_id=DEFAULT_USER_ID,
            metadata={"summary": task.summary},
        )
        return task

    def add_comment(
        self,
        *,
        task_id: str,
        content: str,
        user_id: str | None = None,
        agent_id: str | None = None,
        enqueue: bool = True,
    ) -> TaskCommentView:
        """Append a comment; unless the task is done this (re)triggers processing."""

        task = self.tasks.require_task(task_id=task_id)
        comment = self.tasks.create_comment(
            task_id=task.id,
            workspace_id=task.workspace_id,
            content=content,
            user_id=user_id,
            agent_id=agent_id,
        )
        if user_id is not None:
            actor_type, actor_id = ActorType.USER, user_id
        elif agent_id is not None:
            actor_type, actor_id = ActorType.AGENT, agent_id
        else:
            actor_type, actor_id = ActorType.SYSTEM, None
        self.tasks.add_log(
            task_id=task.id,
            workspace_id=task.workspace_id,
            event_type=TaskEvent.COMMENT_ADDED.value,
            actor_type=actor_type,
            actor_id=actor_id,
        )
        if enqueue and task.status != TaskStatus.DONE:
            self.tasks.ensure_queue_item(task_id=task.id, workspace_id=task.workspace_id)
        return comment

    def add_system_comment(self, *, task_id: str, content: str, enqueue: bool = True) -> None:
        self.add_comment(task_id=task_id, content=content, enqueue=enqueue)

    def change_status(
        self,
        *,
        task_id: str,
        status: TaskStatus,
        actor_type: ActorType,
        actor_id: str | None = None,
    ) -> TaskView:
        """Move a task between columns.

        Entering ``in_progress`` demotes any other in-progress task of the
        workspace; returning to ``todo`` from review or done re-queues the task.
        """

        current = self.tasks.require_task(task_id=task_id)
        if current.status == status:
            return current
        updated = self.tasks.update_task_status(task_id=task_id, status=status)
        self.tasks.add_log(
            task_id=task_id,
            workspace_id=current.workspace_id,
            event_type=TaskEvent.STATUS_CHANGED.value,
            actor_type=actor_type,
            actor_id=actor_id,
            metadata={"old_status": current.status.value, "new_status": status.value},
        )
        if status == TaskStatus.IN_PROGRESS:
            demoted = self.tasks.demote_other_in_progress_tasks(
                workspace_id=current.workspace_id,
                except_task_id=task_id,
            )
            if demoted:
                logger.info(
                    "Demoted %d in-progress task(s) in workspace %s",
                    demoted,
                    current.workspace_id,
                )
        if status == TaskStatus.TODO and current.status in (TaskStatus.IN_REVIEW, TaskStatus.DONE):
            self.tasks.ensure_queue_item(task_id=task_id, workspace_id=current.workspace_id)
        return updated

    def cancel_task(self, *, task_id: str) -> TaskView:
        """Stop running work on a task and hand it back for review."""

        task = self.tasks.require_task(task_id=task_id)
        if self.processes is not None and self.processes.kill(task_id):
            logger.info("Killed running agent for task %s", task_id)
        self.tasks.fail_active_queue_items(task_id=task_id)
        updated = self.change_status(
            task_id=task_id,
            status=TaskStatus.IN_REVIEW,
            actor_type=ActorType.USER,
            actor_id=DEFAULT_USER_ID,
        )
        self.tasks.add_log(
            task_id=task_id,
            workspace_id=task.workspace_id,
            event_type=TaskEvent.TASK_CANCELLED.value,
            actor_type=ActorType.USER,
            actor_id=DEFAULT_USER_ID,
        )
        self.add_system_comment(task_id=task_id, content=CANCELLED_COMMENT, enqueue=False)
        return updated

    def prioritize(self, *, task_id: str) -> bool:
        return self._set_priority(task_id=task_id, is_priority=True)

    def deprioritize(self, *, task_id: str) -> bool:
        return self._set_priority(task_id=task_id, is_priority=False)

    def _set_priority(self, *, task_id: str, is_priority: bool) -> bool:
        task = self.tasks.require_task(task_id=task_id)
        changed = self.tasks.set_queue_priority(task_id=task_id, is_priority=is_priority)
        if changed == 0:
            return False
        self.tasks.add_log(
            task_id=task_id,
            workspace_id=task.workspace_id,
            event_type=(
                TaskEvent.TASK_PRIORITIZED.value
                if is_priority
                else TaskEvent.TASK_DEPRIORITIZED.value
            ),
            actor_type=ActorType.USER,
            actor_id=DEFAULT_USER_ID,
        )
        return True

    def log_agent_started(self, *, task: TaskView, agent: AgentView) -> None:
        self.tasks.add_log(
            task_id=task.id,
            workspace_id=task.workspace_id,
            event_type=TaskEvent.AGENT_STARTED.value,
            actor_type=ActorType.AGENT,
            actor_id=agent.id,
            metadata={"agent_name": agent.name},
        )

    def log_agent_finished(self, *, task: TaskView, agent: AgentView, action_type: str) -> None:
        self.tasks.add_log(
            task_id=task.id,
            workspace_id=task.workspace_id,
            event_type=TaskEvent.AGENT_FINISHED.value,
            actor_type=ActorType.AGENT,
            actor_id=agent.id,
            metadata={"agent_name": agent.name, "action_type": action_type},
        )
