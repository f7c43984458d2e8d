"""Multi-agent pass loop for one claimed task queue item."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum

from agentdesk.models import (
    ActorType,
    AgentView,
    QueueStatus,
    TaskStatus,
    TaskView,
    WorkspaceView,
)
from agentdesk.runner.base import CliInvoker, InvocationKind, InvocationRequest
from agentdesk.runner.input_builder import build_task_input
from agentdesk.runner.registry import ProcessRegistry
from agentdesk.runner.schemas import ChangeStatusAction, CommentAction, TaskOutput
from agentdesk.runner.workdirs import WorkingDirectoryResolver
from agentdesk.tasks.repository import TaskRepository
from agentdesk.tasks.service import TaskService
from agentdesk.workspaces.repository import WorkspaceRepository

logger = logging.getLogger(__name__)

DEFAULT_MAX_PASSES = 100


class LoopOutcome(str, Enum):
    """Why the agent loop stopped."""

    REVIEW_REQUESTED = "review_requested"
    NOTHING_TO_DO = "nothing_to_do"
    PASS_LIMIT = "pass_limit"
    ABORTED = "aborted"


@dataclass(slots=True)
class AgentRunResult:
    comment_added: bool = False
    moved_to_review: bool = False
    aborted: bool = False

    @property
    def primary_action(self) -> str:
        if self.moved_to_review:
            return TaskStatus.IN_REVIEW.value
        if self.comment_added:
            return "comment"
        return "skip"


@dataclass(slots=True)
class LoopSummary:
    outcome: LoopOutcome
    passes: int
    invocations: int


class AgentLoopExecutor:
    """Run the ordered agents against a task until it settles.

    A pass invokes every agent once. Any comment starts another pass so
    earlier agents can react; a review request ends everything at once; a
    quiet pass hands the task to review. Every terminal path except abort
    leaves the queue item ``completed``.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        tasks: TaskRepository,
        workspaces: WorkspaceRepository,
        service: TaskService,
        invoker: CliInvoker,
        processes: ProcessRegistry,
        working_dirs: WorkingDirectoryResolver,
        max_passes: int = DEFAULT_MAX_PASSES,
    ) -> None:
        self.tasks = tasks
        self.workspaces = workspaces
        self.service = service
        self.invoker = invoker
        self.processes = processes
        self.working_dirs = working_dirs
        self.max_passes = max_passes

    def run(  # noqa: PLR0913
        self,
        *,
        task: TaskView,
        workspace: WorkspaceView,
        agents: list[AgentView],
        queue_item_id: str,
        stop_event: threading.Event,
    ) -> LoopSummary:
        invocations = 0
        for pass_no in range(1, self.max_passes + 1):
            if stop_event.is_set():
                return LoopSummary(LoopOutcome.ABORTED, pass_no - 1, invocations)

            comment_added = False
            for listed in agents:
                if stop_event.is_set():
                    return LoopSummary(LoopOutcome.ABORTED, pass_no, invocations)
                agent = self.workspaces.get_agent(agent_id=listed.id)
                if agent is None:
                    logger.info("Agent %s was deleted, skipping", listed.name)
                    continue

                invocations += 1
                result = self._run_agent(
                    task=task,
                    workspace=workspace,
                    agent=agent,
                    queue_item_id=queue_item_id,
                    stop_event=stop_event,
                )
                if result.aborted:
                    return LoopSummary(LoopOutcome.ABORTED, pass_no, invocations)
                if result.moved_to_review:
                    self.tasks.update_queue_status(
                        item_id=queue_item_id,
                        status=QueueStatus.COMPLETED,
                    )
                    return LoopSummary(LoopOutcome.REVIEW_REQUESTED, pass_no, invocations)
                comment_added = comment_added or result.comment_added

            if not comment_added:
                self._finish_in_review(task=task, queue_item_id=queue_item_id)
                return LoopSummary(LoopOutcome.NOTHING_TO_DO, pass_no, invocations)
            logger.debug("Task %s pass %d produced comments, looping", task.id, pass_no)

        self.service.add_system_comment(
            task_id=task.id,
            content=(
                f"Processing stopped: Maximum iterations ({self.max_passes}) reached. "
                "Task moved to review for investigation."
            ),
            enqueue=False,
        )
        self._finish_in_review(task=task, queue_item_id=queue_item_id)
        return LoopSummary(LoopOutcome.PASS_LIMIT, self.max_passes, invocations)

    def _finish_in_review(self, *, task: TaskView, queue_item_id: str) -> None:
        self.service.change_status(
            task_id=task.id,
            status=TaskStatus.IN_REVIEW,
            actor_type=ActorType.SYSTEM,
        )
        self.tasks.update_queue_status(item_id=queue_item_id, status=QueueStatus.COMPLETED)

    def _run_agent(  # noqa: PLR0913
        self,
        *,
        task: TaskView,
        workspace: WorkspaceView,
        agent: AgentView,
        queue_item_id: str,
        stop_event: threading.Event,
    ) -> AgentRunResult:
        self.service.log_agent_started(task=task, agent=agent)

        roster = self.workspaces.list_agents(workspace_id=workspace.id)
        agent_names = {member.id: member.name for member in roster}
        agent_names[agent.id] = agent.name
        input_text = build_task_input(
            workspace=workspace,
            agent=agent,
            other_agent_names=[member.name for member in roster if member.id != agent.id],
            task=self.tasks.require_task(task_id=task.id),
            comments=self.tasks.list_comments(task_id=task.id),
            logs=self.tasks.list_logs(task_id=task.id),
            agent_names=agent_names,
        )
        request = InvocationRequest(
            cli_type=agent.cli_type,
            kind=InvocationKind.TASK,
            input_text=input_text,
            working_dir=self.working_dirs.for_task(workspace, task.id),
            stop_event=stop_event,
            on_process=lambda process: self.processes.track(task.id, process),
            should_stop=lambda: not self._still_claimed(queue_item_id),
        )
        try:
            result = self.invoker.invoke(request)
        finally:
            self.processes.untrack(task.id)

        if result.cancelled or stop_event.is_set() or not self._still_claimed(queue_item_id):
            logger.info("Agent %s on task %s was interrupted", agent.name, task.id)
            return AgentRunResult(aborted=True)

        if not result.success or not isinstance(result.parsed_output, TaskOutput):
            self.service.add_system_comment(
                task_id=task.id,
                content=f"Agent {agent.name} failed: {result.error}",
            )
            self.service.log_agent_finished(task=task, agent=agent, action_type="error")
            return AgentRunResult(comment_added=True)

        return self._apply_actions(task=task, agent=agent, output=result.parsed_output)

    def _apply_actions(
        self,
        *,
        task: TaskView,
        agent: AgentView,
        output: TaskOutput,
    ) -> AgentRunResult:
        outcome = AgentRunResult()
        for action in output.actions:
            if isinstance(action, CommentAction):
                self.service.add_comment(task_id=task.id, content=action.content, agent_id=agent.id)
                outcome.comment_added = True
            elif isinstance(action, ChangeStatusAction):
                outcome.moved_to_review = True
        if outcome.moved_to_review:
            self.service.change_status(
                task_id=task.id,
                status=TaskStatus.IN_REVIEW,
                actor_type=ActorType.AGENT,
                actor_id=agent.id,
            )
        self.service.log_agent_finished(task=task, agent=agent, action_type=outcome.primary_action)
        return outcome

    def _still_claimed(self, queue_item_id: str) -> bool:
        item = self.tasks.get_queue_item(item_id=queue_item_id)
        return item is not None and item.status == QueueStatus.IN_PROGRESS
