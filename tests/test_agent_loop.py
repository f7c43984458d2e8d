from __future__ import annotations

import re
import threading
from collections.abc import Callable
from pathlib import Path

import allure
import pytest

from agentdesk.models import (
    ActorType,
    QueueStatus,
    TaskCreate,
    TaskEvent,
    TaskStatus,
)
from agentdesk.runner.agent_loop import AgentLoopExecutor, LoopOutcome
from agentdesk.runner.base import (
    FailureKind,
    InvocationFailure,
    InvocationRequest,
    InvocationResult,
    InvocationStage,
)
from agentdesk.runner.registry import ProcessRegistry
from agentdesk.runner.schemas import TaskOutput
from agentdesk.runner.workdirs import WorkingDirectoryResolver

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Agent Pass Loop"),
]

_ROLE = re.compile(r"You are \*\*(.+?)\*\*\.")

Reply = dict | Callable[[InvocationRequest], InvocationResult]

SKIP = {"actions": [{"type": "skip"}]}
REVIEW = {"actions": [{"type": "change_status", "status": "in_review"}]}


def comment(text: str) -> dict:
    return {"actions": [{"type": "comment", "content": text}]}


class ScriptedInvoker:
    """Replies per agent name from a script; agents out of lines skip."""

    def __init__(self, script: dict[str, list[Reply]]) -> None:
        self.script = {name: list(replies) for name, replies in script.items()}
        self.calls: list[str] = []
        self.inputs: list[str] = []

    def invoke(self, request: InvocationRequest) -> InvocationResult:
        name = _ROLE.search(request.input_text).group(1)
        self.calls.append(name)
        self.inputs.append(request.input_text)
        replies = self.script.get(name) or [SKIP]
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if callable(reply):
            return reply(request)
        return InvocationResult(
            exit_code=0,
            duration_ms=5,
            parsed_output=TaskOutput.model_validate(reply),
        )


def failure(message: str) -> Callable[[InvocationRequest], InvocationResult]:
    def _reply(_request: InvocationRequest) -> InvocationResult:
        return InvocationResult(
            exit_code=1,
            duration_ms=5,
            failure=InvocationFailure(
                stage=InvocationStage.WAIT,
                kind=FailureKind.NON_ZERO_EXIT,
                message=message,
            ),
        )

    return _reply


@pytest.fixture()
def claimed(task_service, tasks, workspace):
    task = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Fix login"))
    (item,) = tasks.list_queue_items(task_id=task.id)
    return task, tasks.claim_queue_item(item_id=item.id)


@pytest.fixture()
def run_loop(tasks, workspaces, task_service, workspace, claimed, tmp_path: Path):
    def _run(invoker: ScriptedInvoker, agents, *, max_passes: int = 10, stop_event=None):
        task, item = claimed
        executor = AgentLoopExecutor(
            tasks=tasks,
            workspaces=workspaces,
            service=task_service,
            invoker=invoker,
            processes=ProcessRegistry(),
            working_dirs=WorkingDirectoryResolver(tmp_path / "temp"),
            max_passes=max_passes,
        )
        return executor.run(
            task=task,
            workspace=workspace,
            agents=agents,
            queue_item_id=item.id,
            stop_event=stop_event or threading.Event(),
        )

    return _run


def test_review_request_ends_loop_immediately(
    run_loop,
    tasks,
    claimed,
    workspace,
    add_agent,
) -> None:
    agents = [add_agent(workspace.id, name) for name in ("planner", "coder", "reviewer")]
    invoker = ScriptedInvoker({"planner": [comment("Plan: patch handler")], "coder": [REVIEW]})

    summary = run_loop(invoker, agents)

    task, item = claimed
    assert summary.outcome == LoopOutcome.REVIEW_REQUESTED
    assert (summary.passes, summary.invocations) == (1, 2)
    assert invoker.calls == ["planner", "coder"]
    assert tasks.require_task(task_id=task.id).status == TaskStatus.IN_REVIEW
    assert tasks.get_queue_item(item_id=item.id).status == QueueStatus.COMPLETED
    status_log = [
        entry
        for entry in tasks.list_logs(task_id=task.id)
        if entry.event_type == TaskEvent.STATUS_CHANGED.value
    ][-1]
    assert status_log.actor_type == ActorType.AGENT
    assert status_log.actor_id == agents[1].id


def test_quiet_pass_moves_task_to_review(run_loop, tasks, claimed, workspace, add_agent) -> None:
    agents = [add_agent(workspace.id, "planner"), add_agent(workspace.id, "coder")]
    invoker = ScriptedInvoker({})

    summary = run_loop(invoker, agents)

    task, item = claimed
    assert summary.outcome == LoopOutcome.NOTHING_TO_DO
    assert (summary.passes, summary.invocations) == (1, 2)
    assert tasks.require_task(task_id=task.id).status == TaskStatus.IN_REVIEW
    assert tasks.get_queue_item(item_id=item.id).status == QueueStatus.COMPLETED
    events = [entry.event_type for entry in tasks.list_logs(task_id=task.id)]
    assert events.count(TaskEvent.AGENT_STARTED.value) == 2
    assert events.count(TaskEvent.AGENT_FINISHED.value) == 2


def test_comment_triggers_another_pass(run_loop, tasks, claimed, workspace, add_agent) -> None:
    agents = [add_agent(workspace.id, "planner"), add_agent(workspace.id, "coder")]
    invoker = ScriptedInvoker({"coder": [comment("Patched the handler"), SKIP]})

    summary = run_loop(invoker, agents)

    task, _item = claimed
    assert summary.outcome == LoopOutcome.NOTHING_TO_DO
    assert summary.passes == 2
    assert invoker.calls == ["planner", "coder", "planner", "coder"]
    assert "Patched the handler" in invoker.inputs[2]
    (agent_comment,) = tasks.list_comments(task_id=task.id)
    assert agent_comment.agent_id == agents[1].id
    assert tasks.find_active_queue_item(task_id=task.id) is None


def test_pass_limit_leaves_system_comment(run_loop, tasks, claimed, workspace, add_agent) -> None:
    agents = [add_agent(workspace.id, "chatterbox")]
    invoker = ScriptedInvoker({"chatterbox": [comment("Still thinking")]})

    summary = run_loop(invoker, agents, max_passes=3)

    task, item = claimed
    assert summary.outcome == LoopOutcome.PASS_LIMIT
    assert (summary.passes, summary.invocations) == (3, 3)
    last = tasks.list_comments(task_id=task.id)[-1]
    assert last.content == (
        "Processing stopped: Maximum iterations (3) reached. "
        "Task moved to review for investigation."
    )
    assert last.agent_id is None and last.user_id is None
    assert tasks.require_task(task_id=task.id).status == TaskStatus.IN_REVIEW
    assert tasks.get_queue_item(item_id=item.id).status == QueueStatus.COMPLETED
    assert tasks.find_active_queue_item(task_id=task.id) is None


def test_agent_failure_becomes_comment_and_loops(
    run_loop,
    tasks,
    claimed,
    workspace,
    add_agent,
) -> None:
    agents = [add_agent(workspace.id, "planner")]
    invoker = ScriptedInvoker({"planner": [failure("rate limited"), SKIP]})

    summary = run_loop(invoker, agents)

    task, _item = claimed
    assert summary.outcome == LoopOutcome.NOTHING_TO_DO
    assert summary.passes == 2
    (system_comment,) = tasks.list_comments(task_id=task.id)
    assert system_comment.content == "Agent planner failed: rate limited"
    finished = [
        entry.metadata["action_type"]
        for entry in tasks.list_logs(task_id=task.id)
        if entry.event_type == TaskEvent.AGENT_FINISHED.value
    ]
    assert finished == ["error", "skip"]


def test_deleted_agent_is_skipped(run_loop, workspaces, workspace, add_agent) -> None:
    agents = [add_agent(workspace.id, "planner"), add_agent(workspace.id, "retired")]
    workspaces.delete_agent(agent_id=agents[1].id)
    invoker = ScriptedInvoker({})

    summary = run_loop(invoker, agents)

    assert invoker.calls == ["planner"]
    assert summary.invocations == 1


def test_stop_signal_aborts_without_finishing_item(
    run_loop,
    tasks,
    claimed,
    workspace,
    add_agent,
) -> None:
    agents = [add_agent(workspace.id, "planner"), add_agent(workspace.id, "coder")]
    stop_event = threading.Event()

    def _stop(_request: InvocationRequest) -> InvocationResult:
        stop_event.set()
        return InvocationResult(
            exit_code=None,
            duration_ms=5,
            failure=InvocationFailure(
                stage=InvocationStage.WAIT,
                kind=FailureKind.CANCELLED,
                message="Processing was cancelled",
            ),
        )

    invoker = ScriptedInvoker({"planner": [_stop]})

    summary = run_loop(invoker, agents, stop_event=stop_event)

    task, item = claimed
    assert summary.outcome == LoopOutcome.ABORTED
    assert invoker.calls == ["planner"]
    assert tasks.get_queue_item(item_id=item.id).status == QueueStatus.IN_PROGRESS
    assert tasks.list_comments(task_id=task.id) == []


def test_cancelled_item_discards_agent_output(
    run_loop,
    tasks,
    claimed,
    workspace,
    add_agent,
) -> None:
    agents = [add_agent(workspace.id, "planner")]
    task, item = claimed

    def _cancel_midway(_request: InvocationRequest) -> InvocationResult:
        tasks.fail_active_queue_items(task_id=task.id)
        return InvocationResult(
            exit_code=0,
            duration_ms=5,
            parsed_output=TaskOutput.model_validate(comment("Too late")),
        )

    summary = run_loop(ScriptedInvoker({"planner": [_cancel_midway]}), agents)

    assert summary.outcome == LoopOutcome.ABORTED
    assert tasks.get_queue_item(item_id=item.id).status == QueueStatus.FAILED
    assert tasks.list_comments(task_id=task.id) == []


def test_agent_finished_logs_primary_action(
    run_loop,
    tasks,
    claimed,
    workspace,
    add_agent,
) -> None:
    agents = [add_agent(workspace.id, "planner"), add_agent(workspace.id, "coder")]
    mixed = {"actions": [{"type": "skip"}, {"type": "comment", "content": "Noted"}]}
    review_with_comment = {
        "actions": [
            {"type": "comment", "content": "Ready"},
            {"type": "change_status", "status": "in_review"},
        ],
    }
    invoker = ScriptedInvoker({"planner": [mixed], "coder": [review_with_comment]})

    run_loop(invoker, agents)

    task, _item = claimed
    finished = [
        entry.metadata["action_type"]
        for entry in tasks.list_logs(task_id=task.id)
        if entry.event_type == TaskEvent.AGENT_FINISHED.value
    ]
    assert finished == ["comment", "in_review"]
