from __future__ import annotations

import threading
import time
from pathlib import Path

import allure
import pytest

from agentdesk.config import CliPathSettings
from agentdesk.models import (
    ActorType,
    CliType,
    QueueStatus,
    TaskCreate,
    TaskStatus,
)
from agentdesk.runner.agent_loop import AgentLoopExecutor
from agentdesk.runner.binaries import BinaryResolver
from agentdesk.runner.cli_adapter import CliInvocationAdapter
from agentdesk.runner.registry import ProcessRegistry, WorkerRegistry
from agentdesk.runner.task_processor import TaskProcessor
from agentdesk.runner.workdirs import WorkingDirectoryResolver
from agentdesk.tasks.repository import TaskRepository
from agentdesk.tasks.service import TaskService
from agentdesk.workspaces.repository import WorkspaceRepository

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Task Processor"),
]


class ExplodingExecutor:
    def run(self, **_kwargs):
        raise RuntimeError("database went away")


@pytest.fixture()
def build_processor(tasks, workspaces, task_service, tmp_path: Path):
    def _build(*, executor=None, binary: Path | None = None, workers=None) -> TaskProcessor:
        processes = ProcessRegistry()
        if executor is None:
            scratch = tmp_path / "scratch"
            scratch.mkdir(exist_ok=True)
            paths = {CliType.CLAUDE: str(binary)} if binary is not None else {}
            adapter = CliInvocationAdapter(
                resolver=BinaryResolver(
                    env_paths=CliPathSettings(paths=paths),
                    which=lambda _name: None,
                ),
                scratch_root=scratch,
            )
            executor = AgentLoopExecutor(
                tasks=tasks,
                workspaces=workspaces,
                service=task_service,
                invoker=adapter,
                processes=processes,
                working_dirs=WorkingDirectoryResolver(tmp_path / "temp"),
            )
        return TaskProcessor(
            tasks=tasks,
            workspaces=workspaces,
            service=task_service,
            executor=executor,
            processes=processes,
            workers=workers,
        )

    return _build


def test_task_without_agents_goes_to_review(
    build_processor,
    task_service,
    tasks,
    workspace,
) -> None:
    task = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Lonely"))
    processor = build_processor(executor=ExplodingExecutor())

    assert processor.run_once(threading.Event()) == 1

    assert tasks.require_task(task_id=task.id).status == TaskStatus.IN_REVIEW
    (item,) = tasks.list_queue_items(task_id=task.id)
    assert item.status == QueueStatus.COMPLETED


def test_processing_error_fails_item_and_retries(
    build_processor,
    task_service,
    tasks,
    workspace,
    add_agent,
) -> None:
    add_agent(workspace.id, "planner")
    task = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Flaky"))
    (item,) = tasks.list_queue_items(task_id=task.id)
    processor = build_processor(executor=ExplodingExecutor())

    processor.process_queue_item(item, threading.Event())

    assert tasks.get_queue_item(item_id=item.id).status == QueueStatus.FAILED
    (failure_comment,) = tasks.list_comments(task_id=task.id)
    assert failure_comment.content == "Processing failed: database went away"
    retry = tasks.find_active_queue_item(task_id=task.id)
    assert retry is not None
    assert retry.id != item.id
    assert retry.status == QueueStatus.QUEUED
    assert tasks.require_task(task_id=task.id).status == TaskStatus.IN_PROGRESS


def test_item_claimed_elsewhere_is_ignored(build_processor, task_service, tasks, workspace) -> None:
    task = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Taken"))
    (item,) = tasks.list_queue_items(task_id=task.id)
    tasks.claim_queue_item(item_id=item.id)
    processor = build_processor(executor=ExplodingExecutor())

    processor.process_queue_item(item, threading.Event())

    assert tasks.get_queue_item(item_id=item.id).status == QueueStatus.IN_PROGRESS
    assert tasks.list_comments(task_id=task.id) == []


def test_busy_workspace_gets_no_second_worker(
    build_processor,
    task_service,
    tasks,
    workspace,
) -> None:
    task = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Wait"))
    workers = WorkerRegistry()
    assert workers.try_acquire(workspace.id)
    processor = build_processor(executor=ExplodingExecutor(), workers=workers)

    assert processor.run_once(threading.Event()) == 0

    (item,) = tasks.list_queue_items(task_id=task.id)
    assert item.status == QueueStatus.QUEUED


def test_stopped_processor_starts_nothing(build_processor, task_service, workspace) -> None:
    task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Later"))
    stop_event = threading.Event()
    stop_event.set()

    assert build_processor(executor=ExplodingExecutor()).run_once(stop_event) == 0


def test_echo_agents_collaborate_until_review(
    build_processor,
    task_service,
    tasks,
    workspace,
    add_agent,
    echo_cli: Path,
) -> None:
    planner = add_agent(workspace.id, "planner")
    reviewer = add_agent(workspace.id, "reviewer")
    first = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Add search"))
    second = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Fix typo"))
    processor = build_processor(binary=echo_cli)

    assert processor.run_once(threading.Event()) == 1

    for task in (first, second):
        assert tasks.require_task(task_id=task.id).status == TaskStatus.IN_REVIEW
        assert [item.status for item in tasks.list_queue_items(task_id=task.id)] == [
            QueueStatus.COMPLETED,
        ]
    comments = tasks.list_comments(task_id=first.id)
    assert [(comment.agent_id, comment.content) for comment in comments] == [
        (planner.id, "planner looked at: Add search"),
        (reviewer.id, "reviewer looked at: Add search"),
    ]
    last_status = [
        entry for entry in tasks.list_logs(task_id=first.id) if entry.event_type == "status_changed"
    ][-1]
    assert last_status.actor_type == ActorType.AGENT
    assert last_status.actor_id == planner.id


def test_missing_cli_binary_reaches_pass_limit_safely(
    build_processor,
    task_service,
    tasks,
    workspace,
    add_agent,
) -> None:
    add_agent(workspace.id, "planner")
    task = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="No CLI"))
    processor = build_processor()
    processor.executor.max_passes = 2

    processor.run_once(threading.Event())

    contents = [comment.content for comment in tasks.list_comments(task_id=task.id)]
    assert contents[0].startswith("Agent planner failed: claude CLI binary not found.")
    assert contents[-1].startswith("Processing stopped: Maximum iterations (2) reached.")
    assert tasks.require_task(task_id=task.id).status == TaskStatus.IN_REVIEW
    assert tasks.find_active_queue_item(task_id=task.id) is None


def test_cancel_from_another_process_kills_running_agent(
    build_processor,
    database,
    task_service,
    tasks,
    workspace,
    add_agent,
    fake_cli,
) -> None:
    add_agent(workspace.id, "planner")
    task = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Long run"))
    binary = fake_cli(
        """
        open("started", "w").close()
        time.sleep(30)
        open("finished", "w").close()
        print(json.dumps({"actions": [{"type": "skip"}]}))
        """,
    )
    processor = build_processor(binary=binary)
    worker = threading.Thread(target=processor.run_once, args=(threading.Event(),))
    worker.start()
    workdir = Path(workspace.working_directory_path)
    deadline = time.monotonic() + 10
    while not (workdir / "started").exists() and time.monotonic() < deadline:
        time.sleep(0.05)
    assert (workdir / "started").exists()

    cli_service = TaskService(
        tasks=TaskRepository(database),
        workspaces=WorkspaceRepository(database),
        processes=ProcessRegistry(),
    )
    cancelled_at = time.monotonic()
    cli_service.cancel_task(task_id=task.id)
    worker.join(timeout=10)

    assert not worker.is_alive()
    assert time.monotonic() - cancelled_at < 5
    assert not (workdir / "finished").exists()
    assert tasks.require_task(task_id=task.id).status == TaskStatus.IN_REVIEW
    assert [comment.content for comment in tasks.list_comments(task_id=task.id)] == [
        "Task cancelled by user",
    ]
    assert [item.status for item in tasks.list_queue_items(task_id=task.id)] == [
        QueueStatus.FAILED,
    ]
