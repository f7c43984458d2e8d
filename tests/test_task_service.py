from __future__ import annotations

import subprocess
import sys
import threading
import time

import allure
import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from agentdesk.models import (
    DEFAULT_USER_ID,
    ActorType,
    QueueStatus,
    TaskCreate,
    TaskEvent,
    TaskStatus,
)
from agentdesk.runner.registry import ProcessRegistry
from agentdesk.storage.tables import TaskQueueItem
from agentdesk.tasks.repository import TaskRepository
from agentdesk.tasks.service import CANCELLED_COMMENT, TaskService
from agentdesk.workspaces.repository import WorkspaceRepository

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Collaborator Writes"),
]


def _events(tasks: TaskRepository, task_id: str) -> list[str]:
    return [entry.event_type for entry in tasks.list_logs(task_id=task_id)]


def test_create_task_queues_it_and_logs_creation(
    task_service: TaskService,
    tasks,
    workspace,
) -> None:
    task = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Fix login"))

    assert task.status == TaskStatus.TODO
    items = tasks.list_queue_items(task_id=task.id)
    assert [item.status for item in items] == [QueueStatus.QUEUED]
    assert _events(tasks, task.id) == [TaskEvent.TASK_CREATED.value]


def test_comment_on_finished_item_requeues_task(
    task_service: TaskService,
    tasks,
    workspace,
) -> None:
    task = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Fix login"))
    (item,) = tasks.list_queue_items(task_id=task.id)
    tasks.update_queue_status(item_id=item.id, status=QueueStatus.COMPLETED)

    comment = task_service.add_comment(task_id=task.id, content="Also check logout", user_id="u1")

    assert comment.author_type == ActorType.USER
    statuses = [queued.status for queued in tasks.list_queue_items(task_id=task.id)]
    assert statuses == [QueueStatus.COMPLETED, QueueStatus.QUEUED]
    assert _events(tasks, task.id)[-1] == TaskEvent.COMMENT_ADDED.value


def test_comment_on_done_task_does_not_requeue(task_service: TaskService, tasks, workspace) -> None:
    task = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Shipped"))
    (item,) = tasks.list_queue_items(task_id=task.id)
    tasks.update_queue_status(item_id=item.id, status=QueueStatus.COMPLETED)
    task_service.change_status(
        task_id=task.id,
        status=TaskStatus.DONE,
        actor_type=ActorType.USER,
    )

    task_service.add_comment(task_id=task.id, content="Thanks!", user_id=DEFAULT_USER_ID)

    assert tasks.find_active_queue_item(task_id=task.id) is None


def test_change_status_logs_old_and_new(task_service: TaskService, tasks, workspace) -> None:
    task = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Review me"))

    task_service.change_status(
        task_id=task.id,
        status=TaskStatus.IN_REVIEW,
        actor_type=ActorType.USER,
        actor_id=DEFAULT_USER_ID,
    )

    entry = tasks.list_logs(task_id=task.id)[-1]
    assert entry.event_type == TaskEvent.STATUS_CHANGED.value
    assert entry.actor_type == ActorType.USER
    assert entry.metadata == {"old_status": "todo", "new_status": "in_review"}


def test_back_to_todo_from_review_requeues(task_service: TaskService, tasks, workspace) -> None:
    task = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Redo"))
    (item,) = tasks.list_queue_items(task_id=task.id)
    tasks.update_queue_status(item_id=item.id, status=QueueStatus.COMPLETED)
    task_service.change_status(
        task_id=task.id,
        status=TaskStatus.IN_REVIEW,
        actor_type=ActorType.AGENT,
    )

    task_service.change_status(task_id=task.id, status=TaskStatus.TODO, actor_type=ActorType.USER)

    active = tasks.find_active_queue_item(task_id=task.id)
    assert active is not None
    assert active.status == QueueStatus.QUEUED


def test_starting_a_task_demotes_siblings(task_service: TaskService, tasks, workspace) -> None:
    first = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="first"))
    second = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="second"))
    task_service.change_status(
        task_id=first.id,
        status=TaskStatus.IN_PROGRESS,
        actor_type=ActorType.SYSTEM,
    )

    task_service.change_status(
        task_id=second.id,
        status=TaskStatus.IN_PROGRESS,
        actor_type=ActorType.SYSTEM,
    )

    assert tasks.require_task(task_id=first.id).status == TaskStatus.TODO
    assert tasks.require_task(task_id=second.id).status == TaskStatus.IN_PROGRESS


def test_cancel_kills_process_and_moves_to_review(
    tasks: TaskRepository,
    workspaces: WorkspaceRepository,
    workspace,
) -> None:
    processes = ProcessRegistry()
    service = TaskService(tasks=tasks, workspaces=workspaces, processes=processes)
    task = service.create_task(TaskCreate(workspace_id=workspace.id, summary="Long job"))
    (item,) = tasks.list_queue_items(task_id=task.id)
    tasks.claim_queue_item(item_id=item.id)
    process = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
    processes.track(task.id, process)

    cancelled = service.cancel_task(task_id=task.id)

    assert process.wait(timeout=10) != 0
    assert cancelled.status == TaskStatus.IN_REVIEW
    assert tasks.get_queue_item(item_id=item.id).status == QueueStatus.FAILED
    assert tasks.find_active_queue_item(task_id=task.id) is None
    comments = tasks.list_comments(task_id=task.id)
    assert comments[-1].content == CANCELLED_COMMENT
    assert comments[-1].author_type == ActorType.SYSTEM
    assert TaskEvent.TASK_CANCELLED.value in _events(tasks, task.id)


def test_prioritize_only_touches_queued_items(task_service: TaskService, tasks, workspace) -> None:
    task = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Hotfix"))

    assert task_service.prioritize(task_id=task.id) is True
    assert tasks.find_active_queue_item(task_id=task.id).is_priority is True
    assert task_service.deprioritize(task_id=task.id) is True
    assert tasks.find_active_queue_item(task_id=task.id).is_priority is False

    (item,) = tasks.list_queue_items(task_id=task.id)
    tasks.claim_queue_item(item_id=item.id)
    assert task_service.prioritize(task_id=task.id) is False

    events = _events(tasks, task.id)
    assert events.count(TaskEvent.TASK_PRIORITIZED.value) == 1
    assert events.count(TaskEvent.TASK_DEPRIORITIZED.value) == 1


def test_concurrent_comments_keep_one_active_item(
    task_service: TaskService,
    tasks,
    workspace,
    monkeypatch,
) -> None:
    task = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Busy"))
    (item,) = tasks.list_queue_items(task_id=task.id)
    tasks.update_queue_status(item_id=item.id, status=QueueStatus.FAILED)

    original_add = Session.add

    def _slow_add(self, instance, *args, **kwargs):
        if isinstance(instance, TaskQueueItem):
            time.sleep(0.3)
        return original_add(self, instance, *args, **kwargs)

    monkeypatch.setattr(Session, "add", _slow_add)
    barrier = threading.Barrier(2)
    errors: list[BaseException] = []

    def _comment(text: str) -> None:
        barrier.wait()
        try:
            task_service.add_comment(task_id=task.id, content=text, user_id=DEFAULT_USER_ID)
        except BaseException as error:  # noqa: BLE001
            errors.append(error)

    threads = [threading.Thread(target=_comment, args=(text,)) for text in ("one", "two")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    statuses = sorted(entry.status.value for entry in tasks.list_queue_items(task_id=task.id))
    assert statuses == [QueueStatus.FAILED.value, QueueStatus.QUEUED.value]
    assert len(tasks.list_comments(task_id=task.id)) == 2


def test_database_rejects_second_active_item(task_service: TaskService, tasks, workspace) -> None:
    task = task_service.create_task(TaskCreate(workspace_id=workspace.id, summary="Once"))

    with pytest.raises(IntegrityError):
        tasks.create_queue_item(task_id=task.id, workspace_id=workspace.id)

    assert len(tasks.list_queue_items(task_id=task.id)) == 1
