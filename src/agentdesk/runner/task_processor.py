"""Per-workspace task queue workers."""

from __future__ import annotations

import logging
import threading

from agentdesk.models import ActorType, QueueStatus, TaskQueueItemView, TaskStatus
from agentdesk.runner.agent_loop import AgentLoopExecutor
from agentdesk.runner.registry import ProcessRegistry, WorkerRegistry
from agentdesk.storage.common import NotFoundError
from agentdesk.tasks.repository import TaskRepository
from agentdesk.tasks.service import TaskService
from agentdesk.workspaces.repository import WorkspaceRepository

logger = logging.getLogger(__name__)


class TaskProcessor:
    """Start one worker per workspace with queued work and drain its queue.

    The worker registry keeps a workspace from ever having two live workers
    in this process; the compare-and-swap claim keeps two claimers from
    processing the same item.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        tasks: TaskRepository,
        workspaces: WorkspaceRepository,
        service: TaskService,
        executor: AgentLoopExecutor,
        processes: ProcessRegistry,
        workers: WorkerRegistry | None = None,
    ) -> None:
        self.tasks = tasks
        self.workspaces = workspaces
        self.service = service
        self.executor = executor
        self.processes = processes
        self.workers = workers or WorkerRegistry()

    def run_once(self, stop_event: threading.Event) -> int:
        """One scheduler tick; returns how many workers it started.

        Blocks until the workers it started have finished, whatever their outcome.
        """

        if stop_event.is_set():
            return 0
        threads: list[threading.Thread] = []
        for workspace_id in self.tasks.find_workspaces_with_queued_items():
            if not self.workers.try_acquire(workspace_id):
                continue
            thread = threading.Thread(
                target=self._worker_loop,
                args=(workspace_id, stop_event),
                name=f"task-worker-{workspace_id[:8]}",
                daemon=True,
            )
            try:
                thread.start()
            except RuntimeError:
                self.workers.release(workspace_id)
                raise
            threads.append(thread)
        for thread in threads:
            thread.join()
        return len(threads)

    def _worker_loop(self, workspace_id: str, stop_event: threading.Event) -> None:
        logger.debug("Task worker for workspace %s started", workspace_id)
        try:
            while not stop_event.is_set():
                item = self.tasks.pick_next_queue_item(workspace_id=workspace_id)
                if item is None:
                    break
                self.process_queue_item(item, stop_event)
        except Exception:
            logger.exception("Task worker for workspace %s crashed", workspace_id)
        finally:
            self.workers.release(workspace_id)
            logger.debug("Task worker for workspace %s stopped", workspace_id)

    def process_queue_item(self, item: TaskQueueItemView, stop_event: threading.Event) -> None:
        """Claim ``item`` and run it to a terminal queue state (or abort)."""

        if stop_event.is_set():
            return
        claimed = self.tasks.claim_queue_item(item_id=item.id)
        if claimed is None:
            logger.debug("Queue item %s was claimed elsewhere", item.id)
            return

        try:
            task = self.tasks.require_task(task_id=claimed.task_id)
            workspace = self.workspaces.require_workspace(workspace_id=claimed.workspace_id)
            if task.status == TaskStatus.TODO:
                task = self.service.change_status(
                    task_id=task.id,
                    status=TaskStatus.IN_PROGRESS,
                    actor_type=ActorType.SYSTEM,
                )

            agents = self.workspaces.list_agents(workspace_id=workspace.id)
            if not agents:
                self.service.change_status(
                    task_id=task.id,
                    status=TaskStatus.IN_REVIEW,
                    actor_type=ActorType.SYSTEM,
                )
                self.tasks.update_queue_status(item_id=claimed.id, status=QueueStatus.COMPLETED)
                return

            summary = self.executor.run(
                task=task,
                workspace=workspace,
                agents=agents,
                queue_item_id=claimed.id,
                stop_event=stop_event,
            )
            logger.info(
                "Task %s finished: %s after %d pass(es), %d invocation(s)",
                task.id,
                summary.outcome.value,
                summary.passes,
                summary.invocations,
            )
        except Exception as error:  # noqa: BLE001
            logger.exception("Processing queue item %s failed", claimed.id)
            self._record_failure(claimed, error)

    def _record_failure(self, item: TaskQueueItemView, error: Exception) -> None:
        # The item must be terminal before the comment so the comment re-queues the task.
        self.tasks.update_queue_status(item_id=item.id, status=QueueStatus.FAILED)
        try:
            self.service.add_system_comment(
                task_id=item.task_id,
                content=f"Processing failed: {error}",
            )
        except NotFoundError:
            logger.warning("Task %s vanished, failure not recorded as comment", item.task_id)

    def kill_task_process(self, task_id: str) -> bool:
        return self.processes.kill(task_id)

    def kill_all_processes(self) -> int:
        return self.processes.kill_all()
