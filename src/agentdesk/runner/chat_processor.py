"""Chat queue workers: one agent turn per queue item."""

from __future__ import annotations

import logging
import threading

from agentdesk.chats.actions import ChatActionExecutor, format_failures
from agentdesk.chats.repository import ChatRepository
from agentdesk.models import (
    AgentView,
    ChatQueueItemView,
    ChatRole,
    ChatView,
    CliType,
    QueueStatus,
)
from agentdesk.runner.base import CliInvoker, InvocationKind, InvocationRequest
from agentdesk.runner.health import HealthChecker
from agentdesk.runner.input_builder import build_chat_input
from agentdesk.runner.prompts import WORKSPACE_ASSISTANT_INSTRUCTION
from agentdesk.runner.registry import ProcessRegistry, WorkerRegistry
from agentdesk.runner.schemas import ChatOutput
from agentdesk.runner.workdirs import WorkingDirectoryResolver
from agentdesk.workspaces.repository import WorkspaceRepository

logger = logging.getLogger(__name__)


class ChatInvocationError(RuntimeError):
    """The chat agent CLI did not produce a usable reply."""


class ChatProcessor:
    """Process queued chat items in parallel, at most one worker per chat."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        chats: ChatRepository,
        workspaces: WorkspaceRepository,
        invoker: CliInvoker,
        processes: ProcessRegistry,
        working_dirs: WorkingDirectoryResolver,
        health: HealthChecker | None = None,
        workers: WorkerRegistry | None = None,
    ) -> None:
        self.chats = chats
        self.workspaces = workspaces
        self.invoker = invoker
        self.processes = processes
        self.working_dirs = working_dirs
        self.health = health
        self.workers = workers or WorkerRegistry()
        self.actions = ChatActionExecutor(workspaces=workspaces, chats=chats)

    def run_once(self, stop_event: threading.Event) -> int:
        if stop_event.is_set():
            return 0
        threads: list[threading.Thread] = []
        for item in self.chats.list_queued_items():
            if not self.workers.try_acquire(item.chat_id):
                continue
            thread = threading.Thread(
                target=self._worker,
                args=(item, stop_event),
                name=f"chat-worker-{item.chat_id[:8]}",
                daemon=True,
            )
            try:
                thread.start()
            except RuntimeError:
                self.workers.release(item.chat_id)
                raise
            threads.append(thread)
        for thread in threads:
            thread.join()
        return len(threads)

    def _worker(self, item: ChatQueueItemView, stop_event: threading.Event) -> None:
        try:
            self.process_queue_item(item, stop_event)
        except Exception:
            logger.exception("Chat worker for chat %s crashed", item.chat_id)
        finally:
            self.workers.release(item.chat_id)

    def process_queue_item(self, item: ChatQueueItemView, stop_event: threading.Event) -> None:
        if stop_event.is_set():
            return
        claimed = self.chats.claim_queue_item(item_id=item.id)
        if claimed is None:
            return

        try:
            chat = self.chats.require_chat(chat_id=claimed.chat_id)
            workspace = self.workspaces.require_workspace(workspace_id=chat.workspace_id)
            agent = (
                self.workspaces.get_agent(agent_id=chat.agent_id)
                if chat.agent_id is not None
                else None
            )
            input_text = build_chat_input(
                workspace=workspace,
                agents=self.workspaces.list_agents(workspace_id=workspace.id),
                role_instruction=(
                    agent.instruction if agent is not None else WORKSPACE_ASSISTANT_INSTRUCTION
                ),
                messages=self.chats.list_messages(chat_id=chat.id),
            )
            request = InvocationRequest(
                cli_type=self.select_cli_type(chat, agent),
                kind=InvocationKind.CHAT,
                input_text=input_text,
                working_dir=self.working_dirs.for_chat(workspace, chat.id),
                stop_event=stop_event,
                on_process=lambda process: self.processes.track(chat.id, process),
            )
            try:
                result = self.invoker.invoke(request)
            finally:
                self.processes.untrack(chat.id)

            if result.cancelled or stop_event.is_set():
                logger.info("Chat %s turn interrupted", chat.id)
                return
            if not result.success or not isinstance(result.parsed_output, ChatOutput):
                raise ChatInvocationError(result.error or "CLI returned no output")

            self._apply_output(chat, result.parsed_output)
            self.chats.update_queue_status(item_id=claimed.id, status=QueueStatus.COMPLETED)
        except Exception as error:  # noqa: BLE001
            logger.exception("Processing chat queue item %s failed", claimed.id)
            self._record_failure(claimed, error)

    def select_cli_type(self, chat: ChatView, agent: AgentView | None) -> CliType:
        """Chat override, then the agent's CLI, then the first healthy CLI, then claude."""

        if chat.cli_type is not None:
            return chat.cli_type
        if agent is not None:
            return agent.cli_type
        if self.health is not None:
            healthy = self.health.first_healthy()
            if healthy is not None:
                return healthy
        return CliType.CLAUDE

    def _apply_output(self, chat: ChatView, output: ChatOutput) -> None:
        is_first_response = self.chats.count_messages(chat_id=chat.id, role=ChatRole.AGENT) == 0
        actions = output.actions or []
        failures = self.actions.execute(
            chat=chat,
            actions=actions,
            is_first_response=is_first_response,
        )
        if output.message or actions:
            self.chats.add_message(
                chat_id=chat.id,
                role=ChatRole.AGENT,
                message=output.message or "",
                actions=[action.model_dump(mode="json", exclude_none=True) for action in actions],
            )
        if failures:
            self.chats.add_message(
                chat_id=chat.id,
                role=ChatRole.SYSTEM,
                message=format_failures(failures),
            )

    def _record_failure(self, item: ChatQueueItemView, error: Exception) -> None:
        if self.chats.get_chat(chat_id=item.chat_id) is None:
            logger.warning("Chat %s vanished, failure not recorded", item.chat_id)
            return
        self.chats.add_message(
            chat_id=item.chat_id,
            role=ChatRole.SYSTEM,
            message=f"Processing failed: {error}",
        )
        self.chats.update_queue_status(item_id=item.id, status=QueueStatus.FAILED)

    def kill_chat_process(self, chat_id: str) -> bool:
        return self.processes.kill(chat_id)

    def kill_all_processes(self) -> int:
        return self.processes.kill_all()
