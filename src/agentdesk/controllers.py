"""Controllers for agentdesk CLI commands."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from sqlalchemy.exc import IntegrityError

from agentdesk.config import Settings, cli_path_env_var
from agentdesk.models import (
    DEFAULT_USER_ID,
    ActorType,
    AgentCreate,
    CliType,
    TaskCreate,
    TaskStatus,
    WorkingDirectoryMode,
    WorkspaceCreate,
    WorkspaceUpdate,
)
from agentdesk.runtime import Runtime, open_runtime
from agentdesk.storage.common import NotFoundError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"


@dataclass(slots=True)
class ServeCommand:
    """CLI input for the background runner."""

    db_path: Path | None
    log_level: str | None
    once: bool = False


@dataclass(slots=True)
class DatabaseCommand:
    """CLI input for commands that only need the database."""

    db_path: Path | None


@dataclass(slots=True)
class WorkspaceCreateCommand:
    db_path: Path | None
    title: str
    description: str
    working_directory_mode: WorkingDirectoryMode
    working_directory_path: str | None
    auto_delete_done_tasks: bool
    retention_days: int


@dataclass(slots=True)
class WorkspaceUpdateCommand:
    db_path: Path | None
    workspace_id: str
    title: str | None
    description: str | None
    working_directory_mode: WorkingDirectoryMode | None
    working_directory_path: str | None


@dataclass(slots=True)
class AgentAddCommand:
    db_path: Path | None
    workspace_id: str
    name: str
    instruction: str
    cli_type: CliType
    order: int | None


@dataclass(slots=True)
class WorkspaceRefCommand:
    db_path: Path | None
    workspace_id: str


@dataclass(slots=True)
class AgentRefCommand:
    db_path: Path | None
    agent_id: str


@dataclass(slots=True)
class TaskCreateCommand:
    db_path: Path | None
    workspace_id: str
    summary: str
    description: str


@dataclass(slots=True)
class TaskListCommand:
    db_path: Path | None
    workspace_id: str
    status: TaskStatus | None


@dataclass(slots=True)
class TaskRefCommand:
    """CLI input for show/cancel/prioritize operations."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class TaskCommentCommand:
    db_path: Path | None
    task_id: str
    content: str


@dataclass(slots=True)
class TaskStatusCommand:
    db_path: Path | None
    task_id: str
    status: TaskStatus


@dataclass(slots=True)
class ChatCreateCommand:
    db_path: Path | None
    workspace_id: str
    agent_id: str | None
    cli_type: CliType | None
    title: str | None


@dataclass(slots=True)
class ChatSendCommand:
    db_path: Path | None
    chat_id: str
    message: str


@dataclass(slots=True)
class ChatRefCommand:
    db_path: Path | None
    chat_id: str


@dataclass(slots=True)
class SetCliPathCommand:
    """CLI input for persisting (or clearing) a CLI binary override."""

    db_path: Path | None
    cli_type: CliType
    binary_path: str | None


class AgentDeskCliController:
    """Coordinates runner, workspace, task and chat CLI operations."""

    # -- runner ---------------------------------------------------------------

    def serve(self, command: ServeCommand) -> list[str]:
        """Run background jobs until SIGINT/SIGTERM (or one tick with ``once``)."""

        settings = _settings(command.db_path)
        configure_logging(command.log_level or settings.log_level)
        with open_runtime(settings) as runtime:
            task_items, chat_items = runtime.recover()
            if command.once:
                stop_event = threading.Event()
                task_workers = runtime.task_processor.run_once(stop_event)
                chat_workers = runtime.chat_processor.run_once(stop_event)
                return [
                    f"Recovered: task_items={task_items} chat_items={chat_items}",
                    f"Processed: task_workspaces={task_workers} chats={chat_workers}",
                ]

            stop_event = threading.Event()
            runtime.scheduler.start()
            try:
                with _signal_handlers(stop_event):
                    while not stop_event.wait(timeout=0.5):
                        pass
            finally:
                runtime.scheduler.stop()
        return [
            f"Recovered: task_items={task_items} chat_items={chat_items}",
            "Runner stopped.",
        ]

    def recover(self, command: DatabaseCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            task_items, chat_items = runtime.recover()
        return [f"Requeued: task_items={task_items} chat_items={chat_items}"]

    def cleanup(self, command: DatabaseCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            report = runtime.cleanup.run()
        return [
            "Cleanup summary: "
            f"task_queue_items={report.task_queue_items} "
            f"chat_queue_items={report.chat_queue_items} done_tasks={report.done_tasks}",
        ]

    def health(self, command: DatabaseCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            results = runtime.health.check_all()
        lines = []
        for result in results:
            details = [f"{result.cli_type.value}: {result.status.value}"]
            if result.binary_path:
                details.append(f"path={result.binary_path}")
            if result.version:
                details.append(f"version={result.version}")
            if result.duration_ms is not None:
                details.append(f"duration_ms={result.duration_ms}")
            if result.error:
                details.append(f"error={result.error}")
            lines.append(" ".join(details))
        return lines

    # -- workspaces and agents -------------------------------------------------

    def workspace_create(self, command: WorkspaceCreateCommand) -> list[str]:
        if (
            command.working_directory_mode == WorkingDirectoryMode.STATIC
            and not command.working_directory_path
        ):
            raise ValueError("--working-directory is required for static mode.")
        with _runtime(command.db_path) as runtime:
            workspace = runtime.workspaces.create_workspace(
                WorkspaceCreate(
                    title=command.title,
                    description=command.description,
                    working_directory_mode=command.working_directory_mode,
                    working_directory_path=command.working_directory_path,
                    auto_delete_done_tasks=command.auto_delete_done_tasks,
                    retention_days=command.retention_days,
                ),
            )
        return [f"Workspace created: workspace_id={workspace.id} title={workspace.title}"]

    def workspace_list(self, command: DatabaseCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            workspaces = runtime.workspaces.list_workspaces()
        if not workspaces:
            return ["No workspaces."]
        return [
            f"{workspace.id} {workspace.title} "
            f"mode={workspace.working_directory_mode.value}"
            + (
                f" path={workspace.working_directory_path}"
                if workspace.working_directory_path
                else ""
            )
            for workspace in workspaces
        ]

    def workspace_update(self, command: WorkspaceUpdateCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            workspace = runtime.workspaces.update_workspace(
                workspace_id=command.workspace_id,
                update=WorkspaceUpdate(
                    title=command.title,
                    description=command.description,
                    working_directory_mode=command.working_directory_mode,
                    working_directory_path=command.working_directory_path,
                ),
            )
        return [f"Workspace updated: workspace_id={workspace.id} title={workspace.title}"]

    def agent_add(self, command: AgentAddCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            try:
                agent = runtime.workspaces.create_agent(
                    AgentCreate(
                        workspace_id=command.workspace_id,
                        name=command.name,
                        instruction=command.instruction,
                        cli_type=command.cli_type,
                        order=command.order,
                    ),
                )
            except IntegrityError as error:
                raise ValueError(
                    f"Agent name already used in workspace {command.workspace_id}.",
                ) from error
        return [
            f"Agent added: agent_id={agent.id} name={agent.name} "
            f"cli={agent.cli_type.value} order={agent.order}",
        ]

    def agent_list(self, command: WorkspaceRefCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            runtime.workspaces.require_workspace(workspace_id=command.workspace_id)
            agents = runtime.workspaces.list_agents(workspace_id=command.workspace_id)
        if not agents:
            return ["No agents."]
        return [
            f"{agent.order}. {agent.name} cli={agent.cli_type.value} agent_id={agent.id}"
            for agent in agents
        ]

    def agent_remove(self, command: AgentRefCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            if not runtime.workspaces.delete_agent(agent_id=command.agent_id):
                raise NotFoundError(f"Agent not found: {command.agent_id}")
        return [f"Agent removed: agent_id={command.agent_id}"]

    # -- tasks ----------------------------------------------------------------

    def task_create(self, command: TaskCreateCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            task = runtime.task_service.create_task(
                TaskCreate(
                    workspace_id=command.workspace_id,
                    summary=command.summary,
                    description=command.description,
                ),
            )
        return [f"Task created: task_id={task.id} status={task.status.value}"]

    def task_list(self, command: TaskListCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            runtime.workspaces.require_workspace(workspace_id=command.workspace_id)
            tasks = runtime.tasks.list_tasks(
                workspace_id=command.workspace_id,
                status=command.status,
            )
        if not tasks:
            return ["No tasks."]
        return [f"{task.id} [{task.status.value}] {task.summary}" for task in tasks]

    def task_show(self, command: TaskRefCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            task = runtime.tasks.require_task(task_id=command.task_id)
            comments = runtime.tasks.list_comments(task_id=task.id)
            logs = runtime.tasks.list_logs(task_id=task.id)
            queue_items = runtime.tasks.list_queue_items(task_id=task.id)
            agent_names = {
                agent.id: agent.name
                for agent in runtime.workspaces.list_agents(workspace_id=task.workspace_id)
            }

        lines = [
            f"Task: {task.id}",
            f"Summary: {task.summary}",
            f"Status: {task.status.value}",
            f"Description: {task.description or '-'}",
            "Queue:",
        ]
        lines.extend(
            f"  {item.id} {item.status.value}" + (" priority" if item.is_priority else "")
            for item in queue_items
        )
        lines.append("Comments:")
        for comment in comments:
            if comment.author_type == ActorType.USER:
                author = "User"
            elif comment.author_type == ActorType.AGENT:
                author = agent_names.get(comment.agent_id or "", "Unknown agent")
            else:
                author = "System"
            lines.append(f"  [{comment.created_at.isoformat()}] {author}: {comment.content}")
        lines.append("Activity:")
        lines.extend(
            f"  [{entry.created_at.isoformat()}] {entry.event_type} by {entry.actor_type.value}"
            for entry in logs
        )
        return lines

    def task_comment(self, command: TaskCommentCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            comment = runtime.task_service.add_comment(
                task_id=command.task_id,
                content=command.content,
                user_id=DEFAULT_USER_ID,
            )
        return [f"Comment added: comment_id={comment.id}"]

    def task_status(self, command: TaskStatusCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            task = runtime.task_service.change_status(
                task_id=command.task_id,
                status=command.status,
                actor_type=ActorType.USER,
                actor_id=DEFAULT_USER_ID,
            )
        return [f"Task status: task_id={task.id} status={task.status.value}"]

    def task_cancel(self, command: TaskRefCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            task = runtime.task_service.cancel_task(task_id=command.task_id)
        return [f"Task cancelled: task_id={task.id} status={task.status.value}"]

    def task_prioritize(self, command: TaskRefCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            updated = runtime.task_service.prioritize(task_id=command.task_id)
        if not updated:
            return [f"Task {command.task_id} has no queued item to prioritize."]
        return [f"Task prioritized: task_id={command.task_id}"]

    def task_deprioritize(self, command: TaskRefCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            updated = runtime.task_service.deprioritize(task_id=command.task_id)
        if not updated:
            return [f"Task {command.task_id} has no queued item to deprioritize."]
        return [f"Task deprioritized: task_id={command.task_id}"]

    # -- chats ----------------------------------------------------------------

    def chat_create(self, command: ChatCreateCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            if command.title:
                chat = runtime.chat_service.create_chat(
                    workspace_id=command.workspace_id,
                    agent_id=command.agent_id,
                    cli_type=command.cli_type,
                    title=command.title,
                )
            else:
                chat = runtime.chat_service.create_chat(
                    workspace_id=command.workspace_id,
                    agent_id=command.agent_id,
                    cli_type=command.cli_type,
                )
        return [f"Chat created: chat_id={chat.id} title={chat.title}"]

    def chat_send(self, command: ChatSendCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            message = runtime.chat_service.send_message(
                chat_id=command.chat_id,
                message=command.message,
            )
        return [f"Message queued: message_id={message.id}"]

    def chat_show(self, command: ChatRefCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            chat = runtime.chats.require_chat(chat_id=command.chat_id)
            messages = runtime.chats.list_messages(chat_id=chat.id)
        lines = [f"Chat: {chat.id}", f"Title: {chat.title}"]
        for message in messages:
            lines.append(f"[{message.role.value}] {message.message}")
            for action in message.actions or []:
                lines.append(f"  action: {action.get('type')}")
        return lines

    # -- config ---------------------------------------------------------------

    def set_cli_path(self, command: SetCliPathCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            runtime.settings_store.set_cli_binary_path(command.cli_type, command.binary_path)
        if command.binary_path:
            return [f"CLI path set: {command.cli_type.value}={command.binary_path}"]
        return [f"CLI path cleared: {command.cli_type.value}"]

    def config_show(self, command: DatabaseCommand) -> list[str]:
        with _runtime(command.db_path) as runtime:
            settings = runtime.settings
            lines = [
                f"db_path={settings.db_path}",
                f"poll_interval_ms={settings.runner.poll_interval_ms}",
                f"max_agent_passes={settings.runner.max_agent_passes}",
                f"temp_dir={settings.runner.temp_dir}",
                f"health_check_interval_seconds={settings.jobs.health_check_interval_seconds:g}",
                f"queue_retention_days={settings.jobs.queue_retention_days}",
            ]
            for cli_type in CliType:
                stored = runtime.settings_store.get_cli_binary_path(cli_type)
                from_env = settings.cli_paths.get(cli_type)
                resolved = runtime.resolver.resolve(cli_type)
                lines.append(
                    f"{cli_type.value}: resolved={resolved or '-'} "
                    f"setting={stored or '-'} {cli_path_env_var(cli_type)}={from_env or '-'}",
                )
        return lines


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


@contextmanager
def _runtime(db_path: Path | None) -> Iterator[Runtime]:
    with open_runtime(_settings(db_path)) as runtime:
        yield runtime


@contextmanager
def _signal_handlers(stop_event: threading.Event) -> Iterator[None]:
    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        logger.info("Received %s, shutting down", name)
        stop_event.set()

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # Signal handlers can only be installed in main thread.
        logger.warning("Not in main thread, SIGINT/SIGTERM handlers not installed")
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
