"""Object graph shared by the CLI commands and the background scheduler."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from agentdesk.chats.repository import ChatRepository
from agentdesk.chats.service import ChatService
from agentdesk.config import Settings
from agentdesk.runner.agent_loop import AgentLoopExecutor
from agentdesk.runner.binaries import BinaryResolver
from agentdesk.runner.chat_processor import ChatProcessor
from agentdesk.runner.cleanup import RetentionCleanup
from agentdesk.runner.cli_adapter import CliInvocationAdapter
from agentdesk.runner.health import HealthChecker
from agentdesk.runner.registry import ProcessRegistry
from agentdesk.runner.scheduler import JobScheduler
from agentdesk.runner.task_processor import TaskProcessor
from agentdesk.runner.workdirs import WorkingDirectoryResolver
from agentdesk.settings_store import SettingsRepository
from agentdesk.storage.database import Database
from agentdesk.tasks.repository import TaskRepository
from agentdesk.tasks.service import TaskService
from agentdesk.workspaces.repository import WorkspaceRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    """Repositories, services and processors wired to one database."""

    settings: Settings
    database: Database
    workspaces: WorkspaceRepository
    tasks: TaskRepository
    chats: ChatRepository
    settings_store: SettingsRepository
    task_service: TaskService
    chat_service: ChatService
    resolver: BinaryResolver
    health: HealthChecker
    task_processor: TaskProcessor
    chat_processor: ChatProcessor
    cleanup: RetentionCleanup
    scheduler: JobScheduler

    def recover(self) -> tuple[int, int]:
        """Requeue items a previous process left ``in_progress``."""

        task_items = self.tasks.reset_in_progress_queue_items()
        chat_items = self.chats.reset_in_progress_queue_items()
        if task_items or chat_items:
            logger.info(
                "Recovered %d task queue item(s) and %d chat queue item(s)",
                task_items,
                chat_items,
            )
        return task_items, chat_items


def build_runtime(settings: Settings, database: Database) -> Runtime:
    workspaces = WorkspaceRepository(database)
    tasks = TaskRepository(database)
    chats = ChatRepository(database)
    settings_store = SettingsRepository(database)
    task_processes = ProcessRegistry()
    chat_processes = ProcessRegistry()
    task_service = TaskService(tasks=tasks, workspaces=workspaces, processes=task_processes)
    resolver = BinaryResolver(settings=settings_store, env_paths=settings.cli_paths)
    invoker = CliInvocationAdapter(resolver=resolver)
    working_dirs = WorkingDirectoryResolver(settings.runner.temp_dir)
    health = HealthChecker(
        resolver=resolver,
        timeout_seconds=settings.jobs.health_check_timeout_seconds,
    )
    task_processor = TaskProcessor(
        tasks=tasks,
        workspaces=workspaces,
        service=task_service,
        executor=AgentLoopExecutor(
            tasks=tasks,
            workspaces=workspaces,
            service=task_service,
            invoker=invoker,
            processes=task_processes,
            working_dirs=working_dirs,
            max_passes=settings.runner.max_agent_passes,
        ),
        processes=task_processes,
    )
    chat_processor = ChatProcessor(
        chats=chats,
        workspaces=workspaces,
        invoker=invoker,
        processes=chat_processes,
        working_dirs=working_dirs,
        health=health,
    )
    cleanup = RetentionCleanup(
        tasks=tasks,
        chats=chats,
        workspaces=workspaces,
        queue_retention_days=settings.jobs.queue_retention_days,
    )
    scheduler = JobScheduler(
        task_processor=task_processor,
        chat_processor=chat_processor,
        health_checker=health,
        cleanup=cleanup,
        poll_interval_seconds=settings.runner.poll_interval_ms / 1000,
        health_check_interval_seconds=settings.jobs.health_check_interval_seconds,
        cleanup_interval_seconds=settings.jobs.cleanup_interval_seconds,
    )
    return Runtime(
        settings=settings,
        database=database,
        workspaces=workspaces,
        tasks=tasks,
        chats=chats,
        settings_store=settings_store,
        task_service=task_service,
        chat_service=ChatService(chats=chats, workspaces=workspaces),
        resolver=resolver,
        health=health,
        task_processor=task_processor,
        chat_processor=chat_processor,
        cleanup=cleanup,
        scheduler=scheduler,
    )


@contextmanager
def open_runtime(settings: Settings) -> Iterator[Runtime]:
    """Migrate the database, yield a wired runtime, dispose the engine on exit."""

    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    database = Database(settings.db_path, busy_timeout_ms=settings.sqlite_busy_timeout_ms)
    database.init_schema()
    try:
        yield build_runtime(settings, database)
    finally:
        database.close()
