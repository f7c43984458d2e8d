"""Retention job for finished queue items and done tasks."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from agentdesk.chats.repository import ChatRepository
from agentdesk.models import CleanupReport
from agentdesk.storage.common import utc_now
from agentdesk.tasks.repository import TaskRepository
from agentdesk.workspaces.repository import WorkspaceRepository

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_RETENTION_DAYS = 7


class RetentionCleanup:
    """Delete completed/failed queue rows past retention and expired done tasks."""

    def __init__(
        self,
        *,
        tasks: TaskRepository,
        chats: ChatRepository,
        workspaces: WorkspaceRepository,
        queue_retention_days: int = DEFAULT_QUEUE_RETENTION_DAYS,
    ) -> None:
        self.tasks = tasks
        self.chats = chats
        self.workspaces = workspaces
        self.queue_retention_days = queue_retention_days

    def run(self, now: datetime | None = None) -> CleanupReport:
        current = now or utc_now()
        queue_cutoff = current - timedelta(days=self.queue_retention_days)
        report = CleanupReport(
            task_queue_items=self.tasks.delete_finished_queue_items_before(cutoff=queue_cutoff),
            chat_queue_items=self.chats.delete_finished_queue_items_before(cutoff=queue_cutoff),
        )
        for workspace in self.workspaces.list_workspaces():
            if not workspace.auto_delete_done_tasks:
                continue
            report.done_tasks += self.tasks.delete_done_tasks_before(
                workspace_id=workspace.id,
                cutoff=current - timedelta(days=workspace.retention_days),
            )
        logger.info(
            "Cleanup removed %d task queue item(s), %d chat queue item(s), %d done task(s)",
            report.task_queue_items,
            report.chat_queue_items,
            report.done_tasks,
        )
        return report
