"""Resolve the directory an agent subprocess runs in."""

from __future__ import annotations

import logging
from pathlib import Path

from agentdesk.models import WorkingDirectoryMode, WorkspaceView

logger = logging.getLogger(__name__)


class WorkingDirectoryResolver:
    """Static workspace path, or a per-task/per-chat directory under ``temp_root``.

    Ephemeral directories are created on demand and reused by every agent that
    works on the same task or chat; nothing here deletes them.
    """

    def __init__(self, temp_root: Path) -> None:
        self.temp_root = temp_root

    def for_task(self, workspace: WorkspaceView, task_id: str) -> Path:
        return self._resolve(workspace, f"agentdesk_task_{task_id}")

    def for_chat(self, workspace: WorkspaceView, chat_id: str) -> Path:
        return self._resolve(workspace, f"agentdesk_chat_{chat_id}")

    def _resolve(self, workspace: WorkspaceView, temp_name: str) -> Path:
        if (
            workspace.working_directory_mode == WorkingDirectoryMode.STATIC
            and workspace.working_directory_path
        ):
            path = Path(workspace.working_directory_path).expanduser()
            if not path.is_dir():
                logger.warning("Static working directory does not exist: %s", path)
            return path
        path = self.temp_root / temp_name
        path.mkdir(parents=True, exist_ok=True)
        return path
