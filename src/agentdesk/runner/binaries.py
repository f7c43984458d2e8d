"""Locate agent CLI binaries."""

from __future__ import annotations

import shutil
from collections.abc import Callable

from agentdesk.config import CliPathSettings
from agentdesk.models import CliType
from agentdesk.settings_store import SettingsRepository


class BinaryResolver:
    """Resolve a CLI binary: persisted setting, then environment, then PATH."""

    def __init__(
        self,
        *,
        settings: SettingsRepository | None = None,
        env_paths: CliPathSettings | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.settings = settings
        self.env_paths = env_paths or CliPathSettings()
        self._which = which

    def resolve(self, cli_type: CliType) -> str | None:
        if self.settings is not None:
            configured = self.settings.get_cli_binary_path(cli_type)
            if configured:
                return configured
        from_env = self.env_paths.get(cli_type)
        if from_env:
            return from_env
        return self._which(cli_type.value)
