"""Persisted user settings (key/value JSON)."""

from __future__ import annotations

import json
from typing import Any

from sqlmodel import Session

from agentdesk.models import CliType
from agentdesk.storage.common import to_db_datetime, utc_now
from agentdesk.storage.database import Database
from agentdesk.storage.tables import SettingEntry

CLI_SETTINGS_KEY = "cli_settings"


class SettingsRepository:
    """Read and write JSON values in the settings table."""

    def __init__(self, database: Database) -> None:
        self.engine = database.engine

    def get(self, key: str) -> Any | None:
        with Session(self.engine) as session:
            row = session.get(SettingEntry, key)
            if row is None:
                return None
            return json.loads(row.value)

    def set(self, key: str, value: Any) -> None:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(SettingEntry, key)
            if row is None:
                row = SettingEntry(key=key, value=json.dumps(value), updated_at=now)
            else:
                row.value = json.dumps(value)
                row.updated_at = now
            session.add(row)
            session.commit()

    def get_cli_binary_path(self, cli_type: CliType) -> str | None:
        cli_settings = self.get(CLI_SETTINGS_KEY)
        if not isinstance(cli_settings, dict):
            return None
        entry = cli_settings.get(cli_type.value)
        if not isinstance(entry, dict):
            return None
        binary_path = entry.get("binary_path")
        if isinstance(binary_path, str) and binary_path.strip():
            return binary_path.strip()
        return None

    def set_cli_binary_path(self, cli_type: CliType, binary_path: str | None) -> None:
        """Store (or clear with None) the binary override for a CLI type."""

        cli_settings = self.get(CLI_SETTINGS_KEY)
        if not isinstance(cli_settings, dict):
            cli_settings = {}
        entry = cli_settings.get(cli_type.value)
        if not isinstance(entry, dict):
            entry = {}
        if binary_path:
            entry["binary_path"] = binary_path
        else:
            entry.pop("binary_path", None)
        cli_settings[cli_type.value] = entry
        self.set(CLI_SETTINGS_KEY, cli_settings)
