"""Shared engine owner for repositories."""

from __future__ import annotations

from pathlib import Path

from agentdesk.storage.alembic_runner import upgrade_head
from agentdesk.storage.common import build_sqlite_engine


class Database:
    """SQLite database handle passed to every repository."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        upgrade_head(self.db_path)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()
