"""Runtime configuration for the agent runner and background jobs."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from agentdesk.models import CliType


@dataclass(slots=True)
class RunnerSettings:
    """Queue polling and agent loop settings."""

    poll_interval_ms: int = 1_000
    max_agent_passes: int = 100
    temp_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))


@dataclass(slots=True)
class JobSettings:
    """Background job intervals."""

    health_check_interval_seconds: float = 300.0
    health_check_timeout_seconds: float = 60.0
    cleanup_interval_seconds: float = 86_400.0
    queue_retention_days: int = 7


@dataclass(slots=True)
class CliPathSettings:
    """Binary path overrides read from the environment."""

    paths: dict[CliType, str] = field(default_factory=dict)

    def get(self, cli_type: CliType) -> str | None:
        return self.paths.get(cli_type)


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".agentdesk.db")
    sqlite_busy_timeout_ms: int = 5_000
    log_level: str = "INFO"
    runner: RunnerSettings = field(default_factory=RunnerSettings)
    jobs: JobSettings = field(default_factory=JobSettings)
    cli_paths: CliPathSettings = field(default_factory=CliPathSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local use."""

        temp_dir = os.getenv("AGENTDESK_TEMP_DIR")
        return cls(
            db_path=db_path or Path(os.getenv("AGENTDESK_DB_PATH", ".agentdesk.db")),
            sqlite_busy_timeout_ms=int(os.getenv("AGENTDESK_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            log_level=os.getenv("AGENTDESK_LOG_LEVEL", "INFO").upper(),
            runner=RunnerSettings(
                poll_interval_ms=int(os.getenv("AGENTDESK_RUNNER_POLL_INTERVAL", "1000")),
                max_agent_passes=int(os.getenv("AGENTDESK_MAX_AGENT_PASSES", "100")),
                temp_dir=Path(temp_dir) if temp_dir else Path(tempfile.gettempdir()),
            ),
            jobs=JobSettings(
                health_check_interval_seconds=float(
                    os.getenv("AGENTDESK_HEALTH_CHECK_INTERVAL_SECONDS", "300"),
                ),
                health_check_timeout_seconds=float(
                    os.getenv("AGENTDESK_HEALTH_CHECK_TIMEOUT_SECONDS", "60"),
                ),
                cleanup_interval_seconds=float(
                    os.getenv("AGENTDESK_CLEANUP_INTERVAL_SECONDS", "86400"),
                ),
                queue_retention_days=int(os.getenv("AGENTDESK_QUEUE_RETENTION_DAYS", "7")),
            ),
            cli_paths=CliPathSettings(paths=_collect_cli_paths()),
        )

    def validate(self) -> None:
        """Raise configuration error for values the runner cannot work with."""

        if self.runner.poll_interval_ms <= 0:
            raise ValueError("AGENTDESK_RUNNER_POLL_INTERVAL must be > 0.")
        if self.runner.max_agent_passes <= 0:
            raise ValueError("AGENTDESK_MAX_AGENT_PASSES must be > 0.")
        if self.jobs.health_check_interval_seconds <= 0:
            raise ValueError("AGENTDESK_HEALTH_CHECK_INTERVAL_SECONDS must be > 0.")
        if self.jobs.health_check_timeout_seconds <= 0:
            raise ValueError("AGENTDESK_HEALTH_CHECK_TIMEOUT_SECONDS must be > 0.")
        if self.jobs.cleanup_interval_seconds <= 0:
            raise ValueError("AGENTDESK_CLEANUP_INTERVAL_SECONDS must be > 0.")
        if self.jobs.queue_retention_days < 0:
            raise ValueError("AGENTDESK_QUEUE_RETENTION_DAYS must be >= 0.")


def cli_path_env_var(cli_type: CliType) -> str:
    """Environment variable holding the binary override for a CLI type."""

    return f"AGENTDESK_{cli_type.value.upper()}_PATH"


def _collect_cli_paths() -> dict[CliType, str]:
    paths: dict[CliType, str] = {}
    for cli_type in CliType:
        value = os.getenv(cli_path_env_var(cli_type), "").strip()
        if value:
            paths[cli_type] = value
    return paths
