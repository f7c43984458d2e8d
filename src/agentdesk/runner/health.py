"""Availability probes for agent CLIs with a process-wide result cache."""

from __future__ import annotations

import logging
import re
import tempfile
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from agentdesk.models import CLI_PREFERENCE, CliType, HealthStatus
from agentdesk.runner.binaries import BinaryResolver
from agentdesk.runner.process import run_process
from agentdesk.runner.prompts import HEALTH_CHECK_PROMPT
from agentdesk.storage.common import utc_now

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0

_VERSION_PATTERN = re.compile(
    r"(?:version[:\s]+)?v?(\d+\.\d+(?:\.\d+)?(?:-[a-zA-Z0-9.]+)?)",
    re.IGNORECASE,
)

_PROBE_ARGS: dict[CliType, tuple[str, ...]] = {
    CliType.CLAUDE: ("--print",),
    CliType.CODEX: ("exec",),
    CliType.GEMINI: ("--prompt",),
    CliType.OPENCODE: ("run",),
}


@dataclass(slots=True)
class CliHealth:
    """Latest probe result for one CLI type."""

    cli_type: CliType
    status: HealthStatus
    checked_at: datetime
    binary_path: str | None = None
    version: str | None = None
    error: str | None = None
    duration_ms: int | None = None
    cancelled: bool = False

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY


class HealthChecker:
    """Probe each CLI type and keep the latest results."""

    def __init__(
        self,
        *,
        resolver: BinaryResolver,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        cli_types: Sequence[CliType] = tuple(CliType),
    ) -> None:
        self.resolver = resolver
        self.timeout_seconds = timeout_seconds
        self.cli_types = tuple(cli_types)
        self._lock = threading.Lock()
        self._results: dict[CliType, CliHealth] = {}

    def check_all(self, stop_event: threading.Event | None = None) -> list[CliHealth]:
        """Probe every configured CLI type and refresh the cache."""

        results = []
        for cli_type in self.cli_types:
            if stop_event is not None and stop_event.is_set():
                break
            results.append(self.check(cli_type, stop_event=stop_event))
        return results

    def check(self, cli_type: CliType, stop_event: threading.Event | None = None) -> CliHealth:
        result = self._probe(cli_type, stop_event)
        if result.cancelled:
            logger.info("CLI %s health check cancelled, keeping previous result", cli_type.value)
            return self.get(cli_type) or result
        with self._lock:
            self._results[cli_type] = result
        logger.info("CLI %s health: %s", cli_type.value, result.status.value)
        return result

    def get(self, cli_type: CliType) -> CliHealth | None:
        with self._lock:
            return self._results.get(cli_type)

    def get_all(self) -> list[CliHealth]:
        with self._lock:
            return [self._results[cli] for cli in self.cli_types if cli in self._results]

    def first_healthy(self, order: Sequence[CliType] = CLI_PREFERENCE) -> CliType | None:
        with self._lock:
            for cli_type in order:
                result = self._results.get(cli_type)
                if result is not None and result.healthy:
                    return cli_type
        return None

    def _probe(self, cli_type: CliType, stop_event: threading.Event | None) -> CliHealth:
        binary = self.resolver.resolve(cli_type)
        if binary is None:
            return CliHealth(
                cli_type=cli_type,
                status=HealthStatus.NOT_FOUND,
                checked_at=utc_now(),
                error=f"{cli_type.value} CLI binary not found",
            )

        argv = [binary, *_PROBE_ARGS[cli_type], HEALTH_CHECK_PROMPT]
        try:
            with tempfile.TemporaryDirectory(prefix="agentdesk_health_") as probe_root:
                probe_dir = Path(probe_root)
                workdir = probe_dir / "work"
                workdir.mkdir()
                outcome = run_process(
                    argv,
                    cwd=workdir,
                    capture_dir=probe_dir,
                    timeout_seconds=self.timeout_seconds,
                    stop_event=stop_event,
                )
        except OSError as error:
            return CliHealth(
                cli_type=cli_type,
                status=HealthStatus.UNHEALTHY,
                checked_at=utc_now(),
                binary_path=binary,
                error=f"Failed to start: {error}",
            )

        error: str | None = None
        if outcome.timed_out:
            error = f"Timed out after {self.timeout_seconds:g}s"
        elif outcome.cancelled:
            error = "Health check was cancelled"
        elif outcome.exit_code != 0:
            error = outcome.stderr.strip() or f"Exited with code {outcome.exit_code}"
        elif not outcome.stdout.strip():
            error = "Empty output"
        if error is not None:
            return CliHealth(
                cli_type=cli_type,
                status=HealthStatus.UNHEALTHY,
                checked_at=utc_now(),
                binary_path=binary,
                error=error,
                duration_ms=outcome.duration_ms,
                cancelled=outcome.cancelled,
            )
        return CliHealth(
            cli_type=cli_type,
            status=HealthStatus.HEALTHY,
            checked_at=utc_now(),
            binary_path=binary,
            version=self._probe_version(binary),
            duration_ms=outcome.duration_ms,
        )

    def _probe_version(self, binary: str) -> str | None:
        try:
            with tempfile.TemporaryDirectory(prefix="agentdesk_version_") as probe_root:
                outcome = run_process(
                    [binary, "--version"],
                    cwd=Path(probe_root),
                    capture_dir=Path(probe_root),
                    timeout_seconds=self.timeout_seconds,
                )
        except OSError:
            return None
        if outcome.exit_code != 0:
            return None
        return parse_version(outcome.stdout)


def parse_version(output: str) -> str | None:
    """Semantic version from ``--version`` output, else its first line."""

    text = output.strip()
    if not text:
        return None
    match = _VERSION_PATTERN.search(text)
    if match is not None:
        return match.group(1)
    return text.splitlines()[0].strip()
