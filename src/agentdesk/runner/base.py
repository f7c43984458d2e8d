"""Invocation contracts shared by the CLI adapter and its callers."""

from __future__ import annotations

import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel

from agentdesk.models import CliType


class InvocationKind(str, Enum):
    """Which output schema an invocation must satisfy."""

    TASK = "task"
    CHAT = "chat"


class InvocationStage(str, Enum):
    """Adapter pipeline stages, in execution order."""

    RESOLVE = "resolve"
    SPAWN = "spawn"
    WAIT = "wait"
    PARSE = "parse"
    VALIDATE = "validate"


class FailureKind(str, Enum):
    """Normalized invocation failure classes."""

    BINARY_NOT_FOUND = "binary_not_found"
    IO_ERROR = "io_error"
    SPAWN_ERROR = "spawn_error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    NON_ZERO_EXIT = "non_zero_exit"
    EMPTY_OUTPUT = "empty_output"
    INVALID_JSON = "invalid_json"
    SCHEMA_VIOLATION = "schema_violation"


@dataclass(slots=True)
class InvocationFailure:
    stage: InvocationStage
    kind: FailureKind
    message: str


@dataclass(slots=True)
class InvocationRequest:
    """One agent CLI run."""

    cli_type: CliType
    kind: InvocationKind
    input_text: str
    working_dir: Path
    stop_event: threading.Event | None = None
    timeout_seconds: float | None = None
    on_process: Callable[[subprocess.Popen[bytes]], None] | None = None
    should_stop: Callable[[], bool] | None = None


@dataclass(slots=True)
class InvocationResult:
    """Outcome of one agent CLI run; ``failure`` is None on success."""

    exit_code: int | None
    duration_ms: int
    stdout: str = ""
    stderr: str = ""
    parsed_output: BaseModel | None = None
    failure: InvocationFailure | None = None

    @property
    def success(self) -> bool:
        return self.failure is None

    @property
    def error(self) -> str | None:
        return self.failure.message if self.failure is not None else None

    @property
    def cancelled(self) -> bool:
        return self.failure is not None and self.failure.kind == FailureKind.CANCELLED


class CliInvoker(Protocol):
    """Runs an agent CLI and never raises past its boundary."""

    def invoke(self, request: InvocationRequest) -> InvocationResult: ...
