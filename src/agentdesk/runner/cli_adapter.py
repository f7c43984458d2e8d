"""Subprocess-based adapter that runs one agent CLI invocation."""

from __future__ import annotations

import json
import logging
import tempfile
import time
from pathlib import Path
from uuid import uuid4

from pydantic import ValidationError

from agentdesk.models import CliType
from agentdesk.runner.base import (
    FailureKind,
    InvocationFailure,
    InvocationKind,
    InvocationRequest,
    InvocationResult,
    InvocationStage,
)
from agentdesk.runner.binaries import BinaryResolver
from agentdesk.runner.process import ProcessOutcome, run_process
from agentdesk.runner.prompts import invocation_prompt
from agentdesk.runner.schemas import OUTPUT_MODELS, output_schema_json, unwrap_payload

logger = logging.getLogger(__name__)


class CliInvocationAdapter:
    """Write the input file, run the CLI, validate what it printed.

    Every failure comes back as an ``InvocationResult`` with ``failure`` set;
    nothing is raised to the caller. Scratch files live in a temporary
    directory removed on every exit path; the working directory is left alone.
    """

    def __init__(self, *, resolver: BinaryResolver, scratch_root: Path | None = None) -> None:
        self.resolver = resolver
        self.scratch_root = scratch_root

    def invoke(self, request: InvocationRequest) -> InvocationResult:
        started = time.monotonic()
        binary = self.resolver.resolve(request.cli_type)
        if binary is None:
            return _failed(
                started,
                InvocationStage.RESOLVE,
                FailureKind.BINARY_NOT_FOUND,
                f"{request.cli_type.value} CLI binary not found. Install it, set its path "
                "with `agentdesk config set-cli-path` or the "
                f"AGENTDESK_{request.cli_type.value.upper()}_PATH environment variable.",
            )
        if not request.working_dir.is_dir():
            return _failed(
                started,
                InvocationStage.SPAWN,
                FailureKind.IO_ERROR,
                f"Working directory does not exist: {request.working_dir}",
            )
        if request.stop_event is not None and request.stop_event.is_set():
            return _failed(
                started,
                InvocationStage.SPAWN,
                FailureKind.CANCELLED,
                "Processing was cancelled",
            )

        with tempfile.TemporaryDirectory(prefix="agentdesk_run_", dir=self.scratch_root) as scratch:
            scratch_dir = Path(scratch)
            input_path = scratch_dir / f"input_{uuid4().hex}.md"
            try:
                input_path.write_text(request.input_text, "utf-8")
                argv = build_argv(
                    cli_type=request.cli_type,
                    binary=binary,
                    kind=request.kind,
                    input_path=input_path,
                    scratch_dir=scratch_dir,
                )
            except OSError as error:
                return _failed(
                    started,
                    InvocationStage.SPAWN,
                    FailureKind.IO_ERROR,
                    f"Could not write input file: {error}",
                )

            try:
                outcome = run_process(
                    argv,
                    cwd=request.working_dir,
                    capture_dir=scratch_dir,
                    timeout_seconds=request.timeout_seconds,
                    stop_event=request.stop_event,
                    on_process=request.on_process,
                    should_stop=request.should_stop,
                )
            except FileNotFoundError:
                return _failed(
                    started,
                    InvocationStage.SPAWN,
                    FailureKind.BINARY_NOT_FOUND,
                    f"{request.cli_type.value} CLI binary not found: {binary}",
                )
            except OSError as error:
                return _failed(
                    started,
                    InvocationStage.SPAWN,
                    FailureKind.SPAWN_ERROR,
                    f"CLI failed to start: {error}",
                )
            return _interpret(request.kind, outcome)


def build_argv(
    *,
    cli_type: CliType,
    binary: str,
    kind: InvocationKind,
    input_path: Path,
    scratch_dir: Path,
) -> list[str]:
    """Command line for one invocation; the prompt is always the last argument."""

    prompt = invocation_prompt(str(input_path))
    if cli_type == CliType.CLAUDE:
        return [
            binary,
            "--print",
            "--dangerously-skip-permissions",
            "--output-format",
            "json",
            "--json-schema",
            output_schema_json(kind),
            prompt,
        ]
    if cli_type == CliType.CODEX:
        schema_path = scratch_dir / "output_schema.json"
        schema_path.write_text(output_schema_json(kind), "utf-8")
        return [
            binary,
            "exec",
            "--dangerously-bypass-approvals-and-sandbox",
            "--output-schema",
            str(schema_path),
            prompt,
        ]
    if cli_type == CliType.GEMINI:
        return [binary, "--yolo", "--prompt", prompt]
    return [binary, "run", prompt]


def _interpret(kind: InvocationKind, outcome: ProcessOutcome) -> InvocationResult:
    def failed(stage: InvocationStage, failure_kind: FailureKind, message: str) -> InvocationResult:
        return InvocationResult(
            exit_code=outcome.exit_code,
            duration_ms=outcome.duration_ms,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            failure=InvocationFailure(stage=stage, kind=failure_kind, message=message),
        )

    if outcome.cancelled:
        return failed(InvocationStage.WAIT, FailureKind.CANCELLED, "Processing was cancelled")
    if outcome.timed_out:
        return failed(
            InvocationStage.WAIT,
            FailureKind.TIMEOUT,
            f"CLI timed out after {outcome.duration_ms / 1000:.1f}s",
        )
    if outcome.exit_code != 0:
        message = outcome.stderr.strip() or f"CLI exited with code {outcome.exit_code}"
        return failed(InvocationStage.WAIT, FailureKind.NON_ZERO_EXIT, message)

    text = outcome.stdout.strip()
    if not text:
        return failed(InvocationStage.PARSE, FailureKind.EMPTY_OUTPUT, "CLI output was empty")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as error:
        return failed(
            InvocationStage.PARSE,
            FailureKind.INVALID_JSON,
            f"CLI output was not valid JSON: {error}",
        )

    try:
        parsed = OUTPUT_MODELS[kind].model_validate(unwrap_payload(payload))
    except ValidationError as error:
        return failed(
            InvocationStage.VALIDATE,
            FailureKind.SCHEMA_VIOLATION,
            f"CLI output structure was invalid: {_summarize_validation(error)}",
        )

    return InvocationResult(
        exit_code=outcome.exit_code,
        duration_ms=outcome.duration_ms,
        stdout=outcome.stdout,
        stderr=outcome.stderr,
        parsed_output=parsed,
    )


def _failed(
    started: float,
    stage: InvocationStage,
    kind: FailureKind,
    message: str,
) -> InvocationResult:
    logger.debug("Invocation failed at %s: %s", stage.value, message)
    return InvocationResult(
        exit_code=None,
        duration_ms=int((time.monotonic() - started) * 1000),
        failure=InvocationFailure(stage=stage, kind=kind, message=message),
    )


def _summarize_validation(error: ValidationError) -> str:
    parts = []
    for item in error.errors()[:5]:
        location = ".".join(str(part) for part in item["loc"]) or "<root>"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)
