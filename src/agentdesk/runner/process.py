"""Subprocess primitive with timeout race and cooperative abort."""

from __future__ import annotations

import subprocess
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

POLL_INTERVAL_SECONDS = 0.1
SHOULD_STOP_EVERY_POLLS = 5


@dataclass(slots=True)
class ProcessOutcome:
    """Exit status and captured output of one subprocess run."""

    exit_code: int | None
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    cancelled: bool = False


def run_process(  # noqa: PLR0913
    argv: Sequence[str],
    *,
    cwd: Path,
    capture_dir: Path,
    timeout_seconds: float | None = None,
    stop_event: threading.Event | None = None,
    on_process: Callable[[subprocess.Popen[bytes]], None] | None = None,
    should_stop: Callable[[], bool] | None = None,
    should_stop_every: int = SHOULD_STOP_EVERY_POLLS,
) -> ProcessOutcome:
    """Run ``argv`` until it exits, times out or is cancelled.

    Cancellation comes from ``stop_event`` or from ``should_stop``, which is
    polled every ``should_stop_every`` wait intervals and may hit the database.
    Output goes to files under ``capture_dir`` so a chatty child can never
    block on a full pipe. Spawn errors (``OSError``) propagate to the caller.
    """

    stdout_path = capture_dir / "stdout.log"
    stderr_path = capture_dir / "stderr.log"
    start_monotonic = time.monotonic()
    timed_out = False
    cancelled = False

    with stdout_path.open("wb") as stdout_handle, stderr_path.open("wb") as stderr_handle:
        process = subprocess.Popen(  # noqa: S603
            list(argv),
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=stdout_handle,
            stderr=stderr_handle,
        )
        if on_process is not None:
            on_process(process)

        polls = 0
        while True:
            try:
                process.wait(timeout=POLL_INTERVAL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                pass
            polls += 1
            if stop_event is not None and stop_event.is_set():
                cancelled = True
                kill_process(process)
                break
            if should_stop is not None and polls % should_stop_every == 0 and should_stop():
                cancelled = True
                kill_process(process)
                break
            elapsed = time.monotonic() - start_monotonic
            if timeout_seconds is not None and elapsed >= timeout_seconds:
                timed_out = True
                kill_process(process)
                break

    return ProcessOutcome(
        exit_code=process.returncode,
        stdout=_read_text(stdout_path),
        stderr=_read_text(stderr_path),
        duration_ms=int((time.monotonic() - start_monotonic) * 1000),
        timed_out=timed_out,
        cancelled=cancelled,
    )


def kill_process(process: subprocess.Popen[bytes]) -> None:
    """Force-kill the process and reap it."""

    try:
        process.kill()
    except OSError:
        return
    try:
        process.wait(timeout=5)
    except subprocess.TimeoutExpired:
        return


def _read_text(path: Path) -> str:
    try:
        return path.read_bytes().decode("utf-8", errors="replace")
    except OSError:
        return ""
