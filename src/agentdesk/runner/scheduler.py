"""Background job scheduler with a single shared stop signal."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from agentdesk.runner.chat_processor import ChatProcessor
from agentdesk.runner.cleanup import RetentionCleanup
from agentdesk.runner.health import HealthChecker
from agentdesk.runner.task_processor import TaskProcessor

logger = logging.getLogger(__name__)

JobTarget = Callable[[threading.Event], object]


class IntervalJob:
    """Fire ``target`` every ``interval_seconds`` until the stop event is set.

    Each firing runs in its own daemon thread, so a slow run never delays the
    next tick; the target is expected to cope with overlapping runs.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        name: str,
        interval_seconds: float,
        target: JobTarget,
        stop_event: threading.Event,
        run_immediately: bool = False,
    ) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self.target = target
        self.run_immediately = run_immediately
        self._stop_event = stop_event
        self._timer_thread: threading.Thread | None = None

    def start(self) -> None:
        self._timer_thread = threading.Thread(
            target=self._loop,
            name=f"{self.name}-timer",
            daemon=True,
        )
        self._timer_thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._timer_thread is not None:
            self._timer_thread.join(timeout=timeout)
            self._timer_thread = None

    def _loop(self) -> None:
        if self.run_immediately:
            self._dispatch()
        while not self._stop_event.wait(timeout=self.interval_seconds):
            self._dispatch()

    def _dispatch(self) -> None:
        threading.Thread(target=self._run_target, name=f"{self.name}-run", daemon=True).start()

    def _run_target(self) -> None:
        try:
            self.target(self._stop_event)
        except Exception:
            logger.exception("Job %s failed", self.name)


class JobScheduler:
    """Owns the health-check, task, chat and cleanup jobs for one process."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        task_processor: TaskProcessor,
        chat_processor: ChatProcessor,
        health_checker: HealthChecker,
        cleanup: RetentionCleanup,
        poll_interval_seconds: float = 1.0,
        health_check_interval_seconds: float = 300.0,
        cleanup_interval_seconds: float = 86_400.0,
    ) -> None:
        self.task_processor = task_processor
        self.chat_processor = chat_processor
        self.health_checker = health_checker
        self.cleanup = cleanup
        self.poll_interval_seconds = poll_interval_seconds
        self.health_check_interval_seconds = health_check_interval_seconds
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self._lock = threading.Lock()
        self._stop_event: threading.Event | None = None
        self._jobs: list[IntervalJob] = []

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._stop_event is not None

    def start(self) -> bool:
        """Start every job; False when already running."""

        with self._lock:
            if self._stop_event is not None:
                return False
            stop_event = threading.Event()
            self._jobs = [
                IntervalJob(
                    name="health-check",
                    interval_seconds=self.health_check_interval_seconds,
                    target=self.health_checker.check_all,
                    stop_event=stop_event,
                    run_immediately=True,
                ),
                IntervalJob(
                    name="task-processor",
                    interval_seconds=self.poll_interval_seconds,
                    target=self.task_processor.run_once,
                    stop_event=stop_event,
                ),
                IntervalJob(
                    name="chat-processor",
                    interval_seconds=self.poll_interval_seconds,
                    target=self.chat_processor.run_once,
                    stop_event=stop_event,
                ),
                IntervalJob(
                    name="cleanup",
                    interval_seconds=self.cleanup_interval_seconds,
                    target=lambda _stop: self.cleanup.run(),
                    stop_event=stop_event,
                ),
            ]
            for job in self._jobs:
                job.start()
            self._stop_event = stop_event
        logger.info("Background jobs started")
        return True

    def stop(self) -> bool:
        """Signal every job, kill tracked subprocesses; False when not running."""

        with self._lock:
            if self._stop_event is None:
                return False
            self._stop_event.set()
            for job in self._jobs:
                job.join(timeout=5)
            self._jobs = []
            killed = self.task_processor.kill_all_processes()
            killed += self.chat_processor.kill_all_processes()
            self._stop_event = None
        logger.info("Background jobs stopped, killed %d agent process(es)", killed)
        return True
