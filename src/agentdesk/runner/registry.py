"""In-process registries for active workers and live agent subprocesses."""

from __future__ import annotations

import logging
import subprocess
import threading

logger = logging.getLogger(__name__)


class WorkerRegistry:
    """Keys (workspace or chat ids) that currently have a live worker."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: set[str] = set()

    def try_acquire(self, key: str) -> bool:
        with self._lock:
            if key in self._active:
                return False
            self._active.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._active.discard(key)

    def is_active(self, key: str) -> bool:
        with self._lock:
            return key in self._active

    def active(self) -> set[str]:
        with self._lock:
            return set(self._active)


class ProcessRegistry:
    """Live subprocess handles keyed by task or chat id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._processes: dict[str, subprocess.Popen[bytes]] = {}

    def track(self, key: str, process: subprocess.Popen[bytes]) -> None:
        with self._lock:
            self._processes[key] = process

    def untrack(self, key: str, process: subprocess.Popen[bytes] | None = None) -> None:
        """Forget the handle; with ``process`` given, only if it is still the tracked one."""

        with self._lock:
            if process is not None and self._processes.get(key) is not process:
                return
            self._processes.pop(key, None)

    def kill(self, key: str) -> bool:
        with self._lock:
            process = self._processes.pop(key, None)
        if process is None:
            return False
        _kill(process)
        return True

    def kill_all(self) -> int:
        with self._lock:
            processes = list(self._processes.values())
            self._processes.clear()
        for process in processes:
            _kill(process)
        return len(processes)

    def __len__(self) -> int:
        with self._lock:
            return len(self._processes)


def _kill(process: subprocess.Popen[bytes]) -> None:
    if process.poll() is not None:
        return
    try:
        process.kill()
    except OSError:
        logger.debug("Process %s already gone", process.pid)
