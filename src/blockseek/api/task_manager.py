"""Background runner for reindex tasks, one at a time."""

from __future__ import annotations

import logging
import threading
import traceback
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

logger = logging.getLogger(__name__)


class TaskBusyError(RuntimeError):
    """A task is still running."""


class TaskManager:
    """Runs one task at a time in the background and records its progress.

    Finished tasks stay queryable by id until the process exits.
    """

    def __init__(self) -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="task")
        self._tasks: dict[str, dict[str, Any]] = {}
        self._running: str | None = None
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._running is not None

    def submit(self, name: str, fn: Callable, **kwargs) -> str:
        """Start ``fn(on_progress=..., **kwargs)`` in the background.

        Returns the new task id. Raises TaskBusyError while another task runs.
        """
        with self._lock:
            if self._running is not None:
                raise TaskBusyError(f"Task {self._running} is still running")
            task_id = str(uuid.uuid4())
            self._tasks[task_id] = {
                "id": task_id,
                "name": name,
                "status": "running",
                "progress_events": [],
                "result": None,
                "error": None,
            }
            self._running = task_id

        def on_progress(event: dict) -> None:
            with self._lock:
                self._tasks[task_id]["progress_events"].append(event)

        def run() -> None:
            status, result, error = "completed", None, None
            try:
                result = fn(on_progress=on_progress, **kwargs)
            except Exception:
                logger.exception("Task %s (%s) failed", task_id, name)
                status, error = "failed", traceback.format_exc()
            with self._lock:
                self._tasks[task_id].update(status=status, result=result, error=error)
                self._running = None
            logger.info("Task %s (%s) %s", task_id, name, status)

        self._executor.submit(run)
        return task_id

    def get_status(self, task_id: str) -> dict | None:
        """Snapshot of a task's status, result and progress events."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            return {**task, "progress_events": list(task["progress_events"])}
