"""Background tasks for long-running operations."""

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from vmdeck.exceptions import OperationError

logger = logging.getLogger(__name__)


class BackgroundTask:
    """A task that runs in the background."""

    def __init__(
        self,
        func: Callable[[], Any],
        description: str = "",
        on_success: Callable[[Any], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ):
        self.func = func
        self.description = description
        self.on_success = on_success
        self.on_error = on_error
        self.result: Any = None
        self.error: Exception | None = None
        self.started_at: float | None = None
        self._done = threading.Event()
        self.thread: threading.Thread | None = None

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def start(self) -> None:
        """Start the task in a background thread."""
        self.started_at = time.monotonic()
        self.thread = threading.Thread(target=self._run, name=self.description or None, daemon=True)
        self.thread.start()

    def _run(self) -> None:
        try:
            self.result = self.func()
        except Exception as e:
            logger.exception("Task failed: %s", self.description)
            self.error = e
        finally:
            self._done.set()

    def check(self) -> bool:
        """Check if task is done and call callbacks. Returns True if done."""
        if not self.done:
            return False
        if self.error is not None:
            if self.on_error:
                self.on_error(self.error)
        elif self.on_success:
            self.on_success(self.result)
        return True


class TaskRunner:
    """Tracks submitted tasks; the UI loop calls ``poll`` on every tick."""

    def __init__(self) -> None:
        self.tasks: list[BackgroundTask] = []

    def submit(
        self,
        func: Callable[[], Any],
        description: str = "",
        on_success: Callable[[Any], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> BackgroundTask:
        task = BackgroundTask(func, description, on_success, on_error)
        self.tasks.append(task)
        task.start()
        logger.info("Started task: %s", description)
        return task

    def poll(self) -> list[BackgroundTask]:
        """Run callbacks of finished tasks and forget them."""
        completed = [task for task in self.tasks if task.check()]
        for task in completed:
            self.tasks.remove(task)
        return completed

    def wait(
        self,
        task: BackgroundTask,
        poll_interval: float = 1.0,
        timeout: float | None = None,
    ) -> Any:
        """Block until ``task`` finishes and return its result or raise its error."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while not task._done.wait(poll_interval):
            if deadline is not None and time.monotonic() >= deadline:
                raise OperationError(task.description or "Task", f"timed out after {timeout:.0f}s")
        if task in self.tasks:
            self.tasks.remove(task)
        if task.error is not None:
            raise task.error
        return task.result

    @property
    def pending(self) -> int:
        return sum(1 for task in self.tasks if not task.done)
