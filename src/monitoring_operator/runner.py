"""Outer driver for the reconciliation tasks.

Each pass runs every selected task once. Tasks are independent of each
other, so a pass runs them concurrently, each in a worker thread since
the resource client is blocking. A failing task never stops the others;
its error is reported and the task is retried from scratch on the next
pass.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .config import DEFAULT_RECONCILE_INTERVAL_SECONDS
from .errors import ReconcileError
from .task import Task

logger = logging.getLogger(__name__)


class UnknownTaskError(KeyError):
    """Raised when a requested task name is not registered."""


@dataclass
class TaskResult:
    """Outcome of one task in one pass."""

    task: str
    duration_seconds: float
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class RunReport:
    """Outcome of one pass over the selected tasks."""

    results: dict[str, TaskResult] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return all(r.succeeded for r in self.results.values())

    @property
    def failed(self) -> list[str]:
        return [name for name, r in self.results.items() if not r.succeeded]

    def errors(self) -> dict[str, Exception]:
        return {name: r.error for name, r in self.results.items() if r.error is not None}


class TaskRunner:
    """Runs registered tasks once, or in a loop until shutdown.

    Args:
        tasks: Tasks to register, keyed by their name.
        interval_seconds: Delay between passes in run().
        cancel_event: Shared with the executors. Set on shutdown so that
            readiness waits in progress return early.
    """

    def __init__(
        self,
        tasks: Iterable[Task],
        interval_seconds: float = DEFAULT_RECONCILE_INTERVAL_SECONDS,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._tasks: dict[str, Task] = {}
        for task in tasks:
            if task.name in self._tasks:
                raise ValueError(f"Duplicate task name: {task.name}")
            self._tasks[task.name] = task
        self._interval_seconds = interval_seconds
        self._cancel_event = cancel_event or threading.Event()
        self._shutdown_event = asyncio.Event()
        self._consecutive_failures: dict[str, int] = {name: 0 for name in self._tasks}

    @property
    def task_names(self) -> list[str]:
        return list(self._tasks)

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel_event

    def consecutive_failures(self, name: str) -> int:
        return self._consecutive_failures[name]

    def _select(self, names: Iterable[str] | None) -> list[Task]:
        if names is None:
            return list(self._tasks.values())
        selected = []
        for name in names:
            if name not in self._tasks:
                raise UnknownTaskError(name)
            selected.append(self._tasks[name])
        return selected

    async def _run_task(self, task: Task) -> TaskResult:
        start = time.monotonic()
        try:
            await asyncio.to_thread(task.run)
        except ReconcileError as e:
            return TaskResult(task.name, time.monotonic() - start, e)
        except Exception as e:
            # A bug in one task must not take down the loop
            logger.exception("Task raised unexpectedly", extra={"task": task.name})
            return TaskResult(task.name, time.monotonic() - start, e)
        return TaskResult(task.name, time.monotonic() - start)

    async def run_once(self, names: Iterable[str] | None = None) -> RunReport:
        """Run the selected tasks (all by default) concurrently, once.

        Raises:
            UnknownTaskError: If a name is not registered.
        """
        selected = self._select(names)
        results = await asyncio.gather(*(self._run_task(task) for task in selected))
        report = RunReport()
        for result in results:
            report.results[result.task] = result
            self._record(result)
        return report

    def _record(self, result: TaskResult) -> None:
        extra: dict[str, Any] = {
            "task": result.task,
            "duration_seconds": round(result.duration_seconds, 3),
        }
        if result.error is None:
            self._consecutive_failures[result.task] = 0
            logger.info("Task succeeded", extra=extra)
            return

        self._consecutive_failures[result.task] += 1
        extra["error"] = str(result.error)
        extra["error_type"] = type(result.error).__name__
        extra["consecutive_failures"] = self._consecutive_failures[result.task]
        logger.error("Task failed", extra=extra)

    async def run(self) -> None:
        """Run passes at the configured interval until shutdown()."""
        logger.info(
            "Starting task runner",
            extra={"tasks": self.task_names, "interval_seconds": self._interval_seconds},
        )

        while not self._shutdown_event.is_set():
            await self.run_once()

            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(), timeout=self._interval_seconds
                )
            except TimeoutError:
                # Normal timeout, continue to next pass
                pass

        logger.info("Task runner shutdown complete")

    def shutdown(self) -> None:
        """Stop the loop and cancel readiness waits in progress."""
        logger.info("Shutdown requested")
        self._cancel_event.set()
        self._shutdown_event.set()
