"""Async recurring scheduler driving one task."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Generic, Protocol, TypeVar

LOGGER = logging.getLogger(__name__)


class ScheduledTask(Protocol):
    """What a scheduler needs to know about the task it drives."""

    @property
    def id(self) -> str: ...

    @property
    def interval_seconds(self) -> float: ...

    @property
    def execute_immediately(self) -> bool: ...


TaskT = TypeVar("TaskT", bound=ScheduledTask)


class TaskScheduler(ABC, Generic[TaskT]):
    """Runs ``on_task_execution`` every ``task.interval_seconds`` until stopped.

    Each scheduler owns one asyncio task, so schedulers never block each other.
    Ticks are sequential: the next wait starts only after the previous body and
    its error handling have finished. A failing tick is routed to
    ``on_task_error`` and the schedule carries on; there is no backoff and no
    failure limit.
    """

    def __init__(self, task: TaskT, clock: Callable[[], float] = time.time) -> None:
        self._task = task
        self._clock = clock
        self._running = False
        self._closed = False
        self._stop_event = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self._next_execution_time = 0

    @property
    def task(self) -> TaskT:
        return self._task

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def next_execution_time(self) -> int:
        """Wall-clock milliseconds of the next tick, 0 when not running."""

        return self._next_execution_time

    def start(self) -> None:
        """Start the loop. Must be called from inside a running event loop."""

        if self._closed:
            raise RuntimeError(f"Scheduler for task {self._task.id} has been shut down")
        if self._running:
            LOGGER.warning("Scheduler for task %s is already running", self._task.id)
            return

        LOGGER.info("Starting scheduler for task %s", self._task.id)
        self._running = True
        # One event per run; an earlier run's loop only ever sees its own.
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.get_running_loop().create_task(
            self._run(self._stop_event), name=f"task-scheduler-{self._task.id}"
        )

    def stop(self) -> None:
        if not self._running:
            LOGGER.warning("Scheduler for task %s is not running", self._task.id)
            return

        LOGGER.info("Stopping scheduler for task %s", self._task.id)
        self._running = False
        self._stop_event.set()
        if self._loop_task is not None:
            self._loop_task.cancel()
        self._next_execution_time = 0

    def shutdown(self) -> None:
        """Stop and close the scheduler; it cannot be started again."""

        if self._running:
            self.stop()
        self._closed = True

    async def wait_closed(self) -> None:
        """Wait until the loop task of the latest run has finished."""

        if self._loop_task is not None:
            await asyncio.wait({self._loop_task})

    def seconds_until_next_execution(self) -> int:
        if not self._running or self._next_execution_time == 0:
            return 0
        remaining = (self._next_execution_time - int(self._clock() * 1000)) // 1000
        return max(0, remaining)

    async def _run(self, stop_event: asyncio.Event) -> None:
        try:
            if self._task.execute_immediately and not stop_event.is_set():
                LOGGER.debug("Executing task %s immediately", self._task.id)
                await self._execute_task()

            while not stop_event.is_set():
                interval = self._task.interval_seconds
                self._next_execution_time = int(self._clock() * 1000 + interval * 1000)
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
                if not stop_event.is_set():
                    await self._execute_task()
        except asyncio.CancelledError:
            LOGGER.info("Scheduler for task %s was cancelled", self._task.id)
            raise
        except Exception:  # noqa: BLE001
            LOGGER.exception("Scheduler for task %s failed", self._task.id)

    async def _execute_task(self) -> None:
        try:
            LOGGER.debug("Executing task %s", self._task.id)
            await self.on_task_execution()
            LOGGER.debug("Task %s executed successfully", self._task.id)
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("Task %s execution failed: %s", self._task.id, exc)
            try:
                await self.on_task_error(exc)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Error handler for task %s failed", self._task.id)

    @abstractmethod
    async def on_task_execution(self) -> None:
        """Body of one tick."""

    async def on_task_error(self, error: Exception) -> None:
        """Handle a failed tick. Logs only by default."""

        LOGGER.error("Error in task %s: %s", self._task.id, error)
