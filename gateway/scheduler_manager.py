"""Owner of all running chat task schedulers."""

from __future__ import annotations

import logging

from gateway.chat_scheduler import ChatTaskScheduler
from gateway.chat_service import ChatService
from gateway.db import Database
from gateway.errors import NotFoundError, ValidationError
from gateway.models import ScheduledChatTask

LOGGER = logging.getLogger(__name__)


class SchedulerManager:
    """Creates, restores, stops and deletes per-task schedulers.

    All methods that start schedulers must run inside the event loop.
    """

    def __init__(self, db: Database, chat_service: ChatService, min_interval_seconds: int = 10) -> None:
        self._db = db
        self._chat_service = chat_service
        self._min_interval_seconds = min_interval_seconds
        self._schedulers: dict[str, ChatTaskScheduler] = {}

    async def create_task(self, task: ScheduledChatTask) -> str:
        """Validate, initialize, start and persist a new task. Returns its id."""

        errors = self._validate(task)
        if errors:
            raise ValidationError(f"Invalid scheduled task {task.id}", errors)

        LOGGER.info("Creating new scheduled task: %s", task.id)
        scheduler = ChatTaskScheduler(task, self._db, self._chat_service)
        try:
            scheduler.initialize()
            scheduler.start()
        except Exception:
            LOGGER.exception("Failed to create task %s; rolling back", task.id)
            scheduler.shutdown()
            self._discard(task.id, scheduler.session_id)
            raise
        self._schedulers[task.id] = scheduler
        LOGGER.info("Scheduled task created and started: %s, session=%s", task.id, scheduler.session_id)
        return task.id

    def start_task(self, task_id: str) -> None:
        LOGGER.info("Starting task: %s", task_id)
        self._require(task_id).start()

    def stop_task(self, task_id: str) -> None:
        LOGGER.info("Stopping task: %s", task_id)
        self._require(task_id).stop()

    async def delete_task(self, task_id: str) -> None:
        """Stop the scheduler and remove the task, its binding and its session."""

        scheduler = self._require(task_id)
        LOGGER.info("Deleting task: %s", task_id)
        scheduler.shutdown()
        await scheduler.wait_closed()
        del self._schedulers[task_id]

        self._discard(task_id, scheduler.session_id)
        LOGGER.info("Task deleted: %s", task_id)

    def get_task(self, task_id: str) -> ScheduledChatTask | None:
        scheduler = self._schedulers.get(task_id)
        return scheduler.task if scheduler else None

    def get_scheduler(self, task_id: str) -> ChatTaskScheduler | None:
        return self._schedulers.get(task_id)

    def list_tasks(self) -> list[ScheduledChatTask]:
        return [scheduler.task for scheduler in self._schedulers.values()]

    def get_task_by_session_id(self, session_id: str) -> ScheduledChatTask | None:
        for scheduler in self._schedulers.values():
            if scheduler.session_id == session_id:
                return scheduler.task
        return None

    async def load_all_tasks(self) -> int:
        """Restore persisted tasks and start them. Returns how many were restored."""

        LOGGER.info("Loading all scheduled tasks...")
        restored = 0
        for task in self._db.load_all_tasks():
            if task.id in self._schedulers:
                continue
            try:
                binding = self._db.get_binding(task.id)
                scheduler = ChatTaskScheduler(task, self._db, self._chat_service, binding=binding)
                if binding.session_id is None or not self._session_exists(binding.session_id):
                    LOGGER.warning("Task %s has no session; creating a new one", task.id)
                    scheduler.initialize()
                scheduler.start()
            except Exception:  # noqa: BLE001
                LOGGER.exception("Failed to restore task %s", task.id)
                continue
            self._schedulers[task.id] = scheduler
            restored += 1
        LOGGER.info("Loaded %d scheduled tasks", restored)
        return restored

    async def shutdown(self) -> None:
        LOGGER.info("Shutting down SchedulerManager...")
        for scheduler in list(self._schedulers.values()):
            try:
                scheduler.shutdown()
                await scheduler.wait_closed()
                self._db.save_task(scheduler.task)
                self._db.save_binding(scheduler.binding)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Failed to shut down scheduler %s", scheduler.task.id)
        self._schedulers.clear()
        LOGGER.info("SchedulerManager shutdown complete")

    def _validate(self, task: ScheduledChatTask) -> list[str]:
        errors: list[str] = []
        if not task.task_request.strip():
            errors.append("Task request must not be empty")
        if task.interval_seconds <= 0:
            errors.append("Interval must be positive")
        elif task.interval_seconds < self._min_interval_seconds:
            errors.append(f"Interval must be at least {self._min_interval_seconds} seconds")
        if task.id in self._schedulers:
            errors.append(f"Task {task.id} already exists")
        return errors

    def _session_exists(self, session_id: str) -> bool:
        try:
            self._db.get_session(session_id)
        except NotFoundError:
            return False
        return True

    def _discard(self, task_id: str, session_id: str | None) -> None:
        self._db.delete_task(task_id)
        if session_id is not None:
            self._db.delete_session(session_id)

    def _require(self, task_id: str) -> ChatTaskScheduler:
        scheduler = self._schedulers.get(task_id)
        if scheduler is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return scheduler
