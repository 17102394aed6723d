"""Scheduler that periodically sends a fixed request into a chat session."""

from __future__ import annotations

import logging
import time
from typing import Callable

from gateway.chat_service import ChatService
from gateway.db import Database
from gateway.errors import AIError
from gateway.models import MessageRole, ProviderType, RequestParameters, ScheduledChatTask, TaskBinding
from gateway.scheduler import TaskScheduler

LOGGER = logging.getLogger(__name__)


class ChatTaskScheduler(TaskScheduler[ScheduledChatTask]):
    """Resends ``task.task_request`` to the bound session on every tick."""

    def __init__(
        self,
        task: ScheduledChatTask,
        db: Database,
        chat_service: ChatService,
        binding: TaskBinding | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(task, clock=clock)
        self._db = db
        self._chat_service = chat_service
        self._binding = binding or TaskBinding(task_id=task.id)

    @property
    def binding(self) -> TaskBinding:
        return self._binding

    @property
    def session_id(self) -> str | None:
        return self._binding.session_id

    def initialize(self) -> None:
        """Persist the task, create its session and post the introduction message."""

        task = self.task
        LOGGER.info("Initializing chat task scheduler for task %s", task.id)
        self._db.save_task(task)
        title = task.title or f"Task: {task.task_request[:50]}..."
        session_id = self._db.create_session(
            provider_type=task.provider_type or ProviderType.CLAUDE,
            title=title,
            scheduled_task_id=task.id,
        )
        self._binding.session_id = session_id
        self._db.save_binding(self._binding)
        self._db.append_message(session_id, MessageRole.ASSISTANT, self._intro_message())
        LOGGER.info("Chat task scheduler initialized: task=%s session=%s", task.id, session_id)

    async def on_task_execution(self) -> None:
        session_id = self._binding.session_id
        if session_id is None:
            LOGGER.error("Session ID is not bound for task %s", self.task.id)
            return

        LOGGER.debug("Executing chat task %s in session %s", self.task.id, session_id)
        await self._chat_service.send_message(
            message=self.task.task_request,
            session_id=session_id,
            provider_type=self.task.provider_type or ProviderType.CLAUDE,
            model=self.task.model,
            parameters=RequestParameters(),
        )

    async def on_task_error(self, error: Exception) -> None:
        session_id = self._binding.session_id
        if session_id is None:
            return
        try:
            self._db.append_message(
                session_id, MessageRole.ASSISTANT, self._error_message(AIError.from_exception(error))
            )
        except Exception:  # noqa: BLE001
            LOGGER.exception("Failed to add error message to session %s", session_id)

    def _intro_message(self) -> str:
        return (
            "I am a task scheduler.\n"
            f"Every {format_interval(self.task.interval_seconds)} I will run this task:\n"
            f"{self.task.task_request}"
        )

    def _error_message(self, error: AIError) -> str:
        return (
            "Task execution failed:\n"
            f"{error.message or 'Unknown error'}\n\n"
            f"Next attempt in {format_interval(self.task.interval_seconds)}"
        )


def format_interval(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds} second(s)"
    if seconds < 3600:
        return f"{seconds // 60} minute(s)"
    if seconds < 86400:
        return f"{seconds // 3600} hour(s)"
    return f"{seconds // 86400} day(s)"
