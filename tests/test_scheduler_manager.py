from unittest.mock import AsyncMock, MagicMock

import pytest

from gateway.db import Database
from gateway.errors import DatabaseError, NotFoundError, ValidationError
from gateway.models import ScheduledChatTask
from gateway.scheduler_manager import SchedulerManager


def _manager(tmp_path):  # noqa: ANN001, ANN202
    db = Database(tmp_path / "gateway.db")
    db.initialize()
    chat_service = MagicMock()
    chat_service.send_message = AsyncMock()
    return SchedulerManager(db, chat_service, min_interval_seconds=10), db


def _task(**kwargs) -> ScheduledChatTask:  # noqa: ANN003
    defaults = {"task_request": "ping", "interval_seconds": 60}
    defaults.update(kwargs)
    return ScheduledChatTask(**defaults)


@pytest.mark.asyncio
async def test_create_task_starts_and_persists(tmp_path):
    manager, db = _manager(tmp_path)
    task = _task()

    task_id = await manager.create_task(task)

    scheduler = manager.get_scheduler(task_id)
    assert scheduler.is_running
    assert manager.get_task(task_id) == task
    assert manager.list_tasks() == [task]
    assert db.load_all_tasks() == [task]
    assert db.get_binding(task_id).session_id == scheduler.session_id
    assert manager.get_task_by_session_id(scheduler.session_id) == task
    await manager.shutdown()


@pytest.mark.asyncio
async def test_interval_below_minimum_is_rejected(tmp_path):
    manager, db = _manager(tmp_path)

    with pytest.raises(ValidationError) as excinfo:
        await manager.create_task(_task(interval_seconds=5))

    assert excinfo.value.errors == ["Interval must be at least 10 seconds"]
    assert db.load_all_tasks() == []
    assert db.list_session_ids() == []


@pytest.mark.asyncio
async def test_empty_request_is_rejected(tmp_path):
    manager, _ = _manager(tmp_path)

    with pytest.raises(ValidationError) as excinfo:
        await manager.create_task(_task(task_request="  "))

    assert "Task request must not be empty" in excinfo.value.errors


@pytest.mark.asyncio
async def test_stop_and_start_task(tmp_path):
    manager, _ = _manager(tmp_path)
    task_id = await manager.create_task(_task())

    manager.stop_task(task_id)
    assert not manager.get_scheduler(task_id).is_running

    manager.start_task(task_id)
    assert manager.get_scheduler(task_id).is_running
    await manager.shutdown()


@pytest.mark.asyncio
async def test_unknown_task_raises_not_found(tmp_path):
    manager, _ = _manager(tmp_path)

    with pytest.raises(NotFoundError, match="missing"):
        manager.stop_task("missing")
    with pytest.raises(NotFoundError):
        manager.start_task("missing")
    with pytest.raises(NotFoundError):
        await manager.delete_task("missing")
    assert manager.get_task("missing") is None


@pytest.mark.asyncio
async def test_delete_task_removes_task_and_session(tmp_path):
    manager, db = _manager(tmp_path)
    task_id = await manager.create_task(_task())
    session_id = manager.get_scheduler(task_id).session_id

    await manager.delete_task(task_id)

    assert manager.list_tasks() == []
    assert db.load_all_tasks() == []
    with pytest.raises(NotFoundError):
        db.get_session(session_id)


@pytest.mark.asyncio
async def test_load_all_tasks_restores_bindings_without_new_sessions(tmp_path):
    manager, db = _manager(tmp_path)
    task_id = await manager.create_task(_task())
    session_id = manager.get_scheduler(task_id).session_id
    await manager.shutdown()

    restored_manager = SchedulerManager(db, MagicMock(), min_interval_seconds=10)
    restored = await restored_manager.load_all_tasks()

    assert restored == 1
    scheduler = restored_manager.get_scheduler(task_id)
    assert scheduler.is_running
    assert scheduler.session_id == session_id
    assert db.list_session_ids() == [session_id]
    await restored_manager.shutdown()


@pytest.mark.asyncio
async def test_shutdown_stops_every_scheduler(tmp_path):
    manager, db = _manager(tmp_path)
    first = await manager.create_task(_task())
    second = await manager.create_task(_task(task_request="pong"))
    schedulers = [manager.get_scheduler(first), manager.get_scheduler(second)]

    await manager.shutdown()

    assert not any(scheduler.is_running for scheduler in schedulers)
    assert manager.list_tasks() == []
    assert {task.id for task in db.load_all_tasks()} == {first, second}


class FailingSessionDatabase(Database):
    def create_session(self, *args, **kwargs):  # noqa: ANN002, ANN003, ANN201
        raise DatabaseError("disk full")


@pytest.mark.asyncio
async def test_failed_create_leaves_nothing_persisted(tmp_path):
    db = FailingSessionDatabase(tmp_path / "gateway.db")
    db.initialize()
    manager = SchedulerManager(db, MagicMock(), min_interval_seconds=10)
    task = _task()

    with pytest.raises(DatabaseError, match="disk full"):
        await manager.create_task(task)

    assert manager.list_tasks() == []
    assert db.load_all_tasks() == []
    assert db.get_binding(task.id).session_id is None


@pytest.mark.asyncio
async def test_load_all_tasks_gives_unbound_task_a_session(tmp_path):
    manager, db = _manager(tmp_path)
    task = _task()
    db.save_task(task)

    assert await manager.load_all_tasks() == 1

    scheduler = manager.get_scheduler(task.id)
    assert scheduler.session_id is not None
    assert db.get_binding(task.id).session_id == scheduler.session_id
    assert db.get_messages(scheduler.session_id)[0].role.value == "assistant"
    await manager.shutdown()
