from pathlib import Path

import pytest

from sheen.exceptions import PlanPersistenceError
from sheen.models import Task, TaskError, TaskResult
from sheen.plan_store import MemoryPlanStore, PlanStore, SqlitePlanStore
from sheen.planner import TaskPlanner


def _sample_tasks() -> list[Task]:
    done = Task(
        id="task_1",
        description="Scaffold project",
        status="completed",
        priority="high",
        phase="planning",
        attempts=1,
        result=TaskResult(success=True, output="ok", files_modified=["a.py"], commits=["abc1234"]),
    )
    failing = Task(
        id="task_2",
        description="Fix build",
        status="failed",
        dependencies=["task_1"],
        attempts=2,
        errors=[TaskError(message="exit 2", recoverable=False, code="BUILD")],
    )
    pending = Task(id="task_3", description="Write docs", priority="low")
    return [done, failing, pending]


def test_stores_satisfy_protocol(tmp_path: Path):
    assert isinstance(MemoryPlanStore(), PlanStore)
    assert isinstance(SqlitePlanStore(tmp_path / "plan.db"), PlanStore)


@pytest.mark.asyncio
async def test_memory_store_does_not_alias_tasks():
    store = MemoryPlanStore()
    tasks = _sample_tasks()
    await store.write_all(tasks)

    tasks[0].description = "mutated"
    loaded = await store.read_all()

    assert loaded[0].description == "Scaffold project"
    assert await store.exists() is True


@pytest.mark.asyncio
async def test_sqlite_round_trip_preserves_fields_and_order(tmp_path: Path):
    store = SqlitePlanStore(tmp_path / "state" / "plan.db")
    tasks = _sample_tasks()
    try:
        assert await store.exists() is False
        await store.write_all(tasks)
        loaded = await store.read_all()
    finally:
        await store.close()

    assert [task.to_dict() for task in loaded] == [task.to_dict() for task in tasks]


@pytest.mark.asyncio
async def test_sqlite_write_replaces_previous_queue(tmp_path: Path):
    store = SqlitePlanStore(tmp_path / "plan.db")
    try:
        await store.write_all(_sample_tasks())
        await store.write_all([Task(id="only", description="Only task")])
        loaded = await store.read_all()
    finally:
        await store.close()

    assert [task.id for task in loaded] == ["only"]


@pytest.mark.asyncio
async def test_sqlite_plan_survives_reopen(tmp_path: Path):
    db_path = tmp_path / "plan.db"
    first = TaskPlanner(SqlitePlanStore(db_path))
    await first.create_plan("Persisted prompt")
    await first.store.close()

    store = SqlitePlanStore(db_path)
    second = TaskPlanner(store)
    try:
        assert await second.plan_exists() is True
        tasks = await second.create_plan("Follow-up")
    finally:
        await store.close()

    assert [task.phase for task in tasks][:3] == ["discovery", "planning", "implementation"]
    assert tasks[-1].description == "Persisted prompt"


@pytest.mark.asyncio
async def test_sqlite_open_failure_raises_persistence_error(tmp_path: Path):
    blocker = tmp_path / "plan.db"
    blocker.mkdir()
    store = SqlitePlanStore(blocker)

    with pytest.raises(PlanPersistenceError):
        await store.read_all()


@pytest.mark.asyncio
async def test_sqlite_failed_write_keeps_previous_queue(tmp_path: Path):
    store = SqlitePlanStore(tmp_path / "plan.db")
    broken = Task(id="broken", description="No priority", priority=None)
    try:
        await store.write_all(_sample_tasks())
        with pytest.raises(PlanPersistenceError):
            await store.write_all([broken])
        loaded = await store.read_all()
    finally:
        await store.close()

    assert [task.id for task in loaded] == ["task_1", "task_2", "task_3"]


@pytest.mark.asyncio
async def test_unserializable_result_is_persistence_error(tmp_path: Path):
    store = SqlitePlanStore(tmp_path / "plan.db")
    planner = TaskPlanner(store)
    try:
        task = await planner.add_task("Keep me")
        task.result = TaskResult(success=True, output=object())

        assert await planner.save_plan() is False
        loaded = await store.read_all()
    finally:
        await store.close()

    assert [row.id for row in loaded] == [task.id]
    assert loaded[0].result is None
