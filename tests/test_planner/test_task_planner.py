import pytest

from sheen.exceptions import PlanPersistenceError
from sheen.models import ExecutionState, Task
from sheen.plan_store import MemoryPlanStore
from sheen.planner import TaskPlanner


class BrokenStore:
    async def read_all(self):
        raise PlanPersistenceError("disk gone")

    async def write_all(self, tasks):
        raise PlanPersistenceError("disk gone")

    async def exists(self):
        return True


@pytest.mark.asyncio
async def test_fresh_plan_is_single_high_priority_task():
    store = MemoryPlanStore()
    planner = TaskPlanner(store)

    tasks = await planner.create_plan("Build a CLI")

    assert len(tasks) == 1
    assert tasks[0].description == "Build a CLI"
    assert tasks[0].priority == "high"
    assert tasks[0].phase == "implementation"
    assert tasks[0].status == "pending"
    assert store.write_count == 1


@pytest.mark.asyncio
async def test_existing_plan_gets_triad_prepended():
    old = Task(id="task_old", description="Old work")
    planner = TaskPlanner(MemoryPlanStore([old]))

    tasks = await planner.create_plan("Add auth")

    assert [task.phase for task in tasks] == ["discovery", "planning", "implementation", "implementation"]
    assert tasks[0].description == "Discovery: Analyze requirements and codebase for: Add auth"
    assert tasks[1].description == "Planning: Create detailed implementation plan for: Add auth"
    assert tasks[2].description == "Implementation: Add auth"
    assert tasks[3].id == "task_old"
    assert all(task.priority == "high" for task in tasks[:3])


@pytest.mark.asyncio
async def test_get_next_task_is_first_pending_in_queue_order():
    planner = TaskPlanner()
    first = await planner.add_task("first", priority="low")
    second = await planner.add_task("second", priority="high")

    assert planner.get_next_task() is first

    await planner.update_task(first.id, status="completed")
    assert planner.get_next_task() is second

    await planner.update_task(second.id, status="skipped")
    assert planner.get_next_task() is None


@pytest.mark.asyncio
async def test_only_retry_after_failure_counts_attempt_and_start_is_stamped_once():
    planner = TaskPlanner()
    task = await planner.add_task("retry me")

    await planner.update_task(task.id, status="in_progress")
    started = task.started_at
    assert task.attempts == 0
    await planner.update_task(task.id, status="failed")
    await planner.update_task(task.id, status="in_progress")

    assert task.attempts == 1
    assert task.started_at == started
    assert task.completed_at is None

    await planner.update_task(task.id, status="completed")
    assert task.completed_at is not None


@pytest.mark.asyncio
async def test_same_status_update_does_not_count_attempt():
    planner = TaskPlanner()
    task = await planner.add_task("steady")

    await planner.update_task(task.id, status="in_progress")
    await planner.update_task(task.id, status="in_progress")

    assert task.attempts == 0


@pytest.mark.asyncio
async def test_load_plan_requeues_interrupted_task():
    store = MemoryPlanStore([
        Task(id="t1", description="Half done", status="in_progress"),
        Task(id="t2", description="Untouched"),
    ])
    planner = TaskPlanner(store)

    tasks = await planner.load_plan()

    assert [task.status for task in tasks] == ["pending", "pending"]
    assert tasks[0].errors[0].message == "Interrupted before completion"
    assert tasks[0].errors[0].recoverable is True
    assert tasks[1].errors == []
    assert (await store.read_all())[0].status == "pending"
    assert planner.get_next_task() is tasks[0]


@pytest.mark.asyncio
async def test_get_next_task_resumes_in_progress_before_pending():
    planner = TaskPlanner()
    first = await planner.add_task("first")
    second = await planner.add_task("second")

    await planner.update_task(second.id, status="in_progress")

    assert planner.get_next_task() is second
    await planner.update_task(second.id, status="completed")
    assert planner.get_next_task() is first


@pytest.mark.asyncio
async def test_update_validation():
    planner = TaskPlanner()
    task = await planner.add_task("x")

    assert await planner.update_task("missing", status="completed") is None
    with pytest.raises(ValueError):
        await planner.update_task(task.id, status="bogus")
    with pytest.raises(ValueError):
        await planner.update_task(task.id, attempts=9)


@pytest.mark.asyncio
async def test_prepend_keeps_order_ahead_of_existing():
    planner = TaskPlanner()
    existing = await planner.add_task("existing")

    await planner.prepend_tasks([Task(id="a", description="A"), Task(id="b", description="B")])

    assert [task.id for task in planner.get_tasks()] == ["a", "b", existing.id]


@pytest.mark.asyncio
async def test_record_task_error_and_summary():
    planner = TaskPlanner()
    task = await planner.add_task("flaky")

    await planner.record_task_error(task.id, "exit 1", recoverable=True, code="E1")
    await planner.update_task(task.id, status="failed")

    assert task.errors[0].message == "exit 1"
    assert task.errors[0].code == "E1"
    assert planner.summary()["failed"] == 1
    assert planner.summary()["pending"] == 0


@pytest.mark.asyncio
async def test_tasks_list_is_shared_with_state():
    planner = TaskPlanner()
    state = ExecutionState()
    state.tasks = planner.tasks

    await planner.create_plan("shared")
    await planner.add_task("more")

    assert [task.description for task in state.tasks] == ["shared", "more"]


@pytest.mark.asyncio
async def test_store_failures_are_logged_not_raised():
    planner = TaskPlanner(BrokenStore())

    assert await planner.save_plan() is False
    assert await planner.load_plan() == []
    task = await planner.add_task("still works")
    assert planner.get_task(task.id) is task


@pytest.mark.asyncio
async def test_load_plan_round_trip_through_memory_store():
    store = MemoryPlanStore()
    planner = TaskPlanner(store)
    await planner.create_plan("persist me")
    task = planner.get_tasks()[0]
    await planner.update_task(task.id, status="in_progress")

    reloaded = TaskPlanner(store)
    tasks = await reloaded.load_plan()

    assert [t.to_dict() for t in tasks] == [t.to_dict() for t in planner.get_tasks()]
