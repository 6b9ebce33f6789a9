# tests/test_dispatcher.py

from __future__ import annotations

import asyncio

import pytest

from comments_insight.tasks.task_manager import TaskManager
from comments_insight.tasks.task_models import FailureReason, TaskStatus

from .fakes import ControlledExecutor, FakeClock, RecordingSink, drain, make_recorder


def _manager(clock: FakeClock | None = None, sink: RecordingSink | None = None) -> TaskManager:
    return TaskManager(sink=sink, clock=clock or FakeClock())


@pytest.mark.asyncio
async def test_tasks_without_executor_are_skipped_in_order() -> None:
    manager = _manager()
    order: list[str] = []

    a = manager.create_task("extract", "a", "p")
    b = manager.create_task("extract", "b", "p")
    c = manager.create_task("extract", "c", "p")
    manager.set_executor(b, make_recorder(order, "B"))
    manager.set_executor(c, make_recorder(order, "C"))

    await manager.wait_idle()

    assert order == ["B", "C"]
    assert manager.get_task(a).status == TaskStatus.PENDING  # type: ignore[union-attr]
    assert manager.get_task(b).status == TaskStatus.COMPLETED  # type: ignore[union-attr]
    assert manager.get_task(c).status == TaskStatus.COMPLETED  # type: ignore[union-attr]
    assert manager.store.queued_ids() == (a,)


@pytest.mark.asyncio
async def test_only_one_task_runs_at_a_time() -> None:
    manager = _manager()
    first = ControlledExecutor("first")
    second = ControlledExecutor("second")

    a = manager.submit("extract", "a", "p", first)
    b = manager.submit("analyze", "b", "p", second)

    await asyncio.wait_for(first.started.wait(), 1)
    assert manager.get_task(a).status == TaskStatus.RUNNING  # type: ignore[union-attr]
    assert manager.get_task(b).status == TaskStatus.PENDING  # type: ignore[union-attr]
    assert len(manager.get_tasks_by_status(TaskStatus.RUNNING)) == 1
    assert not second.started.is_set()

    first.finish({"tokensUsed": 7})
    await asyncio.wait_for(second.started.wait(), 1)
    assert manager.get_task(a).status == TaskStatus.COMPLETED  # type: ignore[union-attr]
    assert manager.get_task(a).tokens_used == 7  # type: ignore[union-attr]
    assert manager.get_task(b).status == TaskStatus.RUNNING  # type: ignore[union-attr]

    second.finish()
    await manager.wait_idle()
    assert manager.get_task(b).status == TaskStatus.COMPLETED  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_executor_receives_snapshot_and_token() -> None:
    manager = _manager()
    ex = ControlledExecutor()
    task_id = manager.submit("extract", "https://x", "YouTube", ex, max_items=10)

    await asyncio.wait_for(ex.started.wait(), 1)
    task, token = ex.calls[0]
    assert task.id == task_id
    assert task.status == TaskStatus.RUNNING
    assert task.max_items == 10
    assert token.task_id == task_id
    assert not token.is_cancelled

    ex.finish()
    await manager.wait_idle()


@pytest.mark.asyncio
async def test_executor_failure_fails_task_and_next_runs() -> None:
    manager = _manager()
    order: list[str] = []
    bad = ControlledExecutor()

    a = manager.submit("extract", "a", "p", bad)
    b = manager.submit("extract", "b", "p", make_recorder(order, "B"))

    await asyncio.wait_for(bad.started.wait(), 1)
    bad.fail(RuntimeError("page layout changed"))
    await manager.wait_idle()

    failed = manager.get_task(a)
    assert failed.status == TaskStatus.FAILED  # type: ignore[union-attr]
    assert failed.error == "page layout changed"  # type: ignore[union-attr]
    assert failed.failure_reason == FailureReason.EXECUTOR_ERROR  # type: ignore[union-attr]
    assert order == ["B"]
    assert manager.get_task(b).status == TaskStatus.COMPLETED  # type: ignore[union-attr]
    assert not manager.store.has_executor(a)


@pytest.mark.asyncio
async def test_cancel_while_running_keeps_task_cancelled() -> None:
    sink = RecordingSink()
    manager = _manager(sink=sink)
    ex = ControlledExecutor()

    task_id = manager.submit("extract", "a", "p", ex)
    await asyncio.wait_for(ex.started.wait(), 1)
    _, token = ex.calls[0]

    manager.cancel_task(task_id)
    assert token.is_cancelled

    # Executor finishes successfully after the cancel; the result is dropped.
    ex.finish({"tokensUsed": 99})
    await manager.wait_idle()

    task = manager.get_task(task_id)
    assert task.status == TaskStatus.FAILED  # type: ignore[union-attr]
    assert task.is_cancelled  # type: ignore[union-attr]
    assert task.tokens_used == 0  # type: ignore[union-attr]
    assert sink.statuses(task_id) == ["running", "failed"]


@pytest.mark.asyncio
async def test_cancel_while_running_then_executor_raises() -> None:
    manager = _manager()
    ex = ControlledExecutor()

    task_id = manager.submit("extract", "a", "p", ex)
    await asyncio.wait_for(ex.started.wait(), 1)
    manager.cancel_task(task_id)

    ex.fail(RuntimeError("aborted"))
    await manager.wait_idle()

    task = manager.get_task(task_id)
    assert task.is_cancelled  # type: ignore[union-attr]
    assert task.error == "Task cancelled by user"  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_abort_fails_task_through_executor() -> None:
    manager = _manager()

    async def _cooperative(task, token):
        await token.wait()
        token.raise_if_cancelled()

    task_id = manager.submit("extract", "a", "p", _cooperative)
    await drain()
    manager.abort_task(task_id)
    await manager.wait_idle()

    task = manager.get_task(task_id)
    assert task.status == TaskStatus.FAILED  # type: ignore[union-attr]
    assert task.failure_reason == FailureReason.CANCELLED  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_cancel_pending_task_never_runs_it() -> None:
    manager = _manager()
    order: list[str] = []
    blocker = ControlledExecutor()

    manager.submit("extract", "a", "p", blocker)
    b = manager.submit("extract", "b", "p", make_recorder(order, "B"))
    await asyncio.wait_for(blocker.started.wait(), 1)

    manager.cancel_task(b)
    blocker.finish()
    await manager.wait_idle()

    assert order == []
    assert manager.get_task(b).is_cancelled  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_unusable_result_fails_task() -> None:
    manager = _manager()

    async def _weird(task, token):
        return 42

    task_id = manager.submit("analyze", "a", "p", _weird)
    await manager.wait_idle()

    task = manager.get_task(task_id)
    assert task.status == TaskStatus.FAILED  # type: ignore[union-attr]
    assert "Unsupported executor result" in (task.error or "")  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_executor_set_later_triggers_dispatch() -> None:
    manager = _manager()
    order: list[str] = []

    task_id = manager.create_task("extract", "a", "p")
    await drain()
    assert manager.get_task(task_id).status == TaskStatus.PENDING  # type: ignore[union-attr]

    manager.set_executor(task_id, make_recorder(order, "A"))
    await manager.wait_idle()
    assert order == ["A"]


@pytest.mark.asyncio
async def test_aclose_interrupts_running_executor() -> None:
    manager = _manager()
    ex = ControlledExecutor()

    task_id = manager.submit("extract", "a", "p", ex)
    await asyncio.wait_for(ex.started.wait(), 1)

    await manager.aclose()

    assert manager.dispatcher.in_flight == ()
    # Nothing finalised it; recovery on next start marks it interrupted.
    assert manager.get_task(task_id).status == TaskStatus.RUNNING  # type: ignore[union-attr]

