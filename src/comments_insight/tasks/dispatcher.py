# src/comments_insight/tasks/dispatcher.py

from __future__ import annotations

"""
Single-concurrency dispatcher.

Runs at most one executor at a time:
- picks the first queued id that has an executor attached (ids without one are
  skipped and stay queued),
- starts the task, issues a CancellationToken, runs the executor as an asyncio task,
- completes/fails the task only if it is still RUNNING after the await
  (a concurrent cancel_task may already have finalised it),
- releases the registrations and looks for the next task.

Triggered by TaskStore events: executor attached, or a task reached a terminal state.
"""

import asyncio
import logging

from ..core.errors import TaskCancelledError
from ..core.ports import Executor
from .cancellation import CancellationToken
from .task_models import FailureReason, TaskEvent, TaskStatus
from .task_store import TaskStore

logger = logging.getLogger(__name__)

_TRIGGER_EVENTS = frozenset(
    {
        TaskEvent.EXECUTOR_SET,
        TaskEvent.COMPLETED,
        TaskEvent.FAILED,
        TaskEvent.CANCELLED,
    }
)


class Dispatcher:
    def __init__(self, store: TaskStore) -> None:
        self._store = store
        self._dispatching = False
        self._closed = False
        self._running: dict[str, asyncio.Task[None]] = {}
        self._unsubscribe = store.subscribe(self._on_event)

    @property
    def in_flight(self) -> tuple[str, ...]:
        return tuple(self._running)

    def _on_event(self, event: TaskEvent, task_id: str | None) -> None:
        if event in _TRIGGER_EVENTS:
            self.trigger()

    def _next_runnable(self) -> str | None:
        for task_id in self._store.queued_ids():
            if self._store.has_executor(task_id):
                return task_id
        return None

    def trigger(self) -> None:
        """Start the next runnable task if nothing is running. Safe to call any time."""
        if self._closed or self._dispatching:
            return
        if self._store.current_task_id is not None or not self._store.queued_ids():
            return

        self._dispatching = True
        start_failed = False
        try:
            task_id = self._next_runnable()
            if task_id is None:
                return

            executor = self._store.get_executor(task_id)
            if executor is None:
                return

            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("No running event loop; dispatch of task_id=%s deferred", task_id)
                return

            try:
                self._store.start_task(task_id)
            except Exception as e:
                logger.exception("Failed to start task_id=%s", task_id)
                self._store.release(task_id)
                self._store.fail_task(task_id, str(e) or e.__class__.__name__)
                start_failed = True
                return

            token = CancellationToken(task_id)
            self._store.register_token(task_id, token)

            runner = loop.create_task(self._drive(task_id, executor, token), name=f"task-executor:{task_id}")
            self._running[task_id] = runner
        finally:
            self._dispatching = False

        if start_failed:
            # The FAILED event fired while the guard was held.
            self.trigger()

    async def _drive(self, task_id: str, executor: Executor, token: CancellationToken) -> None:
        try:
            snapshot = self._store.get_task(task_id)
            if snapshot is None or snapshot.status != TaskStatus.RUNNING:
                return

            try:
                result = await executor(snapshot, token)
            except asyncio.CancelledError:
                logger.info("Executor for task_id=%s was interrupted", task_id)
                raise
            except Exception as e:
                latest = self._store.get_task(task_id)
                if latest is None or latest.status != TaskStatus.RUNNING:
                    logger.debug("Executor for task_id=%s failed after task was finalised: %s", task_id, e)
                    return
                if isinstance(e, TaskCancelledError):
                    logger.info("Executor for task_id=%s stopped on its cancellation token", task_id)
                    reason = FailureReason.CANCELLED
                else:
                    logger.error("Executor failed task_id=%s: %s", task_id, e, exc_info=True)
                    reason = FailureReason.EXECUTOR_ERROR
                self._store.fail_task(task_id, str(e) or e.__class__.__name__, reason)
                return

            latest = self._store.get_task(task_id)
            if latest is None or latest.status != TaskStatus.RUNNING:
                logger.info("Task id=%s finished after being finalised elsewhere; result dropped", task_id)
                return

            try:
                self._store.complete_task(task_id, result)
            except TypeError as e:
                logger.error("Executor for task_id=%s returned an unusable result: %s", task_id, e)
                self._store.fail_task(task_id, str(e), FailureReason.EXECUTOR_ERROR)
        finally:
            self._store.release(task_id)
            self._running.pop(task_id, None)
            self.trigger()

    async def wait_idle(self) -> None:
        """Wait until no executor is in flight (including ones started meanwhile)."""
        while self._running:
            await asyncio.gather(*list(self._running.values()), return_exceptions=True)

    async def aclose(self) -> None:
        """Stop dispatching and interrupt in-flight executors."""
        self._closed = True
        self._unsubscribe()
        runners = list(self._running.values())
        for runner in runners:
            runner.cancel()
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)
        self._running.clear()
