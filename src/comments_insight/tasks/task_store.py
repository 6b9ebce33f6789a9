# src/comments_insight/tasks/task_store.py

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from typing import Any

from ..core.errors import TaskAlreadyRunningError, TaskNotFoundError
from ..core.ports import Clock, Executor, NotificationSink
from .cancellation import CancellationToken
from .progress import ProgressTranslator
from .task_models import (
    CANCELLED_BY_USER,
    DetailedProgressUpdate,
    FailureReason,
    TaskEvent,
    TaskKind,
    TaskRecord,
    TaskResult,
    TaskSnapshot,
    TaskStatus,
    new_task_id,
    now_ms,
)

logger = logging.getLogger(__name__)

TaskListener = Callable[[TaskEvent, str | None], None]

DEFAULT_MAX_FINISHED_TASKS = 20


class TaskStore:
    """
    In-memory task registry and lifecycle state machine.

    State:
    - task records keyed by id (insertion ordered)
    - the pending queue (ordered ids)
    - the current running task id
    - runtime-only registries: executors and cancellation tokens per id

    All mutations are synchronous, so on a single event loop each one runs to
    completion without interleaving. Callers that await between reads must
    re-read by id; reads return detached copies for that reason.

    Mutations on unknown or terminal tasks are logged no-ops. Only start_task
    raises (unknown id, or another task already running).
    """

    def __init__(
        self,
        *,
        max_finished_tasks: int = DEFAULT_MAX_FINISHED_TASKS,
        sink: NotificationSink | None = None,
        clock: Clock = now_ms,
        progress: ProgressTranslator | None = None,
    ) -> None:
        self._tasks: dict[str, TaskRecord] = {}
        self._queue: list[str] = []
        self._current_task_id: str | None = None

        self._executors: dict[str, Executor] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._listeners: list[TaskListener] = []
        # Order in which records finished in this process; breaks end_time ties.
        self._finish_order: dict[str, int] = {}
        self._finish_seq = itertools.count()

        self._max_finished = max(0, int(max_finished_tasks))
        self._sink = sink
        self._clock = clock
        self._progress = progress or ProgressTranslator()

    # ---- observers ----

    def subscribe(self, listener: TaskListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, event: TaskEvent, task_id: str | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, task_id)
            except Exception:
                logger.exception("Task listener failed event=%s task_id=%s", event.value, task_id)

    def _notify(self, task: TaskRecord) -> None:
        if self._sink is None:
            return
        try:
            self._sink.publish(task.copy())
        except Exception:
            # No listener / closed channel is expected; never let it break a transition.
            logger.debug("Task update publish failed task_id=%s", task.id, exc_info=True)

    # ---- reads ----

    @property
    def current_task_id(self) -> str | None:
        return self._current_task_id

    @property
    def clock(self) -> Clock:
        return self._clock

    def get_task(self, task_id: str) -> TaskRecord | None:
        task = self._tasks.get(task_id)
        return task.copy() if task is not None else None

    def get_all_tasks(self) -> list[TaskRecord]:
        return [t.copy() for t in self._tasks.values()]

    def get_tasks_by_status(self, status: TaskStatus | str) -> list[TaskRecord]:
        wanted = TaskStatus(status)
        return [t.copy() for t in self._tasks.values() if t.status == wanted]

    def queued_ids(self) -> tuple[str, ...]:
        return tuple(self._queue)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    # ---- runtime registries (dispatcher side) ----

    def get_executor(self, task_id: str) -> Executor | None:
        return self._executors.get(task_id)

    def has_executor(self, task_id: str) -> bool:
        return task_id in self._executors

    def register_token(self, task_id: str, token: CancellationToken) -> None:
        self._tokens[task_id] = token

    def get_token(self, task_id: str) -> CancellationToken | None:
        return self._tokens.get(task_id)

    def release(self, task_id: str) -> None:
        """Drop the executor and token registered for task_id."""
        self._executors.pop(task_id, None)
        self._tokens.pop(task_id, None)

    # ---- lifecycle ----

    def create_task(
        self,
        kind: TaskKind | str,
        url: str,
        platform: str,
        max_items: int | None = None,
    ) -> str:
        now = self._clock()
        task_id = new_task_id(now)
        while task_id in self._tasks:
            task_id = new_task_id(now)

        task = TaskRecord(
            id=task_id,
            kind=TaskKind(kind),
            status=TaskStatus.PENDING,
            url=url,
            platform=platform,
            start_time=now,
            max_items=max_items,
        )
        self._tasks[task_id] = task
        self._queue.append(task_id)

        logger.info(
            "Task created id=%s kind=%s platform=%s url=%s",
            task_id,
            task.kind.value,
            platform,
            url,
        )
        self._emit(TaskEvent.CREATED, task_id)
        return task_id

    def set_executor(self, task_id: str, executor: Executor) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            logger.warning("set_executor: task not found id=%s", task_id)
            return
        if task.status != TaskStatus.PENDING:
            logger.warning("set_executor: task id=%s is %s, ignoring", task_id, task.status.value)
            return

        self._executors[task_id] = executor
        if task_id not in self._queue:
            self._queue.append(task_id)

        logger.debug("Executor attached id=%s", task_id)
        self._emit(TaskEvent.EXECUTOR_SET, task_id)

    def start_task(self, task_id: str) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        if task.status == TaskStatus.RUNNING:
            logger.debug("Task id=%s is already running", task_id)
            return

        if task.status.is_terminal:
            logger.warning("Task id=%s is %s, cannot restart", task_id, task.status.value)
            self._dequeue(task_id)
            return

        running = self._current_task_id
        if running is not None and running != task_id:
            raise TaskAlreadyRunningError(task_id, running)

        self._dequeue(task_id)
        task.status = TaskStatus.RUNNING
        task.start_time = self._clock()
        self._current_task_id = task_id

        logger.info("Task started id=%s", task_id)
        self._notify(task)
        self._emit(TaskEvent.STARTED, task_id)

    def update_progress(self, task_id: str, percent: float, message: str | None = None) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            logger.warning("update_progress: task not found id=%s", task_id)
            return
        if task.is_terminal:
            logger.debug("update_progress: task id=%s is %s, ignoring", task_id, task.status.value)
            return

        task.progress = int(round(min(100.0, max(0.0, float(percent)))))
        if message:
            task.message = message

        logger.debug("Task progress id=%s progress=%s message=%s", task_id, task.progress, message)
        self._notify(task)
        self._emit(TaskEvent.PROGRESS, task_id)

    def update_detailed_progress(self, task_id: str, update: DetailedProgressUpdate) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            logger.warning("update_detailed_progress: task not found id=%s", task_id)
            return
        if task.is_terminal:
            logger.debug("update_detailed_progress: task id=%s is %s, ignoring", task_id, task.status.value)
            return

        elapsed_ms = self._clock() - task.start_time
        translated = self._progress.translate(update, elapsed_ms=elapsed_ms)

        task.progress = translated.percent
        task.message = f"{update.stage}:{update.current}:{update.total}"
        task.detailed_progress = translated.detail

        logger.debug(
            "Task detailed progress id=%s stage=%s current=%s total=%s progress=%s eta=%s",
            task_id,
            update.stage,
            update.current,
            update.total,
            task.progress,
            translated.detail.estimated_time_remaining_seconds,
        )
        self._notify(task)
        self._emit(TaskEvent.PROGRESS, task_id)

    def complete_task(self, task_id: str, result: TaskResult | dict[str, Any] | None = None) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            logger.warning("complete_task: task not found id=%s", task_id)
            return
        if task.status != TaskStatus.RUNNING:
            logger.warning("complete_task: task id=%s is %s, ignoring", task_id, task.status.value)
            return

        res = TaskResult.coerce(result)
        task.status = TaskStatus.COMPLETED
        task.progress = 100
        task.end_time = self._clock()
        if res.tokens_used is not None:
            task.tokens_used = res.tokens_used

        logger.info(
            "Task completed id=%s duration_ms=%s tokens_used=%s items=%s",
            task_id,
            task.end_time - task.start_time,
            task.tokens_used,
            res.item_count,
        )
        self._finish(task, TaskEvent.COMPLETED)

    def fail_task(
        self,
        task_id: str,
        error: str,
        reason: FailureReason = FailureReason.EXECUTOR_ERROR,
    ) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            logger.warning("fail_task: task not found id=%s", task_id)
            return
        if task.is_terminal:
            logger.warning("fail_task: task id=%s is %s, ignoring", task_id, task.status.value)
            return

        task.status = TaskStatus.FAILED
        task.error = error
        task.failure_reason = reason
        task.end_time = self._clock()

        logger.error("Task failed id=%s reason=%s error=%s", task_id, reason.value, error)
        self._finish(task, TaskEvent.FAILED)

    def cancel_task(self, task_id: str) -> None:
        task = self._tasks.get(task_id)
        if task is None:
            logger.warning("cancel_task: task not found id=%s", task_id)
            return
        if task.is_terminal:
            logger.warning("cancel_task: task id=%s is %s, ignoring", task_id, task.status.value)
            return

        self._dequeue(task_id)
        self._executors.pop(task_id, None)
        self.abort_task(task_id)

        task.status = TaskStatus.FAILED
        task.error = CANCELLED_BY_USER
        task.failure_reason = FailureReason.CANCELLED
        task.end_time = self._clock()

        logger.info("Task cancelled id=%s", task_id)
        self._finish(task, TaskEvent.CANCELLED)

    def abort_task(self, task_id: str) -> None:
        """Signal the task's token; registrations stay in place."""
        token = self._tokens.get(task_id)
        if token is None:
            return
        token.cancel(CANCELLED_BY_USER)

    def clear_finished_tasks(self) -> int:
        finished = [t.id for t in self._tasks.values() if t.is_terminal]
        for task_id in finished:
            self._delete(task_id)

        logger.info("Cleared %d finished tasks", len(finished))
        self._emit(TaskEvent.CLEARED, None)
        return len(finished)

    # ---- snapshot ----

    def export_snapshot(self, saved_at: int | None = None) -> TaskSnapshot:
        return TaskSnapshot(
            tasks=self.get_all_tasks(),
            queue=list(self._queue),
            current_task_id=self._current_task_id,
            saved_at=self._clock() if saved_at is None else saved_at,
        )

    def restore_snapshot(self, snapshot: TaskSnapshot) -> None:
        """Replace all state with the snapshot. Runtime registries are reset."""
        self._tasks = {t.id: t.copy() for t in snapshot.tasks}
        self._queue = [q for q in snapshot.queue if q in self._tasks]
        current = snapshot.current_task_id
        self._current_task_id = current if current in self._tasks else None
        self._executors.clear()
        self._tokens.clear()
        self._finish_order.clear()

        logger.info(
            "Task state restored tasks=%d queue=%d current=%s",
            len(self._tasks),
            len(self._queue),
            self._current_task_id,
        )
        self._emit(TaskEvent.RESTORED, None)

    def fail_unfinished(self, error: str, reason: FailureReason) -> int:
        """
        Force every pending/running record to FAILED and reset queue and current id.
        Used after a restart, when no executor can be resumed. Returns the number
        of records changed.
        """
        now = self._clock()
        changed = 0
        for task in self._tasks.values():
            if task.status in (TaskStatus.PENDING, TaskStatus.RUNNING):
                task.status = TaskStatus.FAILED
                task.error = error
                task.failure_reason = reason
                task.end_time = now
                changed += 1

        self._queue.clear()
        self._current_task_id = None
        return changed

    # ---- internals ----

    def _finish(self, task: TaskRecord, event: TaskEvent) -> None:
        self._finish_order[task.id] = next(self._finish_seq)
        self._dequeue(task.id)
        if self._current_task_id == task.id:
            self._current_task_id = None

        self._notify(task)
        self._cleanup_finished()
        self._emit(event, task.id)

    def _dequeue(self, task_id: str) -> None:
        if task_id in self._queue:
            self._queue.remove(task_id)

    def _delete(self, task_id: str) -> None:
        self._tasks.pop(task_id, None)
        self._finish_order.pop(task_id, None)
        self._dequeue(task_id)
        self.release(task_id)

    def _cleanup_finished(self) -> None:
        finished = [t for t in self._tasks.values() if t.is_terminal]
        excess = len(finished) - self._max_finished
        if excess <= 0:
            return

        finished.sort(key=lambda t: (t.end_time or 0, self._finish_order.get(t.id, -1)))
        for task in finished[:excess]:
            self._delete(task.id)

        logger.info("Auto-cleaned %d old finished tasks (limit=%d)", excess, self._max_finished)
