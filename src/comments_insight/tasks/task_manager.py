# src/comments_insight/tasks/task_manager.py

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from ..core.ports import Clock, Executor, KeyValueStore, NotificationSink
from ..core.retry import RetryConfig
from .dispatcher import Dispatcher
from .kv_store import MemoryKeyValueStore
from .persistence import DEFAULT_DEBOUNCE_SECONDS, PersistenceManager
from .progress import ProgressTranslator
from .task_models import (
    DetailedProgressUpdate,
    ProgressStage,
    TaskKind,
    TaskRecord,
    TaskResult,
    TaskStatus,
    now_ms,
)
from .task_store import DEFAULT_MAX_FINISHED_TASKS, TaskListener, TaskStore

logger = logging.getLogger(__name__)


class TaskManager:
    """
    Public task surface: store + dispatcher + persistence wired together.

    Usage:
        manager = TaskManager(kv_store=JsonFileKeyValueStore(path), enable_persistence=True)
        await manager.initialize()
        task_id = manager.create_task("extract", url, "YouTube")
        manager.set_executor(task_id, run_extraction)

    initialize() must run once before tasks are created; it performs crash recovery.
    """

    def __init__(
        self,
        *,
        kv_store: KeyValueStore | None = None,
        sink: NotificationSink | None = None,
        enable_persistence: bool = False,
        persist_debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        max_finished_tasks: int = DEFAULT_MAX_FINISHED_TASKS,
        retry_config: RetryConfig | None = None,
        progress: ProgressTranslator | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.store = TaskStore(
            max_finished_tasks=max_finished_tasks,
            sink=sink,
            clock=clock,
            progress=progress,
        )
        self.dispatcher = Dispatcher(self.store)
        self.persistence = PersistenceManager(
            self.store,
            kv_store if kv_store is not None else MemoryKeyValueStore(),
            enabled=enable_persistence,
            debounce_seconds=persist_debounce_seconds,
            retry_config=retry_config,
        )
        self._initialized = False

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        *,
        kv_store: KeyValueStore | None = None,
        sink: NotificationSink | None = None,
    ) -> TaskManager:
        return cls(
            kv_store=kv_store,
            sink=sink,
            enable_persistence=bool(getattr(settings, "enable_persistence", False)),
            persist_debounce_seconds=float(getattr(settings, "persist_debounce_seconds", DEFAULT_DEBOUNCE_SECONDS)),
            max_finished_tasks=int(getattr(settings, "max_finished_tasks", DEFAULT_MAX_FINISHED_TASKS)),
            retry_config=settings.retry_config() if hasattr(settings, "retry_config") else None,
        )

    async def initialize(self) -> None:
        if self._initialized:
            logger.debug("TaskManager already initialized")
            return
        self._initialized = True
        try:
            await self.persistence.initialize()
        except Exception:
            logger.warning("Failed to initialize task state", exc_info=True)

    # ---- lifecycle ----

    def create_task(
        self,
        kind: TaskKind | str,
        url: str,
        platform: str,
        max_items: int | None = None,
    ) -> str:
        return self.store.create_task(kind, url, platform, max_items)

    def set_executor(self, task_id: str, executor: Executor) -> None:
        self.store.set_executor(task_id, executor)

    def submit(
        self,
        kind: TaskKind | str,
        url: str,
        platform: str,
        executor: Executor,
        max_items: int | None = None,
    ) -> str:
        task_id = self.create_task(kind, url, platform, max_items)
        self.set_executor(task_id, executor)
        return task_id

    def start_task(self, task_id: str) -> None:
        self.store.start_task(task_id)

    def cancel_task(self, task_id: str) -> None:
        self.store.cancel_task(task_id)

    def abort_task(self, task_id: str) -> None:
        self.store.abort_task(task_id)

    def update_progress(self, task_id: str, percent: float, message: str | None = None) -> None:
        self.store.update_progress(task_id, percent, message)

    def update_detailed_progress(
        self,
        task_id: str,
        update: DetailedProgressUpdate | None = None,
        *,
        stage: ProgressStage | str | None = None,
        current: int = 0,
        total: int = 0,
        stage_message: str | None = None,
    ) -> None:
        if update is None:
            if stage is None:
                raise ValueError("either update or stage is required")
            update = DetailedProgressUpdate(str(stage), current, total, stage_message)
        self.store.update_detailed_progress(task_id, update)

    def complete_task(self, task_id: str, result: TaskResult | dict[str, Any] | None = None) -> None:
        self.store.complete_task(task_id, result)

    def fail_task(self, task_id: str, error: str) -> None:
        self.store.fail_task(task_id, error)

    # ---- reads ----

    def get_task(self, task_id: str) -> TaskRecord | None:
        return self.store.get_task(task_id)

    def get_all_tasks(self) -> list[TaskRecord]:
        return self.store.get_all_tasks()

    def get_tasks_by_status(self, status: TaskStatus | str) -> list[TaskRecord]:
        return self.store.get_tasks_by_status(status)

    def clear_finished_tasks(self) -> int:
        return self.store.clear_finished_tasks()

    def subscribe(self, listener: TaskListener) -> Callable[[], None]:
        """Listen to store events (event, task_id). Returns an unsubscribe callable."""
        return self.store.subscribe(listener)

    # ---- shutdown ----

    async def wait_idle(self) -> None:
        await self.dispatcher.wait_idle()

    async def aclose(self) -> None:
        """Interrupt in-flight executors and flush pending state."""
        await self.dispatcher.aclose()
        await self.persistence.aclose()
