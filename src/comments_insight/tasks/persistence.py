# src/comments_insight/tasks/persistence.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping

from ..core.errors import STORAGE_RETRYABLE
from ..core.ports import KeyValueStore
from ..core.retry import RetryConfig, with_retry
from .task_models import INTERRUPTED_BY_RESTART, FailureReason, TaskEvent, TaskSnapshot
from .task_store import TaskStore

logger = logging.getLogger(__name__)

TASK_STATE_KEY = "taskState"
DEFAULT_DEBOUNCE_SECONDS = 0.5


def _default_retry() -> RetryConfig:
    return RetryConfig(retryable_kinds=STORAGE_RETRYABLE)


class PersistenceManager:
    """
    Debounced snapshots of TaskStore state plus crash recovery.

    Writes:
    - every store event schedules a write; while one is pending, further events
      are coalesced into it
    - the write goes through with_retry; a final failure is logged and dropped,
      it never reaches the task lifecycle

    Recovery (initialize):
    - restore the last snapshot
    - pending/running tasks cannot be resumed (their executors were runtime
      closures), so they are failed as "interrupted by restart"
    - queue and current id are always reset
    """

    def __init__(
        self,
        store: TaskStore,
        kv_store: KeyValueStore,
        *,
        enabled: bool = True,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        retry_config: RetryConfig | None = None,
        key: str = TASK_STATE_KEY,
    ) -> None:
        self._store = store
        self._kv = kv_store
        self._enabled = enabled
        self._debounce = max(0.0, float(debounce_seconds))
        self._retry = retry_config or _default_retry()
        self._key = key

        self._timer: asyncio.TimerHandle | None = None
        self._writes: set[asyncio.Task[None]] = set()
        self._unsubscribe = store.subscribe(self._on_event) if enabled else None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def write_pending(self) -> bool:
        return self._timer is not None

    def _on_event(self, event: TaskEvent, task_id: str | None) -> None:
        self.schedule()

    def schedule(self) -> None:
        if not self._enabled or self._timer is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; snapshot not scheduled")
            return
        self._timer = loop.call_later(self._debounce, self._fire)

    def _fire(self) -> None:
        self._timer = None
        write = asyncio.get_running_loop().create_task(self.save_state(), name="task-state-save")
        self._writes.add(write)
        write.add_done_callback(self._writes.discard)

    async def save_state(self) -> bool:
        """Write the current snapshot. Returns False if every attempt failed."""
        if not self._enabled:
            return False

        async def _write() -> None:
            snapshot = self._store.export_snapshot()
            await self._kv.set(self._key, snapshot.to_dict())

        try:
            await with_retry(_write, self._retry, context="PersistenceManager.save_state")
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("Failed to persist task state", exc_info=True)
            return False
        logger.debug("Task state persisted key=%s", self._key)
        return True

    async def load_state(self) -> TaskSnapshot | None:
        try:
            raw = await self._kv.get(self._key)
        except Exception:
            logger.warning("Failed to load task state", exc_info=True)
            return None
        if not isinstance(raw, Mapping):
            return None
        try:
            return TaskSnapshot.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            logger.warning("Stored task state is malformed; ignoring it", exc_info=True)
            return None

    async def initialize(self) -> None:
        if not self._enabled:
            return

        snapshot = await self.load_state()
        if snapshot is None:
            return

        self._cancel_timer()
        self._store.restore_snapshot(snapshot)
        repaired = self._store.fail_unfinished(INTERRUPTED_BY_RESTART, FailureReason.INTERRUPTED)
        changed = repaired > 0 or bool(snapshot.queue) or snapshot.current_task_id is not None

        logger.info(
            "Task state recovered tasks=%d interrupted=%d saved_at=%s",
            len(snapshot.tasks),
            repaired,
            snapshot.saved_at,
        )

        # restore_snapshot scheduled a debounced write; the repaired state is
        # written right away instead.
        self._cancel_timer()
        if changed:
            await self.save_state()

    async def flush(self) -> None:
        """Write now if a write is pending, and wait for writes in flight."""
        if self._timer is not None:
            self._cancel_timer()
            await self.save_state()
        if self._writes:
            await asyncio.gather(*list(self._writes), return_exceptions=True)

    async def clear(self) -> None:
        self._cancel_timer()
        try:
            await self._kv.remove(self._key)
        except Exception:
            logger.warning("Failed to remove persisted task state", exc_info=True)

    async def aclose(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
