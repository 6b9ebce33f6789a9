# src/comments_insight/tasks/cancellation.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from ..core.errors import TaskCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Cooperative cancellation signal handed to an executor.

    Cancelling never interrupts the executor. The executor is expected to poll
    is_cancelled / raise_if_cancelled(), await wait(), or register a callback
    that aborts its own in-flight I/O.
    """

    __slots__ = ("_task_id", "_cancelled", "_reason", "_callbacks", "_event")

    def __init__(self, task_id: str | None = None) -> None:
        self._task_id = task_id
        self._cancelled = False
        self._reason: str | None = None
        self._callbacks: list[Callable[[], None]] = []
        # Created lazily so a token can be built outside a running loop.
        self._event: asyncio.Event | None = None

    @property
    def task_id(self) -> str | None:
        return self._task_id

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        logger.debug("Cancellation signalled task_id=%s reason=%s", self._task_id, reason)

        if self._event is not None:
            self._event.set()

        callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            self._run_callback(cb)

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Run callback on cancellation (immediately if already cancelled).
        Returns a function that unregisters it.
        """
        if self._cancelled:
            self._run_callback(callback)
            return lambda: None

        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove

    async def wait(self) -> None:
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise TaskCancelledError(self._task_id, self._reason)

    def _run_callback(self, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            logger.exception("Cancellation callback failed task_id=%s", self._task_id)

    def __repr__(self) -> str:
        return f"CancellationToken(task_id={self._task_id!r}, cancelled={self._cancelled})"
