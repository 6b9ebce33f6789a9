# src/comments_insight/tasks/notifications.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from ..core.ports import NotificationSink
from .task_models import TaskKind, TaskRecord, TaskStatus

logger = logging.getLogger(__name__)


class TaskUpdateBroadcaster:
    """
    Fan-out of task updates to push-style consumers (UIs, tests).

    Each subscriber gets its own bounded queue. With no subscribers publish() is a
    no-op; a full subscriber queue drops its oldest update rather than blocking
    the publisher.
    """

    def __init__(self, maxsize: int = 256) -> None:
        self._maxsize = maxsize
        self._subscribers: list[asyncio.Queue[TaskRecord]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[TaskRecord]:
        q: asyncio.Queue[TaskRecord] = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue[TaskRecord]) -> None:
        if q in self._subscribers:
            self._subscribers.remove(q)

    def publish(self, task: TaskRecord) -> None:
        for q in list(self._subscribers):
            if q.full():
                try:
                    q.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            q.put_nowait(task)


class LoggingNotificationSink:
    """
    User-facing completion/failure notices, written to the log.

    Intermediate updates (started/progress) are ignored; only the transition into
    a terminal state produces a notice, once per task.
    """

    def __init__(self, notice_logger: logging.Logger | None = None) -> None:
        self._log = notice_logger or logger
        self._announced: set[str] = set()

    def publish(self, task: TaskRecord) -> None:
        if not task.is_terminal or task.id in self._announced:
            return
        self._announced.add(task.id)

        label = "Extraction" if task.kind == TaskKind.EXTRACT else "Analysis"
        if task.status == TaskStatus.COMPLETED:
            self._log.info("%s completed: %s (tokens=%s)", label, task.url, task.tokens_used)
        else:
            self._log.warning("%s failed: %s (%s)", label, task.url, task.error)


class CompositeSink:
    """Publish to several sinks; one failing sink does not starve the others."""

    def __init__(self, sinks: Iterable[NotificationSink]) -> None:
        self._sinks = list(sinks)

    def publish(self, task: TaskRecord) -> None:
        for sink in self._sinks:
            try:
                sink.publish(task)
            except Exception:
                logger.debug("Notification sink %r failed", sink, exc_info=True)
