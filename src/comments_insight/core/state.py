# src/comments_insight/core/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..tasks.notifications import TaskUpdateBroadcaster
from ..tasks.task_manager import TaskManager
from ..tasks.task_models import TaskEvent
from .ports import AnalysisClient

# Events after which task records may have been removed from the store.
_REMOVAL_EVENTS = frozenset(
    {TaskEvent.COMPLETED, TaskEvent.FAILED, TaskEvent.CANCELLED, TaskEvent.CLEARED, TaskEvent.RESTORED}
)


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Any

    manager: TaskManager
    analyzer: AnalysisClient
    broadcaster: TaskUpdateBroadcaster

    # task id -> analysis report text (runtime only, not persisted)
    results: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.manager.subscribe(self._on_task_event)

    def _on_task_event(self, event: TaskEvent, task_id: str | None) -> None:
        if event in _REMOVAL_EVENTS:
            self.prune_results()

    def prune_results(self) -> int:
        """Drop reports whose task record is gone (retention or /clear)."""
        stale = [k for k in self.results if self.manager.get_task(k) is None]
        for task_id in stale:
            del self.results[task_id]
        return len(stale)
