# src/comments_insight/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the task core.

The core depends on Protocols instead of concrete implementations.
This keeps storage/notification/AI providers swappable and makes testing easier.
"""

from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..tasks.task_models import TaskRecord

Executor = Callable[..., Awaitable[Any]]
# (task: TaskRecord, token: CancellationToken) -> TaskResult | mapping | None.
# Caller-supplied work function. Runtime-only, never persisted.

Clock = Callable[[], int]
# Wall clock in milliseconds.


class KeyValueStore(Protocol):
    """
    Durable key-value store (chrome.storage-like).
    Failures are raised as exceptions; callers wrap writes in with_retry.
    """

    async def get(self, key: str) -> Any | None: ...
    async def set(self, key: str, value: Any) -> None: ...
    async def remove(self, keys: str | Iterable[str]) -> None: ...


class NotificationSink(Protocol):
    """
    Push channel for task updates.

    "Nobody is listening" is a normal outcome, not an error.
    """

    def publish(self, task: TaskRecord) -> None: ...


@dataclass(slots=True, frozen=True)
class AnalysisResult:
    text: str
    tokens_used: int = 0
    model: str | None = None


class AnalysisClient(Protocol):
    """AI analysis of a batch of comments (OpenAI-compatible or offline)."""

    async def analyze(self, comments: Sequence[str], *, prompt: str | None = None) -> AnalysisResult: ...


class CommentSource(Protocol):
    """
    Paged comment provider for extraction (page scraper, API, file).
    Returns an empty batch once the source is exhausted.
    """

    async def fetch_batch(self, url: str, *, offset: int, limit: int) -> Sequence[str]: ...
