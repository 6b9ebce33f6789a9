# src/comments_insight/tasks/task_models.py

from __future__ import annotations

import secrets
import string
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

CANCELLED_BY_USER = "Task cancelled by user"
INTERRUPTED_BY_RESTART = "Task interrupted by restart"

_ID_ALPHABET = string.ascii_lowercase + string.digits


def now_ms() -> int:
    return int(time.time() * 1000)


def new_task_id(clock_ms: int | None = None) -> str:
    """task_<ms>_<9 random base36 chars>."""
    ts = now_ms() if clock_ms is None else int(clock_ms)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"task_{ts}_{suffix}"


class TaskKind(StrEnum):
    EXTRACT = "extract"
    ANALYZE = "analyze"


class TaskStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    @classmethod
    def from_raw(cls, raw: str | None) -> TaskStatus:
        # Unknown values are treated as failed so a damaged snapshot can never
        # resurrect a runnable task.
        if not raw:
            return cls.FAILED
        try:
            return cls(raw)
        except ValueError:
            return cls.FAILED


class FailureReason(StrEnum):
    """Why a task ended up in FAILED."""

    CANCELLED = "cancelled"
    INTERRUPTED = "interrupted"
    EXECUTOR_ERROR = "executor_error"


class ProgressStage(StrEnum):
    INITIALIZING = "initializing"
    DETECTING = "detecting"
    ANALYZING = "analyzing"
    EXTRACTING = "extracting"
    SCROLLING = "scrolling"
    EXPANDING = "expanding"
    VALIDATING = "validating"
    COMPLETE = "complete"


class TaskEvent(StrEnum):
    CREATED = "created"
    EXECUTOR_SET = "executor_set"
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    CLEARED = "cleared"
    RESTORED = "restored"


@dataclass(slots=True, frozen=True)
class DetailedProgressUpdate:
    stage: str
    current: int
    total: int
    stage_message: str | None = None


@dataclass(slots=True)
class DetailedProgress:
    stage: str
    current: int
    total: int
    estimated_time_remaining_seconds: int = -1
    stage_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "stage": self.stage,
            "current": self.current,
            "total": self.total,
            "estimatedTimeRemaining": self.estimated_time_remaining_seconds,
        }
        if self.stage_message is not None:
            out["stageMessage"] = self.stage_message
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DetailedProgress:
        return cls(
            stage=str(data.get("stage") or ProgressStage.INITIALIZING.value),
            current=int(data.get("current") or 0),
            total=int(data.get("total") or 0),
            estimated_time_remaining_seconds=int(data.get("estimatedTimeRemaining", -1)),
            stage_message=data.get("stageMessage"),
        )


@dataclass(slots=True)
class TaskRecord:
    id: str
    kind: TaskKind
    status: TaskStatus
    url: str
    platform: str
    start_time: int

    max_items: int | None = None
    progress: int = 0
    end_time: int | None = None
    tokens_used: int = 0
    error: str | None = None
    message: str | None = None
    failure_reason: FailureReason | None = None
    detailed_progress: DetailedProgress | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_cancelled(self) -> bool:
        return self.status == TaskStatus.FAILED and self.failure_reason == FailureReason.CANCELLED

    def copy(self) -> TaskRecord:
        dp = self.detailed_progress
        return replace(self, detailed_progress=replace(dp) if dp is not None else None)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "type": self.kind.value,
            "status": self.status.value,
            "url": self.url,
            "platform": self.platform,
            "progress": self.progress,
            "startTime": self.start_time,
            "tokensUsed": self.tokens_used,
        }
        if self.max_items is not None:
            out["maxItems"] = self.max_items
        if self.end_time is not None:
            out["endTime"] = self.end_time
        if self.error is not None:
            out["error"] = self.error
        if self.message is not None:
            out["message"] = self.message
        if self.failure_reason is not None:
            out["failureReason"] = self.failure_reason.value
        if self.detailed_progress is not None:
            out["detailedProgress"] = self.detailed_progress.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TaskRecord:
        raw_reason = data.get("failureReason")
        try:
            reason = FailureReason(raw_reason) if raw_reason else None
        except ValueError:
            reason = None

        raw_kind = data.get("type") or data.get("kind") or TaskKind.EXTRACT.value
        dp_raw = data.get("detailedProgress")
        end_time = data.get("endTime")
        max_items = data.get("maxItems")

        return cls(
            id=str(data["id"]),
            kind=TaskKind(raw_kind),
            status=TaskStatus.from_raw(data.get("status")),
            url=str(data.get("url") or ""),
            platform=str(data.get("platform") or ""),
            start_time=int(data.get("startTime") or 0),
            max_items=int(max_items) if max_items is not None else None,
            progress=int(data.get("progress") or 0),
            end_time=int(end_time) if end_time is not None else None,
            tokens_used=int(data.get("tokensUsed") or 0),
            error=data.get("error"),
            message=data.get("message"),
            failure_reason=reason,
            detailed_progress=DetailedProgress.from_dict(dp_raw) if isinstance(dp_raw, Mapping) else None,
        )


@dataclass(slots=True, frozen=True)
class TaskResult:
    """What an executor hands back on success."""

    tokens_used: int | None = None
    item_count: int | None = None

    @classmethod
    def coerce(cls, raw: Any) -> TaskResult:
        if raw is None:
            return cls()
        if isinstance(raw, TaskResult):
            return raw
        if isinstance(raw, Mapping):
            tokens = raw.get("tokensUsed", raw.get("tokens_used"))
            items = raw.get("itemCount", raw.get("item_count", raw.get("commentsCount")))
            return cls(
                tokens_used=int(tokens) if isinstance(tokens, (int, float)) else None,
                item_count=int(items) if isinstance(items, (int, float)) else None,
            )
        raise TypeError(f"Unsupported executor result: {type(raw).__name__}")


@dataclass(slots=True)
class TaskSnapshot:
    tasks: list[TaskRecord] = field(default_factory=list)
    queue: list[str] = field(default_factory=list)
    current_task_id: str | None = None
    saved_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks": [t.to_dict() for t in self.tasks],
            "queue": list(self.queue),
            "currentTaskId": self.current_task_id,
            "savedAt": self.saved_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TaskSnapshot:
        tasks_raw = data.get("tasks") or []
        queue_raw = data.get("queue") or []
        current = data.get("currentTaskId")
        return cls(
            tasks=[TaskRecord.from_dict(t) for t in tasks_raw if isinstance(t, Mapping) and t.get("id")],
            queue=[str(q) for q in queue_raw],
            current_task_id=str(current) if current else None,
            saved_at=int(data.get("savedAt") or 0),
        )
