# src/comments_insight/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import cast

from ..connectors.file_source import FileCommentSource, load_comments_file
from ..core.ports import AnalysisResult
from ..core.state import AppState
from ..tasks.executors import make_analysis_executor, make_extraction_executor
from ..tasks.task_models import TaskKind, TaskRecord, TaskStatus

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /tasks, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            h3 = cast(CommandHandler3, handler)
            return h3(state, args, emit)

        h2 = cast(CommandHandler2, handler)
        return h2(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _fmt_ms(ms: int | None) -> str:
    if not ms:
        return "-"
    return datetime.fromtimestamp(ms / 1000).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _task_line(task: TaskRecord) -> str:
    return f"{task.id}  {task.status.value:<9} {task.progress:>3}%  {task.kind.value:<7} {task.url}"


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    manager = state.manager
    tasks = manager.get_all_tasks()
    counts = {s: 0 for s in TaskStatus}
    for t in tasks:
        counts[t.status] += 1

    current = manager.store.current_task_id or "-"
    persistence = "ON" if manager.persistence.enabled else "OFF"
    model = getattr(state.analyzer, "model", "?")
    return (
        "Status:\n"
        f"  Running: {current}\n"
        f"  Tasks: {len(tasks)} "
        f"(pending={counts[TaskStatus.PENDING]}, running={counts[TaskStatus.RUNNING]}, "
        f"completed={counts[TaskStatus.COMPLETED]}, failed={counts[TaskStatus.FAILED]})\n"
        f"  Persistence: {persistence}\n"
        f"  Model: {model}"
    )


def cmd_tasks(state: AppState, args: list[str]) -> str:
    tasks = state.manager.get_all_tasks()
    if args:
        try:
            wanted = TaskStatus(args[0].lower())
        except ValueError:
            return "Usage: /tasks [pending|running|completed|failed]"
        tasks = [t for t in tasks if t.status == wanted]

    if not tasks:
        return "No tasks."
    return "Tasks:\n" + "\n".join("  " + _task_line(t) for t in tasks)


def cmd_task(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /task <id>"

    task = state.manager.get_task(args[0])
    if task is None:
        return f"Task not found: {args[0]}"

    lines = [
        f"Task {task.id}",
        f"  Kind: {task.kind.value}",
        f"  Status: {task.status.value}",
        f"  URL: {task.url}",
        f"  Platform: {task.platform}",
        f"  Progress: {task.progress}%",
        f"  Started: {_fmt_ms(task.start_time)}",
        f"  Finished: {_fmt_ms(task.end_time)}",
        f"  Tokens: {task.tokens_used}",
    ]
    if task.detailed_progress is not None:
        d = task.detailed_progress
        eta = "?" if d.estimated_time_remaining_seconds < 0 else f"{d.estimated_time_remaining_seconds}s"
        lines.append(f"  Stage: {d.stage} {d.current}/{d.total} (eta {eta})")
    if task.error:
        reason = task.failure_reason.value if task.failure_reason else "-"
        lines.append(f"  Error: {task.error} (reason={reason})")

    report = state.results.get(task.id)
    if report:
        lines.append("")
        lines.append(report)
    return "\n".join(lines)


def cmd_analyze(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /analyze <file> [url]
    Queue an AI analysis of the comments in <file> (one per line).
    """
    if not args:
        return "Usage: /analyze <file> [url]"

    path = Path(args[0]).expanduser()
    try:
        comments = load_comments_file(path)
    except OSError as e:
        logger.debug("Cannot read comments file %s", path, exc_info=True)
        return f"Cannot read {path}: {e.strerror or e}"
    if not comments:
        return f"No comments found in {path}."

    url = args[1] if len(args) > 1 else path.resolve().as_uri()

    def _store_result(task: TaskRecord, result: AnalysisResult) -> None:
        state.results[task.id] = result.text
        if emit:
            emit(f"[TASK] Analysis ready: {task.id} (tokens={result.tokens_used}). Use /task {task.id}")

    manager = state.manager
    executor = make_analysis_executor(
        state.analyzer,
        comments,
        report=manager.update_detailed_progress,
        on_result=_store_result,
    )
    task_id = manager.submit(TaskKind.ANALYZE, url, "file", executor, max_items=len(comments))
    logger.debug("Analysis queued task_id=%s comments=%d", task_id, len(comments))
    return f"Analysis queued: {task_id} ({len(comments)} comments)."


def cmd_extract(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /extract <file> [max_items]
    Queue extraction of comments from a local file; the comments become the task report.
    """
    if not args:
        return "Usage: /extract <file> [max_items]"

    max_items: int | None = None
    if len(args) > 1:
        try:
            max_items = int(args[1])
        except ValueError:
            return "Usage: /extract <file> [max_items]"
        if max_items <= 0:
            return "max_items must be positive."

    path = Path(args[0]).expanduser()
    if not path.is_file():
        return f"Cannot read {path}: no such file"
    url = path.resolve().as_uri()

    def _store_result(task: TaskRecord, items: list[str]) -> None:
        state.results[task.id] = "\n".join(items)
        if emit:
            emit(f"[TASK] Extraction ready: {task.id} ({len(items)} comments). Use /task {task.id}")

    manager = state.manager
    executor = make_extraction_executor(
        FileCommentSource(),
        max_items,
        report=manager.update_detailed_progress,
        on_result=_store_result,
    )
    task_id = manager.submit(TaskKind.EXTRACT, url, "file", executor, max_items=max_items)
    logger.debug("Extraction queued task_id=%s url=%s", task_id, url)
    return f"Extraction queued: {task_id}."


def cmd_cancel(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /cancel <id>"
    task = state.manager.get_task(args[0])
    if task is None:
        return f"Task not found: {args[0]}"
    if task.is_terminal:
        return f"Task {task.id} is already {task.status.value}."
    state.manager.cancel_task(task.id)
    return f"Task cancelled: {task.id}"


def cmd_abort(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /abort <id>"
    task = state.manager.get_task(args[0])
    if task is None:
        return f"Task not found: {args[0]}"
    if task.status != TaskStatus.RUNNING:
        return f"Task {task.id} is not running."
    state.manager.abort_task(task.id)
    return f"Abort signalled: {task.id}"


def cmd_clear(state: AppState, args: list[str]) -> str:
    removed = state.manager.clear_finished_tasks()
    return f"Cleared {removed} finished task(s)."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show the running task and task counts.")
registry.register("tasks", cmd_tasks, help_text="List tasks: /tasks [status].", aliases=["ls"])
registry.register("task", cmd_task, help_text="Show one task and its report: /task <id>.")
registry.register("analyze", cmd_analyze, help_text="Queue analysis of a comments file: /analyze <file> [url].")
registry.register("extract", cmd_extract, help_text="Queue extraction of a comments file: /extract <file> [max_items].")
registry.register("cancel", cmd_cancel, help_text="Cancel a pending or running task: /cancel <id>.")
registry.register("abort", cmd_abort, help_text="Signal a running task to stop: /abort <id>.")
registry.register("clear", cmd_clear, help_text="Remove completed and failed tasks.")
