# src/comments_insight/connectors/console_connector.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..tasks.task_models import TaskRecord, TaskStatus

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _describe(task: TaskRecord) -> str | None:
    if task.status == TaskStatus.RUNNING and task.progress == 0:
        return f"[TASK] {task.id} started ({task.kind.value})"
    if task.status == TaskStatus.COMPLETED:
        return f"[TASK] {task.id} completed (tokens={task.tokens_used})"
    if task.status == TaskStatus.FAILED:
        return f"[TASK] {task.id} failed: {task.error}"
    return None


async def _watch_updates(state: AppState) -> None:
    """Print lifecycle transitions; progress ticks stay in the log file."""
    q = state.broadcaster.subscribe()
    last: dict[str, TaskStatus] = {}
    try:
        while True:
            task = await q.get()
            if last.get(task.id) == task.status:
                continue
            last[task.id] = task.status
            line = _describe(task)
            if line:
                _print_ts(line)
    finally:
        state.broadcaster.unsubscribe(q)


def _start_stdin_reader(
    loop: asyncio.AbstractEventLoop,
    lines: asyncio.Queue[str | None],
    ready: threading.Event,
) -> threading.Thread:
    """
    Read stdin in a daemon thread and hand lines to the loop.
    None marks EOF. The reader waits for `ready` before prompting again.
    """

    def _put(item: str | None) -> None:
        # The loop may already be closed during shutdown.
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(lines.put_nowait, item)

    def _reader() -> None:
        while True:
            try:
                line = input(">>> ")
            except (EOFError, KeyboardInterrupt):
                _put(None)
                return
            ready.clear()
            _put(line)
            ready.wait()

    t = threading.Thread(target=_reader, name="console-stdin", daemon=True)
    t.start()
    return t


async def run_console_loop(state: AppState, stop: asyncio.Event | None = None) -> None:
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Use /help for commands. Use /exit to quit.\n")

    watcher = asyncio.create_task(_watch_updates(state), name="console-task-watcher")
    lines: asyncio.Queue[str | None] = asyncio.Queue()
    ready = threading.Event()
    _start_stdin_reader(asyncio.get_running_loop(), lines, ready)

    try:
        while stop is None or not stop.is_set():
            raw = await lines.get()
            if raw is None:
                logger.info("Console EOF received, exiting.")
                break

            user_input = raw.strip()
            if not user_input:
                ready.set()
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            try:
                cmd_response = command_registry.handle(state, user_input, emit=_print_ts)
            except Exception:
                logger.exception("Command handler crashed.")
                cmd_response = "Internal error while handling a command."

            if cmd_response is None:
                cmd_response = "Not a command. Use /help to list available commands."
            _print_ts(cmd_response)
            ready.set()
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher

    logger.info("Console connector finished.")
