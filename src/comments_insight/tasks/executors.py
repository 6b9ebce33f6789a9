# src/comments_insight/tasks/executors.py

"""
Ready-made executors for the two task kinds.

An executor is a coroutine function (task, token) -> result. The factories here
close over their inputs and report progress through a callback, usually
TaskManager.update_detailed_progress.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from ..core.errors import ErrorCode, InsightError, TaskCancelledError
from ..core.ports import AnalysisClient, AnalysisResult, CommentSource, Executor
from .cancellation import CancellationToken
from .task_models import DetailedProgressUpdate, ProgressStage, TaskRecord, TaskResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressReporter = Callable[[str, DetailedProgressUpdate], None]

DEFAULT_ANALYSIS_BATCH_SIZE = 200
DEFAULT_EXTRACTION_BATCH_SIZE = 50
DEFAULT_MAX_ITEMS = 1000


def _report(
    reporter: ProgressReporter | None,
    task_id: str,
    stage: ProgressStage,
    current: int,
    total: int,
    message: str | None = None,
) -> None:
    if reporter is None:
        return
    try:
        reporter(task_id, DetailedProgressUpdate(stage.value, current, total, message))
    except Exception:
        logger.debug("Progress reporter failed task_id=%s", task_id, exc_info=True)


async def _cancellable(coro: Awaitable[T], token: CancellationToken, task_id: str) -> T:
    """Await coro unless the token fires first; then the call is cancelled."""
    call = asyncio.ensure_future(coro)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        call.cancel()
        raise
    finally:
        waiter.cancel()

    if call not in done:
        call.cancel()
        raise TaskCancelledError(task_id, token.reason)
    return call.result()


def _batches(items: Sequence[str], size: int) -> list[Sequence[str]]:
    size = max(1, size)
    return [items[i : i + size] for i in range(0, len(items), size)]


def make_analysis_executor(
    client: AnalysisClient,
    comments: Sequence[str],
    *,
    report: ProgressReporter | None = None,
    prompt: str | None = None,
    batch_size: int = DEFAULT_ANALYSIS_BATCH_SIZE,
    on_result: Callable[[TaskRecord, AnalysisResult], None] | None = None,
) -> Executor:
    """
    Analyze comments in batches. Each batch is one AI call; partial reports are
    joined in order and token usage is summed.
    """
    items = [str(c) for c in comments]

    async def _run(task: TaskRecord, token: CancellationToken) -> TaskResult:
        _report(report, task.id, ProgressStage.INITIALIZING, 0, 1)
        if not items:
            raise InsightError(ErrorCode.NO_COMMENTS_FOUND, "No comments to analyze")

        batches = _batches(items, batch_size)
        texts: list[str] = []
        tokens = 0
        model: str | None = None

        for i, batch in enumerate(batches):
            token.raise_if_cancelled()
            _report(report, task.id, ProgressStage.ANALYZING, i, len(batches), f"batch {i + 1}/{len(batches)}")
            result: AnalysisResult = await _cancellable(client.analyze(batch, prompt=prompt), token, task.id)
            texts.append(result.text)
            tokens += result.tokens_used
            model = result.model or model

        token.raise_if_cancelled()
        _report(report, task.id, ProgressStage.VALIDATING, len(batches), len(batches))

        merged = AnalysisResult(text="\n\n".join(texts), tokens_used=tokens, model=model)
        if on_result is not None:
            on_result(task, merged)

        _report(report, task.id, ProgressStage.COMPLETE, len(batches), len(batches))
        logger.info("Analysis finished task_id=%s comments=%d batches=%d", task.id, len(items), len(batches))
        return TaskResult(tokens_used=tokens, item_count=len(items))

    return _run


def make_extraction_executor(
    source: CommentSource,
    max_items: int | None = None,
    *,
    report: ProgressReporter | None = None,
    batch_size: int = DEFAULT_EXTRACTION_BATCH_SIZE,
    on_result: Callable[[TaskRecord, list[str]], None] | None = None,
) -> Executor:
    """
    Pull comments from source page by page until it runs dry or max_items is
    reached. The token is checked between pages.
    """

    async def _run(task: TaskRecord, token: CancellationToken) -> TaskResult:
        limit = max_items or task.max_items or DEFAULT_MAX_ITEMS
        _report(report, task.id, ProgressStage.INITIALIZING, 0, 1)
        _report(report, task.id, ProgressStage.DETECTING, 0, 1, task.platform)

        collected: list[str] = []
        while len(collected) < limit:
            token.raise_if_cancelled()
            want = min(batch_size, limit - len(collected))
            batch = await _cancellable(
                source.fetch_batch(task.url, offset=len(collected), limit=want),
                token,
                task.id,
            )
            if not batch:
                break
            collected.extend(str(c) for c in batch[:want])
            _report(report, task.id, ProgressStage.EXTRACTING, len(collected), limit)

        token.raise_if_cancelled()
        _report(report, task.id, ProgressStage.VALIDATING, len(collected), len(collected))
        if not collected:
            raise InsightError(ErrorCode.NO_COMMENTS_FOUND, f"No comments found at {task.url}")

        if on_result is not None:
            on_result(task, collected)

        _report(report, task.id, ProgressStage.COMPLETE, len(collected), len(collected))
        logger.info("Extraction finished task_id=%s items=%d", task.id, len(collected))
        return TaskResult(item_count=len(collected))

    return _run
