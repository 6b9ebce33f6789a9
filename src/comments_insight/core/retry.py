# src/comments_insight/core/retry.py

"""
Generic async retry with exponential backoff.

Used by the AI client (transient API failures) and by task-state persistence
(transient storage failures). The wrapped function is re-invoked from scratch on
every attempt, so it must be safe to repeat.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .errors import DEFAULT_RETRYABLE, ErrorCode, classify_error, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")

OnRetry = Callable[[int, BaseException], None]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class RetryConfig:
    """
    Retry policy. Delays are in seconds.

    The delay before attempt N+1 is
    min(initial_delay * backoff_multiplier ** (N - 1), max_delay).
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_kinds: frozenset[ErrorCode] = field(default_factory=lambda: DEFAULT_RETRYABLE)
    on_retry: OnRetry | None = None
    fallback: Callable[[], Awaitable[Any]] | None = None

    def delay_for(self, attempt: int) -> float:
        delay = self.initial_delay * (self.backoff_multiplier ** (attempt - 1))
        return max(0.0, min(delay, self.max_delay))


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    *,
    context: str = "",
    sleep: Sleep = asyncio.sleep,
) -> T:
    """
    Call fn() until it succeeds or the policy gives up.

    Gives up immediately on a non-retryable error and after max_attempts on a
    retryable one. On give-up the configured fallback is awaited and its result
    (or error) replaces the failure; without a fallback the last error is
    re-raised unchanged.
    """
    cfg: RetryConfig = config if config is not None else RetryConfig()
    ctx = context or getattr(fn, "__qualname__", "operation")
    attempts = max(1, int(cfg.max_attempts))

    for attempt in range(1, attempts + 1):
        try:
            logger.debug("[%s] attempt %d/%d", ctx, attempt, attempts)
            return await fn()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            retryable = is_retryable(exc, cfg.retryable_kinds)
            logger.warning(
                "[%s] attempt %d/%d failed code=%s retryable=%s: %s",
                ctx,
                attempt,
                attempts,
                classify_error(exc).value,
                retryable,
                exc,
            )

            if not retryable or attempt == attempts:
                if not retryable:
                    logger.error("[%s] error is not retryable, giving up", ctx)
                else:
                    logger.error("[%s] max retry attempts reached (%d), giving up", ctx, attempts)
                if cfg.fallback is not None:
                    logger.info("[%s] using fallback", ctx)
                    return await cfg.fallback()
                raise

            if cfg.on_retry is not None:
                try:
                    cfg.on_retry(attempt, exc)
                except Exception:
                    logger.exception("[%s] on_retry callback failed", ctx)

            delay = cfg.delay_for(attempt)
            logger.debug("[%s] waiting %.3fs before retry", ctx, delay)
            await sleep(delay)

    # Unreachable: the loop either returns or raises.
    raise RuntimeError(f"[{ctx}] retry loop exited without a result")
