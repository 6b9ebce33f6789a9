# tests/test_retry.py

from __future__ import annotations

import asyncio

import pytest

from comments_insight.core.errors import ErrorCode, InsightError, network_error
from comments_insight.core.retry import RetryConfig, with_retry


class _Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _flaky(failures: list[BaseException], result: str = "ok"):
    calls = {"n": 0}

    async def _fn() -> str:
        calls["n"] += 1
        if failures:
            raise failures.pop(0)
        return result

    return _fn, calls


@pytest.mark.asyncio
async def test_succeeds_after_two_retryable_failures() -> None:
    sleeps = _Sleeps()
    seen: list[tuple[int, str]] = []
    fn, calls = _flaky([network_error("network down"), network_error("network down")])
    cfg = RetryConfig(
        max_attempts=3,
        initial_delay=1.0,
        backoff_multiplier=2.0,
        on_retry=lambda attempt, exc: seen.append((attempt, str(exc))),
    )

    result = await with_retry(fn, cfg, sleep=sleeps)

    assert result == "ok"
    assert calls["n"] == 3
    assert [a for a, _ in seen] == [1, 2]
    assert sleeps.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_non_retryable_error_is_rethrown_immediately() -> None:
    sleeps = _Sleeps()
    err = InsightError(ErrorCode.VALIDATION_ERROR, "bad input")
    fn, calls = _flaky([err])

    with pytest.raises(InsightError) as exc_info:
        await with_retry(fn, RetryConfig(max_attempts=5), sleep=sleeps)

    assert exc_info.value is err
    assert calls["n"] == 1
    assert sleeps.delays == []


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts_with_last_error() -> None:
    sleeps = _Sleeps()
    errors: list[BaseException] = [TimeoutError("t1"), TimeoutError("t2"), TimeoutError("t3")]
    fn, calls = _flaky(errors)

    with pytest.raises(TimeoutError, match="t3"):
        await with_retry(fn, RetryConfig(max_attempts=3), sleep=sleeps)

    assert calls["n"] == 3
    assert len(sleeps.delays) == 2


@pytest.mark.asyncio
async def test_fallback_replaces_final_error() -> None:
    sleeps = _Sleeps()
    fn, _ = _flaky([ConnectionError("reset"), ConnectionError("reset")])

    async def _fallback() -> str:
        return "cached"

    cfg = RetryConfig(max_attempts=2, fallback=_fallback)
    assert await with_retry(fn, cfg, sleep=sleeps) == "cached"


@pytest.mark.asyncio
async def test_fallback_used_for_non_retryable_error() -> None:
    fn, calls = _flaky([ValueError("plain bug")])

    async def _fallback() -> str:
        return "fallback"

    assert await with_retry(fn, RetryConfig(fallback=_fallback), sleep=_Sleeps()) == "fallback"
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_delay_is_capped_by_max_delay() -> None:
    sleeps = _Sleeps()
    fn, _ = _flaky([network_error("x") for _ in range(4)])
    cfg = RetryConfig(max_attempts=5, initial_delay=1.0, max_delay=3.0, backoff_multiplier=2.0)

    await with_retry(fn, cfg, sleep=sleeps)

    assert sleeps.delays == [1.0, 2.0, 3.0, 3.0]


@pytest.mark.asyncio
async def test_error_flag_overrides_retryable_kinds() -> None:
    sleeps = _Sleeps()
    flagged = InsightError(ErrorCode.STORAGE_ERROR, "disk busy", retryable=True)
    fn, calls = _flaky([flagged])

    assert await with_retry(fn, RetryConfig(max_attempts=2), sleep=sleeps) == "ok"
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_on_retry_failure_does_not_stop_retrying() -> None:
    fn, calls = _flaky([network_error("x")])

    def _broken(attempt: int, exc: BaseException) -> None:
        raise RuntimeError("callback")

    cfg = RetryConfig(max_attempts=2, on_retry=_broken)
    assert await with_retry(fn, cfg, sleep=_Sleeps()) == "ok"
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_cancellation_is_not_retried() -> None:
    sleeps = _Sleeps()
    fn, calls = _flaky([asyncio.CancelledError()])

    with pytest.raises(asyncio.CancelledError):
        await with_retry(fn, RetryConfig(max_attempts=3), sleep=sleeps)

    assert calls["n"] == 1
    assert sleeps.delays == []


def test_delay_for_sequence() -> None:
    cfg = RetryConfig(initial_delay=0.5, max_delay=10.0, backoff_multiplier=3.0)
    assert [cfg.delay_for(n) for n in (1, 2, 3, 4)] == [0.5, 1.5, 4.5, 10.0]
