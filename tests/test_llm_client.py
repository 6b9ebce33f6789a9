# tests/test_llm_client.py

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import httpx
import openai
import pytest

from comments_insight.core.errors import ErrorCode, InsightError
from comments_insight.core.retry import RetryConfig
from comments_insight.llm.client import (
    OpenAIAnalysisClient,
    build_prompt,
    friendly_llm_error_message,
    map_openai_error,
)
from comments_insight.llm.offline import OfflineAnalysisClient

_REQ = httpx.Request("POST", "https://api.example.test/v1/chat/completions")


def _status_error(cls: type[openai.APIStatusError], status: int, message: str) -> openai.APIStatusError:
    return cls(message, response=httpx.Response(status, request=_REQ), body=None)


def _response(text: str | None, tokens: int = 42) -> Any:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=SimpleNamespace(total_tokens=tokens),
    )


class _FakeCompletions:
    def __init__(self, outcomes: list[Any]) -> None:
        self.outcomes = outcomes
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class _FakeOpenAI:
    def __init__(self, outcomes: list[Any]) -> None:
        self.chat = SimpleNamespace(completions=_FakeCompletions(outcomes))
        self.closed = False

    async def close(self) -> None:
        self.closed = True


def _client(outcomes: list[Any], attempts: int = 3) -> tuple[OpenAIAnalysisClient, _FakeOpenAI]:
    fake = _FakeOpenAI(outcomes)
    client = OpenAIAnalysisClient(
        api_key="sk-test",
        base_url="https://api.example.test/v1",
        model="test-model",
        retry_config=RetryConfig(max_attempts=attempts, initial_delay=0.0, max_delay=0.0),
        client=fake,
    )
    return client, fake


@pytest.mark.parametrize(
    ("exc", "code", "retryable"),
    [
        (openai.APITimeoutError(request=_REQ), ErrorCode.AI_TIMEOUT, True),
        (openai.APIConnectionError(request=_REQ), ErrorCode.NETWORK_ERROR, True),
        (_status_error(openai.AuthenticationError, 401, "bad key"), ErrorCode.MISSING_API_KEY, False),
        (_status_error(openai.RateLimitError, 429, "slow down"), ErrorCode.AI_RATE_LIMIT, True),
        (_status_error(openai.RateLimitError, 429, "insufficient_quota"), ErrorCode.AI_QUOTA_EXCEEDED, False),
        (_status_error(openai.NotFoundError, 404, "no such model"), ErrorCode.AI_MODEL_NOT_FOUND, False),
        (_status_error(openai.InternalServerError, 503, "overloaded"), ErrorCode.API_ERROR, True),
        (_status_error(openai.BadRequestError, 400, "bad request"), ErrorCode.VALIDATION_ERROR, False),
        (_status_error(openai.UnprocessableEntityError, 422, "too long"), ErrorCode.VALIDATION_ERROR, False),
    ],
)
def test_map_openai_error(exc: Exception, code: ErrorCode, retryable: bool) -> None:
    mapped = map_openai_error(exc)
    assert mapped.code == code
    assert mapped.retryable is retryable


@pytest.mark.asyncio
async def test_analyze_returns_text_and_tokens() -> None:
    client, fake = _client([_response("  report  ", tokens=123)])

    result = await client.analyze(["great video", "meh"])

    assert result.text == "report"
    assert result.tokens_used == 123
    assert result.model == "test-model"
    call = fake.chat.completions.calls[0]
    assert call["model"] == "test-model"
    assert "1. great video" in call["messages"][1]["content"]


@pytest.mark.asyncio
async def test_analyze_retries_rate_limit_then_succeeds() -> None:
    client, fake = _client([_status_error(openai.RateLimitError, 429, "slow down"), _response("ok")])

    result = await client.analyze(["a"])

    assert result.text == "ok"
    assert len(fake.chat.completions.calls) == 2


@pytest.mark.asyncio
async def test_analyze_auth_error_is_not_retried() -> None:
    client, fake = _client([_status_error(openai.AuthenticationError, 401, "bad key"), _response("never")])

    with pytest.raises(InsightError) as exc_info:
        await client.analyze(["a"])

    assert exc_info.value.code == ErrorCode.MISSING_API_KEY
    assert len(fake.chat.completions.calls) == 1


@pytest.mark.asyncio
async def test_analyze_bad_request_is_sent_once() -> None:
    client, fake = _client([_status_error(openai.BadRequestError, 400, "bad request"), _response("never")])

    with pytest.raises(InsightError) as exc_info:
        await client.analyze(["a"])

    assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
    assert len(fake.chat.completions.calls) == 1


@pytest.mark.asyncio
async def test_empty_content_is_invalid_response() -> None:
    client, _ = _client([_response(""), _response(None)], attempts=2)

    with pytest.raises(InsightError) as exc_info:
        await client.analyze(["a"])
    assert exc_info.value.code == ErrorCode.AI_INVALID_RESPONSE


@pytest.mark.asyncio
async def test_missing_api_key_fails_on_first_use() -> None:
    client = OpenAIAnalysisClient(api_key=None, base_url="https://x/v1", model="m")

    with pytest.raises(InsightError) as exc_info:
        await client.analyze(["a"])
    assert exc_info.value.code == ErrorCode.MISSING_API_KEY
    assert "INSIGHT_LLM_API_KEY" in friendly_llm_error_message(exc_info.value)


@pytest.mark.asyncio
async def test_aclose_closes_sdk_client() -> None:
    client, fake = _client([])
    await client.aclose()
    assert fake.closed


def test_build_prompt_uses_custom_template() -> None:
    prompt = build_prompt(["one", "  two\nlines "], "N={count}\n{comments}")
    assert prompt == "N=2\n1. one\n2. two lines"


@pytest.mark.asyncio
async def test_offline_client_is_deterministic() -> None:
    client = OfflineAnalysisClient()
    comments = ["Great video, great editing!", "The editing was great"]

    first = await client.analyze(comments)
    second = await client.analyze(comments)

    assert first == second
    assert first.tokens_used == 8
    assert "great (3)" in first.text
    assert "Comments: 2" in first.text


@pytest.mark.asyncio
async def test_offline_client_rejects_empty_input() -> None:
    with pytest.raises(InsightError) as exc_info:
        await OfflineAnalysisClient().analyze([])
    assert exc_info.value.code == ErrorCode.NO_COMMENTS_FOUND
