# src/comments_insight/llm/client.py

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import openai
from openai import AsyncOpenAI

from ..core.errors import (
    ErrorCode,
    InsightError,
    ai_error,
    classify_error,
    config_error,
    friendly_error_message,
    network_error,
)
from ..core.ports import AnalysisResult
from ..core.retry import RetryConfig, with_retry

logger = logging.getLogger(__name__)

DEFAULT_ANALYSIS_PROMPT = """You are a professional social media analyst. Analyze the following comments and provide insights.

## Comments ({count}):
{comments}

## Analysis Requirements:
1. Sentiment: share of positive, negative and neutral comments
2. Hot comments: the most engaging comments and why
3. Key insights: main themes, concerns and trends

Return a concise report in Markdown."""

SYSTEM_PROMPT = "You analyze audience comments and report findings accurately. Do not invent comments."


def _is_auth_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return True
    return exc.__class__.__name__ in {"UnauthorizedError"}


def _is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    return exc.__class__.__name__ in {"RateLimitError", "TooManyRequestsError"}


def _is_timeout_error(exc: Exception) -> bool:
    if isinstance(exc, openai.APITimeoutError):
        return True
    return exc.__class__.__name__ in {"Timeout", "ConnectTimeout", "ReadTimeout", "WriteTimeout"}


def _is_connection_error(exc: Exception) -> bool:
    return isinstance(exc, openai.APIConnectionError)


def _is_not_found_error(exc: Exception) -> bool:
    # OpenAI-compatible SDK uses NotFoundError for HTTP 404 (unknown model / wrong base URL)
    return isinstance(exc, openai.NotFoundError)


def _is_quota_error(exc: Exception) -> bool:
    msg = str(exc).lower()
    return "quota" in msg or "insufficient" in msg


def map_openai_error(exc: Exception) -> InsightError:
    """Translate an SDK exception into an InsightError with the right retry flag."""
    if isinstance(exc, InsightError):
        return exc

    msg = str(exc).strip() or exc.__class__.__name__

    # Timeout is a subclass of APIConnectionError; check it first.
    if _is_timeout_error(exc):
        return ai_error(ErrorCode.AI_TIMEOUT, f"AI request timed out: {msg}")
    if _is_connection_error(exc):
        return network_error(f"AI endpoint unreachable: {msg}")
    if _is_auth_error(exc):
        return config_error(ErrorCode.MISSING_API_KEY, f"AI authentication failed: {msg}")
    if _is_rate_limit_error(exc):
        if _is_quota_error(exc):
            return ai_error(ErrorCode.AI_QUOTA_EXCEEDED, msg)
        return ai_error(ErrorCode.AI_RATE_LIMIT, msg)
    if _is_not_found_error(exc):
        return ai_error(ErrorCode.AI_MODEL_NOT_FOUND, f"Model not found: {msg}")
    if isinstance(exc, openai.APIStatusError):
        status = getattr(exc, "status_code", None)
        if status is not None and status >= 500:
            return InsightError(ErrorCode.API_ERROR, msg, details={"status": status}, retryable=True)
        # 4xx other than the cases above
        return InsightError(ErrorCode.VALIDATION_ERROR, msg, details={"status": status})

    code = classify_error(exc)
    return InsightError(code, msg)


def friendly_llm_error_message(err: Exception) -> str:
    if isinstance(err, InsightError):
        return err.user_message()
    return friendly_error_message(classify_error(err), str(err).strip() or "LLM error.")


def format_comments(comments: Sequence[str]) -> str:
    lines = []
    for i, c in enumerate(comments, start=1):
        text = " ".join(str(c).split())
        if text:
            lines.append(f"{i}. {text}")
    return "\n".join(lines)


def build_prompt(comments: Sequence[str], template: str | None = None) -> str:
    tpl = template or DEFAULT_ANALYSIS_PROMPT
    return tpl.replace("{count}", str(len(comments))).replace("{comments}", format_comments(comments))


class OpenAIAnalysisClient:
    """
    Comment analysis over any OpenAI-compatible chat completions endpoint.

    IMPORTANT:
    - No secrets required at construction; a missing key fails on first use.
    - SDK retries are disabled, retries go through with_retry so that
      backoff and error classification stay in one place.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        model: str,
        timeout_seconds: float = 60.0,
        max_tokens: int = 4000,
        temperature: float = 0.7,
        retry_config: RetryConfig | None = None,
        client: Any | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._model = model
        self._timeout = timeout_seconds
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._retry = retry_config or RetryConfig()
        self._client = client

    @classmethod
    def from_settings(cls, settings: Any) -> OpenAIAnalysisClient:
        return cls(
            api_key=getattr(settings, "llm_api_key", None),
            base_url=str(getattr(settings, "llm_base_url", "") or ""),
            model=str(getattr(settings, "llm_model", "") or ""),
            timeout_seconds=float(getattr(settings, "llm_timeout_seconds", 60.0)),
            max_tokens=int(getattr(settings, "llm_max_tokens", 4000)),
            retry_config=settings.retry_config() if hasattr(settings, "retry_config") else None,
        )

    @property
    def model(self) -> str:
        return self._model

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        if not self._api_key or not str(self._api_key).strip():
            raise config_error(ErrorCode.MISSING_API_KEY, "LLM API key is not set")
        if not self._base_url.strip():
            raise config_error(ErrorCode.INVALID_API_URL, "LLM base URL is not set")
        if not self._model.strip():
            raise config_error(ErrorCode.INVALID_CONFIG, "LLM model is not set")

        self._client = AsyncOpenAI(
            api_key=str(self._api_key),
            base_url=self._base_url,
            timeout=self._timeout,
            max_retries=0,
        )
        return self._client

    async def _complete(self, prompt: str) -> AnalysisResult:
        client = self._get_client()
        try:
            resp = await client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self._max_tokens,
                temperature=self._temperature,
            )
        except openai.OpenAIError as e:
            raise map_openai_error(e) from e

        try:
            content = resp.choices[0].message.content
        except (AttributeError, IndexError):
            content = None
        if not content or not str(content).strip():
            raise ai_error(ErrorCode.AI_INVALID_RESPONSE, "Model returned no content")

        usage = getattr(resp, "usage", None)
        tokens = int(getattr(usage, "total_tokens", 0) or 0)
        logger.info("LLM: analysis done model=%s tokens=%d", self._model, tokens)
        return AnalysisResult(text=str(content).strip(), tokens_used=tokens, model=self._model)

    async def analyze(self, comments: Sequence[str], *, prompt: str | None = None) -> AnalysisResult:
        if not comments:
            raise InsightError(ErrorCode.NO_COMMENTS_FOUND, "No comments to analyze")

        full_prompt = build_prompt(comments, prompt)
        logger.debug("LLM: analyzing %d comments with model=%s", len(comments), self._model)
        return await with_retry(
            lambda: self._complete(full_prompt),
            self._retry,
            context="OpenAIAnalysisClient.analyze",
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
