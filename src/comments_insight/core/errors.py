# src/comments_insight/core/errors.py

"""
Error taxonomy shared by the task core, the retry executor and the AI client.

Every failure that crosses a component boundary is normalised to an InsightError
carrying an ErrorCode and a "retryable" flag. The retry executor uses both to
decide whether another attempt makes sense.
"""

from __future__ import annotations

import time
from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    # Network
    NETWORK_ERROR = "NETWORK_ERROR"
    API_ERROR = "API_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"

    # AI
    AI_TIMEOUT = "AI_TIMEOUT"
    AI_RATE_LIMIT = "AI_RATE_LIMIT"
    AI_INVALID_RESPONSE = "AI_INVALID_RESPONSE"
    AI_QUOTA_EXCEEDED = "AI_QUOTA_EXCEEDED"
    AI_MODEL_NOT_FOUND = "AI_MODEL_NOT_FOUND"

    # Extraction
    PLATFORM_NOT_SUPPORTED = "PLATFORM_NOT_SUPPORTED"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    NO_COMMENTS_FOUND = "NO_COMMENTS_FOUND"

    # Storage
    STORAGE_QUOTA_EXCEEDED = "STORAGE_QUOTA_EXCEEDED"
    STORAGE_ERROR = "STORAGE_ERROR"
    STORAGE_READ_ERROR = "STORAGE_READ_ERROR"
    STORAGE_WRITE_ERROR = "STORAGE_WRITE_ERROR"

    # Configuration
    INVALID_CONFIG = "INVALID_CONFIG"
    MISSING_API_KEY = "MISSING_API_KEY"
    INVALID_API_URL = "INVALID_API_URL"

    # Tasks
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    TASK_ALREADY_RUNNING = "TASK_ALREADY_RUNNING"
    TASK_CANCELLED = "TASK_CANCELLED"

    # General
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PERMISSION_DENIED = "PERMISSION_DENIED"


# Kinds retried by default when an error does not carry its own flag.
DEFAULT_RETRYABLE: frozenset[ErrorCode] = frozenset(
    {
        ErrorCode.NETWORK_ERROR,
        ErrorCode.AI_TIMEOUT,
        ErrorCode.TIMEOUT_ERROR,
        ErrorCode.API_ERROR,
    }
)

STORAGE_RETRYABLE: frozenset[ErrorCode] = frozenset(
    {
        ErrorCode.STORAGE_ERROR,
        ErrorCode.STORAGE_READ_ERROR,
        ErrorCode.STORAGE_WRITE_ERROR,
        ErrorCode.TIMEOUT_ERROR,
    }
)


class InsightError(Exception):
    """Application error with a machine-readable code."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = dict(details or {})
        self.retryable = retryable
        self.timestamp = int(time.time() * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
            "retryable": self.retryable,
        }

    def user_message(self) -> str:
        return friendly_error_message(self.code, self.message)


class TaskNotFoundError(InsightError):
    def __init__(self, task_id: str) -> None:
        super().__init__(
            ErrorCode.TASK_NOT_FOUND,
            f"Task not found: {task_id}",
            details={"task_id": task_id},
        )
        self.task_id = task_id


class TaskAlreadyRunningError(InsightError):
    def __init__(self, task_id: str, running_id: str) -> None:
        super().__init__(
            ErrorCode.TASK_ALREADY_RUNNING,
            f"Cannot start {task_id}: task {running_id} is already running",
            details={"task_id": task_id, "running_task_id": running_id},
        )
        self.task_id = task_id
        self.running_id = running_id


class TaskCancelledError(InsightError):
    """Raised by executors that observe their cancellation token."""

    def __init__(self, task_id: str | None = None, reason: str | None = None) -> None:
        super().__init__(
            ErrorCode.TASK_CANCELLED,
            reason or "Task cancelled",
            details={"task_id": task_id} if task_id else None,
        )
        self.task_id = task_id


class PersistenceError(InsightError):
    def __init__(self, message: str, *, code: ErrorCode = ErrorCode.STORAGE_ERROR, retryable: bool = True) -> None:
        super().__init__(code, message, retryable=retryable)


# ---- factories ----


def network_error(message: str, details: dict[str, Any] | None = None) -> InsightError:
    return InsightError(ErrorCode.NETWORK_ERROR, message, details=details, retryable=True)


def ai_error(code: ErrorCode, message: str, details: dict[str, Any] | None = None) -> InsightError:
    retryable = code in (ErrorCode.AI_TIMEOUT, ErrorCode.AI_RATE_LIMIT)
    return InsightError(code, message, details=details, retryable=retryable)


def storage_error(message: str, details: dict[str, Any] | None = None) -> InsightError:
    return InsightError(ErrorCode.STORAGE_ERROR, message, details=details, retryable=False)


def config_error(code: ErrorCode, message: str, details: dict[str, Any] | None = None) -> InsightError:
    return InsightError(code, message, details=details, retryable=False)


# ---- classification ----

# Ordered: the first matching rule wins.
_MESSAGE_RULES: tuple[tuple[tuple[str, ...], ErrorCode], ...] = (
    (("network", "fetch", "connection reset", "connection refused"), ErrorCode.NETWORK_ERROR),
    (("timeout", "timed out"), ErrorCode.TIMEOUT_ERROR),
    (("rate limit", "too many requests"), ErrorCode.AI_RATE_LIMIT),
    (("quota", "insufficient"), ErrorCode.AI_QUOTA_EXCEEDED),
    (("model not found", "invalid model"), ErrorCode.AI_MODEL_NOT_FOUND),
    (("invalid json", "parse"), ErrorCode.AI_INVALID_RESPONSE),
    (("storage",), ErrorCode.STORAGE_ERROR),
    (("api key", "apikey"), ErrorCode.MISSING_API_KEY),
    (("api url", "endpoint"), ErrorCode.INVALID_API_URL),
    (("task not found",), ErrorCode.TASK_NOT_FOUND),
    (("cancelled",), ErrorCode.TASK_CANCELLED),
    (("no comments",), ErrorCode.NO_COMMENTS_FOUND),
)


def classify_error(exc: BaseException) -> ErrorCode:
    """Infer an ErrorCode from the exception type, then from its message."""
    if isinstance(exc, InsightError):
        return exc.code
    if isinstance(exc, TimeoutError):
        return ErrorCode.TIMEOUT_ERROR
    if isinstance(exc, ConnectionError):
        return ErrorCode.NETWORK_ERROR
    if isinstance(exc, PermissionError):
        return ErrorCode.PERMISSION_DENIED

    msg = str(exc).lower()
    if "platform" in msg and "not supported" in msg:
        return ErrorCode.PLATFORM_NOT_SUPPORTED
    for patterns, code in _MESSAGE_RULES:
        if any(p in msg for p in patterns):
            return code
    return ErrorCode.UNKNOWN_ERROR


def is_retryable(exc: BaseException, retryable_kinds: frozenset[ErrorCode] | set[ErrorCode]) -> bool:
    if getattr(exc, "retryable", False) is True:
        return True
    return classify_error(exc) in retryable_kinds


_FRIENDLY: dict[ErrorCode, str] = {
    ErrorCode.NETWORK_ERROR: "Network connection failed. Please check your internet connection and try again.",
    ErrorCode.API_ERROR: "API request failed. Please check your API configuration.",
    ErrorCode.TIMEOUT_ERROR: "Request timed out. Please try again.",
    ErrorCode.AI_TIMEOUT: "AI request timed out. The model may be overloaded. Please try again.",
    ErrorCode.AI_RATE_LIMIT: "Rate limit exceeded. Please wait a moment before trying again.",
    ErrorCode.AI_INVALID_RESPONSE: "AI returned an invalid response. Please try again or use a different model.",
    ErrorCode.AI_QUOTA_EXCEEDED: "API quota exceeded. Please check your API account or try again later.",
    ErrorCode.AI_MODEL_NOT_FOUND: "The selected AI model was not found. Please check your model configuration.",
    ErrorCode.PLATFORM_NOT_SUPPORTED: "This platform is not supported yet.",
    ErrorCode.EXTRACTION_FAILED: "Failed to extract comments. The page structure may have changed.",
    ErrorCode.NO_COMMENTS_FOUND: "No comments found on this page.",
    ErrorCode.STORAGE_QUOTA_EXCEEDED: "Storage quota exceeded. Please delete some history items to free up space.",
    ErrorCode.STORAGE_ERROR: "Storage operation failed. Please try again.",
    ErrorCode.STORAGE_READ_ERROR: "Failed to read from storage. Please try again.",
    ErrorCode.STORAGE_WRITE_ERROR: "Failed to write to storage. Please try again.",
    ErrorCode.INVALID_CONFIG: "Invalid configuration. Please check your settings.",
    ErrorCode.MISSING_API_KEY: "API key is missing. Set INSIGHT_LLM_API_KEY in your .env.",
    ErrorCode.INVALID_API_URL: "Invalid API URL. Please check your API configuration.",
    ErrorCode.TASK_NOT_FOUND: "Task not found. It may have been cancelled or completed.",
    ErrorCode.TASK_ALREADY_RUNNING: "A task is already running. Please wait for it to complete.",
    ErrorCode.TASK_CANCELLED: "Task was cancelled.",
    ErrorCode.VALIDATION_ERROR: "Validation failed. Please check your input.",
    ErrorCode.PERMISSION_DENIED: "Permission denied.",
}


def friendly_error_message(code: ErrorCode, technical_message: str = "") -> str:
    if code == ErrorCode.UNKNOWN_ERROR:
        return technical_message or "An unknown error occurred. Please try again."
    return _FRIENDLY.get(code) or technical_message or "An error occurred."
