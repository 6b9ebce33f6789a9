# src/comments_insight/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time (the AI client falls back to offline mode).
- Policy knobs (retention, debounce, retry) live here instead of in the core.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .core.errors import DEFAULT_RETRYABLE
from .core.retry import RetryConfig

ENV_PREFIX = "INSIGHT"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    task_state_path: Path

    # ---- Task core ----
    enable_persistence: bool
    persist_debounce_seconds: float
    max_finished_tasks: int

    # ---- Retry policy ----
    retry_max_attempts: int
    retry_initial_delay_seconds: float
    retry_max_delay_seconds: float
    retry_backoff_multiplier: float

    # ---- LLM (OpenAI-compatible) ----
    llm_api_key: str | None
    llm_base_url: str
    llm_model: str
    llm_timeout_seconds: float
    llm_max_tokens: int

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.retry_max_attempts,
            initial_delay=self.retry_initial_delay_seconds,
            max_delay=self.retry_max_delay_seconds,
            backoff_multiplier=self.retry_backoff_multiplier,
            retryable_kinds=DEFAULT_RETRYABLE,
        )

    @staticmethod
    def from_env(*, load_env_file: bool = True) -> Settings:
        if load_env_file:
            load_dotenv(override=False)

        app_name = _env(_k("APP_NAME"), "comments-insight")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/insight"))
        task_state_path = _env_path(_k("TASK_STATE_PATH"), data_dir / "task_state.json")

        enable_persistence = _env_bool(_k("ENABLE_PERSISTENCE"), True)
        persist_debounce_seconds = max(0.0, _env_float(_k("PERSIST_DEBOUNCE_SECONDS"), 0.5))
        max_finished_tasks = max(0, _env_int(_k("MAX_FINISHED_TASKS"), 20))

        retry_max_attempts = max(1, _env_int(_k("RETRY_MAX_ATTEMPTS"), 3))
        retry_initial_delay_seconds = max(0.0, _env_float(_k("RETRY_INITIAL_DELAY_SECONDS"), 1.0))
        retry_max_delay_seconds = max(0.0, _env_float(_k("RETRY_MAX_DELAY_SECONDS"), 10.0))
        retry_backoff_multiplier = max(1.0, _env_float(_k("RETRY_BACKOFF_MULTIPLIER"), 2.0))

        llm_api_key = _first_env(_k("LLM_API_KEY"), "OPENAI_API_KEY", default=None)
        llm_base_url = _env(_k("LLM_BASE_URL"), "https://api.openai.com/v1")
        llm_model = _env(_k("LLM_MODEL"), "gpt-4o-mini")
        llm_timeout_seconds = max(1.0, _env_float(_k("LLM_TIMEOUT_SECONDS"), 60.0))
        llm_max_tokens = max(1, _env_int(_k("LLM_MAX_TOKENS"), 4000))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            task_state_path=task_state_path,
            enable_persistence=enable_persistence,
            persist_debounce_seconds=persist_debounce_seconds,
            max_finished_tasks=max_finished_tasks,
            retry_max_attempts=retry_max_attempts,
            retry_initial_delay_seconds=retry_initial_delay_seconds,
            retry_max_delay_seconds=retry_max_delay_seconds,
            retry_backoff_multiplier=retry_backoff_multiplier,
            llm_api_key=llm_api_key,
            llm_base_url=llm_base_url,
            llm_model=llm_model,
            llm_timeout_seconds=llm_timeout_seconds,
            llm_max_tokens=llm_max_tokens,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
