# tests/test_config.py

from __future__ import annotations

import importlib.util
import os
import re
from pathlib import Path

import pytest

from comments_insight import config as config_mod
from comments_insight.config import Settings
from comments_insight.core.errors import DEFAULT_RETRYABLE


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in list(os.environ):
        if name.startswith("INSIGHT_") or name == "OPENAI_API_KEY":
            monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env: pytest.MonkeyPatch) -> None:
    s = Settings.from_env(load_env_file=False)

    assert s.enable_persistence is True
    assert s.persist_debounce_seconds == 0.5
    assert s.max_finished_tasks == 20
    assert s.retry_max_attempts == 3
    assert s.llm_api_key is None
    assert s.task_state_path == Path(".local/insight") / "task_state.json"


def test_env_overrides(clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
    clean_env.setenv("INSIGHT_DATA_DIR", str(tmp_path))
    clean_env.setenv("INSIGHT_ENABLE_PERSISTENCE", "off")
    clean_env.setenv("INSIGHT_MAX_FINISHED_TASKS", "3")
    clean_env.setenv("INSIGHT_PERSIST_DEBOUNCE_SECONDS", "not-a-number")
    clean_env.setenv("OPENAI_API_KEY", "sk-fallback")

    s = Settings.from_env(load_env_file=False)

    assert s.data_dir == tmp_path
    assert s.task_state_path == tmp_path / "task_state.json"
    assert s.enable_persistence is False
    assert s.max_finished_tasks == 3
    assert s.persist_debounce_seconds == 0.5
    assert s.llm_api_key == "sk-fallback"


def test_retry_config_from_settings(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("INSIGHT_RETRY_MAX_ATTEMPTS", "5")
    clean_env.setenv("INSIGHT_RETRY_INITIAL_DELAY_SECONDS", "0.25")

    cfg = Settings.from_env(load_env_file=False).retry_config()

    assert cfg.max_attempts == 5
    assert cfg.initial_delay == 0.25
    assert cfg.max_delay == 10.0
    assert cfg.retryable_kinds == DEFAULT_RETRYABLE


def test_config_example_documents_every_variable() -> None:
    example = Path(__file__).resolve().parents[1] / "config.example.py"
    spec = importlib.util.spec_from_file_location("config_example", example)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    source = Path(config_mod.__file__).read_text("utf-8")
    read_keys = {f"INSIGHT_{m}" for m in re.findall(r'_k\("([A-Z_]+)"\)', source)}

    assert read_keys
    assert read_keys == set(module.ENV_VARS)
