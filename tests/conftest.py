# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from comments_insight.core.state import AppState
from comments_insight.tasks.notifications import CompositeSink, TaskUpdateBroadcaster
from comments_insight.tasks.task_manager import TaskManager
from comments_insight.tasks.task_store import TaskStore

from .fakes import FakeAnalysisClient, FakeClock, RecordingSink


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="comments-insight-test",
        log_level="DEBUG",
        # Paths (tmp per test run)
        data_dir=tmp_path,
        task_state_path=tmp_path / "task_state.json",
        # Task core
        enable_persistence=False,
        persist_debounce_seconds=0.01,
        max_finished_tasks=20,
        # LLM (offline)
        llm_api_key=None,
        llm_base_url="http://localhost:1/v1",
        llm_model="test-model",
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def store(clock: FakeClock, sink: RecordingSink) -> TaskStore:
    return TaskStore(max_finished_tasks=20, sink=sink, clock=clock)


@pytest.fixture()
def state(settings: SimpleNamespace) -> AppState:
    """AppState wired with deterministic fakes and an in-memory task manager."""
    broadcaster = TaskUpdateBroadcaster()
    return AppState(
        settings=settings,
        manager=TaskManager.from_settings(settings, sink=CompositeSink([broadcaster])),
        analyzer=FakeAnalysisClient(next_text="report"),
        broadcaster=broadcaster,
    )
