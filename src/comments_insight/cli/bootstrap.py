# src/comments_insight/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (task manager, AI client, sinks).
"""

from __future__ import annotations

import logging
from pathlib import Path

from ..config import get_settings
from ..core.ports import AnalysisClient, KeyValueStore
from ..core.state import AppState
from ..llm.client import OpenAIAnalysisClient
from ..llm.offline import OfflineAnalysisClient
from ..tasks.kv_store import JsonFileKeyValueStore, MemoryKeyValueStore
from ..tasks.notifications import CompositeSink, LoggingNotificationSink, TaskUpdateBroadcaster
from ..tasks.task_manager import TaskManager

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    Path(settings.data_dir).mkdir(parents=True, exist_ok=True)
    Path(settings.task_state_path).parent.mkdir(parents=True, exist_ok=True)


def build_analysis_client(settings) -> AnalysisClient:
    """Real client when an API key is configured, offline demo client otherwise."""
    api_key = getattr(settings, "llm_api_key", None)
    if not api_key or not str(api_key).strip():
        logger.info("No LLM API key configured; using offline analysis")
        return OfflineAnalysisClient()
    return OpenAIAnalysisClient.from_settings(settings)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    The returned manager still has to be initialized (await state.manager.initialize()).
    """
    if settings is None:
        settings = get_settings()

    kv_store: KeyValueStore
    if getattr(settings, "enable_persistence", False):
        _ensure_local_dirs(settings)
        kv_store = JsonFileKeyValueStore(settings.task_state_path)
    else:
        kv_store = MemoryKeyValueStore()

    broadcaster = TaskUpdateBroadcaster()
    sink = CompositeSink([broadcaster, LoggingNotificationSink()])

    state = AppState(
        settings=settings,
        manager=TaskManager.from_settings(settings, kv_store=kv_store, sink=sink),
        analyzer=build_analysis_client(settings),
        broadcaster=broadcaster,
    )
    return state
