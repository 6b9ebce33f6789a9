# src/comments_insight/tasks/kv_store.py

"""
Durable key-value stores for task-state snapshots.

- MemoryKeyValueStore: process-local, used when persistence is disabled and in tests
- JsonFileKeyValueStore: one JSON document on disk, written atomically
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import json
import logging
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from ..core.errors import ErrorCode, PersistenceError

logger = logging.getLogger(__name__)


def _keys(keys: str | Iterable[str]) -> list[str]:
    if isinstance(keys, str):
        return [keys]
    return [str(k) for k in keys]


class MemoryKeyValueStore:
    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def get(self, key: str) -> Any | None:
        value = self._data.get(key)
        return copy.deepcopy(value)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def remove(self, keys: str | Iterable[str]) -> None:
        for k in _keys(keys):
            self._data.pop(k, None)


class JsonFileKeyValueStore:
    """
    All keys live in a single JSON object.

    Writes go to a temp file which then replaces the target (os.replace), so a
    crash mid-write leaves the previous document intact. File I/O runs in a worker
    thread; an asyncio.Lock serialises read-modify-write cycles.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text("utf-8"))
        except json.JSONDecodeError:
            logger.warning("Key-value file %s is not valid JSON; starting empty", self._path)
            return {}
        except OSError as e:
            raise PersistenceError(
                f"storage read failed: {e}", code=ErrorCode.STORAGE_READ_ERROR
            ) from e
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, ensure_ascii=False), "utf-8")
            os.replace(tmp, self._path)
        except OSError as e:
            raise PersistenceError(
                f"storage write failed: {e}", code=ErrorCode.STORAGE_WRITE_ERROR
            ) from e
        with contextlib.suppress(OSError):
            os.chmod(self._path, 0o600)

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
        return data.get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            data[key] = value
            await asyncio.to_thread(self._write_all, data)

    async def remove(self, keys: str | Iterable[str]) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            changed = False
            for k in _keys(keys):
                if k in data:
                    del data[k]
                    changed = True
            if changed:
                await asyncio.to_thread(self._write_all, data)
