# src/comments_insight/connectors/file_source.py

"""
Local text files as a comment source.

One comment per non-empty line. Task URLs may be plain paths or file:// URIs,
so extraction tasks created from the console keep a stable, clickable url.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

from ..core.errors import ErrorCode, InsightError

logger = logging.getLogger(__name__)


def load_comments_file(path: Path) -> list[str]:
    """One comment per non-empty line."""
    text = path.read_text("utf-8")
    return [line.strip() for line in text.splitlines() if line.strip()]


def path_from_url(url: str) -> Path:
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(url2pathname(unquote(parsed.path)))
    return Path(url).expanduser()


class FileCommentSource:
    """
    CommentSource over local files.

    The file is read once per url and served page by page from memory, so
    offsets stay consistent even if the file changes mid-extraction.
    """

    def __init__(self) -> None:
        self._cache: dict[str, list[str]] = {}

    async def fetch_batch(self, url: str, *, offset: int, limit: int) -> Sequence[str]:
        comments = self._cache.get(url)
        if comments is None:
            path = path_from_url(url)
            try:
                comments = await asyncio.to_thread(load_comments_file, path)
            except OSError as e:
                raise InsightError(
                    ErrorCode.EXTRACTION_FAILED,
                    f"Cannot read {path}: {e.strerror or e}",
                    details={"url": url},
                ) from e
            logger.debug("Loaded comments file path=%s count=%d", path, len(comments))
            self._cache[url] = comments

        if offset < 0 or limit <= 0:
            return []
        return comments[offset : offset + limit]
