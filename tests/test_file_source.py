# tests/test_file_source.py

from __future__ import annotations

from pathlib import Path

import pytest

from comments_insight.connectors.file_source import FileCommentSource, load_comments_file, path_from_url
from comments_insight.core.errors import ErrorCode, InsightError


def test_load_comments_file_skips_blank_lines(tmp_path: Path) -> None:
    f = tmp_path / "c.txt"
    f.write_text("  first \n\n\nsecond\n   \n", "utf-8")
    assert load_comments_file(f) == ["first", "second"]


def test_path_from_url_accepts_uri_and_plain_path(tmp_path: Path) -> None:
    f = tmp_path / "with space.txt"
    assert path_from_url(f.resolve().as_uri()) == f.resolve()
    assert path_from_url(str(f)) == f


@pytest.mark.asyncio
async def test_fetch_batch_pages_through_file(tmp_path: Path) -> None:
    f = tmp_path / "c.txt"
    f.write_text("\n".join(f"c{i}" for i in range(5)), "utf-8")
    source = FileCommentSource()
    url = f.resolve().as_uri()

    assert await source.fetch_batch(url, offset=0, limit=2) == ["c0", "c1"]
    f.write_text("changed", "utf-8")
    assert await source.fetch_batch(url, offset=2, limit=10) == ["c2", "c3", "c4"]
    assert await source.fetch_batch(url, offset=5, limit=2) == []


@pytest.mark.asyncio
async def test_missing_file_is_extraction_failure(tmp_path: Path) -> None:
    with pytest.raises(InsightError) as exc_info:
        await FileCommentSource().fetch_batch(str(tmp_path / "nope.txt"), offset=0, limit=5)
    assert exc_info.value.code == ErrorCode.EXTRACTION_FAILED
