# tests/test_progress.py

from __future__ import annotations

import pytest

from comments_insight.tasks.progress import ETA_UNKNOWN, ProgressTranslator
from comments_insight.tasks.task_models import DetailedProgressUpdate


@pytest.mark.parametrize(
    ("stage", "current", "total", "expected"),
    [
        ("extracting", 50, 100, 50),
        ("extracting", 0, 100, 25),
        ("extracting", 250, 100, 75),
        ("initializing", 1, 2, 2.5),
        ("validating", 1, 1, 95),
        ("complete", 0, 0, 100),
        ("scrolling", 3, 0, 75),
    ],
)
def test_percent_for_stage(stage: str, current: int, total: int, expected: float) -> None:
    assert ProgressTranslator().percent_for(stage, current, total) == pytest.approx(expected)


def test_unknown_stage_uses_plain_ratio() -> None:
    t = ProgressTranslator()
    assert t.percent_for("thinking", 3, 4) == pytest.approx(75)
    assert t.percent_for("thinking", 3, 0) == 0


def test_custom_stage_table() -> None:
    t = ProgressTranslator({"fetch": (0, 80), "write": (80, 20)})
    assert t.percent_for("fetch", 1, 2) == pytest.approx(40)
    assert t.percent_for("write", 1, 2) == pytest.approx(90)


def test_eta_requires_meaningful_progress() -> None:
    assert ProgressTranslator.estimate_seconds(5.0, 10_000) == ETA_UNKNOWN
    assert ProgressTranslator.estimate_seconds(100.0, 10_000) == ETA_UNKNOWN
    assert ProgressTranslator.estimate_seconds(50.0, 0) == ETA_UNKNOWN
    # 20% in 4s -> 16s left
    assert ProgressTranslator.estimate_seconds(20.0, 4_000) == 16
    # rounds up
    assert ProgressTranslator.estimate_seconds(75.0, 1_000) == 1


def test_translate_rounds_percent_and_keeps_details() -> None:
    out = ProgressTranslator().translate(
        DetailedProgressUpdate("detecting", 1, 3, "looking for comments"),
        elapsed_ms=2_000,
    )
    # 5 + 1/3 * 10 = 8.33
    assert out.percent == 8
    assert out.detail.stage == "detecting"
    assert out.detail.current == 1
    assert out.detail.total == 3
    assert out.detail.stage_message == "looking for comments"
    assert out.detail.to_dict()["stageMessage"] == "looking for comments"
    assert out.detail.estimated_time_remaining_seconds > 0
