# src/comments_insight/tasks/progress.py

"""
Stage-based progress normalisation.

Executors report "stage + current/total" and the translator turns that into a
single 0-100 percent plus an ETA for the UI.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass

from .task_models import DetailedProgress, DetailedProgressUpdate, ProgressStage

# stage -> (range start %, range width %)
STAGE_RANGES: Mapping[str, tuple[float, float]] = {
    ProgressStage.INITIALIZING.value: (0.0, 5.0),
    ProgressStage.DETECTING.value: (5.0, 10.0),
    ProgressStage.ANALYZING.value: (15.0, 10.0),
    ProgressStage.EXTRACTING.value: (25.0, 50.0),
    ProgressStage.SCROLLING.value: (75.0, 10.0),
    ProgressStage.EXPANDING.value: (85.0, 5.0),
    ProgressStage.VALIDATING.value: (90.0, 5.0),
    ProgressStage.COMPLETE.value: (100.0, 0.0),
}

ETA_UNKNOWN = -1
# ETA is too noisy below this percent to be worth showing.
ETA_MIN_PERCENT = 5.0


@dataclass(slots=True, frozen=True)
class TranslatedProgress:
    percent: int
    detail: DetailedProgress


class ProgressTranslator:
    def __init__(self, stage_ranges: Mapping[str, tuple[float, float]] | None = None) -> None:
        self._ranges = dict(STAGE_RANGES if stage_ranges is None else stage_ranges)

    def percent_for(self, stage: str, current: int, total: int) -> float:
        stage = str(stage)
        if stage == ProgressStage.COMPLETE.value:
            return 100.0

        rng = self._ranges.get(stage)
        if rng is None:
            # Unknown stage: plain ratio.
            if total > 0:
                return max(0.0, min(100.0, max(0, current) / total * 100.0))
            return 0.0

        start, width = rng
        if total > 0:
            ratio = min(1.0, max(0, current) / total)
            return start + ratio * width
        return start

    @staticmethod
    def estimate_seconds(percent: float, elapsed_ms: float) -> int:
        if not (ETA_MIN_PERCENT < percent < 100.0) or elapsed_ms <= 0:
            return ETA_UNKNOWN
        remaining_ms = elapsed_ms * (100.0 - percent) / percent
        return math.ceil(remaining_ms / 1000.0)

    def translate(self, update: DetailedProgressUpdate, *, elapsed_ms: float) -> TranslatedProgress:
        raw = self.percent_for(update.stage, update.current, update.total)
        eta = self.estimate_seconds(raw, elapsed_ms)
        percent = int(round(max(0.0, min(100.0, raw))))
        return TranslatedProgress(
            percent=percent,
            detail=DetailedProgress(
                stage=str(update.stage),
                current=int(update.current),
                total=int(update.total),
                estimated_time_remaining_seconds=eta,
                stage_message=update.stage_message,
            ),
        )
