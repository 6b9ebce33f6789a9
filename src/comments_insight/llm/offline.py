# src/comments_insight/llm/offline.py

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence

from ..core.errors import ErrorCode, InsightError
from ..core.ports import AnalysisResult

_STOPWORDS = frozenset(
    "a an and are as at be but by for from has have i in is it its of on or that the this to was were with you".split()
)


class OfflineAnalysisClient:
    """
    Offline deterministic analysis client used for demos when no external API is configured.

    Behavior:
    - counts comments and words
    - lists the most frequent non-trivial words
    - "tokens used" is the word count, so results are stable across runs
    """

    model = "offline"

    def __init__(self, top_words: int = 5) -> None:
        self._top_words = top_words

    async def analyze(self, comments: Sequence[str], *, prompt: str | None = None) -> AnalysisResult:
        if not comments:
            raise InsightError(ErrorCode.NO_COMMENTS_FOUND, "No comments to analyze")

        words: list[str] = []
        for c in comments:
            words.extend(w.strip(".,!?:;\"'()").lower() for w in str(c).split())
        words = [w for w in words if w]

        counts = Counter(w for w in words if w not in _STOPWORDS and len(w) > 2)
        top = ", ".join(f"{w} ({n})" for w, n in counts.most_common(self._top_words)) or "-"

        text = (
            "# Comment Analysis Report (offline)\n\n"
            f"- Comments: {len(comments)}\n"
            f"- Words: {len(words)}\n"
            f"- Frequent words: {top}\n\n"
            "Offline demo mode: no external LLM is configured.\n"
            "Set INSIGHT_LLM_API_KEY to enable real analysis."
        )
        return AnalysisResult(text=text, tokens_used=len(words), model=self.model)
