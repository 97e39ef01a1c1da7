import logging
import re

from chatkb.config import RankingConfig
from chatkb.models import Match, ScoredMatch

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]")


class Reranker:
    """Composite relevance: raw similarity plus a flat bonus for curated Q&A
    matches and a per-keyword bonus for lexical overlap with the question."""

    def __init__(self, config: RankingConfig | None = None):
        self.config = config or RankingConfig()

    def keywords(self, question: str) -> list[str]:
        """Unique lowercase question tokens long enough to count as keywords."""
        tokens = _PUNCTUATION.sub(" ", question.lower()).split()
        return list(
            dict.fromkeys(t for t in tokens if len(t) >= self.config.min_keyword_length)
        )

    @staticmethod
    def _searchable_text(match: Match) -> str:
        meta = match.metadata
        return " ".join(
            part for part in (meta.text, meta.question, meta.answer) if part
        ).lower()

    def score(self, match: Match, keywords: list[str]) -> float:
        qa_bonus = self.config.qa_bonus if match.metadata.source_type == "qa" else 0.0
        haystack = self._searchable_text(match)
        hits = sum(1 for keyword in keywords if keyword in haystack)
        keyword_bonus = self.config.keyword_bonus * hits
        return max(0.0, min(match.score + qa_bonus + keyword_bonus, 1.0))

    def rerank(self, question: str, matches: list[Match], top_k: int) -> list[ScoredMatch]:
        """Score matches against the question and keep the top_k best.

        The sort is stable, so equal scores keep their index order.
        """
        if not matches:
            return []
        keywords = self.keywords(question)
        scored = [
            ScoredMatch(match=m, relevance_score=self.score(m, keywords))
            for m in matches
        ]
        scored.sort(key=lambda s: s.relevance_score, reverse=True)
        return scored[:top_k]
