"""Retrieval of grounding context for a question.

A primary similarity query is followed, when it under-performs, by a
broader query. Matches are filtered by the similarity threshold, which is
relaxed once if nothing survives, then re-ranked and rendered as context.
"""

import logging

from chatkb.config import RankingConfig, RetrievalConfig
from chatkb.models import ContextResult, Match
from chatkb.rag.context import build_context
from chatkb.rag.embeddings import Embedder
from chatkb.rag.reranker import Reranker
from chatkb.rag.vectorstore import VectorIndex

logger = logging.getLogger(__name__)


def _top_score(matches: list[Match]) -> float:
    return max((m.score for m in matches), default=0.0)


class ContextRetriever:
    """Builds a ContextResult for a question from one namespace."""

    def __init__(
        self,
        embedder: Embedder,
        index: VectorIndex,
        ranking: RankingConfig | None = None,
    ) -> None:
        self.embedder = embedder
        self.index = index
        self.ranking = ranking or RankingConfig()
        self.reranker = Reranker(self.ranking)

    def primary_top_k(self, top_k: int) -> int:
        return max(top_k * self.ranking.primary_top_k_multiplier, self.ranking.min_primary_top_k)

    def hybrid_top_k(self, primary_top_k: int) -> int:
        return min(
            self.ranking.hybrid_top_k_cap,
            primary_top_k * self.ranking.hybrid_top_k_multiplier,
        )

    def _search(
        self, vector: list[float], namespace: str, threshold: float, top_k: int
    ) -> list[Match]:
        primary_k = self.primary_top_k(top_k)
        matches = self.index.query(namespace, vector, primary_k, include_metadata=True)
        logger.info(f"Primary query returned {len(matches)} matches from {namespace}")

        if not matches or _top_score(matches) < threshold:
            hybrid = self.index.query(
                namespace, vector, self.hybrid_top_k(primary_k), include_metadata=True
            )
            if len(hybrid) > len(matches) or _top_score(hybrid) > _top_score(matches):
                logger.info(f"Using broader query result ({len(hybrid)} matches)")
                matches = hybrid
        return matches

    def _filter(self, matches: list[Match], threshold: float) -> list[Match]:
        kept = [m for m in matches if m.score >= threshold]
        if kept or not matches:
            return kept
        relaxed = max(
            threshold - self.ranking.threshold_relaxation,
            self.ranking.relaxed_threshold_floor,
        )
        logger.warning(
            f"No matches above {threshold:.2f}; relaxing threshold to {relaxed:.2f}"
        )
        return [m for m in matches if m.score >= relaxed]

    def retrieve(
        self,
        question: str,
        namespace: str,
        config: RetrievalConfig | None = None,
    ) -> ContextResult:
        """Retrieve, rank and render context for a question.

        Args:
            question: User question.
            namespace: Vector index namespace of the tenant.
            config: Similarity threshold and number of matches to keep.

        Returns:
            Context with sources and citation map. An empty result means
            no grounding is available.
        """
        config = config or RetrievalConfig()
        vector = self.embedder.embed_query(question)
        matches = self._search(
            vector, namespace, config.similarity_threshold, config.top_k
        )
        kept = self._filter(matches, config.similarity_threshold)
        if not kept:
            logger.info(f"No grounding found in {namespace}")
            return ContextResult()

        ranked = self.reranker.rerank(question, kept, config.top_k)
        return build_context(ranked, self.ranking)
