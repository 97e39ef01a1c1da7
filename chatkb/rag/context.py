"""Context assembly for answer generation.

Ranked matches are split into a curated Q&A group and a document group.
Citation numbers run across both groups, Q&A first, and the same numbers
key the citation map used later to resolve ``[n]`` markers in answers.
"""

import logging

from chatkb.config import RankingConfig
from chatkb.models import CitationEntry, ContextResult, Match, ScoredMatch, Source

logger = logging.getLogger(__name__)

QA_HEADER = "Relevant Q&A Found:"
DOCUMENT_HEADER = "Context from Documents:"
ADDITIONAL_DOCUMENT_HEADER = "Additional Context from Documents:"
UNKNOWN_SOURCE = "Unknown Source"


def confidence_label(score: float, config: RankingConfig) -> str:
    if score >= config.high_confidence:
        return "high"
    if score >= config.medium_confidence:
        return "medium"
    return "low"


def document_name(match: Match) -> str:
    meta = match.metadata
    return meta.document_name or meta.original_filename or meta.url or UNKNOWN_SOURCE


def _snippet(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."


def _source(scored: ScoredMatch) -> Source:
    meta = scored.match.metadata
    return Source(
        id=scored.match.id,
        source_type=meta.source_type,
        document_name=meta.document_name,
        original_filename=meta.original_filename,
        url=meta.url,
        chunk_index=meta.chunk_index,
        score=scored.match.score,
        relevance_score=scored.relevance_score,
    )


def _citation(match: Match) -> CitationEntry:
    meta = match.metadata
    return CitationEntry(
        source_type=meta.source_type,
        file_name=document_name(match),
        url=meta.url,
        chunk_index=meta.chunk_index,
        document_name=meta.document_name,
        original_filename=meta.original_filename,
    )


def build_context(
    ranked: list[ScoredMatch], config: RankingConfig | None = None
) -> ContextResult:
    """Render ranked matches as a citation-numbered context document.

    Args:
        ranked: Matches sorted by descending relevance.
        config: Label thresholds and snippet length.

    Returns:
        Context text with sources and citation map in citation order.
    """
    config = config or RankingConfig()
    if not ranked:
        return ContextResult()

    qa_group = [s for s in ranked if s.match.metadata.source_type == "qa"]
    doc_group = [s for s in ranked if s.match.metadata.source_type != "qa"]

    parts: list[str] = []
    sources: list[Source] = []
    citation_map: dict[int, CitationEntry] = {}

    def cite(scored: ScoredMatch) -> int:
        sources.append(_source(scored))
        citation_map[len(sources)] = _citation(scored.match)
        return len(sources)

    if qa_group:
        parts.append(QA_HEADER)
        for scored in qa_group:
            meta = scored.match.metadata
            n = cite(scored)
            label = confidence_label(scored.match.score, config)
            parts.append(
                f"[{n}] ({label})\nQuestion: {meta.question or ''}\n"
                f"Answer: {meta.answer or ''}"
            )

    if doc_group:
        parts.append(ADDITIONAL_DOCUMENT_HEADER if qa_group else DOCUMENT_HEADER)
        for scored in doc_group:
            n = cite(scored)
            label = confidence_label(scored.match.score, config)
            text = _snippet(scored.match.metadata.text or "", config.snippet_chars)
            parts.append(
                f"[{n}] from: {document_name(scored.match)} ({label})\nText: {text}"
            )

    logger.info(
        f"Built context with {len(qa_group)} Q&A and {len(doc_group)} document sources"
    )
    return ContextResult(
        context="\n\n".join(parts), sources=sources, citation_map=citation_map
    )
