"""Resolution of ``[n]`` citation markers in generated answers."""

import re

from chatkb.models import CitationEntry

CITATION_MARKER = re.compile(r"\[(\d+)\]")


def cited_numbers(answer: str) -> list[int]:
    """Citation numbers in order of first appearance."""
    return list(dict.fromkeys(int(n) for n in CITATION_MARKER.findall(answer)))


def resolve_citations(
    answer: str, citation_map: dict[int, CitationEntry]
) -> dict[int, CitationEntry]:
    """Map each marker used in the answer to its citation entry.

    Numbers missing from the citation map are ignored.
    """
    return {n: citation_map[n] for n in cited_numbers(answer) if n in citation_map}


def strip_unknown_citations(
    answer: str, citation_map: dict[int, CitationEntry]
) -> str:
    """Remove markers that do not resolve to a known citation."""

    def replace(match: re.Match) -> str:
        return match.group(0) if int(match.group(1)) in citation_map else ""

    cleaned = CITATION_MARKER.sub(replace, answer)
    return re.sub(r"[ \t]{2,}", " ", cleaned).strip()
