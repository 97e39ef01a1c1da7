"""Text chunking utilities.

This module provides functions for splitting document text into bounded,
ordered chunks, both for embedding and for LLM extraction.
"""

import logging
import re

from langchain_text_splitters import RecursiveCharacterTextSplitter

from chatkb.models import Chunk

logger = logging.getLogger(__name__)

HEADING_PATTERN = re.compile(r"^#+\s*(.*)$")


def _line_splitter(max_size: int, overlap: int) -> RecursiveCharacterTextSplitter:
    # Only paragraph and line boundaries are split points, so a line longer
    # than max_size is emitted whole instead of being cut mid-line.
    return RecursiveCharacterTextSplitter(
        chunk_size=max_size,
        chunk_overlap=max(0, min(overlap, max_size - 1)),
        length_function=len,
        separators=["\n\n", "\n"],
        keep_separator=False,
    )


def _split_sections(text: str) -> list[tuple[str | None, str]]:
    """Split text into (heading, body) sections on markdown-style headings."""
    sections: list[tuple[str | None, str]] = []
    heading: str | None = None
    body: list[str] = []
    for line in text.splitlines():
        match = HEADING_PATTERN.match(line.strip())
        if match:
            sections.append((heading, "\n".join(body)))
            heading = match.group(1).strip() or None
            body = []
        else:
            body.append(line)
    sections.append((heading, "\n".join(body)))
    return [(h, b) for h, b in sections if b.strip()]


def chunk_text(text: str, max_size: int = 1000, overlap: int = 0) -> list[Chunk]:
    """Split text into chunks, respecting heading boundaries when present.

    Args:
        text: Normalized document text.
        max_size: Maximum characters per chunk. Single lines longer than
            this are passed through as one oversized chunk.
        overlap: Characters shared between consecutive chunks of a section.

    Returns:
        Chunks in document order. Empty input yields an empty list.

    Raises:
        ValueError: If max_size is not positive.
    """
    if max_size <= 0:
        raise ValueError(f"max_size must be positive, got {max_size}")
    if not text or not text.strip():
        return []

    splitter = _line_splitter(max_size, overlap)
    chunks: list[Chunk] = []
    for heading, body in _split_sections(text):
        for piece in splitter.split_text(body):
            piece = piece.strip()
            if not piece:
                continue
            if len(piece) > max_size:
                logger.debug(
                    f"Oversized line kept whole ({len(piece)} > {max_size} chars)"
                )
            chunks.append(
                Chunk(text=piece, heading=heading, sequence_index=len(chunks))
            )
    return chunks


def chunk_rows(rows: list[str], max_size: int = 1000, overlap: int = 0) -> list[Chunk]:
    """Chunk spreadsheet rows independently, remembering each chunk's row.

    Empty rows are skipped; sequence indexes keep counting across rows.
    """
    chunks: list[Chunk] = []
    for row_index, row in enumerate(rows):
        for chunk in chunk_text(row, max_size=max_size, overlap=overlap):
            chunks.append(
                chunk.model_copy(
                    update={
                        "sequence_index": len(chunks),
                        "source_row_index": row_index,
                    }
                )
            )
    return chunks


def split_for_extraction(text: str, max_chunk_size: int) -> list[str]:
    """Split text into windows sized for a single extraction completion.

    Args:
        text: Full document text.
        max_chunk_size: Target size for each window.

    Returns:
        List of text windows.
    """
    if not text or not text.strip():
        return []
    splitter = RecursiveCharacterTextSplitter(
        chunk_size=max_chunk_size,
        chunk_overlap=0,
        length_function=len,
        separators=["\n\n", "\n", " ", ""],
    )
    return splitter.split_text(text)
