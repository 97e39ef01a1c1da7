"""Data models for the extraction and retrieval engines.

This module defines Pydantic models for chunks, extracted Q&A pairs,
vector records, ranked matches and the assembled context.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def clamp_unit(value: float) -> float:
    """Clamp a score into [0, 1]."""
    return max(0.0, min(1.0, float(value)))


class Chunk(BaseModel):
    """A bounded segment of document text.

    Attributes:
        text: Chunk text content.
        heading: Heading of the section the chunk came from, if any.
        sequence_index: Position of the chunk in the document.
        source_row_index: Spreadsheet row the chunk came from, if any.
    """

    model_config = ConfigDict(frozen=True)

    text: str
    heading: str | None = None
    sequence_index: int
    source_row_index: int | None = None


class QAPair(BaseModel):
    """Question/answer tuple extracted from source text.

    Attributes:
        question: Question text.
        answer: Answer text.
        source: Extractor that produced the pair.
        confidence: Static extractor-assigned prior in [0, 1].
    """

    model_config = ConfigDict(frozen=True)

    question: str
    answer: str
    source: Literal["regex", "llm"]
    confidence: float = 0.8

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, value: float) -> float:
        return clamp_unit(value)


class ExtractionStats(BaseModel):
    """Counters for a single extraction run."""

    total_qas: int = 0
    regex_qas: int = 0
    llm_qas: int = 0
    chunks_processed: int = 0
    errors: int = 0


class ExtractionResult(BaseModel):
    qas: list[QAPair]
    stats: ExtractionStats


class RecordMetadata(BaseModel):
    """Metadata stored alongside a vector in the index.

    Unknown keys written by other producers are preserved.
    """

    model_config = ConfigDict(extra="allow")

    user_id: str | None = None
    document_id: str | None = None
    source_type: str | None = None
    text: str | None = None
    question: str | None = None
    answer: str | None = None
    url: str | None = None
    document_name: str | None = None
    original_filename: str | None = None
    chunk_index: int | None = None
    row_index: int | None = None
    heading: str | None = None
    tags: list[str] = Field(default_factory=list)


class VectorRecord(BaseModel):
    """Record handed to the vector index for upsert.

    Attributes:
        id: Unique vector identifier.
        embedding: Embedding vector.
        metadata: Stored metadata.
    """

    id: str
    embedding: list[float]
    metadata: RecordMetadata


class Match(BaseModel):
    """A query hit returned by the vector index.

    Attributes:
        id: Vector identifier.
        score: Similarity score clamped to [0, 1].
        metadata: Stored metadata of the vector.
    """

    id: str
    score: float
    metadata: RecordMetadata = Field(default_factory=RecordMetadata)

    @field_validator("score")
    @classmethod
    def clamp_score(cls, value: float) -> float:
        return clamp_unit(value)


class ScoredMatch(BaseModel):
    """A match together with its re-ranking score."""

    match: Match
    relevance_score: float

    @field_validator("relevance_score")
    @classmethod
    def clamp_relevance(cls, value: float) -> float:
        return clamp_unit(value)


class Source(BaseModel):
    """A match included in the context, in citation order."""

    id: str
    source_type: str | None = None
    document_name: str | None = None
    original_filename: str | None = None
    url: str | None = None
    chunk_index: int | None = None
    score: float
    relevance_score: float


class CitationEntry(BaseModel):
    """Metadata needed to render a clickable citation."""

    source_type: str | None = None
    file_name: str | None = None
    url: str | None = None
    chunk_index: int | None = None
    document_name: str | None = None
    original_filename: str | None = None


class ContextResult(BaseModel):
    """Assembled context for answer generation.

    Attributes:
        context: Citation-numbered context document.
        sources: Included matches, in citation order.
        citation_map: 1-based citation number to citation metadata.
    """

    context: str = ""
    sources: list[Source] = Field(default_factory=list)
    citation_map: dict[int, CitationEntry] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.sources


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatSession(BaseModel):
    """Conversation state owned by the caller for one chat."""

    user_id: str
    history: list[ChatTurn] = Field(default_factory=list)
    max_turns: int = 10

    def append(self, role: Literal["user", "assistant"], content: str) -> None:
        self.history.append(ChatTurn(role=role, content=content))
        if len(self.history) > self.max_turns:
            del self.history[: len(self.history) - self.max_turns]


class ChatAnswer(BaseModel):
    """Answer text plus the citations it actually used."""

    answer: str
    sources: list[Source]
    citations: dict[int, CitationEntry]
    grounded: bool


class IngestionReport(BaseModel):
    """Outcome of ingesting one document."""

    identifier: str
    status: Literal["success", "skipped", "error"]
    chunk_count: int = 0
    qa_count: int = 0
    extraction_stats: ExtractionStats | None = None
    error: str | None = None
