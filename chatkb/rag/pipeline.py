"""RAG pipeline for document ingestion and query processing.

This module provides the IngestionPipeline and QueryPipeline classes
that tie extraction, embedding, the vector index and answer generation
together for one tenant at a time.
"""

from datetime import datetime, timezone
import logging
import time
from typing import Any, Callable
import uuid

from chatkb.config import ExtractionConfig, RankingConfig, RetrievalConfig, Settings
from chatkb.models import (
    ChatAnswer,
    ChatSession,
    Chunk,
    IngestionReport,
    QAPair,
    RecordMetadata,
    VectorRecord,
)
from chatkb.rag.chunker import chunk_rows, chunk_text
from chatkb.rag.citations import resolve_citations, strip_unknown_citations
from chatkb.rag.document_store import DocumentStore, InMemoryDocumentStore
from chatkb.rag.embeddings import Embedder, EmbeddingClient, check_embeddings
from chatkb.rag.generator import (
    NO_CONTEXT_REPLY,
    Completer,
    GeneratorClient,
    build_answer_prompt,
)
from chatkb.rag.qa_extractor import QAExtractor
from chatkb.rag.retriever import ContextRetriever
from chatkb.rag.tagger import FALLBACK_TAGS, classify_tags
from chatkb.rag.vectorstore import VectorIndex, get_vector_index

logger = logging.getLogger(__name__)

ANSWER_MAX_TOKENS = 1024


def namespace_for_user(user_id: str) -> str:
    """Vector index namespace holding one user's knowledge."""
    return f"user-{user_id}"


class IngestionPipeline:
    """Pipeline for turning documents into indexed knowledge.

    Handles duplicate detection, chunking, Q&A extraction, tagging,
    embedding and upsert into the user's namespace.
    """

    def __init__(
        self,
        settings: Settings,
        embed: Embedder | None = None,
        index: VectorIndex | None = None,
        completer: Completer | None = None,
        documents: DocumentStore | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize ingestion pipeline.

        Args:
            settings: Application settings.
            embed: Embedding provider; watsonx.ai when omitted.
            index: Vector index; the configured backend when omitted.
            completer: Completion provider; watsonx.ai when omitted.
            documents: Document bookkeeping store; in-memory when omitted.
            sleep: Sleep function used for extraction pacing.
        """
        self.settings = settings
        self.embed = embed or EmbeddingClient(settings)
        self.index = index or get_vector_index(settings)
        self.completer = completer or GeneratorClient(settings)
        self.documents = documents or InMemoryDocumentStore()
        self.extractor = QAExtractor(self.completer, sleep=sleep)

    def _audit(self, user_id: str, event: str, **details: Any) -> None:
        try:
            self.documents.log_event(user_id, event, **details)
        except Exception as e:
            logger.warning(f"Failed to log {event} event: {e}")

    def _rollback(self, namespace: str, ids: list[str]) -> None:
        """Remove vectors of a document whose ingestion did not complete."""
        try:
            removed = self.index.delete_many(namespace, ids=ids)
            logger.info(f"Rolled back {removed} vectors from {namespace}")
        except Exception as e:
            logger.error(f"Failed to roll back {len(ids)} vectors from {namespace}: {e}")

    def _tag_chunks(self, chunks: list[Chunk]) -> list[list[str]]:
        tags: list[list[str]] = []
        for i, chunk in enumerate(chunks):
            if i < self.settings.max_tagged_chunks:
                tags.append(classify_tags(self.completer, chunk.text))
            else:
                tags.append(list(FALLBACK_TAGS))
        return tags

    def _qa_records(
        self,
        qas: list[QAPair],
        embeddings: list[list[float]],
        base: dict[str, Any],
    ) -> list[VectorRecord]:
        return [
            VectorRecord(
                id=uuid.uuid4().hex,
                embedding=emb,
                metadata=RecordMetadata(
                    **base, source_type="qa", question=qa.question, answer=qa.answer
                ),
            )
            for qa, emb in zip(qas, embeddings)
        ]

    def _chunk_records(
        self,
        chunks: list[Chunk],
        embeddings: list[list[float]],
        tags: list[list[str]],
        base: dict[str, Any],
        source_type: str,
    ) -> list[VectorRecord]:
        return [
            VectorRecord(
                id=uuid.uuid4().hex,
                embedding=emb,
                metadata=RecordMetadata(
                    **base,
                    source_type=source_type,
                    text=chunk.text,
                    heading=chunk.heading,
                    chunk_index=chunk.sequence_index,
                    row_index=chunk.source_row_index,
                    tags=chunk_tags,
                ),
            )
            for chunk, emb, chunk_tags in zip(chunks, embeddings, tags)
        ]

    def ingest_document(
        self,
        user_id: str,
        identifier: str,
        text: str | None = None,
        rows: list[str] | None = None,
        document_name: str | None = None,
        url: str | None = None,
        original_filename: str | None = None,
        source_type: str = "document",
        extraction: ExtractionConfig | None = None,
    ) -> IngestionReport:
        """Ingest one document into the user's knowledge base.

        Args:
            user_id: Owner of the document.
            identifier: URL or file name used for duplicate detection.
            text: Normalized document text.
            rows: Spreadsheet rows; chunked row by row when given.
            document_name: Display name used in citations.
            url: Source URL, if any.
            original_filename: Uploaded file name, if any.
            source_type: Source type stored on chunk vectors.
            extraction: Q&A extraction options; settings defaults otherwise.

        Returns:
            Report of what was indexed.

        Raises:
            EmbeddingMismatchError: If embeddings do not line up with inputs.
        """
        if self.documents.has_document(user_id, identifier):
            logger.info(f"Skipping {identifier}: already ingested for {user_id}")
            self._audit(user_id, "ingest_skipped", identifier=identifier)
            return IngestionReport(identifier=identifier, status="skipped")

        namespace = namespace_for_user(user_id)
        extraction = extraction or ExtractionConfig.from_settings(self.settings)
        upserted_ids: list[str] = []
        try:
            if rows:
                chunks = chunk_rows(
                    rows, self.settings.chunk_size, self.settings.chunk_overlap
                )
                full_text = "\n".join(rows)
            else:
                full_text = text or ""
                chunks = chunk_text(
                    full_text, self.settings.chunk_size, self.settings.chunk_overlap
                )
            logger.info(f"Chunked {identifier} into {len(chunks)} chunks")

            result = self.extractor.extract(full_text, extraction)
            qas = result.qas

            qa_embeddings = self.embed.embed_texts([qa.question for qa in qas]) if qas else []
            check_embeddings(qa_embeddings, len(qas))

            tags = self._tag_chunks(chunks)
            chunk_embeddings = (
                self.embed.embed_texts([c.text for c in chunks]) if chunks else []
            )
            check_embeddings(chunk_embeddings, len(chunks))

            base = {
                "user_id": user_id,
                "document_id": identifier,
                "url": url,
                "document_name": document_name,
                "original_filename": original_filename,
            }
            qa_records = self._qa_records(qas, qa_embeddings, base)
            chunk_records = self._chunk_records(
                chunks, chunk_embeddings, tags, base, source_type
            )
            records = qa_records + chunk_records
            if records:
                self.index.upsert(namespace, records)
                upserted_ids = [r.id for r in records]

            self.documents.record_document(
                user_id,
                identifier,
                {
                    "document_name": document_name,
                    "url": url,
                    "original_filename": original_filename,
                    "chunk_ids": [r.id for r in chunk_records],
                    "chunk_count": len(chunk_records),
                    "qa_count": len(qa_records),
                    "ingested_at": datetime.now(timezone.utc).isoformat(),
                },
            )
        except Exception as e:
            logger.error(f"Failed to ingest {identifier}: {e}")
            if upserted_ids:
                self._rollback(namespace, upserted_ids)
            self._audit(user_id, "ingest_error", identifier=identifier, error=str(e))
            raise

        self._audit(
            user_id,
            "ingest_success",
            identifier=identifier,
            chunk_count=len(chunk_records),
            qa_count=len(qa_records),
        )
        return IngestionReport(
            identifier=identifier,
            status="success",
            chunk_count=len(chunk_records),
            qa_count=len(qa_records),
            extraction_stats=result.stats,
        )

    def delete_document(self, user_id: str, identifier: str) -> int:
        """Remove a document's chunk and Q&A vectors and its record.

        Returns:
            Number of vectors removed.
        """
        namespace = namespace_for_user(user_id)
        record = self.documents.get_document(user_id, identifier) or {}
        removed = 0
        chunk_ids = record.get("chunk_ids") or []
        if chunk_ids:
            removed += self.index.delete_many(namespace, ids=chunk_ids)
        removed += self.index.delete_many(
            namespace, metadata_filter={"document_id": identifier, "source_type": "qa"}
        )
        self.documents.remove_document(user_id, identifier)
        self._audit(user_id, "document_deleted", identifier=identifier, removed=removed)
        return removed


class QueryPipeline:
    """Pipeline for answering a user's question from their knowledge base."""

    def __init__(
        self,
        settings: Settings,
        embed: Embedder | None = None,
        index: VectorIndex | None = None,
        completer: Completer | None = None,
        ranking: RankingConfig | None = None,
    ) -> None:
        self.settings = settings
        self.embed = embed or EmbeddingClient(settings)
        self.index = index or get_vector_index(settings)
        self.completer = completer or GeneratorClient(settings)
        self.retriever = ContextRetriever(self.embed, self.index, ranking)

    def answer(
        self, question: str, user_id: str, session: ChatSession | None = None
    ) -> ChatAnswer:
        """Answer a question with citations to the user's documents.

        Args:
            question: User question.
            user_id: Owner of the knowledge base to search.
            session: Conversation state owned by the caller; the new turn
                is appended to it.

        Returns:
            Answer text, the sources it was grounded on and the citations
            it used.
        """
        context = self.retriever.retrieve(
            question,
            namespace_for_user(user_id),
            RetrievalConfig.from_settings(self.settings),
        )

        if context.is_empty:
            answer = ChatAnswer(
                answer=NO_CONTEXT_REPLY, sources=[], citations={}, grounded=False
            )
        else:
            history = session.history if session is not None else None
            system_prompt, user_prompt = build_answer_prompt(
                question, context.context, history
            )
            raw = self.completer.complete(
                system_prompt,
                user_prompt,
                temperature=self.settings.temperature,
                max_tokens=ANSWER_MAX_TOKENS,
            )
            text = strip_unknown_citations(raw, context.citation_map)
            answer = ChatAnswer(
                answer=text,
                sources=context.sources,
                citations=resolve_citations(text, context.citation_map),
                grounded=True,
            )

        if session is not None:
            session.append("user", question)
            session.append("assistant", answer.answer)
        return answer
