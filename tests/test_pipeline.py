"""End-to-end tests for ingestion and question answering."""

from unittest.mock import MagicMock, patch

import pytest

from chatkb.config import ExtractionConfig
from chatkb.models import ChatSession
from chatkb.rag.document_store import InMemoryDocumentStore
from chatkb.rag.embeddings import EmbeddingMismatchError
from chatkb.rag.faiss_store import FaissStore
from chatkb.rag.generator import NO_CONTEXT_REPLY
from chatkb.rag.pipeline import IngestionPipeline, QueryPipeline, namespace_for_user
from conftest import EMBEDDING_DIM, ScriptedCompleter, build_settings

DOCUMENT = "כתובת: רחוב הרצל 1\nטלפון: 03-1234567"
REGEX_ONLY = ExtractionConfig(use_llm=False)


@pytest.fixture
def index(settings) -> FaissStore:
    return FaissStore(settings)


@pytest.fixture
def documents() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def ingestion(settings, fake_embedder, index, documents, sleeper) -> IngestionPipeline:
    return IngestionPipeline(
        settings,
        embed=fake_embedder,
        index=index,
        completer=ScriptedCompleter(default="food, retail, service"),
        documents=documents,
        sleep=sleeper,
    )


def _events(documents: InMemoryDocumentStore) -> list[str]:
    return [e["event"] for e in documents.events]


class TestIngestionPipeline:
    """Tests for IngestionPipeline."""

    def test_ingest_document(self, ingestion, index, documents) -> None:
        report = ingestion.ingest_document(
            "u1", "guide.txt", text=DOCUMENT, document_name="Guide", extraction=REGEX_ONLY
        )

        assert report.status == "success"
        assert report.chunk_count == 1
        assert report.qa_count == 2
        assert report.extraction_stats.regex_qas == 2
        assert index.count(namespace_for_user("u1")) == 3
        assert documents.has_document("u1", "guide.txt")
        assert len(documents.get_document("u1", "guide.txt")["chunk_ids"]) == 1
        assert _events(documents) == ["ingest_success"]

    def test_chunk_metadata(self, ingestion, index, fake_embedder) -> None:
        ingestion.ingest_document(
            "u1", "guide.txt", text=DOCUMENT, document_name="Guide", extraction=REGEX_ONLY
        )
        match = index.query(
            namespace_for_user("u1"), fake_embedder.embed_query(DOCUMENT), top_k=1
        )[0]
        assert match.metadata.source_type == "document"
        assert match.metadata.document_id == "guide.txt"
        assert match.metadata.document_name == "Guide"
        assert match.metadata.chunk_index == 0
        assert match.metadata.tags == ["food", "retail", "service"]

    def test_duplicate_is_skipped(self, ingestion, index, documents) -> None:
        ingestion.ingest_document("u1", "guide.txt", text=DOCUMENT, extraction=REGEX_ONLY)
        report = ingestion.ingest_document(
            "u1", "guide.txt", text=DOCUMENT, extraction=REGEX_ONLY
        )

        assert report.status == "skipped"
        assert index.count(namespace_for_user("u1")) == 3
        assert _events(documents) == ["ingest_success", "ingest_skipped"]

    def test_same_identifier_for_another_user(self, ingestion, index) -> None:
        ingestion.ingest_document("u1", "guide.txt", text=DOCUMENT, extraction=REGEX_ONLY)
        report = ingestion.ingest_document(
            "u2", "guide.txt", text=DOCUMENT, extraction=REGEX_ONLY
        )
        assert report.status == "success"
        assert index.count(namespace_for_user("u2")) == 3

    def test_rows_are_chunked_per_row(self, ingestion) -> None:
        report = ingestion.ingest_document(
            "u1",
            "prices.xlsx",
            rows=["מוצר: פיתה, מחיר: 10", "מוצר: לאפה, מחיר: 14"],
            source_type="spreadsheet",
            extraction=REGEX_ONLY,
        )
        assert report.chunk_count == 2

    def test_only_first_chunks_are_classified(
        self, settings, fake_embedder, index, documents, sleeper
    ) -> None:
        completer = ScriptedCompleter(default="food, retail, service")
        pipeline = IngestionPipeline(
            build_settings(max_tagged_chunks=1),
            embed=fake_embedder,
            index=index,
            completer=completer,
            documents=documents,
            sleep=sleeper,
        )
        pipeline.ingest_document(
            "u1", "rows.csv", rows=["first row", "second row"], extraction=REGEX_ONLY
        )
        assert len(completer.calls) == 1

    def test_embedding_count_mismatch_aborts(self, settings, index, documents) -> None:
        embedder = MagicMock()
        embedder.embed_texts.return_value = [[0.1] * EMBEDDING_DIM]
        pipeline = IngestionPipeline(
            settings,
            embed=embedder,
            index=index,
            completer=ScriptedCompleter(default="food, retail, service"),
            documents=documents,
        )

        with pytest.raises(EmbeddingMismatchError):
            pipeline.ingest_document("u1", "guide.txt", text=DOCUMENT, extraction=REGEX_ONLY)

        assert not documents.has_document("u1", "guide.txt")
        assert index.count(namespace_for_user("u1")) == 0
        assert _events(documents) == ["ingest_error"]
        assert "Embedding count" in documents.events[0]["error"]

    def test_failed_record_rolls_back_vectors(
        self, settings, fake_embedder, index, documents, sleeper
    ) -> None:
        pipeline = IngestionPipeline(
            settings,
            embed=fake_embedder,
            index=index,
            completer=ScriptedCompleter(default="food, retail, service"),
            documents=documents,
            sleep=sleeper,
        )
        with patch.object(
            documents, "record_document", side_effect=RuntimeError("store unavailable")
        ):
            with pytest.raises(RuntimeError):
                pipeline.ingest_document(
                    "u1", "guide.txt", text=DOCUMENT, extraction=REGEX_ONLY
                )

        assert index.count(namespace_for_user("u1")) == 0
        assert _events(documents) == ["ingest_error"]

        report = pipeline.ingest_document(
            "u1", "guide.txt", text=DOCUMENT, extraction=REGEX_ONLY
        )
        assert report.status == "success"
        assert index.count(namespace_for_user("u1")) == 3

    def test_delete_document(self, ingestion, index, documents) -> None:
        ingestion.ingest_document("u1", "guide.txt", text=DOCUMENT, extraction=REGEX_ONLY)
        ingestion.ingest_document(
            "u1", "other.txt", text="כתובת: רחוב יפו 5", extraction=REGEX_ONLY
        )

        removed = ingestion.delete_document("u1", "guide.txt")

        assert removed == 3
        assert not documents.has_document("u1", "guide.txt")
        assert index.count(namespace_for_user("u1")) == 2
        assert _events(documents)[-1] == "document_deleted"


class TestQueryPipeline:
    """Tests for QueryPipeline."""

    def test_no_context_reply(self, settings, fake_embedder, index) -> None:
        completer = ScriptedCompleter("should not be used")
        pipeline = QueryPipeline(settings, embed=fake_embedder, index=index, completer=completer)
        session = ChatSession(user_id="u1")

        answer = pipeline.answer("מה הכתובת?", "u1", session)

        assert answer.answer == NO_CONTEXT_REPLY
        assert answer.grounded is False
        assert answer.sources == []
        assert completer.calls == []
        assert [t.role for t in session.history] == ["user", "assistant"]

    def test_grounded_answer(self, ingestion, settings, fake_embedder, index) -> None:
        ingestion.ingest_document(
            "u1", "guide.txt", text=DOCUMENT, document_name="Guide", extraction=REGEX_ONLY
        )
        completer = ScriptedCompleter("הכתובת היא רחוב הרצל 1 [1] [7]")
        pipeline = QueryPipeline(settings, embed=fake_embedder, index=index, completer=completer)
        session = ChatSession(user_id="u1")

        answer = pipeline.answer("מה הכתובת?", "u1", session)

        assert answer.grounded is True
        assert answer.answer == "הכתובת היא רחוב הרצל 1 [1]"
        assert list(answer.citations) == [1]
        assert answer.sources[0].source_type == "qa"
        assert "הקשר:" in completer.calls[0]["system_prompt"]
        assert "מה הכתובת?" in completer.calls[0]["system_prompt"]
        assert session.history[-1].content == answer.answer

    def test_history_is_sent_with_follow_up(
        self, ingestion, settings, fake_embedder, index
    ) -> None:
        ingestion.ingest_document("u1", "guide.txt", text=DOCUMENT, extraction=REGEX_ONLY)
        completer = ScriptedCompleter("רחוב הרצל 1 [1]", "03-1234567 [1]")
        pipeline = QueryPipeline(settings, embed=fake_embedder, index=index, completer=completer)
        session = ChatSession(user_id="u1")

        pipeline.answer("מה הכתובת?", "u1", session)
        pipeline.answer("מה הטלפון?", "u1", session)

        user_prompt = completer.calls[1]["user_prompt"]
        assert user_prompt.startswith("שיחה קודמת:")
        assert user_prompt.endswith("שאלה: מה הטלפון?")
        assert len(session.history) == 4

    def test_other_users_documents_are_invisible(
        self, ingestion, settings, fake_embedder, index
    ) -> None:
        ingestion.ingest_document("u1", "guide.txt", text=DOCUMENT, extraction=REGEX_ONLY)
        completer = ScriptedCompleter("unused")
        pipeline = QueryPipeline(settings, embed=fake_embedder, index=index, completer=completer)

        answer = pipeline.answer("מה הכתובת?", "u2")

        assert answer.answer == NO_CONTEXT_REPLY
        assert completer.calls == []
