"""
Shared pytest fixtures and fakes for chatkb tests.

Fixture Organization
--------------------
- **settings**: Settings built without touching the environment
- **fake_embedder**: Deterministic character-histogram embeddings
- **FakeIndex**: Vector index returning scripted matches
- **ScriptedCompleter**: Completion provider replaying scripted replies
- **sleeper**: Records sleep calls instead of sleeping
"""

from dataclasses import replace
from typing import Any
from unittest.mock import Mock

import numpy as np
import pytest

from chatkb.config import Settings
from chatkb.models import Match, RecordMetadata


EMBEDDING_DIM = 32


def build_settings(**overrides: Any) -> Settings:
    """Create Settings with test defaults, overriding selected fields."""
    settings = Settings(
        ibm_cloud_api_key="test-key",
        watsonx_region="us-south",
        watsonx_project_id="test-project",
        watsonx_embed_model="test-embed",
        watsonx_gen_model="test-gen",
        vector_backend="faiss",
        faiss_index_dir="",
        milvus_host="localhost",
        milvus_port=19530,
        milvus_db=None,
        milvus_tls=False,
        milvus_collection="test_vectors",
        embedding_dim=EMBEDDING_DIM,
        chunk_size=1000,
        chunk_overlap=0,
        top_k=5,
        similarity_threshold=0.75,
        temperature=0.2,
        extraction_use_regex=True,
        extraction_use_llm=False,
        extraction_max_chunk_size=8000,
        extraction_chunk_delay_ms=0,
        extraction_rate_limit_delay_ms=0,
        extraction_max_retries=3,
        extraction_temperature=0.0,
        extraction_max_tokens=2048,
        max_tagged_chunks=10,
    )
    return replace(settings, **overrides)


@pytest.fixture
def settings() -> Settings:
    return build_settings()


class FakeEmbedder:
    """Embeds text as a histogram of character codes.

    Identical texts get identical vectors, so a query equal to a stored
    text scores 1.0 against it.
    """

    def __init__(self, dim: int = EMBEDDING_DIM) -> None:
        self.dim = dim
        self.embed_texts = Mock(side_effect=self._embed_many)
        self.embed_query = Mock(side_effect=self._embed_one)

    def _embed_one(self, text: str) -> list[float]:
        vec = np.full(self.dim, 1e-3, dtype=np.float32)
        for ch in text:
            vec[ord(ch) % self.dim] += 1.0
        return vec.tolist()

    def _embed_many(self, texts: list[str]) -> list[list[float]]:
        return [self._embed_one(t) for t in texts]


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


class FakeIndex:
    """Vector index replaying one scripted result list per query call.

    The last result list is repeated once the script runs out.
    """

    def __init__(self, *results: list[Match]) -> None:
        self.results = list(results) or [[]]
        self.calls: list[dict[str, Any]] = []

    def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        include_metadata: bool = True,
    ) -> list[Match]:
        self.calls.append({"namespace": namespace, "top_k": top_k})
        idx = min(len(self.calls) - 1, len(self.results) - 1)
        return list(self.results[idx])[:top_k]

    def count(self, namespace):
        raise NotImplementedError

    def upsert(self, namespace, records):
        raise NotImplementedError

    def delete_many(self, namespace, ids=None, metadata_filter=None):
        raise NotImplementedError


class ScriptedCompleter:
    """Completion provider that replays a script of replies.

    Script items that are exceptions are raised; strings are returned.
    Once the script is exhausted the default reply is returned.
    """

    def __init__(self, *script: Any, default: str = "[]") -> None:
        self.script = list(script)
        self.default = default
        self.calls: list[dict[str, Any]] = []

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        max_tokens: int = 2048,
    ) -> str:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if not self.script:
            return self.default
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def sleeper() -> Mock:
    return Mock(return_value=None)


def make_match(
    match_id: str, score: float, source_type: str = "document", **metadata: Any
) -> Match:
    """Build a Match with the given score and metadata."""
    return Match(
        id=match_id,
        score=score,
        metadata=RecordMetadata(source_type=source_type, **metadata),
    )
