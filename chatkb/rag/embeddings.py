import logging
from typing import Protocol

from ibm_watsonx_ai import Credentials
from ibm_watsonx_ai.foundation_models import Embeddings as WXEmbeddings

from chatkb.config import Settings

logger = logging.getLogger(__name__)

VECTOR_KEYS = ("embedding", "vector", "values")


class EmbeddingMismatchError(RuntimeError):
    """Raised when embeddings do not line up with their inputs."""


class Embedder(Protocol):
    def embed_texts(self, texts: list[str]) -> list[list[float]]: ...

    def embed_query(self, text: str) -> list[float]: ...


def check_embeddings(
    embeddings: list[list[float]], expected_count: int, dim: int | None = None
) -> None:
    """Verify a batch has one vector per input, all of the same dimension.

    Raises:
        EmbeddingMismatchError: On a count or dimension mismatch.
    """
    if len(embeddings) != expected_count:
        raise EmbeddingMismatchError(
            f"Embedding count ({len(embeddings)}) doesn't match input count "
            f"({expected_count})"
        )
    dims = {len(vec) for vec in embeddings}
    if dim is not None:
        dims.add(dim)
    if len(dims) > 1:
        raise EmbeddingMismatchError(f"Inconsistent embedding dimensions: {sorted(dims)}")


def _vector_from_item(item) -> list[float] | None:
    if isinstance(item, dict):
        for key in VECTOR_KEYS:
            if key in item:
                return item[key]
    return None


class EmbeddingClient:
    """Embedding provider backed by watsonx.ai."""

    def __init__(self, settings: Settings):
        self.settings = settings
        credentials = Credentials(
            api_key=settings.ibm_cloud_api_key,
            url=f"https://{settings.watsonx_region}.ml.cloud.ibm.com",
        )
        self.client = WXEmbeddings(
            model_id=settings.watsonx_embed_model,
            project_id=settings.watsonx_project_id,
            credentials=credentials,
        )

    @staticmethod
    def _parse_batch(result) -> list[list[float]]:
        data = result.get_result() if hasattr(result, "get_result") else result
        # {"results": [{"embedding"|"vector"|"values": [...]}, ...]}
        if isinstance(data, dict) and isinstance(data.get("results"), list):
            out = [_vector_from_item(item) for item in data["results"]]
            if out and all(vec is not None for vec in out):
                return out  # type: ignore[return-value]
        if isinstance(data, dict) and "embeddings" in data:
            return data["embeddings"]
        if isinstance(data, list) and (not data or isinstance(data[0], list)):
            return data
        raise RuntimeError(
            f"Unexpected embeddings response format from watsonx.ai: {type(data)} "
            f"keys={list(data.keys()) if isinstance(data, dict) else 'n/a'}"
        )

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts, preserving order.

        Raises:
            EmbeddingMismatchError: If the provider returns a different
                number of vectors than texts.
        """
        if not texts:
            return []
        embeddings = self._parse_batch(self.client.embed_documents(texts))
        check_embeddings(embeddings, len(texts))
        return embeddings

    def embed_query(self, text: str) -> list[float]:
        result = self.client.embed_query(text)
        data = result.get_result() if hasattr(result, "get_result") else result
        if isinstance(data, dict):
            results = data.get("results")
            if isinstance(results, list) and results:
                vec = _vector_from_item(results[0])
                if vec is not None:
                    return vec
            if "embedding" in data:
                return data["embedding"]
            if data.get("embeddings"):
                return data["embeddings"][0]
        # list-shaped: either a single vector or list of vectors
        if isinstance(data, list) and data:
            if isinstance(data[0], list):
                return data[0]
            if isinstance(data[0], (int, float)):
                return data
        raise RuntimeError(
            f"Unexpected query embedding response format from watsonx.ai: {type(data)} "
            f"keys={list(data.keys()) if isinstance(data, dict) else 'n/a'}"
        )
