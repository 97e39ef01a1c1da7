"""Application configuration settings.

This module defines the Settings dataclass that loads configuration
from environment variables, plus the smaller per-call configuration
objects used by the extraction and retrieval engines.
"""

from dataclasses import dataclass
import os

from dotenv import load_dotenv


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        ibm_cloud_api_key: IBM Cloud API key for authentication.
        watsonx_region: Watsonx.ai service region.
        watsonx_project_id: Watsonx.ai project ID.
        watsonx_embed_model: Embedding model ID.
        watsonx_gen_model: Generation model ID.
        vector_backend: Vector index backend, "faiss" or "milvus".
        faiss_index_dir: Directory for per-namespace FAISS files (empty keeps
            the index in memory).
        milvus_host: Milvus database host.
        milvus_port: Milvus database port.
        milvus_db: Milvus database name (optional).
        milvus_tls: Whether to use TLS for Milvus.
        milvus_collection: Milvus collection holding all namespaces.
        embedding_dim: Embedding dimension.
        chunk_size: Maximum characters per document chunk.
        chunk_overlap: Character overlap between consecutive chunks.
        top_k: Number of matches kept in the final context.
        similarity_threshold: Minimum similarity for a match to be kept.
        temperature: Answer generation temperature.
        extraction_use_regex: Run the pattern extractor during ingestion.
        extraction_use_llm: Run LLM Q&A extraction during ingestion.
        extraction_max_chunk_size: Characters per LLM extraction chunk.
        extraction_chunk_delay_ms: Pause between LLM extraction chunks.
        extraction_rate_limit_delay_ms: Cooldown after a rate-limit error.
        extraction_max_retries: Attempts per LLM extraction chunk.
        extraction_temperature: LLM extraction temperature.
        extraction_max_tokens: LLM extraction completion budget.
        max_tagged_chunks: Chunks per document sent to tag classification.
    """

    ibm_cloud_api_key: str
    watsonx_region: str
    watsonx_project_id: str
    watsonx_embed_model: str
    watsonx_gen_model: str

    vector_backend: str
    faiss_index_dir: str

    milvus_host: str
    milvus_port: int
    milvus_db: str | None
    milvus_tls: bool
    milvus_collection: str

    embedding_dim: int
    chunk_size: int
    chunk_overlap: int
    top_k: int
    similarity_threshold: float
    temperature: float

    extraction_use_regex: bool
    extraction_use_llm: bool
    extraction_max_chunk_size: int
    extraction_chunk_delay_ms: int
    extraction_rate_limit_delay_ms: int
    extraction_max_retries: int
    extraction_temperature: float
    extraction_max_tokens: int
    max_tagged_chunks: int

    @staticmethod
    def _get_bool(value: str | None, default: bool = False) -> bool:
        """Convert string value to boolean.

        Args:
            value: String value to convert.
            default: Default value if value is None.

        Returns:
            Boolean value.
        """
        if value is None:
            return default
        return value.lower() in {"1", "true", "t", "yes", "y"}

    @classmethod
    def from_env(cls) -> "Settings":
        """Create Settings instance from environment variables.

        Returns:
            Settings instance with values loaded from environment.
        """
        return cls(
            ibm_cloud_api_key=os.getenv("IBM_CLOUD_API_KEY", ""),
            watsonx_region=os.getenv("WATSONX_REGION", "us-south"),
            watsonx_project_id=os.getenv("WATSONX_PROJECT_ID", ""),
            watsonx_embed_model=os.getenv(
                "WATSONX_EMBED_MODEL",
                "ibm/slate-125m-english-rtrvr-v2",
            ),
            watsonx_gen_model=os.getenv(
                "WATSONX_GEN_MODEL", "meta-llama/llama-3-3-70b-instruct"
            ),
            vector_backend=os.getenv("VECTOR_BACKEND", "faiss").lower(),
            faiss_index_dir=os.getenv("FAISS_INDEX_DIR", ""),
            milvus_host=os.getenv("MILVUS_HOST", "localhost"),
            milvus_port=int(os.getenv("MILVUS_PORT", "19530")),
            milvus_db=os.getenv("MILVUS_DB"),
            milvus_tls=cls._get_bool(os.getenv("MILVUS_TLS"), False),
            milvus_collection=os.getenv("MILVUS_COLLECTION", "chatkb_vectors"),
            embedding_dim=int(os.getenv("EMBEDDING_DIM", "768")),
            chunk_size=int(os.getenv("CHUNK_SIZE", "1000")),
            chunk_overlap=int(os.getenv("CHUNK_OVERLAP", "0")),
            top_k=int(os.getenv("TOP_K", "5")),
            similarity_threshold=float(os.getenv("SIMILARITY_THRESHOLD", "0.75")),
            temperature=float(os.getenv("TEMPERATURE", "0.2")),
            extraction_use_regex=cls._get_bool(
                os.getenv("EXTRACTION_USE_REGEX"), True
            ),
            extraction_use_llm=cls._get_bool(os.getenv("EXTRACTION_USE_LLM"), True),
            extraction_max_chunk_size=int(
                os.getenv("EXTRACTION_MAX_CHUNK_SIZE", "8000")
            ),
            extraction_chunk_delay_ms=int(
                os.getenv("EXTRACTION_CHUNK_DELAY_MS", "200")
            ),
            extraction_rate_limit_delay_ms=int(
                os.getenv("EXTRACTION_RATE_LIMIT_DELAY_MS", "1000")
            ),
            extraction_max_retries=int(os.getenv("EXTRACTION_MAX_RETRIES", "3")),
            extraction_temperature=float(os.getenv("EXTRACTION_TEMPERATURE", "0.0")),
            extraction_max_tokens=int(os.getenv("EXTRACTION_MAX_TOKENS", "2048")),
            max_tagged_chunks=int(os.getenv("MAX_TAGGED_CHUNKS", "10")),
        )


def get_settings() -> Settings:
    """Get application settings.

    Returns:
        Settings instance loaded from environment variables.
    """
    load_dotenv()
    return Settings.from_env()


@dataclass
class ExtractionConfig:
    """Knobs for one Q&A extraction run.

    Attributes:
        use_regex: Run the deterministic pattern extractor.
        use_llm: Run LLM extraction over the text.
        max_chunk_size: Characters per chunk sent to the completion provider.
        chunk_delay_ms: Pause between consecutive chunk calls.
        rate_limit_delay_ms: Cooldown after a rate-limit signal.
        max_retries: Attempts per chunk before giving up on it.
        temperature: Completion temperature.
        max_tokens: Completion token budget.
    """

    use_regex: bool = True
    use_llm: bool = True
    max_chunk_size: int = 8000
    chunk_delay_ms: int = 200
    rate_limit_delay_ms: int = 1000
    max_retries: int = 3
    temperature: float = 0.0
    max_tokens: int = 2048

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExtractionConfig":
        return cls(
            use_regex=settings.extraction_use_regex,
            use_llm=settings.extraction_use_llm,
            max_chunk_size=settings.extraction_max_chunk_size,
            chunk_delay_ms=settings.extraction_chunk_delay_ms,
            rate_limit_delay_ms=settings.extraction_rate_limit_delay_ms,
            max_retries=settings.extraction_max_retries,
            temperature=settings.extraction_temperature,
            max_tokens=settings.extraction_max_tokens,
        )


@dataclass
class RetrievalConfig:
    """Per-call retrieval parameters."""

    similarity_threshold: float = 0.75
    top_k: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetrievalConfig":
        return cls(
            similarity_threshold=settings.similarity_threshold,
            top_k=settings.top_k,
        )


@dataclass
class RankingConfig:
    """Heuristic constants used while re-ranking and labelling matches.

    These values are empirical; they are exposed so deployments can tune
    them without code changes.

    Attributes:
        qa_bonus: Flat bonus for curated Q&A matches.
        keyword_bonus: Bonus per question token found in the match text.
        min_keyword_length: Shortest question token that counts as a keyword.
        threshold_relaxation: Amount subtracted from the threshold on the
            single relaxation step.
        relaxed_threshold_floor: Lowest threshold the relaxation may reach.
        min_primary_top_k: Lower bound for the primary query size.
        primary_top_k_multiplier: Primary query size as a multiple of top_k.
        hybrid_top_k_multiplier: Hybrid query size as a multiple of the
            primary query size.
        hybrid_top_k_cap: Upper bound for the hybrid query size.
        high_confidence: Lowest score labelled "high".
        medium_confidence: Lowest score labelled "medium".
        snippet_chars: Document text characters copied into the context.
    """

    qa_bonus: float = 0.05
    keyword_bonus: float = 0.05
    min_keyword_length: int = 3
    threshold_relaxation: float = 0.2
    relaxed_threshold_floor: float = 0.1
    min_primary_top_k: int = 10
    primary_top_k_multiplier: int = 2
    hybrid_top_k_multiplier: int = 3
    hybrid_top_k_cap: int = 50
    high_confidence: float = 0.8
    medium_confidence: float = 0.5
    snippet_chars: int = 700
