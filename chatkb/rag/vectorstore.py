import json
import logging
from typing import Any, Protocol

import numpy as np
from pymilvus import (
    Collection,
    CollectionSchema,
    DataType,
    FieldSchema,
    connections,
    utility,
)

from chatkb.config import Settings
from chatkb.models import Match, RecordMetadata, VectorRecord
from chatkb.rag.faiss_store import FaissStore

logger = logging.getLogger(__name__)


class VectorIndex(Protocol):
    """Namespace-scoped vector index."""

    def count(self, namespace: str) -> int: ...

    def upsert(self, namespace: str, records: list[VectorRecord]) -> int: ...

    def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        include_metadata: bool = True,
    ) -> list[Match]: ...

    def delete_many(
        self,
        namespace: str,
        ids: list[str] | None = None,
        metadata_filter: dict[str, Any] | None = None,
    ) -> int: ...


def _quote(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


class MilvusStore:
    """Vector index on a single Milvus collection partitioned by a
    namespace field."""

    def __init__(self, settings: Settings, collection_name: str | None = None):
        self.settings = settings
        self.collection_name = collection_name or settings.milvus_collection
        self._connect()
        self._ensure_collection()

    def _connect(self) -> None:
        alias = "default"
        if connections.has_connection(alias):
            return
        kwargs = {}
        if self.settings.milvus_db:
            kwargs["db_name"] = self.settings.milvus_db
        connections.connect(
            alias=alias,
            host=self.settings.milvus_host,
            port=str(self.settings.milvus_port),
            secure=self.settings.milvus_tls,
            **kwargs,
        )

    def _ensure_collection(self) -> None:
        fields = [
            FieldSchema(name="id", dtype=DataType.VARCHAR, is_primary=True, max_length=128),
            FieldSchema(name="namespace", dtype=DataType.VARCHAR, max_length=128),
            FieldSchema(
                name="embedding",
                dtype=DataType.FLOAT_VECTOR,
                dim=self.settings.embedding_dim,
            ),
            FieldSchema(name="metadata", dtype=DataType.JSON),
        ]
        schema = CollectionSchema(fields=fields, description="Knowledge base vectors")

        if not utility.has_collection(self.collection_name):
            self.collection = Collection(self.collection_name, schema=schema)
            self.collection.create_index(
                field_name="embedding",
                index_params={
                    "index_type": "IVF_FLAT",
                    "metric_type": "IP",
                    "params": {"nlist": 1024},
                },
            )
        else:
            self.collection = Collection(self.collection_name)

        self.collection.load()

    def count(self, namespace: str) -> int:
        rows = self.collection.query(
            expr=f"namespace == {_quote(namespace)}", output_fields=["count(*)"]
        )
        return int(rows[0]["count(*)"]) if rows else 0

    @staticmethod
    def _normalize(vecs: list[list[float]]) -> list[list[float]]:
        arr = np.array(vecs, dtype=np.float32)
        arr = arr / (np.linalg.norm(arr, axis=1, keepdims=True) + 1e-12)
        return arr.tolist()

    def upsert(self, namespace: str, records: list[VectorRecord]) -> int:
        if not records:
            return 0
        self.collection.upsert(
            [
                [r.id for r in records],
                [namespace] * len(records),
                self._normalize([r.embedding for r in records]),
                [r.metadata.model_dump(exclude_none=True) for r in records],
            ]
        )
        self.collection.flush()
        logger.info(f"Upserted {len(records)} vectors into {namespace}")
        return len(records)

    def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        include_metadata: bool = True,
    ) -> list[Match]:
        results = self.collection.search(
            data=self._normalize([vector]),
            anns_field="embedding",
            param={"metric_type": "IP", "params": {"nprobe": 16}},
            limit=top_k,
            expr=f"namespace == {_quote(namespace)}",
            output_fields=["metadata"] if include_metadata else [],
        )
        matches: list[Match] = []
        for hit in results[0]:
            metadata = hit.entity.get("metadata") if include_metadata else None
            matches.append(
                Match(
                    id=str(hit.id),
                    score=hit.distance,
                    metadata=RecordMetadata.model_validate(metadata or {}),
                )
            )
        return matches

    def delete_many(
        self,
        namespace: str,
        ids: list[str] | None = None,
        metadata_filter: dict[str, Any] | None = None,
    ) -> int:
        if not ids and not metadata_filter:
            raise ValueError("delete_many requires ids or a metadata filter")
        clauses = []
        if ids:
            clauses.append(f"id in {_quote(list(ids))}")
        if metadata_filter:
            clauses.append(
                " and ".join(
                    f"metadata[{_quote(key)}] == {_quote(value)}"
                    for key, value in metadata_filter.items()
                )
            )
        selector = " or ".join(f"({clause})" for clause in clauses)
        result = self.collection.delete(
            expr=f"namespace == {_quote(namespace)} and ({selector})"
        )
        removed = getattr(result, "delete_count", 0)
        logger.info(f"Deleted {removed} vectors from {namespace}")
        return removed


def get_vector_index(settings: Settings) -> VectorIndex:
    """Create the vector index configured by ``VECTOR_BACKEND``.

    Raises:
        ValueError: If the backend name is unknown.
    """
    if settings.vector_backend == "faiss":
        return FaissStore(settings)
    if settings.vector_backend == "milvus":
        return MilvusStore(settings)
    raise ValueError(f"Unknown vector backend: {settings.vector_backend}")
