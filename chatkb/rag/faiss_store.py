import json
import logging
import os
import re
from typing import Any

import faiss
import numpy as np

from chatkb.config import Settings
from chatkb.models import Match, RecordMetadata, VectorRecord
from chatkb.rag.embeddings import EmbeddingMismatchError

logger = logging.getLogger(__name__)


def matches_filter(metadata: dict[str, Any], metadata_filter: dict[str, Any]) -> bool:
    return all(metadata.get(key) == value for key, value in metadata_filter.items())


class _Namespace:
    """Vectors, ids and metadata of one namespace plus its FAISS index."""

    def __init__(self) -> None:
        self.ids: list[str] = []
        self.metadata: list[dict[str, Any]] = []
        self.vectors: np.ndarray | None = None
        self.index = None

    @property
    def dim(self) -> int | None:
        return None if self.vectors is None else self.vectors.shape[1]

    def rebuild(self) -> None:
        if self.vectors is None or len(self.ids) == 0:
            self.vectors = None
            self.index = None
            return
        # Inner product search on normalized vectors = cosine similarity
        self.index = faiss.IndexFlatIP(self.vectors.shape[1])
        self.index.add(self.vectors)

    def keep(self, mask: list[bool]) -> None:
        self.ids = [i for i, k in zip(self.ids, mask) if k]
        self.metadata = [m for m, k in zip(self.metadata, mask) if k]
        if self.vectors is not None:
            self.vectors = self.vectors[np.array(mask, dtype=bool)]
        self.rebuild()


class FaissStore:
    """Namespaced vector index on local FAISS flat indexes.

    Each namespace gets its own index. When ``faiss_index_dir`` is set the
    namespaces are persisted there, otherwise they live in memory.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.index_dir = settings.faiss_index_dir
        if self.index_dir:
            os.makedirs(self.index_dir, exist_ok=True)
        self._namespaces: dict[str, _Namespace] = {}

    @staticmethod
    def _normalize(vecs: np.ndarray) -> np.ndarray:
        norms = np.linalg.norm(vecs, axis=1, keepdims=True) + 1e-12
        return vecs / norms

    def _paths(self, namespace: str) -> tuple[str, str]:
        safe = re.sub(r"[^\w.-]", "_", namespace)
        base = os.path.join(self.index_dir, safe)
        return f"{base}.index", f"{base}.json"

    def _load(self, namespace: str) -> _Namespace:
        ns = _Namespace()
        if not self.index_dir:
            return ns
        index_path, meta_path = self._paths(namespace)
        if os.path.exists(index_path) and os.path.exists(meta_path):
            index = faiss.read_index(index_path)
            with open(meta_path, "r", encoding="utf-8") as f:
                stored = json.load(f)
            ns.ids = stored["ids"]
            ns.metadata = stored["metadata"]
            if index.ntotal:
                ns.vectors = index.reconstruct_n(0, index.ntotal)
            ns.rebuild()
        return ns

    def _save(self, namespace: str, ns: _Namespace) -> None:
        if not self.index_dir:
            return
        index_path, meta_path = self._paths(namespace)
        if ns.index is None:
            for path in (index_path, meta_path):
                if os.path.exists(path):
                    os.remove(path)
            return
        faiss.write_index(ns.index, index_path)
        with open(meta_path, "w", encoding="utf-8") as f:
            json.dump({"ids": ns.ids, "metadata": ns.metadata}, f, ensure_ascii=False)

    def _namespace(self, namespace: str) -> _Namespace:
        if namespace not in self._namespaces:
            self._namespaces[namespace] = self._load(namespace)
        return self._namespaces[namespace]

    def count(self, namespace: str) -> int:
        return len(self._namespace(namespace).ids)

    def upsert(self, namespace: str, records: list[VectorRecord]) -> int:
        """Insert records, replacing any existing record with the same id.

        Raises:
            EmbeddingMismatchError: If record dimensions disagree with each
                other or with vectors already in the namespace.
        """
        if not records:
            return 0
        dims = {len(r.embedding) for r in records}
        ns = self._namespace(namespace)
        if len(dims) > 1 or (ns.dim is not None and ns.dim not in dims):
            raise EmbeddingMismatchError(
                f"FAISS dimension mismatch in namespace {namespace}: "
                f"index.d={ns.dim} vs embeddings.d={sorted(dims)}"
            )

        new_ids = {r.id for r in records}
        if ns.ids:
            ns.keep([i not in new_ids for i in ns.ids])

        embeddings = self._normalize(
            np.array([r.embedding for r in records], dtype=np.float32)
        )
        ns.vectors = (
            embeddings if ns.vectors is None else np.vstack([ns.vectors, embeddings])
        )
        ns.ids.extend(r.id for r in records)
        ns.metadata.extend(r.metadata.model_dump(exclude_none=True) for r in records)
        ns.rebuild()
        self._save(namespace, ns)
        logger.info(f"Upserted {len(records)} vectors into {namespace}")
        return len(records)

    def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        include_metadata: bool = True,
    ) -> list[Match]:
        ns = self._namespace(namespace)
        if ns.index is None or ns.index.ntotal == 0:
            return []
        if len(vector) != ns.dim:
            raise EmbeddingMismatchError(
                f"Query dimension {len(vector)} doesn't match index dimension {ns.dim}"
            )
        q = self._normalize(np.array([vector], dtype=np.float32))
        scores, idxs = ns.index.search(q, min(top_k, ns.index.ntotal))
        matches: list[Match] = []
        for score, idx in zip(scores[0].tolist(), idxs[0].tolist()):
            if idx < 0 or idx >= len(ns.ids):
                continue
            metadata = (
                RecordMetadata.model_validate(ns.metadata[idx])
                if include_metadata
                else RecordMetadata()
            )
            matches.append(Match(id=ns.ids[idx], score=score, metadata=metadata))
        return matches

    def delete_many(
        self,
        namespace: str,
        ids: list[str] | None = None,
        metadata_filter: dict[str, Any] | None = None,
    ) -> int:
        """Delete records by id or by exact-match metadata filter.

        Returns:
            Number of records removed.
        """
        if not ids and not metadata_filter:
            raise ValueError("delete_many requires ids or a metadata filter")
        ns = self._namespace(namespace)
        targets = set(ids or [])
        mask = [
            not (
                i in targets
                or (metadata_filter is not None and matches_filter(m, metadata_filter))
            )
            for i, m in zip(ns.ids, ns.metadata)
        ]
        removed = mask.count(False)
        if removed:
            ns.keep(mask)
            self._save(namespace, ns)
        logger.info(f"Deleted {removed} vectors from {namespace}")
        return removed
