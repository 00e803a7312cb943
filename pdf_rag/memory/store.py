import faiss
import numpy as np
import logging
import os
import json
import threading
import uuid

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Dict, Optional

from qdrant_client import QdrantClient
from qdrant_client.http.models import (
    PointStruct,
    PointIdsList,
    Filter,
    FieldCondition,
    MatchValue,
    FilterSelector,
)

from pdf_rag.config import (
    STORAGE_DIR,
    VECTOR_STORE_BACKEND,
)
from pdf_rag.errors import StorageError
from pdf_rag.memory.qdrant_client import QdrantVectorDB, EXAMPLES_VECTOR_SIZE


logger = logging.getLogger(__name__)

# uuid5 namespace for example-set ids (one id per document name)
_EXAMPLES_NAMESPACE = uuid.UUID("6f1d3c8e-6b8a-4f0e-9a57-3e2d6c4b9f21")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize(vectors: np.ndarray) -> np.ndarray:

    norms = np.linalg.norm(vectors, axis=1, keepdims=True)

    return vectors / np.clip(norms, 1e-10, None)


def _ensure_numpy(embedding) -> np.ndarray:

    vectors = np.asarray(embedding, dtype="float32")

    if vectors.ndim == 1:
        vectors = vectors.reshape(1, -1)

    return vectors


def _validate_search_args(threshold: float, limit: int):

    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"Similarity threshold must be within [0, 1] (got {threshold})")

    if limit < 0:
        raise ValueError(f"Invalid search limit: {limit}")


def _group_documents(rows: List[Dict]) -> List[Dict]:
    """Group chunk rows by document name, most recently created first."""

    ordered = sorted(rows, key=lambda r: r.get("created_at") or "", reverse=True)

    documents: Dict[str, Dict] = {}

    for row in ordered:

        name = row["document_name"]

        if name not in documents:
            documents[name] = {
                "name": name,
                "created_at": row.get("created_at"),
                "chunk_count": 0,
            }

        documents[name]["chunk_count"] += 1

    return list(documents.values())


class VectorStore(ABC):
    """
    Chunk and few-shot example persistence with cosine similarity search.

    Chunk rows:   {id, document_name, content, embedding, chunk_index, created_at}
    Example rows: {document_name, examples, created_at}, at most one per document

    Search rows are dicts with content, document_name, chunk_index
    and similarity, ordered by descending similarity.
    """

    # True when search() can restrict to one document before ranking
    supports_prefilter = False

    @abstractmethod
    def insert_chunk(self, content: str, embedding, document_name: str, chunk_index: int) -> str:
        ...

    @abstractmethod
    def search(
        self,
        query_embedding,
        threshold: float,
        limit: int,
        document_name: Optional[str] = None,
    ) -> List[Dict]:
        ...

    @abstractmethod
    def count_chunks(self, document_name: Optional[str] = None) -> int:
        ...

    @abstractmethod
    def list_documents(self) -> List[Dict]:
        ...

    @abstractmethod
    def delete_document(self, document_name: str, keep_examples: bool = False) -> Dict:
        """Returns {"deleted_chunks": int, "deleted_examples": bool}."""

    @abstractmethod
    def delete_chunk(self, chunk_id: str) -> bool:
        ...

    @abstractmethod
    def get_few_shot_examples(self, document_name: str) -> Optional[str]:
        ...

    @abstractmethod
    def put_few_shot_examples(self, document_name: str, examples: str) -> None:
        """Upsert: replaces any existing set for the document."""

    @abstractmethod
    def get_stats(self) -> Dict:
        ...

    def has_document(self, document_name: str) -> bool:
        return self.count_chunks(document_name) > 0

    def persist(self) -> None:
        """Flush buffered writes. Called once per ingestion batch."""

    @abstractmethod
    def health_check(self) -> Dict:
        """Backend status for /health. Raises StorageError when unreachable."""


# ============================================================
# QDRANT (PRE-FILTERING) BACKEND
# ============================================================

class QdrantVectorStore(VectorStore):

    supports_prefilter = True

    def __init__(self, dim: int, client: Optional[QdrantClient] = None):

        if dim <= 0:
            raise ValueError("Embedding dimension must be positive")

        self._dim = dim

        self._db = QdrantVectorDB(dim, client=client)

        self._client = self._db.client
        self._chunks = self._db.chunks_collection
        self._examples = self._db.examples_collection

        # Writes always hold the lock. Local mode is not thread safe,
        # so there every client call holds it.
        self._lock = threading.RLock()
        self._local = self._db.is_local

        logger.info(
            "VectorStore initialized",
            extra={"backend": "qdrant", "dimension": dim},
        )

    @staticmethod
    def _document_filter(document_name: Optional[str]) -> Optional[Filter]:

        if document_name is None:
            return None

        return Filter(
            must=[
                FieldCondition(
                    key="document_name",
                    match=MatchValue(value=document_name),
                )
            ]
        )

    def _call(self, fn, **kwargs):

        if not self._local:
            return fn(**kwargs)

        with self._lock:
            return fn(**kwargs)

    @staticmethod
    def _examples_id(document_name: str) -> str:
        return str(uuid.uuid5(_EXAMPLES_NAMESPACE, document_name))

    def _scroll_payloads(self, collection: str, fields) -> List[Dict]:

        payloads = []

        offset = None

        while True:

            points, offset = self._call(
                self._client.scroll,
                collection_name=collection,
                limit=256,
                offset=offset,
                with_payload=fields,
                with_vectors=False,
            )

            payloads.extend(point.payload or {} for point in points)

            if offset is None:
                break

        return payloads

    # ------------------------------------------------------------
    # CHUNKS
    # ------------------------------------------------------------

    def insert_chunk(self, content: str, embedding, document_name: str, chunk_index: int) -> str:

        vector = _normalize(_ensure_numpy(embedding))[0]

        if vector.shape[0] != self._dim:
            raise StorageError(
                f"Embedding dimension mismatch: expected {self._dim}, got {vector.shape[0]}"
            )

        chunk_id = str(uuid.uuid4())

        try:

            with self._lock:

                self._client.upsert(
                    collection_name=self._chunks,
                    points=[
                        PointStruct(
                            id=chunk_id,
                            vector=vector.tolist(),
                            payload={
                                "content": content,
                                "document_name": document_name,
                                "chunk_index": chunk_index,
                                "created_at": _utc_now(),
                            },
                        )
                    ],
                )

        except Exception as e:

            logger.error(
                "Chunk insert failed",
                extra={
                    "document_name": document_name,
                    "chunk_index": chunk_index,
                    "error": str(e),
                },
            )

            raise StorageError(f"Chunk insert failed: {e}") from e

        return chunk_id

    def search(self, query_embedding, threshold: float, limit: int, document_name: Optional[str] = None) -> List[Dict]:

        _validate_search_args(threshold, limit)

        if limit == 0:
            return []

        vector = _normalize(_ensure_numpy(query_embedding))[0]

        try:

            response = self._call(
                self._client.query_points,
                collection_name=self._chunks,
                query=vector.tolist(),
                query_filter=self._document_filter(document_name),
                score_threshold=threshold,
                limit=limit,
                with_payload=True,
            )

        except Exception as e:
            raise StorageError(f"Similarity search failed: {e}") from e

        results = []

        for hit in response.points:

            payload = hit.payload or {}

            results.append({
                "id": str(hit.id),
                "content": payload.get("content", ""),
                "document_name": payload.get("document_name"),
                "chunk_index": payload.get("chunk_index"),
                "similarity": float(hit.score),
            })

        results.sort(key=lambda r: r["similarity"], reverse=True)

        return results

    def count_chunks(self, document_name: Optional[str] = None) -> int:

        try:

            return self._call(
                self._client.count,
                collection_name=self._chunks,
                count_filter=self._document_filter(document_name),
                exact=True,
            ).count

        except Exception as e:
            raise StorageError(f"Chunk count failed: {e}") from e

    def list_documents(self) -> List[Dict]:

        try:
            rows = self._scroll_payloads(self._chunks, ["document_name", "created_at"])
        except Exception as e:
            raise StorageError(f"Document listing failed: {e}") from e

        return _group_documents(rows)

    def delete_chunk(self, chunk_id: str) -> bool:

        try:

            with self._lock:

                existing = self._client.retrieve(
                    collection_name=self._chunks,
                    ids=[chunk_id],
                )

                if not existing:
                    return False

                self._client.delete(
                    collection_name=self._chunks,
                    points_selector=PointIdsList(points=[chunk_id]),
                )

        except Exception as e:
            raise StorageError(f"Chunk delete failed: {e}") from e

        logger.info("Deleted chunk", extra={"chunk_id": chunk_id})

        return True

    def delete_document(self, document_name: str, keep_examples: bool = False) -> Dict:

        selector = FilterSelector(filter=self._document_filter(document_name))

        try:

            with self._lock:

                deleted_chunks = self._client.count(
                    collection_name=self._chunks,
                    count_filter=self._document_filter(document_name),
                    exact=True,
                ).count

                self._client.delete(
                    collection_name=self._chunks,
                    points_selector=selector,
                )

        except Exception as e:

            logger.error(
                "Document deletion failed",
                extra={"document_name": document_name, "error": str(e)},
                exc_info=True,
            )

            raise StorageError(f"Document deletion failed: {e}") from e

        deleted_examples = False

        if not keep_examples:

            try:

                with self._lock:

                    self._client.delete(
                        collection_name=self._examples,
                        points_selector=selector,
                    )

                deleted_examples = True

            except Exception as e:

                logger.warning(
                    "Few-shot example deletion failed",
                    extra={"document_name": document_name, "error": str(e)},
                )

        logger.info(
            "Document deleted",
            extra={
                "document_name": document_name,
                "deleted_chunks": deleted_chunks,
                "deleted_examples": deleted_examples,
            },
        )

        return {
            "deleted_chunks": deleted_chunks,
            "deleted_examples": deleted_examples,
        }

    # ------------------------------------------------------------
    # FEW-SHOT EXAMPLES
    # ------------------------------------------------------------

    def get_few_shot_examples(self, document_name: str) -> Optional[str]:

        try:

            points = self._call(
                self._client.retrieve,
                collection_name=self._examples,
                ids=[self._examples_id(document_name)],
                with_payload=True,
            )

        except Exception as e:
            raise StorageError(f"Few-shot example lookup failed: {e}") from e

        if not points:
            return None

        return (points[0].payload or {}).get("examples") or None

    def put_few_shot_examples(self, document_name: str, examples: str) -> None:

        try:

            with self._lock:

                self._client.upsert(
                    collection_name=self._examples,
                    points=[
                        PointStruct(
                            id=self._examples_id(document_name),
                            vector=[1.0] * EXAMPLES_VECTOR_SIZE,
                            payload={
                                "document_name": document_name,
                                "examples": examples,
                                "created_at": _utc_now(),
                            },
                        )
                    ],
                )

        except Exception as e:
            raise StorageError(f"Few-shot example store failed: {e}") from e

    def get_stats(self) -> Dict:

        try:

            rows = self._scroll_payloads(self._chunks, ["document_name", "content"])

            documents_with_examples = self._call(
                self._client.count,
                collection_name=self._examples,
                exact=True,
            ).count

        except Exception as e:
            raise StorageError(f"Stats query failed: {e}") from e

        total_chunks = len(rows)

        average = (
            sum(len(r.get("content", "")) for r in rows) / total_chunks
            if total_chunks else 0
        )

        return {
            "total_documents": len({r.get("document_name") for r in rows}),
            "total_chunks": total_chunks,
            "average_chunk_size": round(average),
            "documents_with_examples": documents_with_examples,
        }

    def health_check(self) -> Dict:

        try:
            status = self._call(self._db.health_check)
        except Exception as e:
            raise StorageError(f"Qdrant health check failed: {e}") from e

        return {"backend": "qdrant", **status}


# ============================================================
# FAISS (POST-FILTERING) BACKEND
# ============================================================

class FaissVectorStore(VectorStore):
    """
    In-process exact inner-product index over normalized vectors.

    The index cannot restrict a query to one document, so a document
    filter is applied to the ranked candidates after the search.
    """

    supports_prefilter = False

    _INDEX_FILE = "faiss.index"
    _METADATA_FILE = "metadata.json"

    def __init__(self, dim: int, storage_dir: Optional[str] = STORAGE_DIR):

        if dim <= 0:
            raise ValueError("Embedding dimension must be positive")

        self._dim = dim
        self._storage_dir = storage_dir

        # row i of the index <-> self._records[i]
        self._records: List[Dict] = []
        self._examples: Dict[str, Dict] = {}
        self._index = None

        self._lock = threading.RLock()

        if storage_dir:
            self._load_from_disk()

        if self._index is None:
            self._index = faiss.IndexFlatIP(dim)
            self._records = []

        logger.info(
            "VectorStore initialized",
            extra={
                "backend": "faiss",
                "dimension": dim,
                "vectors": self._index.ntotal,
            },
        )

    # ------------------------------------------------------------
    # PERSISTENCE
    # ------------------------------------------------------------

    def _paths(self):

        return (
            os.path.join(self._storage_dir, self._INDEX_FILE),
            os.path.join(self._storage_dir, self._METADATA_FILE),
        )

    def _load_from_disk(self):

        index_path, metadata_path = self._paths()

        if not (os.path.exists(index_path) and os.path.exists(metadata_path)):
            return

        try:

            index = faiss.read_index(index_path)

            with open(metadata_path, "r") as f:
                data = json.load(f)

        except Exception as e:
            raise StorageError(f"Failed to load FAISS store: {e}") from e

        records = data.get("records", [])

        if index.ntotal != len(records) or index.d != self._dim:
            raise StorageError("FAISS index and metadata are out of sync")

        self._index = index
        self._records = records
        self._examples = data.get("examples", {})

    def _save_to_disk(self):

        if not self._storage_dir:
            return

        os.makedirs(self._storage_dir, exist_ok=True)

        index_path, metadata_path = self._paths()

        try:

            faiss.write_index(self._index, index_path)

            with open(metadata_path, "w") as f:
                json.dump(
                    {"records": self._records, "examples": self._examples},
                    f,
                )

        except Exception as e:
            raise StorageError(f"Failed to persist FAISS store: {e}") from e

    def persist(self) -> None:

        with self._lock:
            self._save_to_disk()

    def _rebuild_without(self, keep) -> int:
        """Rebuild the index keeping rows for which keep(record) is true."""

        kept_records = []
        kept_vectors = []

        for i, record in enumerate(self._records):

            if keep(record):
                kept_records.append(record)
                kept_vectors.append(self._index.reconstruct(i))

        removed = len(self._records) - len(kept_records)

        index = faiss.IndexFlatIP(self._dim)

        if kept_vectors:
            index.add(np.vstack(kept_vectors).astype("float32"))

        self._index = index
        self._records = kept_records

        return removed

    # ------------------------------------------------------------
    # CHUNKS
    # ------------------------------------------------------------

    def insert_chunk(self, content: str, embedding, document_name: str, chunk_index: int) -> str:

        vectors = _normalize(_ensure_numpy(embedding))

        if vectors.shape[1] != self._dim:
            raise StorageError(
                f"Embedding dimension mismatch: expected {self._dim}, got {vectors.shape[1]}"
            )

        chunk_id = str(uuid.uuid4())

        with self._lock:

            self._index.add(vectors)

            self._records.append({
                "id": chunk_id,
                "content": content,
                "document_name": document_name,
                "chunk_index": chunk_index,
                "created_at": _utc_now(),
            })

        return chunk_id

    def search(self, query_embedding, threshold: float, limit: int, document_name: Optional[str] = None) -> List[Dict]:

        _validate_search_args(threshold, limit)

        query = _normalize(_ensure_numpy(query_embedding))

        with self._lock:

            if limit == 0 or self._index.ntotal == 0:
                return []

            k = min(limit, self._index.ntotal)

            scores, ids = self._index.search(query, k)

            results = []

            for score, idx in zip(scores[0], ids[0]):

                if idx < 0 or score < threshold:
                    continue

                record = self._records[idx]

                if document_name is not None and record["document_name"] != document_name:
                    continue

                results.append({
                    "id": record["id"],
                    "content": record["content"],
                    "document_name": record["document_name"],
                    "chunk_index": record["chunk_index"],
                    "similarity": float(score),
                })

        results.sort(key=lambda r: r["similarity"], reverse=True)

        return results

    def count_chunks(self, document_name: Optional[str] = None) -> int:

        with self._lock:

            if document_name is None:
                return len(self._records)

            return sum(1 for r in self._records if r["document_name"] == document_name)

    def list_documents(self) -> List[Dict]:

        with self._lock:
            return _group_documents(list(self._records))

    def delete_chunk(self, chunk_id: str) -> bool:

        with self._lock:

            removed = self._rebuild_without(lambda r: r["id"] != chunk_id)

            if removed:
                self._save_to_disk()

        return bool(removed)

    def delete_document(self, document_name: str, keep_examples: bool = False) -> Dict:

        with self._lock:

            deleted_chunks = self._rebuild_without(
                lambda r: r["document_name"] != document_name
            )

            if not keep_examples:
                self._examples.pop(document_name, None)

            self._save_to_disk()

        logger.info(
            "Document deleted",
            extra={"document_name": document_name, "deleted_chunks": deleted_chunks},
        )

        return {
            "deleted_chunks": deleted_chunks,
            "deleted_examples": not keep_examples,
        }

    # ------------------------------------------------------------
    # FEW-SHOT EXAMPLES
    # ------------------------------------------------------------

    def get_few_shot_examples(self, document_name: str) -> Optional[str]:

        with self._lock:
            entry = self._examples.get(document_name)

        return entry["examples"] if entry else None

    def put_few_shot_examples(self, document_name: str, examples: str) -> None:

        with self._lock:

            self._examples[document_name] = {
                "examples": examples,
                "created_at": _utc_now(),
            }

            self._save_to_disk()

    def get_stats(self) -> Dict:

        with self._lock:

            total_chunks = len(self._records)

            average = (
                sum(len(r["content"]) for r in self._records) / total_chunks
                if total_chunks else 0
            )

            return {
                "total_documents": len({r["document_name"] for r in self._records}),
                "total_chunks": total_chunks,
                "average_chunk_size": round(average),
                "documents_with_examples": len(self._examples),
            }

    def health_check(self) -> Dict:

        with self._lock:

            return {
                "backend": "faiss",
                "vectors": self._index.ntotal,
                "persistent": bool(self._storage_dir),
            }


def build_vector_store(dim: int, backend: str = VECTOR_STORE_BACKEND) -> VectorStore:

    if backend == "qdrant":
        return QdrantVectorStore(dim)

    if backend == "faiss":
        return FaissVectorStore(dim, storage_dir=STORAGE_DIR)

    raise ValueError(f"Unknown vector store backend: {backend}")
