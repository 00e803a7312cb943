# tests/test_store.py
import threading
import time

import pytest
from qdrant_client import QdrantClient

from pdf_rag.errors import StorageError
from pdf_rag.memory.store import FaissVectorStore, QdrantVectorStore, build_vector_store

from conftest import EMBEDDING_DIM, axis, unit_vector


def _seed(store, document_name, similarities):
    for i, similarity in enumerate(similarities):
        store.insert_chunk(f"{document_name} chunk {i}", unit_vector(similarity), document_name, i)


class TestSearch:
    """Runs against both backends via the parametrized `store` fixture."""

    def test_threshold_and_ordering(self, store):
        """Only chunks at or above the threshold, best first."""
        _seed(store, "doc.pdf", [0.3, 0.9, 0.6])

        results = store.search(axis(), threshold=0.5, limit=10)

        assert [round(r["similarity"], 4) for r in results] == [0.9, 0.6]
        assert [r["chunk_index"] for r in results] == [1, 2]
        assert results[0]["content"] == "doc.pdf chunk 1"
        assert results[0]["document_name"] == "doc.pdf"
        assert results[0]["id"]

    def test_limit(self, store):
        _seed(store, "doc.pdf", [0.95, 0.9, 0.85, 0.8])

        results = store.search(axis(), threshold=0.0, limit=2)

        assert [round(r["similarity"], 4) for r in results] == [0.95, 0.9]

    def test_zero_limit(self, store):
        _seed(store, "doc.pdf", [0.9])

        assert store.search(axis(), threshold=0.0, limit=0) == []

    def test_document_filter(self, store):
        _seed(store, "a.pdf", [0.9])
        _seed(store, "b.pdf", [0.8])

        results = store.search(axis(), threshold=0.5, limit=5, document_name="b.pdf")

        assert [r["document_name"] for r in results] == ["b.pdf"]

    def test_empty_store(self, store):
        assert store.search(axis(), threshold=0.5, limit=5) == []

    @pytest.mark.parametrize("threshold", [-0.1, 1.5])
    def test_invalid_threshold(self, store, threshold):
        with pytest.raises(ValueError):
            store.search(axis(), threshold=threshold, limit=5)

    def test_dimension_mismatch_rejected(self, store):
        with pytest.raises(StorageError):
            store.insert_chunk("bad", [1.0, 0.0], "doc.pdf", 0)


class TestFaissPostFilter:

    def test_filter_applied_after_ranking(self, faiss_store):
        """
        The document filter only sees the top `limit` candidates, so a
        less similar document can be crowded out entirely.
        """
        _seed(faiss_store, "a.pdf", [0.95, 0.9, 0.85])
        _seed(faiss_store, "b.pdf", [0.8])

        assert faiss_store.search(axis(), threshold=0.5, limit=3, document_name="b.pdf") == []
        assert len(faiss_store.search(axis(), threshold=0.5, limit=4, document_name="b.pdf")) == 1

    def test_persistence_round_trip(self, tmp_path):
        first = FaissVectorStore(EMBEDDING_DIM, storage_dir=str(tmp_path))
        _seed(first, "doc.pdf", [0.9, 0.7])
        first.put_few_shot_examples("doc.pdf", "Q: a\nA: b")

        reloaded = FaissVectorStore(EMBEDDING_DIM, storage_dir=str(tmp_path))

        assert reloaded.count_chunks("doc.pdf") == 2
        assert reloaded.get_few_shot_examples("doc.pdf") == "Q: a\nA: b"
        assert len(reloaded.search(axis(), threshold=0.5, limit=5)) == 2

    def test_inserts_reach_disk_on_persist(self, tmp_path):
        """Inserting only touches memory. persist() writes the index once."""
        first = FaissVectorStore(EMBEDDING_DIM, storage_dir=str(tmp_path))
        _seed(first, "doc.pdf", [0.9, 0.8, 0.7])

        assert list(tmp_path.iterdir()) == []
        assert FaissVectorStore(EMBEDDING_DIM, storage_dir=str(tmp_path)).count_chunks() == 0

        first.persist()

        assert FaissVectorStore(EMBEDDING_DIM, storage_dir=str(tmp_path)).count_chunks("doc.pdf") == 3

    def test_persist_without_storage_dir(self, faiss_store):
        _seed(faiss_store, "doc.pdf", [0.9])

        faiss_store.persist()

        assert faiss_store.count_chunks() == 1

    def test_mismatched_dimension_on_reload(self, tmp_path):
        first = FaissVectorStore(EMBEDDING_DIM, storage_dir=str(tmp_path))
        _seed(first, "doc.pdf", [0.9])
        first.persist()

        with pytest.raises(StorageError):
            FaissVectorStore(EMBEDDING_DIM * 2, storage_dir=str(tmp_path))


class TestDocuments:

    def test_count_chunks(self, store):
        _seed(store, "a.pdf", [0.9, 0.8])
        _seed(store, "b.pdf", [0.7])

        assert store.count_chunks() == 3
        assert store.count_chunks("a.pdf") == 2
        assert store.count_chunks("missing.pdf") == 0
        assert store.has_document("b.pdf")
        assert not store.has_document("missing.pdf")

    def test_list_documents_most_recent_first(self, store):
        _seed(store, "old.pdf", [0.9, 0.8])
        time.sleep(0.01)
        _seed(store, "new.pdf", [0.7])

        documents = store.list_documents()

        assert [d["name"] for d in documents] == ["new.pdf", "old.pdf"]
        assert [d["chunk_count"] for d in documents] == [1, 2]
        assert all(d["created_at"] for d in documents)

    def test_delete_document(self, store):
        """7 chunks and 1 example set are removed together."""
        _seed(store, "doc.pdf", [0.9] * 7)
        _seed(store, "other.pdf", [0.8])
        store.put_few_shot_examples("doc.pdf", "Sample Query: x\nSample Answer: y")

        result = store.delete_document("doc.pdf")

        assert result == {"deleted_chunks": 7, "deleted_examples": True}
        assert [d["name"] for d in store.list_documents()] == ["other.pdf"]
        assert store.get_few_shot_examples("doc.pdf") is None
        assert store.count_chunks() == 1

    def test_delete_document_keeping_examples(self, store):
        _seed(store, "doc.pdf", [0.9, 0.8])
        store.put_few_shot_examples("doc.pdf", "examples")

        result = store.delete_document("doc.pdf", keep_examples=True)

        assert result == {"deleted_chunks": 2, "deleted_examples": False}
        assert store.get_few_shot_examples("doc.pdf") == "examples"

    def test_delete_unknown_document(self, store):
        result = store.delete_document("missing.pdf")

        assert result["deleted_chunks"] == 0

    def test_delete_chunk(self, store):
        chunk_id = store.insert_chunk("text", axis(), "doc.pdf", 0)
        store.insert_chunk("more", axis(), "doc.pdf", 1)

        assert store.delete_chunk(chunk_id) is True
        assert store.count_chunks("doc.pdf") == 1
        assert store.delete_chunk(chunk_id) is False

    def test_stats(self, store):
        store.insert_chunk("a" * 100, axis(), "a.pdf", 0)
        store.insert_chunk("b" * 300, axis(), "b.pdf", 0)
        store.put_few_shot_examples("a.pdf", "examples")

        assert store.get_stats() == {
            "total_documents": 2,
            "total_chunks": 2,
            "average_chunk_size": 200,
            "documents_with_examples": 1,
        }

    def test_stats_empty(self, store):
        assert store.get_stats()["average_chunk_size"] == 0


class TestFewShotExamples:

    def test_missing(self, store):
        assert store.get_few_shot_examples("doc.pdf") is None

    def test_put_replaces_existing_set(self, store):
        store.put_few_shot_examples("doc.pdf", "first")
        store.put_few_shot_examples("doc.pdf", "second")

        assert store.get_few_shot_examples("doc.pdf") == "second"
        assert store.get_stats()["documents_with_examples"] == 1


class TestBuildVectorStore:

    def test_faiss_backend(self, tmp_path, monkeypatch):
        from pdf_rag.memory import store as store_module

        monkeypatch.setattr(store_module, "STORAGE_DIR", str(tmp_path))

        store = build_vector_store(EMBEDDING_DIM, backend="faiss")

        assert isinstance(store, FaissVectorStore)
        assert store.supports_prefilter is False

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_vector_store(EMBEDDING_DIM, backend="sqlite")


class TestHealthCheck:

    def test_qdrant_reports_collections(self, qdrant_store):
        status = qdrant_store.health_check()

        assert status["backend"] == "qdrant"
        assert status["mode"] == "local"
        assert status["ready"] is True
        assert {"document_chunks", "few_shot_examples"} <= set(status["collections"])

    def test_qdrant_unreachable(self, qdrant_store, monkeypatch):
        def refuse():
            raise ConnectionError("connection refused")

        monkeypatch.setattr(qdrant_store._db.client, "get_collections", refuse)

        with pytest.raises(StorageError):
            qdrant_store.health_check()

    def test_faiss_reports_vectors(self, faiss_store):
        _seed(faiss_store, "doc.pdf", [0.9, 0.8])

        assert faiss_store.health_check() == {
            "backend": "faiss",
            "vectors": 2,
            "persistent": False,
        }


class TestQdrantLocalConcurrency:
    """
    Embedded Qdrant keeps its points in plain numpy arrays, so reads
    running while another thread inserts must be serialized too.
    """

    def test_reads_during_inserts(self):
        store = QdrantVectorStore(EMBEDDING_DIM, client=QdrantClient(location=":memory:"))

        done = threading.Event()
        errors = []

        def write():
            try:
                for i in range(1500):
                    store.insert_chunk(f"chunk {i}", unit_vector((i % 10) / 10), "doc.pdf", i)
            except Exception as e:
                errors.append(e)
            finally:
                done.set()

        def read():
            while not done.is_set():
                try:
                    store.search(axis(), threshold=0.0, limit=5, document_name="doc.pdf")
                    store.list_documents()
                    store.count_chunks("doc.pdf")
                except Exception as e:
                    errors.append(e)
                    return

        threads = [threading.Thread(target=write)]
        threads += [threading.Thread(target=read) for _ in range(3)]

        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=120)

        assert errors == []
        assert store.count_chunks("doc.pdf") == 1500

    def test_server_mode_reads_skip_the_lock(self, qdrant_store, monkeypatch):
        """Only embedded mode pays for serialized reads."""
        monkeypatch.setattr(qdrant_store, "_local", False)

        acquired = []
        real_lock = qdrant_store._lock

        class RecordingLock:
            def __enter__(self):
                acquired.append(True)
                return real_lock.__enter__()

            def __exit__(self, *exc):
                return real_lock.__exit__(*exc)

        monkeypatch.setattr(qdrant_store, "_lock", RecordingLock())

        qdrant_store.count_chunks()
        assert acquired == []

        qdrant_store.insert_chunk("text", axis(), "doc.pdf", 0)
        assert acquired == [True]
