# tests/test_ingestion.py
import pytest

from pdf_rag.errors import ExtractionFailure, GenerationFailure, PipelineError
from pdf_rag.memory.store import FaissVectorStore
from pdf_rag.workflow import ingestion
from pdf_rag.workflow.few_shot import FewShotExampleGenerator
from pdf_rag.workflow.ingestion import DocumentIngestionService

from conftest import EMBEDDING_DIM, FakeLLM, rate_limited


def _service(embedder, store, llm, sleeps, **kwargs):

    generator = FewShotExampleGenerator(store=store, llm_client=llm, sleep=sleeps.append)

    options = {"chunk_size": 4, "chunk_overlap": 0, "batch_size": 2, "batch_delay_seconds": 8}
    options.update(kwargs)

    return DocumentIngestionService(
        embedder=embedder,
        store=store,
        example_generator=generator,
        sleep=sleeps.append,
        **options,
    )


def _top_match(embedder, store, text):
    return store.search(embedder.embed(text), threshold=0.9, limit=5)


class TestIngest:

    def test_chunks_stored_in_order(self, embedder, store, llm, sleeps):
        result = _service(embedder, store, llm, sleeps).ingest("AAAABBBBCCCC", "doc.pdf")

        assert result == {"chunks_processed": 3, "few_shot_examples_generated": True}
        assert store.count_chunks("doc.pdf") == 3

        for index, content in enumerate(["AAAA", "BBBB", "CCCC"]):
            matches = _top_match(embedder, store, content)
            assert [(m["content"], m["chunk_index"]) for m in matches] == [(content, index)]

        # one pause between the two batches
        assert sleeps == [8]
        assert len(llm.calls) == 1
        assert store.get_few_shot_examples("doc.pdf") == llm.default

    def test_already_processed_document_is_skipped(self, embedder, store, llm, sleeps):
        """Five existing chunks: nothing is embedded or generated again."""
        for i in range(5):
            store.insert_chunk(f"chunk {i}", embedder.embed(f"chunk {i}"), "doc.pdf", i)
        embedder.calls.clear()

        result = _service(embedder, store, llm, sleeps).ingest("new text entirely", "doc.pdf")

        assert result == {"chunks_processed": 5, "few_shot_examples_generated": True}
        assert embedder.calls == []
        assert llm.calls == []
        assert store.count_chunks("doc.pdf") == 5

    def test_rate_limited_batch_retried_without_duplicates(self, embedder, store, llm, sleeps):
        embedder.fail_with["BBBB"] = [rate_limited()]

        result = _service(embedder, store, llm, sleeps, cooldown_seconds=60).ingest("AAAABBBBCCCC", "doc.pdf")

        assert result["chunks_processed"] == 3
        assert store.count_chunks("doc.pdf") == 3
        assert sleeps == [60, 8]

    def test_other_batch_failure_aborts(self, embedder, store, llm, sleeps):
        embedder.fail_with["CCCC"] = [PipelineError("embedding backend down")]

        with pytest.raises(PipelineError):
            _service(embedder, store, llm, sleeps).ingest("AAAABBBBCCCC", "doc.pdf")

        # the earlier batch stays, examples are never generated
        assert store.count_chunks("doc.pdf") == 2
        assert llm.calls == []

    def test_store_flushed_once_per_batch(self, embedder, store, llm, sleeps, monkeypatch):
        flushed_at = []
        persist = store.persist

        def record_flush():
            flushed_at.append(store.count_chunks("doc.pdf"))
            persist()

        monkeypatch.setattr(store, "persist", record_flush)

        _service(embedder, store, llm, sleeps).ingest("AAAABBBBCCCC", "doc.pdf")

        assert flushed_at == [2, 3]

    def test_faiss_chunks_on_disk_after_ingest(self, embedder, llm, sleeps, tmp_path):
        store = FaissVectorStore(EMBEDDING_DIM, storage_dir=str(tmp_path))

        _service(embedder, store, llm, sleeps).ingest("AAAABBBBCCCC", "doc.pdf")

        reloaded = FaissVectorStore(EMBEDDING_DIM, storage_dir=str(tmp_path))

        assert reloaded.count_chunks("doc.pdf") == 3
        assert reloaded.get_few_shot_examples("doc.pdf") == llm.default

    @pytest.mark.parametrize("text", ["", "   \n\t "])
    def test_empty_text_rejected(self, embedder, store, llm, sleeps, text):
        with pytest.raises(ExtractionFailure):
            _service(embedder, store, llm, sleeps).ingest(text, "doc.pdf")

        assert store.count_chunks() == 0

    def test_example_failure_only_clears_the_flag(self, embedder, store, sleeps):
        llm = FakeLLM([GenerationFailure("model unavailable")])

        result = _service(embedder, store, llm, sleeps).ingest("AAAABBBB", "doc.pdf")

        assert result == {"chunks_processed": 2, "few_shot_examples_generated": False}

    def test_empty_examples_clear_the_flag(self, embedder, store, sleeps):
        result = _service(embedder, store, FakeLLM([""]), sleeps).ingest("AAAABBBB", "doc.pdf")

        assert result["few_shot_examples_generated"] is False

    def test_invalid_batch_size(self, embedder, store, llm):
        with pytest.raises(ValueError):
            DocumentIngestionService(embedder, store, example_generator=None, batch_size=0)


class TestIngestFile:

    def test_named_after_file(self, embedder, store, llm, sleeps, monkeypatch, tmp_path):
        path = tmp_path / "handbook.pdf"
        path.write_bytes(b"%PDF-1.4")
        monkeypatch.setattr(ingestion, "load_pdf_text", lambda source: "AAAABBBB")

        result = _service(embedder, store, llm, sleeps).ingest_file(str(path))

        assert result["chunks_processed"] == 2
        assert store.count_chunks("handbook.pdf") == 2

    def test_pdf_without_text(self, embedder, store, llm, sleeps, tmp_path, blank_pdf_content):
        path = tmp_path / "scan.pdf"
        path.write_bytes(blank_pdf_content)

        with pytest.raises(ExtractionFailure):
            _service(embedder, store, llm, sleeps).ingest_file(str(path))


class TestReindex:

    def test_replaces_chunks_and_keeps_examples(self, embedder, store, llm, sleeps):
        service = _service(embedder, store, llm, sleeps)
        service.ingest("AAAABBBBCCCC", "doc.pdf")

        count = service.reindex("DDDDEEEE", "doc.pdf")

        assert count == 2
        assert store.count_chunks("doc.pdf") == 2
        assert _top_match(embedder, store, "AAAA") == []
        assert store.get_few_shot_examples("doc.pdf") == llm.default
        assert len(llm.calls) == 1

    def test_empty_text_rejected(self, embedder, store, llm, sleeps):
        with pytest.raises(ExtractionFailure):
            _service(embedder, store, llm, sleeps).reindex(" ", "doc.pdf")
