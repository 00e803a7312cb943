# pdf_rag/workflow/ingestion.py

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

from pdf_rag.config import (
    CHUNK_SIZE,
    CHUNK_OVERLAP,
    INGESTION_BATCH_SIZE,
    INGESTION_BATCH_DELAY_SECONDS,
    RATE_LIMIT_COOLDOWN_SECONDS,
    RATE_LIMIT_MAX_ATTEMPTS,
)
from pdf_rag.errors import ExtractionFailure, PipelineError
from pdf_rag.memory.chunker import chunk_text
from pdf_rag.memory.loader import load_pdf_text
from pdf_rag.retry import retry_on_rate_limit

logger = logging.getLogger(__name__)


class DocumentIngestionService:
    """
    Idempotent document ingestion:

    processed? → chunk + embed + store → few-shot examples → counts

    Chunk storage is strict: any non rate-limit batch failure aborts the
    ingestion. Rows already inserted by earlier batches are not rolled back.
    Example generation is best effort and only affects the reported flag.
    """

    def __init__(
        self,
        embedder,
        store,
        example_generator,
        chunk_size: int = CHUNK_SIZE,
        chunk_overlap: int = CHUNK_OVERLAP,
        batch_size: int = INGESTION_BATCH_SIZE,
        batch_delay_seconds: float = INGESTION_BATCH_DELAY_SECONDS,
        cooldown_seconds: float = RATE_LIMIT_COOLDOWN_SECONDS,
        max_attempts: int = RATE_LIMIT_MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if batch_size <= 0:
            raise ValueError(f"Invalid batch size: {batch_size}")

        self.embedder = embedder
        self.store = store
        self.example_generator = example_generator
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap
        self._batch_size = batch_size
        self._batch_delay_seconds = batch_delay_seconds
        self._cooldown_seconds = cooldown_seconds
        self._max_attempts = max_attempts
        self._sleep = sleep

    # ============================================================
    # PUBLIC API
    # ============================================================

    def ingest(self, document_text: str, document_name: str) -> Dict:

        if not document_text or not document_text.strip():
            raise ExtractionFailure(f"No text to process for {document_name}")

        existing = self.store.count_chunks(document_name)

        if existing:

            logger.info(
                "Document already processed, skipping",
                extra={"document_name": document_name, "chunks": existing},
            )

            return {
                "chunks_processed": existing,
                "few_shot_examples_generated": True,
            }

        chunks_processed = self._store_chunks(document_text, document_name)

        examples_generated = self._generate_examples(document_text, document_name)

        logger.info(
            "Document ingestion complete",
            extra={
                "document_name": document_name,
                "chunks_processed": chunks_processed,
                "few_shot_examples_generated": examples_generated,
            },
        )

        return {
            "chunks_processed": chunks_processed,
            "few_shot_examples_generated": examples_generated,
        }

    def ingest_file(self, path: str, document_name: Optional[str] = None) -> Dict:
        """Extract a PDF from disk, then ingest it under its file name."""

        document_name = document_name or os.path.basename(path)

        text = load_pdf_text(path)

        if not text:
            raise ExtractionFailure(f"Failed to extract content from {document_name}")

        return self.ingest(text, document_name)

    def reindex(self, document_text: str, document_name: str) -> int:
        """
        Replace every chunk of a document. Cached few-shot
        examples are kept.
        """

        if not document_text or not document_text.strip():
            raise ExtractionFailure(f"No text to process for {document_name}")

        logger.info("Reindexing document", extra={"document_name": document_name})

        self.store.delete_document(document_name, keep_examples=True)

        chunks = chunk_text(document_text, self._chunk_size, self._chunk_overlap)

        embeddings = self.embedder.embed_batch(
            chunks,
            batch_size=self._batch_size,
            delay_seconds=self._batch_delay_seconds,
            strict=True,
            cooldown_seconds=self._cooldown_seconds,
            max_attempts=self._max_attempts,
            sleep=self._sleep,
        )

        for chunk_index, (chunk, embedding) in enumerate(zip(chunks, embeddings)):
            self.store.insert_chunk(chunk, embedding, document_name, chunk_index)

        self.store.persist()

        logger.info(
            "Reindex complete",
            extra={"document_name": document_name, "chunks": len(chunks)},
        )

        return len(chunks)

    # ============================================================
    # CHUNK STORAGE
    # ============================================================

    def _store_chunks(self, document_text: str, document_name: str) -> int:

        chunks = chunk_text(document_text, self._chunk_size, self._chunk_overlap)

        total_batches = (len(chunks) + self._batch_size - 1) // self._batch_size

        logger.info(
            "Processing chunks",
            extra={
                "document_name": document_name,
                "chunks": len(chunks),
                "batch_size": self._batch_size,
                "batches": total_batches,
            },
        )

        total_processed = 0

        for batch_number, start in enumerate(range(0, len(chunks), self._batch_size), 1):

            if batch_number > 1:

                logger.info(
                    "Waiting before next batch",
                    extra={"delay_seconds": self._batch_delay_seconds},
                )

                self._sleep(self._batch_delay_seconds)

            batch = chunks[start:start + self._batch_size]

            logger.info(
                "Processing batch",
                extra={"batch": batch_number, "batches": total_batches},
            )

            try:

                total_processed += retry_on_rate_limit(
                    lambda: self._process_batch(batch, start, document_name),
                    label=f"ingestion batch {batch_number}",
                    cooldown_seconds=self._cooldown_seconds,
                    max_attempts=self._max_attempts,
                    sleep=self._sleep,
                )

            except Exception as e:

                logger.error(
                    "Ingestion batch failed, aborting",
                    extra={
                        "document_name": document_name,
                        "batch": batch_number,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )

                raise

        return total_processed

    def _process_batch(self, batch: List[str], offset: int, document_name: str) -> int:
        """
        Embed the whole batch first, then insert. A rate limit can only
        surface before any row of the batch is written, so retrying the
        batch never duplicates rows. The store is flushed once per batch.
        """

        embeddings = self.embedder.embed_concurrently(batch)

        with ThreadPoolExecutor(max_workers=len(batch)) as executor:

            futures = [
                executor.submit(
                    self.store.insert_chunk,
                    chunk,
                    embedding,
                    document_name,
                    offset + i,
                )
                for i, (chunk, embedding) in enumerate(zip(batch, embeddings))
            ]

            for future in futures:
                future.result()

        self.store.persist()

        return len(batch)

    # ============================================================
    # FEW-SHOT EXAMPLES
    # ============================================================

    def _generate_examples(self, document_text: str, document_name: str) -> bool:

        try:

            examples = self.example_generator.generate(document_text, document_name)

        except PipelineError as e:

            logger.error(
                "Few-shot example generation failed",
                extra={
                    "document_name": document_name,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )

            return False

        return bool(examples)
