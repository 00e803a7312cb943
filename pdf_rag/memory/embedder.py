# pdf_rag/memory/embedder.py

"""
Embedding providers with rate-limited batch processing.

Architecture contract:
chunker → embedder → vector_store

Guarantees:
• Deterministic embeddings for identical input
• Always mean-pooled and L2-normalized (cosine-ready)
• Batches run strictly one after another with a pause between them
• Texts inside one batch are embedded concurrently
• One model handle per process, created once under a lock
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

import numpy as np
import openai
from openai import OpenAI
from transformers import pipeline

from pdf_rag.config import (
    EMBEDDING_PROVIDER,
    LOCAL_EMBEDDING_MODEL,
    OPENAI_EMBEDDING_MODEL,
    INGESTION_BATCH_SIZE,
    INGESTION_BATCH_DELAY_SECONDS,
    RATE_LIMIT_COOLDOWN_SECONDS,
    RATE_LIMIT_MAX_ATTEMPTS,
)
from pdf_rag.errors import PipelineError, RateLimitExceeded
from pdf_rag.retry import retry_on_rate_limit

logger = logging.getLogger(__name__)


def _normalize(vector: np.ndarray) -> np.ndarray:

    norm = np.linalg.norm(vector)

    return vector / max(norm, 1e-10)


class EmbeddingProvider(ABC):
    """
    Contract for text-embedding backends.

    Only `embed` and `get_dimension` are backend specific. Batching,
    throttling and retry behaviour are shared by every backend.
    """

    name = "base"

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """Return the normalized embedding of one text."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Required by VectorStore initialization."""

    # ============================================================
    # BATCH PROCESSING
    # ============================================================

    def embed_concurrently(self, texts: List[str]) -> List[List[float]]:
        """Fan out one batch. Any failure fails the whole batch."""

        if not texts:
            return []

        with ThreadPoolExecutor(max_workers=len(texts)) as executor:
            return list(executor.map(self.embed, texts))

    def embed_batch(
        self,
        texts: List[str],
        batch_size: int = INGESTION_BATCH_SIZE,
        delay_seconds: float = INGESTION_BATCH_DELAY_SECONDS,
        strict: bool = True,
        cooldown_seconds: float = RATE_LIMIT_COOLDOWN_SECONDS,
        max_attempts: int = RATE_LIMIT_MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> List[Optional[List[float]]]:
        """
        Embed texts in fixed-size batches.

        • sleeps `delay_seconds` between batches (not before the first,
          not after the last)
        • a rate-limited batch is retried after the cooldown
        • strict=True: any other batch error propagates
        • strict=False: a failed batch leaves None in its slots and
          processing continues with the next batch
        """

        if batch_size <= 0:
            raise ValueError(f"Invalid batch size: {batch_size}")

        total = len(texts)

        total_batches = (total + batch_size - 1) // batch_size

        embeddings: List[Optional[List[float]]] = []

        logger.info(
            "Batch embedding started",
            extra={
                "texts": total,
                "batch_size": batch_size,
                "batches": total_batches,
                "strict": strict,
            },
        )

        for batch_number, start in enumerate(range(0, total, batch_size), 1):

            if batch_number > 1:

                logger.info(
                    "Waiting before next batch",
                    extra={"delay_seconds": delay_seconds},
                )

                sleep(delay_seconds)

            batch = texts[start:start + batch_size]

            logger.info(
                "Processing batch",
                extra={"batch": batch_number, "batches": total_batches},
            )

            try:

                batch_embeddings = retry_on_rate_limit(
                    lambda: self.embed_concurrently(batch),
                    label=f"embedding batch {batch_number}",
                    cooldown_seconds=cooldown_seconds,
                    max_attempts=max_attempts,
                    sleep=sleep,
                )

            except Exception as e:

                if strict:
                    logger.error(
                        "Embedding batch failed",
                        extra={"batch": batch_number, "error": str(e)},
                    )
                    raise

                logger.warning(
                    "Embedding batch skipped",
                    extra={"batch": batch_number, "error": str(e)},
                )

                batch_embeddings = [None] * len(batch)

            embeddings.extend(batch_embeddings)

        return embeddings

    def health_check(self) -> dict:

        return {
            "provider": self.name,
            "dimension": self.get_dimension(),
            "status": "healthy",
        }


# ============================================================
# LOCAL TRANSFORMERS MODEL
# ============================================================

class LocalEmbeddingProvider(EmbeddingProvider):
    """
    Feature-extraction model run in-process.

    Token vectors are mean-pooled and L2-normalized, which matches
    sentence-transformers output for MiniLM-style models.
    """

    name = "local"

    def __init__(self, model_name: str = LOCAL_EMBEDDING_MODEL):

        logger.info(
            "Initializing embedding model",
            extra={"model": model_name},
        )

        try:

            self._pipeline = pipeline(
                "feature-extraction",
                model=model_name,
                device=-1,
            )

        except Exception as e:

            logger.critical(
                "Embedding model initialization failed",
                extra={"model": model_name, "error": str(e)},
            )

            raise RuntimeError(
                f"Failed to initialize embedding model: {e}"
            )

        self._model_name = model_name
        self._dimension = self._pipeline.model.config.hidden_size

        logger.info(
            "Embedding model initialized",
            extra={"model": model_name, "dimension": self._dimension},
        )

    def embed(self, text: str) -> List[float]:

        # shape: (1, tokens, hidden)
        features = np.asarray(
            self._pipeline(text, truncation=True),
            dtype="float32",
        )

        pooled = features[0].mean(axis=0)

        return _normalize(pooled).tolist()

    def get_dimension(self) -> int:
        return self._dimension


# ============================================================
# OPENAI EMBEDDINGS API
# ============================================================

class OpenAIEmbeddingProvider(EmbeddingProvider):

    name = "openai"

    _DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
    }

    def __init__(self, model: str = OPENAI_EMBEDDING_MODEL, client: Optional[OpenAI] = None):

        if model not in self._DIMENSIONS:
            raise ValueError(f"Unsupported embedding model: {model}")

        self._model = model
        self._dimension = self._DIMENSIONS[model]
        self._client = client or OpenAI()

        logger.info(
            "Embedding model initialized",
            extra={"model": model, "dimension": self._dimension},
        )

    def embed(self, text: str) -> List[float]:

        try:

            response = self._client.embeddings.create(
                model=self._model,
                input=[text],
            )

        except openai.RateLimitError as e:
            raise RateLimitExceeded(str(e)) from e

        except openai.OpenAIError as e:
            raise PipelineError(f"Embedding generation failed: {e}") from e

        vector = np.asarray(response.data[0].embedding, dtype="float32")

        return _normalize(vector).tolist()

    def get_dimension(self) -> int:
        return self._dimension


# ============================================================
# PROCESS-WIDE HANDLE
# ============================================================

_PROVIDERS = {
    "local": LocalEmbeddingProvider,
    "openai": OpenAIEmbeddingProvider,
}

_provider: Optional[EmbeddingProvider] = None
_provider_lock = threading.Lock()


def build_embedding_provider(name: str = EMBEDDING_PROVIDER) -> EmbeddingProvider:

    try:
        factory = _PROVIDERS[name]
    except KeyError:
        raise ValueError(f"Unknown embedding provider: {name}")

    return factory()


def get_embedding_provider() -> EmbeddingProvider:
    """
    Load the configured model once and reuse it for the process lifetime.
    Concurrent first calls share a single load.
    """

    global _provider

    if _provider is None:

        with _provider_lock:

            if _provider is None:
                _provider = build_embedding_provider()

    return _provider
