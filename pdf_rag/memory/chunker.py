# pdf_rag/memory/chunker.py

import logging
import math
from typing import List

from pdf_rag.config import (
    CHUNK_SIZE,
    CHUNK_OVERLAP,
    CHARS_PER_TOKEN,
)

logger = logging.getLogger(__name__)


def estimate_tokens(text: str) -> int:
    """1 token ≈ 4 characters, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def chunk_text(
    text: str,
    size: int = CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
) -> List[str]:
    """
    Overlapping character-window chunker used for embedding storage.

    Architecture contract:
    loader → chunker → embedder → vector_store

    Window i starts at i * (size - overlap) and spans up to `size`
    characters. Generation stops at the first window that reaches
    the end of the text.

    Guarantees:
    • deterministic chunk generation
    • no gaps: consecutive windows always touch or overlap
    • no infinite loops (overlap >= size is rejected up front)
    """

    # ============================================================
    # SAFETY CHECKS
    # ============================================================

    if size <= 0:
        raise ValueError(f"Invalid chunk size: {size}")

    if overlap < 0:
        raise ValueError(f"Invalid chunk overlap: {overlap}")

    if overlap >= size:
        raise ValueError(
            f"Overlap must be smaller than chunk size "
            f"(overlap={overlap}, size={size})"
        )

    if not text:
        logger.warning("Chunking skipped: empty text")
        return []

    # ============================================================
    # CHUNK GENERATION LOOP
    # ============================================================

    total_chars = len(text)

    step = size - overlap

    chunks = []

    start = 0

    while start < total_chars:

        end = min(start + size, total_chars)

        chunks.append(text[start:end])

        if end >= total_chars:
            break

        start += step

    logger.info(
        "Chunking completed",
        extra={
            "total_chars": total_chars,
            "chunk_size": size,
            "overlap": overlap,
            "chunks_created": len(chunks),
        },
    )

    return chunks


def split_for_token_limit(text: str, max_tokens: int) -> List[str]:
    """
    Hard split into consecutive, non-overlapping blocks of
    max_tokens * 4 characters.

    Only used to fit content into a single LLM request
    (few-shot generation), never for embedding storage.
    """

    if max_tokens <= 0:
        raise ValueError(f"Invalid token budget: {max_tokens}")

    max_chars = max_tokens * CHARS_PER_TOKEN

    return [
        text[i:i + max_chars]
        for i in range(0, len(text), max_chars)
    ]
