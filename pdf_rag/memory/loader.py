# pdf_rag/memory/loader.py

"""
PDF text extraction.

Architecture contract:
loader → chunker → embedder → vector_store

Extraction never raises: an unreadable or image-only PDF yields "",
which the ingestion path reports as ExtractionFailure.
"""

import logging
from typing import BinaryIO, Union

from pypdf import PdfReader

logger = logging.getLogger(__name__)


def load_pdf_text(source: Union[str, BinaryIO]) -> str:
    """Accepts a file path or a binary file object."""

    try:

        reader = PdfReader(source)

        parts = []

        for page in reader.pages:

            text = page.extract_text()

            if text:
                parts.append(text)

    except Exception as e:

        logger.error(
            "PDF text extraction failed",
            extra={"error": str(e), "error_type": type(e).__name__},
        )

        return ""

    text = "\n".join(parts)

    logger.info(
        "PDF text extracted",
        extra={"pages": len(parts), "characters": len(text)},
    )

    return text
