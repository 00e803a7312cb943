# tests/conftest.py
import hashlib
import re
import sys
import os

import numpy as np
import pytest
from fastapi.testclient import TestClient
from qdrant_client import QdrantClient

# Add project root to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from pdf_rag.errors import RateLimitExceeded
from pdf_rag.memory.embedder import EmbeddingProvider
from pdf_rag.memory.store import QdrantVectorStore, FaissVectorStore


EMBEDDING_DIM = 64


class HashingEmbedder(EmbeddingProvider):
    """
    Deterministic bag-of-words embedding: every word is hashed onto one
    axis. Texts sharing words are similar, disjoint texts are orthogonal.

    `fail_with` maps a text to a list of exceptions raised (one per call)
    before the text embeds successfully.
    """

    name = "hashing"

    def __init__(self, dim: int = EMBEDDING_DIM):
        self._dim = dim
        self.calls = []
        self.fail_with = {}

    def embed(self, text):

        self.calls.append(text)

        pending = self.fail_with.get(text)
        if pending:
            raise pending.pop(0)

        vector = np.zeros(self._dim, dtype="float32")

        for word in re.findall(r"\w+", text.lower()):
            digest = hashlib.md5(word.encode()).hexdigest()
            vector[int(digest, 16) % self._dim] += 1.0

        norm = np.linalg.norm(vector)
        if norm == 0:
            vector[0] = 1.0
            norm = 1.0

        return (vector / norm).tolist()

    def get_dimension(self):
        return self._dim


class FakeLLM:
    """
    Records every completion request.

    `responses` is consumed in order; an Exception item is raised
    instead of returned. Once exhausted, `default` is returned.
    """

    def __init__(self, responses=None, default="Q: What?\nA: That."):
        self.responses = list(responses or [])
        self.default = default
        self.calls = []

    def complete(self, system_prompt, user_message, max_tokens, temperature=None):

        self.calls.append({
            "system_prompt": system_prompt,
            "user_message": user_message,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })

        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response

        return self.default


def unit_vector(similarity, dim=EMBEDDING_DIM):
    """Vector whose cosine with axis 0 is exactly `similarity`."""

    vector = [0.0] * dim
    vector[0] = similarity
    vector[1] = (1.0 - similarity ** 2) ** 0.5
    return vector


def axis(dim=EMBEDDING_DIM):
    return unit_vector(1.0, dim)


def rate_limited():
    return RateLimitExceeded("429 Too Many Requests")


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def sleeps():
    """Recorded sleep durations; pass `sleeps.append` as the sleep function."""
    return []


@pytest.fixture
def qdrant_store():
    return QdrantVectorStore(EMBEDDING_DIM, client=QdrantClient(location=":memory:"))


@pytest.fixture
def faiss_store():
    return FaissVectorStore(EMBEDDING_DIM, storage_dir=None)


@pytest.fixture(params=["qdrant", "faiss"])
def store(request):
    """Runs a test once per vector store backend."""

    if request.param == "qdrant":
        return QdrantVectorStore(EMBEDDING_DIM, client=QdrantClient(location=":memory:"))

    return FaissVectorStore(EMBEDDING_DIM, storage_dir=None)


@pytest.fixture
def services(embedder, qdrant_store, llm, sleeps):

    from pdf_rag.api.routes import PipelineServices
    from pdf_rag.workflow.document_qa import QueryService
    from pdf_rag.workflow.few_shot import FewShotExampleGenerator
    from pdf_rag.workflow.ingestion import DocumentIngestionService

    generator = FewShotExampleGenerator(
        store=qdrant_store,
        llm_client=llm,
        sleep=sleeps.append,
    )

    return PipelineServices(
        embedder=embedder,
        store=qdrant_store,
        query_service=QueryService(embedder, qdrant_store, llm),
        ingestion_service=DocumentIngestionService(
            embedder=embedder,
            store=qdrant_store,
            example_generator=generator,
            sleep=sleeps.append,
        ),
    )


@pytest.fixture
def client(services, tmp_path, monkeypatch):
    """
    FastAPI test client wired to in-memory services.

    Uploads land in a temporary directory, which is also the
    directory /api/documents/process reads from.
    """
    from pdf_rag.api import routes
    from pdf_rag.main import app

    monkeypatch.setattr(routes, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(routes, "DOCUMENTS_DIR", str(tmp_path))

    app.dependency_overrides[routes.get_services] = lambda: services

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def blank_pdf_content():
    """Valid single-page PDF without any text."""
    from io import BytesIO

    from pypdf import PdfWriter

    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)

    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


@pytest.fixture
def non_pdf_content():
    return b"This is a plain text file, not a PDF."
