import logging
from typing import Optional

from qdrant_client import QdrantClient

from qdrant_client.http.models import (
    Distance,
    VectorParams,
    PayloadSchemaType,
)

from pdf_rag.config import (
    QDRANT_URL,
    QDRANT_API_KEY,
    QDRANT_CHUNKS_COLLECTION,
    QDRANT_EXAMPLES_COLLECTION,
)

logger = logging.getLogger(__name__)

# Example sets are looked up by id only; their vector is a placeholder
EXAMPLES_VECTOR_SIZE = 1


def build_qdrant_client(url: str = QDRANT_URL, api_key: Optional[str] = QDRANT_API_KEY) -> QdrantClient:
    """":memory:" selects the embedded local mode, anything else a server."""

    if url == ":memory:":
        return QdrantClient(location=":memory:")

    return QdrantClient(url=url, api_key=api_key, timeout=60.0)


class QdrantVectorDB:
    """
    Connection wrapper that provisions the two collections
    the pipeline needs:

    - chunks:   one point per chunk, cosine distance
    - examples: one point per document (few-shot example set)
    """

    def __init__(
        self,
        dim: int,
        client: Optional[QdrantClient] = None,
        chunks_collection: str = QDRANT_CHUNKS_COLLECTION,
        examples_collection: str = QDRANT_EXAMPLES_COLLECTION,
    ):

        self._dim = dim

        self.client = client or build_qdrant_client()

        # embedded mode keeps the points in this process
        options = self.client.init_options
        self.is_local = options.get("location") == ":memory:" or options.get("path") is not None

        self.chunks_collection = chunks_collection
        self.examples_collection = examples_collection

        self._ensure_collection(
            self.chunks_collection,
            VectorParams(size=dim, distance=Distance.COSINE),
        )

        self._ensure_collection(
            self.examples_collection,
            VectorParams(size=EXAMPLES_VECTOR_SIZE, distance=Distance.DOT),
        )

        logger.info(
            "Qdrant client initialized",
            extra={
                "chunks_collection": self.chunks_collection,
                "examples_collection": self.examples_collection,
                "dimension": dim,
            },
        )

    def _ensure_collection(self, name: str, vectors_config: VectorParams):
        """
        Ensures the collection exists AND the document_name payload
        index exists (required for filtered search, count and delete).
        """

        collections = self.client.get_collections().collections

        exists = any(c.name == name for c in collections)

        if not exists:

            self.client.create_collection(
                collection_name=name,
                vectors_config=vectors_config,
            )

            logger.info(
                "Qdrant collection created",
                extra={"collection": name},
            )

        try:

            self.client.create_payload_index(
                collection_name=name,
                field_name="document_name",
                field_schema=PayloadSchemaType.KEYWORD,
            )

        except Exception as e:
            # Index already exists, or local mode (indexes not supported)
            logger.debug(
                "Payload index already exists or skipped",
                extra={"collection": name, "error": str(e)},
            )

    def health_check(self) -> dict:

        collections = self.client.get_collections().collections

        names = {c.name for c in collections}

        return {
            "mode": "local" if self.is_local else "server",
            "collections": sorted(names),
            "ready": {self.chunks_collection, self.examples_collection} <= names,
        }
