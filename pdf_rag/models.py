# pdf_rag/models.py
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional


class _CamelModel(BaseModel):
    """Accepts and emits the camelCase keys used by the web client."""
    model_config = ConfigDict(populate_by_name=True)


class ProcessRequest(_CamelModel):
    """Request to ingest a PDF that already sits in the documents directory."""
    file_name: str = Field(..., alias="fileName", min_length=1, max_length=255)


class QueryRequest(_CamelModel):
    """Natural-language question, optionally scoped to one document."""
    query: str = Field(..., min_length=1, max_length=4000)
    document_name: Optional[str] = Field(None, alias="documentName", max_length=255)

    @field_validator("query")
    @classmethod
    def validate_query(cls, v):
        """Ensure query is not just whitespace."""
        if not v.strip():
            raise ValueError("Query cannot be empty or only whitespace")
        return v.strip()


class SearchRequest(QueryRequest):
    limit: int = Field(5, ge=1, le=100)


class ExploreRequest(_CamelModel):
    query: str = Field(..., min_length=1, max_length=4000)


class IngestResponse(_CamelModel):
    """Response after a document was processed (or found already processed)."""
    message: str = "Document processed successfully"
    document_name: str = Field(..., alias="documentName")
    chunks_processed: int = Field(..., alias="chunksProcessed")
    few_shot_examples_generated: bool = Field(..., alias="fewShotExamplesGenerated")


class Source(BaseModel):
    """Preview of one chunk that was sent to the model."""
    content: str
    document_name: str
    chunk_index: int
    similarity: float


class QueryResponse(BaseModel):
    query: str
    answer: str
    sources: List[Source]
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: Optional[str] = None


class SearchResult(BaseModel):
    id: Optional[str] = None
    content: str
    document_name: str
    chunk_index: int
    similarity: float


class SearchResponse(BaseModel):
    query: str
    results: List[SearchResult]
    total: int


class DocumentInfo(BaseModel):
    name: str
    created_at: Optional[str] = None
    chunk_count: int


class ListDocumentsResponse(BaseModel):
    documents: List[DocumentInfo]
    total: int


class EmbeddingStats(_CamelModel):
    total_documents: int = Field(..., alias="totalDocuments")
    total_chunks: int = Field(..., alias="totalChunks")
    average_chunk_size: int = Field(..., alias="averageChunkSize")
    documents_with_examples: int = Field(..., alias="documentsWithExamples")


class StatsResponse(BaseModel):
    stats: EmbeddingStats
    timestamp: str


class ExamplesResponse(_CamelModel):
    document_name: str = Field(..., alias="documentName")
    few_shot_examples: str = Field(..., alias="fewShotExamples")


class DeleteDocumentResponse(_CamelModel):
    message: str = "Document deleted successfully"
    document_name: str = Field(..., alias="documentName")
    deleted_chunks: int = Field(..., alias="deletedChunks")
    deleted_examples: bool = Field(..., alias="deletedExamples")


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    uptime_seconds: float
    vector_store: Optional[Dict[str, Any]] = None
