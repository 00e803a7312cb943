from fastapi import APIRouter, Depends, UploadFile, File, HTTPException, Request, Response
import uuid
import logging
import time
import threading
import os

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pdf_rag.config import (
    MAX_FILE_SIZE_MB,
    ALLOWED_FILE_EXTENSIONS,
    UPLOAD_DIR,
    DOCUMENTS_DIR,
)
from pdf_rag.errors import DocumentNotFound, ExtractionFailure, StorageError
from pdf_rag.observability.metrics import metrics_tracker
from pdf_rag.observability.posthog_client import posthog_client

from pdf_rag.models import (
    ProcessRequest,
    QueryRequest,
    QueryResponse,
    SearchRequest,
    ExploreRequest,
    SearchResponse,
    IngestResponse,
    ListDocumentsResponse,
    DeleteDocumentResponse,
    DocumentInfo,
    ExamplesResponse,
    StatsResponse,
    HealthResponse,
)

from pdf_rag.memory.loader import load_pdf_text
from pdf_rag.memory.embedder import get_embedding_provider
from pdf_rag.memory.store import build_vector_store
from pdf_rag.llm.client import LLMClient
from pdf_rag.workflow.few_shot import FewShotExampleGenerator
from pdf_rag.workflow.document_qa import QueryService
from pdf_rag.workflow.ingestion import DocumentIngestionService


# ============================================================
# LOGGER
# ============================================================

logger = logging.getLogger(__name__)

router = APIRouter()

START_TIME = time.time()


# ============================================================
# PIPELINE SERVICES (BUILT ON FIRST REQUEST)
# ============================================================

class PipelineServices:
    """Everything a request handler needs, wired once per process."""

    def __init__(self, embedder, store, query_service, ingestion_service):
        self.embedder = embedder
        self.store = store
        self.query_service = query_service
        self.ingestion_service = ingestion_service


_services: Optional[PipelineServices] = None
_services_lock = threading.Lock()


def build_services() -> PipelineServices:

    embedder = get_embedding_provider()

    store = build_vector_store(dim=embedder.get_dimension())

    llm_client = LLMClient()

    example_generator = FewShotExampleGenerator(store=store, llm_client=llm_client)

    return PipelineServices(
        embedder=embedder,
        store=store,
        query_service=QueryService(embedder, store, llm_client),
        ingestion_service=DocumentIngestionService(
            embedder=embedder,
            store=store,
            example_generator=example_generator,
        ),
    )


def get_services() -> PipelineServices:

    global _services

    if _services is None:
        with _services_lock:
            if _services is None:
                _services = build_services()
                logger.info("Pipeline services initialized")

    return _services


# ============================================================
# INGESTION LOCK
# ============================================================

# one document at a time keeps the embedding rate limit predictable
ingestion_lock = threading.Lock()


# ============================================================
# HELPERS
# ============================================================

def validate_upload(filename: Optional[str], content: bytes):

    extension = Path(filename or "").suffix.lower()

    if extension not in ALLOWED_FILE_EXTENSIONS:
        raise HTTPException(
            status_code=400,
            detail="Only PDF files are allowed",
        )

    size_mb = len(content) / (1024 * 1024)

    if size_mb > MAX_FILE_SIZE_MB:
        raise HTTPException(
            status_code=413,
            detail=f"File too large: {size_mb:.2f}MB",
        )


def resolve_document_path(file_name: str) -> Path:
    """Map a client-supplied file name onto DOCUMENTS_DIR, refusing escapes."""

    base = Path(DOCUMENTS_DIR).resolve()
    path = (base / file_name).resolve()

    if base != path.parent and base not in path.parents:
        raise HTTPException(status_code=400, detail="Invalid file name")

    if not path.is_file():
        raise HTTPException(status_code=404, detail=f"File not found: {file_name}")

    return path


def _ingest(request: Request, document_name: str, ingest_fn):

    start_time = time.time()

    try:

        with ingestion_lock:
            result = ingest_fn()

        posthog_client.track_document_ingested(
            distinct_id=request.state.request_id,
            document_name=document_name,
            chunks=result["chunks_processed"],
            examples_generated=result["few_shot_examples_generated"],
            latency=time.time() - start_time,
        )

        return IngestResponse(
            document_name=document_name,
            chunks_processed=result["chunks_processed"],
            few_shot_examples_generated=result["few_shot_examples_generated"],
        )

    except Exception as e:

        posthog_client.track_error(
            distinct_id=request.state.request_id,
            error_type=type(e).__name__,
            error_message=str(e),
            endpoint=request.url.path,
        )

        raise


# ============================================================
# HEALTH
# ============================================================

@router.get("/health", response_model=HealthResponse)
def health_check(
    response: Response,
    services: PipelineServices = Depends(get_services),
):
    """Reports the vector store too. An unreachable store answers 503."""

    try:

        vector_store = services.store.health_check()
        status = "healthy"

    except StorageError as e:

        logger.warning("Vector store health check failed", extra={"error": str(e)})

        vector_store = {"error": str(e)}
        status = "degraded"
        response.status_code = 503

    return HealthResponse(
        status=status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=round(time.time() - START_TIME, 3),
        vector_store=vector_store,
    )


# ============================================================
# INGESTION
# ============================================================

@router.post("/api/documents/upload", response_model=IngestResponse)
def upload_document(
    request: Request,
    pdf: UploadFile = File(...),
    services: PipelineServices = Depends(get_services),
):

    content = pdf.file.read()

    validate_upload(pdf.filename, content)

    document_name = pdf.filename

    os.makedirs(UPLOAD_DIR, exist_ok=True)

    file_path = Path(UPLOAD_DIR) / f"{uuid.uuid4().hex}.pdf"

    with file_path.open("wb") as buffer:
        buffer.write(content)

    logger.info(
        "Upload received",
        extra={"document_name": document_name, "bytes": len(content)},
    )

    try:
        text = load_pdf_text(str(file_path))
    finally:
        file_path.unlink(missing_ok=True)

    if not text:
        raise ExtractionFailure(f"Failed to extract content from {document_name}")

    return _ingest(
        request,
        document_name,
        lambda: services.ingestion_service.ingest(text, document_name),
    )


@router.post("/api/documents/process", response_model=IngestResponse)
def process_document(
    payload: ProcessRequest,
    request: Request,
    services: PipelineServices = Depends(get_services),
):

    path = resolve_document_path(payload.file_name)

    return _ingest(
        request,
        payload.file_name,
        lambda: services.ingestion_service.ingest_file(str(path), payload.file_name),
    )


# ============================================================
# QUESTION ANSWERING
# ============================================================

@router.post("/api/query", response_model=QueryResponse)
def query_documents(
    payload: QueryRequest,
    request: Request,
    services: PipelineServices = Depends(get_services),
):

    start_time = time.time()

    try:

        result = services.query_service.answer(
            payload.query,
            document_name=payload.document_name,
        )

        posthog_client.track_query(
            distinct_id=request.state.request_id,
            document_name=payload.document_name,
            query=payload.query,
            sources=result["sources_used"],
            confidence=result["confidence"],
            latency=time.time() - start_time,
        )

        return QueryResponse(
            query=payload.query,
            answer=result["answer"],
            sources=result["sources"],
            confidence=result["confidence"],
            reasoning=result["reasoning"],
        )

    except Exception as e:

        posthog_client.track_error(
            distinct_id=request.state.request_id,
            error_type=type(e).__name__,
            error_message=str(e),
            endpoint="/api/query",
        )

        raise


# ============================================================
# SEARCH
# ============================================================

@router.post("/api/search", response_model=SearchResponse)
def search_documents(
    payload: SearchRequest,
    services: PipelineServices = Depends(get_services),
):

    results = services.query_service.search(
        payload.query,
        document_name=payload.document_name,
        limit=payload.limit,
    )

    return SearchResponse(query=payload.query, results=results, total=len(results))


@router.post("/api/explore", response_model=SearchResponse)
def explore_documents(
    payload: ExploreRequest,
    services: PipelineServices = Depends(get_services),
):

    results = services.query_service.explore(payload.query)

    return SearchResponse(query=payload.query, results=results, total=len(results))


# ============================================================
# DOCUMENTS
# ============================================================

@router.get("/api/documents", response_model=ListDocumentsResponse)
def list_documents(services: PipelineServices = Depends(get_services)):

    documents = [
        DocumentInfo(**doc)
        for doc in services.store.list_documents()
    ]

    return ListDocumentsResponse(documents=documents, total=len(documents))


@router.get("/api/documents/{document_name}/examples", response_model=ExamplesResponse)
def get_examples(
    document_name: str,
    services: PipelineServices = Depends(get_services),
):

    examples = services.store.get_few_shot_examples(document_name)

    if not examples:
        raise DocumentNotFound(f"No few-shot examples found for {document_name}")

    return ExamplesResponse(document_name=document_name, few_shot_examples=examples)


@router.delete("/api/documents/{document_name}", response_model=DeleteDocumentResponse)
def delete_document(
    document_name: str,
    request: Request,
    services: PipelineServices = Depends(get_services),
):

    with ingestion_lock:
        result = services.store.delete_document(document_name)

    posthog_client.track_document_deleted(
        distinct_id=request.state.request_id,
        document_name=document_name,
        deleted_chunks=result["deleted_chunks"],
    )

    return DeleteDocumentResponse(
        document_name=document_name,
        deleted_chunks=result["deleted_chunks"],
        deleted_examples=result["deleted_examples"],
    )


# ============================================================
# STATS AND METRICS
# ============================================================

@router.get("/api/stats", response_model=StatsResponse)
def get_stats(services: PipelineServices = Depends(get_services)):

    stats = services.store.get_stats()

    return StatsResponse(
        stats={
            "totalDocuments": stats["total_documents"],
            "totalChunks": stats["total_chunks"],
            "averageChunkSize": stats["average_chunk_size"],
            "documentsWithExamples": stats["documents_with_examples"],
        },
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/metrics")
def get_metrics():

    return metrics_tracker.get_metrics()
