# pdf_rag/main.py
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import time
import uuid

from pdf_rag.api.routes import router
from pdf_rag.errors import (
    PipelineError,
    ExtractionFailure,
    DocumentNotFound,
    RateLimitExceeded,
)
from pdf_rag.observability.logger import setup_logging, get_logger
from pdf_rag.observability.metrics import metrics_tracker
from pdf_rag.observability.posthog_client import posthog_client

VERSION = "1.0.0"

# Logging before anything else emits records
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_dir=os.getenv("LOG_DIR", "logs"),
)
logger = get_logger(__name__)

app = FastAPI(
    title="PDF RAG API",
    description="PDF ingestion, vector search and few-shot grounded question answering",
    version=VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _request_context(request: Request) -> dict:

    return {
        "request_id": getattr(request.state, "request_id", "unknown"),
        "method": request.method,
        "path": request.url.path,
    }


# ============================================================
# REQUEST TRACING
# ============================================================

@app.middleware("http")
async def trace_requests(request: Request, call_next):
    """
    Tags the request with an id, logs start and end, and feeds
    the in-process metrics. 5xx responses count as failures.
    """

    request.state.request_id = str(uuid.uuid4())

    context = _request_context(request)

    logger.info(
        "request_started",
        extra={
            **context,
            "client_ip": request.client.host if request.client else None,
        },
    )

    start_time = time.time()

    try:
        response = await call_next(request)

    except Exception as e:

        metrics_tracker.record_failure()

        logger.error(
            "request_failed",
            extra={
                **context,
                "latency_seconds": round(time.time() - start_time, 3),
                "error": str(e),
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )

        raise

    latency = time.time() - start_time

    if response.status_code >= 500:
        metrics_tracker.record_failure()
    else:
        metrics_tracker.record_success(latency)

    logger.info(
        "request_completed",
        extra={
            **context,
            "status_code": response.status_code,
            "latency_seconds": round(latency, 3),
        },
    )

    return response


app.include_router(router)


@app.on_event("startup")
async def startup_event():

    logger.info("application_startup", extra={"version": VERSION})

    if not any(os.getenv(name) for name in ("LLM_API_KEY", "HF_TOKEN", "OPENAI_API_KEY")):

        logger.warning(
            "missing_api_key",
            extra={
                "warning_detail":
                "No LLM_API_KEY, HF_TOKEN or OPENAI_API_KEY set. Queries will fail."
            },
        )


@app.on_event("shutdown")
async def shutdown_event():

    posthog_client.shutdown()

    logger.info("application_shutdown")


# ============================================================
# ERROR MAPPING
# ============================================================

# first match wins
PIPELINE_ERROR_STATUS = [
    (ExtractionFailure, status.HTTP_400_BAD_REQUEST, "Failed to extract content from PDF"),
    (DocumentNotFound, status.HTTP_404_NOT_FOUND, "Document not found"),
    (RateLimitExceeded, status.HTTP_429_TOO_MANY_REQUESTS, "Rate limit exceeded"),
    (PipelineError, status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to process request"),
]


def _error_response(request: Request, exc: Exception, status_code: int, error: str) -> JSONResponse:

    context = _request_context(request)

    logger.log(
        logging.ERROR if status_code >= 500 else logging.WARNING,
        "request_error",
        extra={
            **context,
            "status_code": status_code,
            "error": str(exc),
            "error_type": type(exc).__name__,
        },
        exc_info=status_code >= 500,
    )

    if status_code >= 500:
        posthog_client.track_error(
            distinct_id=context["request_id"],
            error_type=type(exc).__name__,
            error_message=str(exc),
            endpoint=context["path"],
        )

    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "details": str(exc),
            "request_id": context["request_id"],
        },
    )


@app.exception_handler(PipelineError)
async def pipeline_exception_handler(request: Request, exc: PipelineError):

    for error_type, status_code, error in PIPELINE_ERROR_STATUS:
        if isinstance(exc, error_type):
            return _error_response(request, exc, status_code, error)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):

    return _error_response(
        request,
        exc,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An internal error occurred. Please try again.",
    )


@app.get("/")
async def root():

    return {
        "message": "PDF RAG API",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }
