# pdf_rag/observability/posthog_client.py

"""
PostHog product analytics.

Architecture contract:
- Complements, never replaces, the JSON logs
- Uses request_id as distinct_id
- Disabled when POSTHOG_API_KEY is unset
- Never raises into the request path
"""

import os
import logging
from typing import Optional, Dict, Any

from posthog import Posthog


logger = logging.getLogger(__name__)


class PostHogClient:

    def __init__(self, api_key: Optional[str] = None, host: Optional[str] = None):

        self._enabled = False
        self._client: Optional[Posthog] = None

        api_key = api_key or os.getenv("POSTHOG_API_KEY")
        host = host or os.getenv("POSTHOG_HOST", "https://app.posthog.com")

        if not api_key:
            logger.info("PostHog disabled: POSTHOG_API_KEY not set")
            return

        try:

            self._client = Posthog(
                project_api_key=api_key,
                host=host,
                timeout=5,
            )

            self._enabled = True

            logger.info("PostHog client initialized", extra={"host": host})

        except Exception as e:

            logger.error(
                "PostHog initialization failed",
                extra={"error": str(e)},
            )

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _track(self, distinct_id: str, event: str, properties: Optional[Dict[str, Any]] = None):

        if not self._enabled or not self._client:
            return

        try:

            self._client.capture(
                distinct_id=distinct_id,
                event=event,
                properties=properties or {},
            )

        except Exception as e:

            logger.warning(
                "PostHog tracking failed",
                extra={"event": event, "error": str(e)},
            )

    def shutdown(self):
        """Flush queued events before the process exits."""

        if self._client:
            self._client.shutdown()

    # ==========================================================
    # PIPELINE EVENTS
    # ==========================================================

    def track_document_ingested(
        self,
        distinct_id: str,
        document_name: str,
        chunks: int,
        examples_generated: bool,
        latency: float,
    ):

        self._track(
            distinct_id,
            "document_ingested",
            {
                "document_name": document_name,
                "chunks": chunks,
                "examples_generated": examples_generated,
                "latency_seconds": round(latency, 3),
            },
        )

    def track_query(
        self,
        distinct_id: str,
        document_name: Optional[str],
        query: str,
        sources: int,
        confidence: float,
        latency: float,
    ):

        self._track(
            distinct_id,
            "query_answered",
            {
                "document_name": document_name,
                "query_length": len(query),
                "sources": sources,
                "confidence": confidence,
                "latency_seconds": round(latency, 3),
            },
        )

    def track_document_deleted(self, distinct_id: str, document_name: str, deleted_chunks: int):

        self._track(
            distinct_id,
            "document_deleted",
            {"document_name": document_name, "deleted_chunks": deleted_chunks},
        )

    def track_error(self, distinct_id: str, error_type: str, error_message: str, endpoint: str):

        self._track(
            distinct_id,
            "system_error",
            {
                "error_type": error_type,
                "error_message": error_message,
                "endpoint": endpoint,
            },
        )


# ==============================================================
# GLOBAL SINGLETON
# ==============================================================

posthog_client = PostHogClient()
