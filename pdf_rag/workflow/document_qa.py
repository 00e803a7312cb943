# pdf_rag/workflow/document_qa.py
import logging
from typing import Dict, List, Optional

from pdf_rag.config import (
    CHARS_PER_TOKEN,
    QA_MATCH_THRESHOLD,
    QA_MATCH_COUNT,
    QA_FILTERED_MATCH_COUNT,
    DISCOVERY_MATCH_THRESHOLD,
    DISCOVERY_DEFAULT_LIMIT,
    EXPLORATORY_MATCH_THRESHOLD,
    EXPLORATORY_MATCH_COUNT,
    CONTEXT_MAX_TOKENS,
    CONTEXT_FALLBACK_MAX_TOKENS,
    CONTEXT_MIN_TRUNCATION_TOKENS,
    FEW_SHOT_CONTEXT_MAX_TOKENS,
    REQUEST_MAX_TOKENS,
    SOURCE_PREVIEW_CHARS,
    ANSWER_MAX_TOKENS,
    ANSWER_TEMPERATURE,
    FALLBACK_ANSWER,
    NO_CONTEXT_REASON,
)
from pdf_rag.errors import GenerationFailure, RateLimitExceeded, StorageError
from pdf_rag.memory.chunker import estimate_tokens
from pdf_rag.memory.retriever import retrieve
from pdf_rag.prompts.prompt_builder import build_answer_system_prompt, build_user_message
from pdf_rag.prompts.system_prompts import EXAMPLES_TRUNCATION_MARKER

logger = logging.getLogger(__name__)

GENERATION_ERROR_ANSWER = "I encountered an error while generating an answer. Please try again."


def limit_context_size(context: List[Dict], max_tokens: int) -> List[Dict]:
    """
    Greedily keep ranked chunks while the running token estimate fits.

    The first chunk that does not fit is cut to the remaining budget
    (only if more than CONTEXT_MIN_TRUNCATION_TOKENS remain) and
    accumulation stops there.
    """
    total_tokens = 0
    limited = []

    for doc in context:
        tokens = estimate_tokens(doc["content"])

        if total_tokens + tokens <= max_tokens:
            limited.append(doc)
            total_tokens += tokens
            continue

        remaining = max_tokens - total_tokens
        if remaining > CONTEXT_MIN_TRUNCATION_TOKENS:
            max_chars = remaining * CHARS_PER_TOKEN
            limited.append({**doc, "content": doc["content"][:max_chars] + "..."})
        break

    return limited


def truncate_examples(examples: str, max_tokens: int = FEW_SHOT_CONTEXT_MAX_TOKENS) -> str:

    if estimate_tokens(examples) <= max_tokens:
        return examples

    return examples[:max_tokens * CHARS_PER_TOKEN] + EXAMPLES_TRUNCATION_MARKER


def calculate_confidence(context: List[Dict]) -> float:
    """
    Heuristic confidence in [0, 1]:

        0.5 * mean similarity (missing scores count as 0.5)
      + 0.3 * min(chunk count / 5, 1)
      + 0.2 * min(mean chunk length / 1000, 1)
    """
    if not context:
        return 0.0

    similarities = [
        doc["similarity"] if doc.get("similarity") is not None else 0.5
        for doc in context
    ]
    avg_similarity = sum(similarities) / len(similarities)

    source_score = min(len(context) / 5, 1.0)

    avg_length = sum(len(doc["content"]) for doc in context) / len(context)
    content_score = min(avg_length / 1000, 1.0)

    confidence = avg_similarity * 0.5 + source_score * 0.3 + content_score * 0.2

    return round(min(max(confidence, 0.0), 1.0), 2)


def build_sources(context: List[Dict]) -> List[Dict]:

    return [
        {
            "content": doc["content"][:SOURCE_PREVIEW_CHARS] + "...",
            "document_name": doc.get("document_name") or "Unknown",
            "chunk_index": doc.get("chunk_index") or 0,
            "similarity": doc.get("similarity") or 0,
        }
        for doc in context
    ]


class QueryService:
    """
    Retrieval orchestrator: embed → search → budget → generate.

    Always returns an answer dict, even when nothing relevant was found.
    """

    def __init__(self, embedder, store, llm_client):
        self.embedder = embedder
        self.store = store
        self.llm_client = llm_client

    # ============================================================
    # QUESTION ANSWERING
    # ============================================================

    def answer(self, query: str, document_name: Optional[str] = None) -> Dict:

        # Extra candidates only when the filter is applied after ranking
        match_count = (
            QA_FILTERED_MATCH_COUNT
            if document_name is not None and not self.store.supports_prefilter
            else QA_MATCH_COUNT
        )

        candidates = retrieve(
            query,
            embedder=self.embedder,
            store=self.store,
            threshold=QA_MATCH_THRESHOLD,
            limit=match_count,
            document_name=document_name,
        )

        context = limit_context_size(candidates, CONTEXT_MAX_TOKENS)

        logger.info(
            "Context assembled",
            extra={
                "document_name": document_name,
                "chunks_used": len(context),
                "chunks_available": len(candidates),
            },
        )

        few_shot_examples = self._load_examples(document_name)

        system_prompt = build_answer_system_prompt(few_shot_examples)
        user_message = build_user_message(query, context)

        estimated = estimate_tokens(system_prompt) + estimate_tokens(user_message)

        logger.info(
            "Estimated request tokens",
            extra={"estimated_tokens": estimated},
        )

        # Single fallback pass with a smaller context budget
        if estimated > REQUEST_MAX_TOKENS:

            logger.warning(
                "Request too large, reducing context",
                extra={
                    "estimated_tokens": estimated,
                    "max_tokens": REQUEST_MAX_TOKENS,
                },
            )

            context = limit_context_size(candidates, CONTEXT_FALLBACK_MAX_TOKENS)
            user_message = build_user_message(query, context)

        result = {
            "answer": FALLBACK_ANSWER,
            "sources": build_sources(context),
            "confidence": calculate_confidence(context),
            "sources_used": len(context),
            "reasoning": None if context else NO_CONTEXT_REASON,
        }

        try:

            answer = self.llm_client.complete(
                system_prompt=system_prompt,
                user_message=user_message,
                max_tokens=ANSWER_MAX_TOKENS,
                temperature=ANSWER_TEMPERATURE,
            )

        except (GenerationFailure, RateLimitExceeded) as e:

            logger.error(
                "Answer generation failed",
                extra={"error": str(e), "error_type": type(e).__name__},
            )

            result.update(
                answer=GENERATION_ERROR_ANSWER,
                confidence=0.0,
                reasoning=f"LLM generation failed: {e}",
            )

            return result

        result["answer"] = answer or FALLBACK_ANSWER

        return result

    def _load_examples(self, document_name: Optional[str]) -> Optional[str]:

        if document_name is None:
            return None

        try:
            examples = self.store.get_few_shot_examples(document_name)

        except StorageError as e:

            logger.warning(
                "Few-shot examples unavailable",
                extra={"document_name": document_name, "error": str(e)},
            )

            return None

        if not examples:
            return None

        return truncate_examples(examples)

    # ============================================================
    # SEARCH PROFILES
    # ============================================================

    def search(
        self,
        query: str,
        document_name: Optional[str] = None,
        limit: int = DISCOVERY_DEFAULT_LIMIT,
    ) -> List[Dict]:
        """Discovery search: full chunk rows, moderate threshold."""

        return retrieve(
            query,
            embedder=self.embedder,
            store=self.store,
            threshold=DISCOVERY_MATCH_THRESHOLD,
            limit=limit,
            document_name=document_name,
        )

    def explore(self, query: str) -> List[Dict]:
        """Broad search across every document with a low threshold."""

        return retrieve(
            query,
            embedder=self.embedder,
            store=self.store,
            threshold=EXPLORATORY_MATCH_THRESHOLD,
            limit=EXPLORATORY_MATCH_COUNT,
        )
