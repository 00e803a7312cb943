# pdf_rag/workflow/few_shot.py

import logging
import time
from typing import Callable, List

from pdf_rag.config import (
    FEW_SHOT_MAX_INPUT_TOKENS,
    FEW_SHOT_CHUNK_DELAY_SECONDS,
    FEW_SHOT_MAX_TOKENS,
    RATE_LIMIT_COOLDOWN_SECONDS,
    RATE_LIMIT_MAX_ATTEMPTS,
)
from pdf_rag.errors import StorageError
from pdf_rag.memory.chunker import estimate_tokens, split_for_token_limit
from pdf_rag.prompts.prompt_builder import build_few_shot_system_prompt
from pdf_rag.retry import retry_on_rate_limit

logger = logging.getLogger(__name__)


class FewShotExampleGenerator:
    """
    Produces a cached set of question/answer exemplars for one document.

    Cache first: a stored set is returned without calling the model.
    Documents over the token budget are split into consecutive blocks
    and processed one request at a time, with a pause between requests.
    Inside that loop a failing block is logged and skipped, so a partial
    example set is possible. A single-request document fails loudly.
    """

    def __init__(
        self,
        store,
        llm_client,
        max_input_tokens: int = FEW_SHOT_MAX_INPUT_TOKENS,
        chunk_delay_seconds: float = FEW_SHOT_CHUNK_DELAY_SECONDS,
        max_tokens: int = FEW_SHOT_MAX_TOKENS,
        cooldown_seconds: float = RATE_LIMIT_COOLDOWN_SECONDS,
        max_attempts: int = RATE_LIMIT_MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self._llm = llm_client
        self._max_input_tokens = max_input_tokens
        self._chunk_delay_seconds = chunk_delay_seconds
        self._max_tokens = max_tokens
        self._cooldown_seconds = cooldown_seconds
        self._max_attempts = max_attempts
        self._sleep = sleep

    # ============================================================
    # PUBLIC API
    # ============================================================

    def generate(self, document_text: str, document_name: str) -> str:

        cached = self._lookup(document_name)

        if cached:

            logger.info(
                "Few-shot examples cache hit",
                extra={"document_name": document_name},
            )

            return cached

        estimated_tokens = estimate_tokens(document_text)

        logger.info(
            "Generating few-shot examples",
            extra={
                "document_name": document_name,
                "estimated_tokens": estimated_tokens,
                "max_input_tokens": self._max_input_tokens,
            },
        )

        if estimated_tokens <= self._max_input_tokens:
            examples = self._request_with_retry(document_text)
        else:
            examples = self._generate_chunked(document_text)

        self._persist(document_name, examples)

        return examples

    # ============================================================
    # INTERNALS
    # ============================================================

    def _lookup(self, document_name: str):

        try:
            return self._store.get_few_shot_examples(document_name)

        except StorageError as e:

            logger.warning(
                "Few-shot cache lookup failed, regenerating",
                extra={"document_name": document_name, "error": str(e)},
            )

            return None

    def _request(self, content: str, chunk_number=None) -> str:

        return self._llm.complete(
            system_prompt=build_few_shot_system_prompt(chunk_number),
            user_message=content,
            max_tokens=self._max_tokens,
        )

    def _request_with_retry(self, content: str, chunk_number=None) -> str:

        label = (
            f"few-shot chunk {chunk_number}"
            if chunk_number is not None
            else "few-shot document"
        )

        return retry_on_rate_limit(
            lambda: self._request(content, chunk_number),
            label=label,
            cooldown_seconds=self._cooldown_seconds,
            max_attempts=self._max_attempts,
            sleep=self._sleep,
        )

    def _generate_chunked(self, document_text: str) -> str:

        blocks = split_for_token_limit(document_text, self._max_input_tokens)

        logger.info(
            "Splitting document for few-shot generation",
            extra={"chunks": len(blocks)},
        )

        outputs: List[str] = []

        for chunk_number, block in enumerate(blocks, 1):

            if chunk_number > 1:
                self._sleep(self._chunk_delay_seconds)

            try:

                examples = self._request_with_retry(block, chunk_number)

            except Exception as e:

                logger.error(
                    "Few-shot generation failed for chunk, skipping",
                    extra={
                        "chunk": chunk_number,
                        "chunks": len(blocks),
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )

                continue

            if examples:
                outputs.append(examples)

        return "\n\n".join(outputs)

    def _persist(self, document_name: str, examples: str):
        """Best effort: the caller still gets the examples if this fails."""

        if not examples:

            logger.warning(
                "No few-shot examples produced, nothing cached",
                extra={"document_name": document_name},
            )

            return

        try:

            self._store.put_few_shot_examples(document_name, examples)

            logger.info(
                "Few-shot examples stored",
                extra={"document_name": document_name},
            )

        except StorageError as e:

            logger.error(
                "Few-shot examples could not be stored",
                extra={"document_name": document_name, "error": str(e)},
            )
