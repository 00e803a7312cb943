# pdf_rag/llm/client.py
import logging
import os
import time
from typing import Optional

import openai
from openai import OpenAI

from pdf_rag.config import LLM_BASE_URL, LLM_MODEL
from pdf_rag.errors import GenerationFailure, RateLimitExceeded

logger = logging.getLogger(__name__)


class LLMClient:
    """
    Client for any OpenAI-compatible chat completions endpoint.

    Provider errors are translated: throttling becomes
    RateLimitExceeded, everything else GenerationFailure.
    """

    def __init__(
        self,
        model: str = LLM_MODEL,
        base_url: Optional[str] = LLM_BASE_URL,
        api_key: Optional[str] = None,
    ):
        """
        Initialize the completion client.

        Args:
            model: model identifier understood by the endpoint
            base_url: endpoint root (default: Hugging Face router)
            api_key: falls back to LLM_API_KEY, HF_TOKEN, then OPENAI_API_KEY
        """
        api_key = (
            api_key
            or os.getenv("LLM_API_KEY")
            or os.getenv("HF_TOKEN")
            or os.getenv("OPENAI_API_KEY")
        )
        if not api_key:
            raise ValueError(
                "No LLM API key set. "
                "Set LLM_API_KEY, HF_TOKEN or OPENAI_API_KEY before running the application."
            )

        self.client = OpenAI(api_key=api_key, base_url=base_url)
        self.model = model

    def complete(
        self,
        system_prompt: str,
        user_message: str,
        max_tokens: int,
        temperature: Optional[float] = None,
    ) -> str:
        """
        Run one chat completion.

        Returns:
            Text of the first choice ("" when the model returned nothing)

        Raises:
            RateLimitExceeded: provider throttled the request
            GenerationFailure: any other API failure
        """
        params = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "max_tokens": max_tokens,
        }
        if temperature is not None:
            params["temperature"] = temperature

        start = time.time()

        try:
            response = self.client.chat.completions.create(**params)

        except openai.RateLimitError as e:
            raise RateLimitExceeded(f"Completion rate limited: {e}") from e

        except openai.OpenAIError as e:
            raise GenerationFailure(f"Completion request failed: {e}") from e

        logger.info(
            "LLM completion finished",
            extra={
                "model": self.model,
                "latency_seconds": round(time.time() - start, 3),
            },
        )

        if not response.choices:
            return ""

        return response.choices[0].message.content or ""
