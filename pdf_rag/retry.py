# pdf_rag/retry.py

import logging
import time
from typing import Callable, TypeVar

from pdf_rag.config import (
    RATE_LIMIT_COOLDOWN_SECONDS,
    RATE_LIMIT_MAX_ATTEMPTS,
)
from pdf_rag.errors import RateLimitExceeded

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_on_rate_limit(
    fn: Callable[[], T],
    label: str,
    cooldown_seconds: float = RATE_LIMIT_COOLDOWN_SECONDS,
    max_attempts: int = RATE_LIMIT_MAX_ATTEMPTS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run one unit of work, repeating it after a fixed cooldown
    whenever the provider reports a rate limit.

    Guarantees:
    • the same unit is repeated, never skipped
    • bounded: re-raises RateLimitExceeded after max_attempts
    • any other exception propagates on the first occurrence
    """

    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1 (got {max_attempts})")

    last_error = None

    for attempt in range(1, max_attempts + 1):

        try:
            return fn()

        except RateLimitExceeded as e:

            last_error = e

            logger.warning(
                "Rate limit hit",
                extra={
                    "unit": label,
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "cooldown_seconds": cooldown_seconds,
                },
            )

            if attempt < max_attempts:
                sleep(cooldown_seconds)

    logger.error(
        "Rate limit retries exhausted",
        extra={"unit": label, "attempts": max_attempts},
    )

    raise last_error
