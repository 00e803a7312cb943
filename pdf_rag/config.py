# pdf_rag/config.py
"""
Configuration for the PDF question-answering pipeline.

This file centralizes all tunable parameters for the RAG pipeline.
Every value can be overridden from the environment without code changes.
Secrets are only ever read from the environment.
"""

import os


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, default))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, default))


# ========== DOCUMENT PROCESSING ==========

# Overlapping character windows used for embedding storage
CHUNK_SIZE = _env_int("CHUNK_SIZE", 12000)  # characters per chunk
CHUNK_OVERLAP = _env_int("CHUNK_OVERLAP", 1500)  # characters shared with previous chunk

# Rough English-text heuristic: 1 token ≈ 4 characters
CHARS_PER_TOKEN = 4

# File upload limits
MAX_FILE_SIZE_MB = _env_int("MAX_FILE_SIZE_MB", 100)
ALLOWED_FILE_EXTENSIONS = [".pdf"]
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "storage/uploads")

# Directory that "process existing file" requests resolve names against
DOCUMENTS_DIR = os.getenv("DOCUMENTS_DIR", ".")


# ========== INGESTION THROTTLING ==========

INGESTION_BATCH_SIZE = _env_int("INGESTION_BATCH_SIZE", 2)
INGESTION_BATCH_DELAY_SECONDS = _env_float("INGESTION_BATCH_DELAY_SECONDS", 8.0)

# Applied whenever a provider reports a rate limit
RATE_LIMIT_COOLDOWN_SECONDS = _env_float("RATE_LIMIT_COOLDOWN_SECONDS", 60.0)
RATE_LIMIT_MAX_ATTEMPTS = _env_int("RATE_LIMIT_MAX_ATTEMPTS", 5)


# ========== EMBEDDING CONFIGURATION ==========

# "local" (transformers feature-extraction) or "openai"
EMBEDDING_PROVIDER = os.getenv("EMBEDDING_PROVIDER", "local")

LOCAL_EMBEDDING_MODEL = os.getenv(
    "LOCAL_EMBEDDING_MODEL",
    "sentence-transformers/all-MiniLM-L6-v2",  # 384 dimensions
)

OPENAI_EMBEDDING_MODEL = os.getenv(
    "OPENAI_EMBEDDING_MODEL",
    "text-embedding-3-small",  # 1536 dimensions
)


# ========== VECTOR STORE CONFIGURATION ==========

# "qdrant" pre-filters by document, "faiss" filters after ranking
VECTOR_STORE_BACKEND = os.getenv("VECTOR_STORE_BACKEND", "qdrant")

# ":memory:" runs Qdrant embedded in-process
QDRANT_URL = os.getenv("QDRANT_URL", ":memory:")
QDRANT_API_KEY = os.getenv("QDRANT_API_KEY")
QDRANT_CHUNKS_COLLECTION = os.getenv("QDRANT_CHUNKS_COLLECTION", "document_chunks")
QDRANT_EXAMPLES_COLLECTION = os.getenv("QDRANT_EXAMPLES_COLLECTION", "few_shot_examples")

STORAGE_DIR = os.getenv("STORAGE_DIR", "storage")


# ========== RETRIEVAL CONFIGURATION ==========

# Question answering
QA_MATCH_THRESHOLD = _env_float("QA_MATCH_THRESHOLD", 0.50)
QA_MATCH_COUNT = _env_int("QA_MATCH_COUNT", 5)
# Used when the store cannot filter by document before ranking
QA_FILTERED_MATCH_COUNT = _env_int("QA_FILTERED_MATCH_COUNT", 10)

# Discovery search (search endpoint)
DISCOVERY_MATCH_THRESHOLD = _env_float("DISCOVERY_MATCH_THRESHOLD", 0.30)
DISCOVERY_DEFAULT_LIMIT = _env_int("DISCOVERY_DEFAULT_LIMIT", 5)

# Broad exploratory search
EXPLORATORY_MATCH_THRESHOLD = _env_float("EXPLORATORY_MATCH_THRESHOLD", 0.20)
EXPLORATORY_MATCH_COUNT = _env_int("EXPLORATORY_MATCH_COUNT", 10)


# ========== CONTEXT BUDGETS (tokens) ==========

CONTEXT_MAX_TOKENS = _env_int("CONTEXT_MAX_TOKENS", 15000)
CONTEXT_FALLBACK_MAX_TOKENS = _env_int("CONTEXT_FALLBACK_MAX_TOKENS", 8000)
# A truncated tail chunk is only kept above this many remaining tokens
CONTEXT_MIN_TRUNCATION_TOKENS = 100
FEW_SHOT_CONTEXT_MAX_TOKENS = _env_int("FEW_SHOT_CONTEXT_MAX_TOKENS", 3000)
REQUEST_MAX_TOKENS = _env_int("REQUEST_MAX_TOKENS", 50000)

SOURCE_PREVIEW_CHARS = 200


# ========== LLM CONFIGURATION ==========

# Any OpenAI-compatible chat completions endpoint
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://router.huggingface.co/v1")
LLM_MODEL = os.getenv("LLM_MODEL", "openai/gpt-oss-120b")

ANSWER_MAX_TOKENS = _env_int("ANSWER_MAX_TOKENS", 1000)
ANSWER_TEMPERATURE = _env_float("ANSWER_TEMPERATURE", 0.7)
FALLBACK_ANSWER = "I couldn't generate an answer."
NO_CONTEXT_REASON = "No relevant context found in the indexed documents"


# ========== FEW-SHOT EXAMPLE GENERATION ==========

FEW_SHOT_MAX_INPUT_TOKENS = _env_int("FEW_SHOT_MAX_INPUT_TOKENS", 25000)
FEW_SHOT_CHUNK_DELAY_SECONDS = _env_float("FEW_SHOT_CHUNK_DELAY_SECONDS", 5.0)
FEW_SHOT_MAX_TOKENS = _env_int("FEW_SHOT_MAX_TOKENS", 1500)


# ========== DESIGN TRADE-OFFS (DOCUMENTED) ==========

"""
TRADE-OFF DECISIONS:

1. CHUNK_SIZE = 12000 chars, CHUNK_OVERLAP = 1500:
   - Large windows keep whole policy clauses together
   - Overlap keeps sentences that straddle a boundary retrievable

2. INGESTION_BATCH_SIZE = 2 with an 8 second pause:
   - Throttle for hosted embedding/LLM providers
   - Dominates ingestion latency for large documents

3. CONTEXT_MAX_TOKENS = 15000, fallback 8000:
   - One fallback pass only when the full request exceeds REQUEST_MAX_TOKENS

4. QA_MATCH_THRESHOLD = 0.50:
   - Lower thresholds are reserved for discovery (0.30) and exploration (0.20)
"""
