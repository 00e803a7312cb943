# pdf_rag/errors.py
"""
Error taxonomy for the ingestion and query pipelines.

Provider SDK exceptions are translated into these types at the provider
boundary so that workflow code never depends on a vendor library.
"""


class PipelineError(Exception):
    """Base class for every pipeline failure."""


class ExtractionFailure(PipelineError):
    """Source document produced no usable text."""


class RateLimitExceeded(PipelineError):
    """Transient provider throttle. Always retried after a cooldown."""


class StorageError(PipelineError):
    """Vector store insert/select/delete failure."""


class GenerationFailure(PipelineError):
    """Completion request failed."""


class DocumentNotFound(PipelineError):
    """No chunk or example records exist for the requested document."""
