"""Custom exception hierarchy for course_ingest.

All application exceptions inherit from :class:`CourseIngestError`, which
carries an optional ``provider_name`` so handlers can tell which external
service (e.g. "openai", "chromadb", "pymupdf") caused the failure.

The hierarchy is organized by pipeline stage:

    CourseIngestError  (base)
    +-- ExtractionError
    |   +-- UnsupportedFormatError   (file type without a reliable extractor)
    |   +-- EmptyExtractionError     (text below the usable minimum)
    +-- LLMError
    |   +-- GenerationTimeoutError   (structurer only, recovered locally)
    +-- RAGError
    |   +-- EmbeddingServiceUnavailableError
    |   +-- VectorStoreWriteError
    +-- JobQueueError
    |   +-- DuplicateJobError
    +-- EntityNotFoundError
    +-- ConfigurationError

Extraction, embedding and vector-store errors propagate to the job and are
retried by the queue.  Structurer errors never leave the structurer.
"""

from __future__ import annotations


class CourseIngestError(Exception):
    """Base exception for all course_ingest errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name``.  ``__str__`` prefixes the provider in brackets,
    e.g. ``[openai] Connection refused``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Extraction errors
# ---------------------------------------------------------------------------

class ExtractionError(CourseIngestError):
    """Raised when a document cannot be turned into text."""

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class UnsupportedFormatError(ExtractionError):
    """Raised for legacy, unknown, or unreadable (corrupted) file formats."""

    def __init__(
        self,
        message: str = "Unsupported file format",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmptyExtractionError(ExtractionError):
    """Raised when extracted text is too short to be useful."""

    def __init__(
        self,
        message: str = "Could not extract meaningful text from the document",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Generative model errors
# ---------------------------------------------------------------------------

class LLMError(CourseIngestError):
    """Raised when a generative model API call fails."""

    def __init__(
        self,
        message: str = "LLM request failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class GenerationTimeoutError(LLMError):
    """Raised when a generative model call exceeds its timeout."""

    def __init__(
        self,
        message: str = "LLM request timed out",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# RAG errors (embeddings + vector store)
# ---------------------------------------------------------------------------

class RAGError(CourseIngestError):
    """Raised when an embedding or vector-store operation fails."""

    def __init__(
        self,
        message: str = "RAG operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingServiceUnavailableError(RAGError):
    """Raised when the embedding backend cannot be reached or times out."""

    def __init__(
        self,
        message: str = "Embedding service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class VectorStoreWriteError(RAGError):
    """Raised when chunks cannot be written to or deleted from the vector store."""

    def __init__(
        self,
        message: str = "Vector store write failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Queue errors
# ---------------------------------------------------------------------------

class JobQueueError(CourseIngestError):
    """Raised when the durable job queue rejects an operation."""

    def __init__(
        self,
        message: str = "Job queue operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class DuplicateJobError(JobQueueError):
    """Raised when a job with the same dedupe key is already waiting or active."""

    def __init__(
        self,
        dedupe_key: str,
        existing_job_id: str | None = None,
        provider_name: str | None = None,
    ) -> None:
        self.dedupe_key = dedupe_key
        self.existing_job_id = existing_job_id
        message = f"A job with dedupe key '{dedupe_key}' is already pending or active"
        if existing_job_id:
            message += f" (job {existing_job_id})"
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Storage / startup errors
# ---------------------------------------------------------------------------

class EntityNotFoundError(CourseIngestError):
    """Raised when a course, chapter, material, or job id does not exist."""

    def __init__(
        self,
        message: str = "Entity not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(CourseIngestError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str = "Invalid configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
