"""Abstract base class for text-embedding service providers.

Implementations may wrap the OpenAI embeddings API or compute local hashed
vectors; the embedding generator only depends on this contract.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider  - text-embedding-3-small (requires API key)
#   HashEmbeddingProvider    - 384-dim hashed bag-of-words, no network
# Located in: course_ingest/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by the embedding generator."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.  Implementations handle
            per-call API limits internally.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.

        Raises
        ------
        course_ingest.utils.errors.EmbeddingServiceUnavailableError
            If the embedding backend cannot be reached or times out.
        course_ingest.utils.errors.RAGError
            For any other API failure.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Embed one string (e.g. a search query)."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the constant dimensionality of produced vectors."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier such as ``"openai"`` or ``"hash"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return whether the provider is configured and usable."""
