"""Abstract base class for vector-store service providers.

Chunks are grouped into one collection per course.  Every stored chunk
carries ``chapter_id``, ``material_id`` and ``chunk_index`` metadata so a
material's chunk set can be deleted or replaced as a unit.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from course_ingest.models.rag import DocumentChunk, RetrievedChunk


class IVectorStoreProvider(ABC):
    """Contract for storing and querying chunk embeddings."""

    @abstractmethod
    async def upsert(
        self,
        collection_id: str,
        chunks: list[DocumentChunk],
        embeddings: list[list[float]],
    ) -> int:
        """Insert or overwrite chunks with their vectors.

        Parameters
        ----------
        collection_id:
            Target collection (created on first use).
        chunks:
            Chunks to store; ``chunk_id`` is the vector-store id.
        embeddings:
            Vectors corresponding positionally to *chunks*.

        Returns
        -------
        int
            Number of chunks written.

        Raises
        ------
        course_ingest.utils.errors.VectorStoreWriteError
            If the write fails.
        """

    @abstractmethod
    async def delete_by_material(self, collection_id: str, material_id: str) -> int:
        """Delete every chunk of *material_id*; return how many were removed."""

    @abstractmethod
    async def delete_by_chapter(self, collection_id: str, chapter_id: str) -> int:
        """Delete every chunk of *chapter_id*; return how many were removed."""

    @abstractmethod
    async def delete_collection(self, collection_id: str) -> int:
        """Drop a whole collection; return the number of chunks it held."""

    @abstractmethod
    async def count_by_material(self, collection_id: str, material_id: str) -> int:
        """Return how many chunks are stored for *material_id*."""

    @abstractmethod
    async def query(
        self,
        collection_id: str,
        query_vector: list[float],
        top_k: int = 5,
        filters: dict | None = None,
    ) -> list[RetrievedChunk]:
        """Return the *top_k* chunks most similar to *query_vector*.

        *filters* is an optional metadata equality filter such as
        ``{"chapter_id": "..."}``.  Results are ordered by descending
        similarity.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier such as ``"chromadb"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return whether the store is reachable."""
