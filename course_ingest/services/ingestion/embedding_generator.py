"""Chunk, embed and store a material's text in the course vector store.

Flow for :meth:`EmbeddingGenerator.add_document_embeddings`:

    1. TextChunker -- split the text into ordered, overlapping chunks
    2. IEmbeddingProvider -- embed chunks in batches, a few batches in
       flight at once, each batch bounded by a timeout
    3. IVectorStoreProvider -- under the material's lock, delete every
       chunk previously stored for the material, then upsert the new set

Step 3 gives replace-not-append semantics: after any number of reprocess
runs a material owns exactly the chunks of its latest text.  All vectors
are computed before the lock is taken so the critical section only covers
the vector-store mutation.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

import structlog

from course_ingest.interfaces.embedding_provider import IEmbeddingProvider
from course_ingest.interfaces.vector_store_provider import IVectorStoreProvider
from course_ingest.models.rag import DocumentChunk, EmbeddingResult, RetrievedChunk
from course_ingest.services.ingestion.chunker import TextChunker
from course_ingest.utils.concurrency import KeyedLock, throttled_gather
from course_ingest.utils.errors import EmbeddingServiceUnavailableError

logger = structlog.get_logger(logger_name=__name__)

ProgressCallback = Callable[[float, str], Awaitable[None]]


class EmbeddingGenerator:
    """Turn material text into stored chunk embeddings.

    Parameters
    ----------
    chunker:
        Splits text into :class:`DocumentChunk` objects.
    embedding_provider:
        Computes vectors.
    vector_store:
        Persists vectors, one collection per course.
    batch_size:
        Chunks per embedding call.
    concurrency:
        Embedding calls in flight at once.
    max_chunks:
        Chunks beyond this count are dropped (logged); ``0`` means no cap.
    timeout_seconds:
        Bound on each embedding call.
    collection_prefix:
        Collection id is ``f"{collection_prefix}{course_id}"``.
    material_locks:
        Shared per-material locks; pass the same instance to every
        generator in a process.
    """

    def __init__(
        self,
        chunker: TextChunker,
        embedding_provider: IEmbeddingProvider,
        vector_store: IVectorStoreProvider,
        batch_size: int = 64,
        concurrency: int = 4,
        max_chunks: int = 500,
        timeout_seconds: float = 30.0,
        collection_prefix: str = "course_",
        material_locks: KeyedLock | None = None,
    ) -> None:
        self._chunker = chunker
        self._embedding_provider = embedding_provider
        self._vector_store = vector_store
        self._batch_size = max(1, batch_size)
        self._semaphore = asyncio.Semaphore(max(1, concurrency))
        self._max_chunks = max_chunks
        self._timeout = timeout_seconds
        self._collection_prefix = collection_prefix
        self._locks = material_locks or KeyedLock()

    @property
    def embedding_provider_name(self) -> str:
        return self._embedding_provider.get_provider_name()

    @property
    def vector_store_name(self) -> str:
        return self._vector_store.get_provider_name()

    def collection_for(self, course_id: str) -> str:
        return f"{self._collection_prefix}{course_id}"

    async def add_document_embeddings(
        self,
        course_id: str,
        chapter_id: str,
        material_id: str,
        text: str,
        on_progress: ProgressCallback | None = None,
    ) -> EmbeddingResult:
        """Replace the stored chunks of *material_id* with chunks of *text*.

        Raises
        ------
        EmbeddingServiceUnavailableError
            If an embedding call times out or the backend is unreachable.
        VectorStoreWriteError
            If deleting or upserting chunks fails.
        """
        start = time.monotonic()
        collection = self.collection_for(course_id)

        chunks = self._chunker.chunk(text, course_id, chapter_id, material_id)
        truncated = False
        if self._max_chunks and len(chunks) > self._max_chunks:
            logger.warning(
                "embedding_chunk_cap_reached",
                material_id=material_id,
                chunks=len(chunks),
                max_chunks=self._max_chunks,
            )
            chunks = chunks[: self._max_chunks]
            truncated = True

        if on_progress is not None:
            await on_progress(30.0, "chunking")

        embeddings = await self._embed_chunks(chunks)

        if on_progress is not None:
            await on_progress(70.0, "embedding")

        # Embeddings are computed outside the lock; only the swap of old
        # chunks for new ones is serialized per material.
        async with self._locks.hold(material_id):
            replaced = await self._vector_store.delete_by_material(collection, material_id)
            added = await self._vector_store.upsert(collection, chunks, embeddings) if chunks else 0

        elapsed_ms = round((time.monotonic() - start) * 1000)
        logger.info(
            "embedding_complete",
            material_id=material_id,
            collection=collection,
            chunks_added=added,
            chunks_replaced=replaced,
            provider=self._embedding_provider.get_provider_name(),
            duration_ms=elapsed_ms,
        )
        return EmbeddingResult(
            material_id=material_id,
            collection=collection,
            chunks_added=added,
            chunks_replaced=replaced,
            truncated=truncated,
        )

    async def delete_material_embeddings(self, course_id: str, material_id: str) -> int:
        async with self._locks.hold(material_id):
            return await self._vector_store.delete_by_material(self.collection_for(course_id), material_id)

    async def delete_chapter_embeddings(self, course_id: str, chapter_id: str) -> int:
        return await self._vector_store.delete_by_chapter(self.collection_for(course_id), chapter_id)

    async def delete_course_embeddings(self, course_id: str) -> int:
        return await self._vector_store.delete_collection(self.collection_for(course_id))

    async def count_material_embeddings(self, course_id: str, material_id: str) -> int:
        return await self._vector_store.count_by_material(self.collection_for(course_id), material_id)

    async def query(
        self,
        course_id: str,
        query_text: str,
        top_k: int = 5,
        chapter_id: str | None = None,
    ) -> list[RetrievedChunk]:
        """Similarity search over a course's chunks (used by the assistant)."""
        vector = await self._with_timeout(self._embedding_provider.embed_single(query_text))
        filters = {"chapter_id": chapter_id} if chapter_id else None
        return await self._vector_store.query(self.collection_for(course_id), vector, top_k, filters)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _embed_chunks(self, chunks: list[DocumentChunk]) -> list[list[float]]:
        if not chunks:
            return []
        batches = [
            [c.text for c in chunks[i : i + self._batch_size]]
            for i in range(0, len(chunks), self._batch_size)
        ]
        results = await throttled_gather(
            [self._with_timeout(self._embedding_provider.embed(batch)) for batch in batches],
            semaphore=self._semaphore,
            return_exceptions=True,
        )
        embeddings: list[list[float]] = []
        for batch, result in zip(batches, results, strict=True):
            if isinstance(result, BaseException):
                raise result
            if len(result) != len(batch):
                raise EmbeddingServiceUnavailableError(
                    message=f"Embedding backend returned {len(result)} vectors for {len(batch)} inputs",
                    provider_name=self._embedding_provider.get_provider_name(),
                )
            embeddings.extend(result)
        return embeddings

    async def _with_timeout(self, awaitable: Awaitable) -> list:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise EmbeddingServiceUnavailableError(
                message=f"Embedding request timed out after {self._timeout:.0f}s",
                provider_name=self._embedding_provider.get_provider_name(),
            ) from exc
