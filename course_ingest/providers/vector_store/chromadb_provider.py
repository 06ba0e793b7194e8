"""ChromaDB vector store provider adapter.

Wraps ``chromadb.PersistentClient`` to implement :class:`IVectorStoreProvider`.
Each course gets its own cosine-distance collection.  ChromaDB's client is
synchronous, so every call runs through ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

# Telemetry must be off before chromadb is imported.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import chromadb
import structlog

from course_ingest.interfaces.vector_store_provider import IVectorStoreProvider
from course_ingest.models.rag import DocumentChunk, RetrievedChunk
from course_ingest.utils.errors import RAGError, VectorStoreWriteError

logger = structlog.get_logger(logger_name=__name__)

_UPSERT_BATCH = 500


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Stops ChromaDB from loading its default ONNX model.

    Vectors are always computed by an :class:`IEmbeddingProvider` and passed
    explicitly, so this function is never invoked.
    """

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError("course_ingest passes pre-computed embeddings")

    def name(self) -> str:
        return "noop_precomputed"


class ChromaDBProvider(IVectorStoreProvider):
    """Vector store provider backed by ChromaDB with local persistence."""

    def __init__(self, persist_directory: str = "./data/chromadb") -> None:
        self._persist_directory = persist_directory
        self._client = chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )

    # ------------------------------------------------------------------
    # IVectorStoreProvider implementation
    # ------------------------------------------------------------------

    async def upsert(
        self,
        collection_id: str,
        chunks: list[DocumentChunk],
        embeddings: list[list[float]],
    ) -> int:
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"chunks and embeddings length mismatch: {len(chunks)} != {len(embeddings)}"
            )
        if not chunks:
            return 0

        try:
            stored = await asyncio.to_thread(self._upsert_sync, collection_id, chunks, embeddings)
        except Exception as exc:
            raise VectorStoreWriteError(
                message=f"ChromaDB upsert failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info("chromadb_upsert", collection=collection_id, count=stored)
        return stored

    async def delete_by_material(self, collection_id: str, material_id: str) -> int:
        return await self._delete_where(collection_id, {"material_id": material_id})

    async def delete_by_chapter(self, collection_id: str, chapter_id: str) -> int:
        return await self._delete_where(collection_id, {"chapter_id": chapter_id})

    async def delete_collection(self, collection_id: str) -> int:
        try:
            count = await asyncio.to_thread(self._drop_collection_sync, collection_id)
        except Exception as exc:
            raise VectorStoreWriteError(
                message=f"ChromaDB delete_collection failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("chromadb_delete_collection", collection=collection_id, deleted_count=count)
        return count

    async def count_by_material(self, collection_id: str, material_id: str) -> int:
        try:
            return await asyncio.to_thread(
                self._count_where_sync, collection_id, {"material_id": material_id}
            )
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB count failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def query(
        self,
        collection_id: str,
        query_vector: list[float],
        top_k: int = 5,
        filters: dict | None = None,
    ) -> list[RetrievedChunk]:
        try:
            results = await asyncio.to_thread(
                self._query_sync, collection_id, query_vector, top_k, filters
            )
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB query failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info(
            "chromadb_query",
            collection=collection_id,
            results_count=len(results),
            top_score=results[0].similarity_score if results else 0.0,
        )
        return results

    def get_provider_name(self) -> str:
        return "chromadb"

    def is_available(self) -> bool:
        return True

    # -- Sync helpers (executed via asyncio.to_thread) -------------------------

    def _collection_exists(self, name: str) -> bool:
        # list_collections() returns names on chromadb >= 0.6, objects before.
        existing = self._client.list_collections()
        return any((c if isinstance(c, str) else c.name) == name for c in existing)

    def _get_collection(self, name: str, create: bool = False) -> Any | None:
        if not create and not self._collection_exists(name):
            return None
        try:
            return self._client.get_or_create_collection(
                name=name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=_NoopEmbeddingFunction(),
            )
        except ValueError:
            # Collection persisted with a different embedding function.
            return self._client.get_or_create_collection(
                name=name,
                metadata={"hnsw:space": "cosine"},
            )

    def _upsert_sync(
        self,
        collection_id: str,
        chunks: list[DocumentChunk],
        embeddings: list[list[float]],
    ) -> int:
        collection = self._get_collection(collection_id, create=True)
        total = 0
        for start in range(0, len(chunks), _UPSERT_BATCH):
            batch = chunks[start : start + _UPSERT_BATCH]
            collection.upsert(
                ids=[c.chunk_id for c in batch],
                embeddings=embeddings[start : start + _UPSERT_BATCH],
                documents=[c.text for c in batch],
                metadatas=[c.metadata() for c in batch],
            )
            total += len(batch)
        return total

    def _count_where_sync(self, collection_id: str, where: dict[str, Any]) -> int:
        collection = self._get_collection(collection_id)
        if collection is None:
            return 0
        existing = collection.get(where=where, include=[])
        return len(existing["ids"]) if existing["ids"] else 0

    def _delete_where_sync(self, collection_id: str, where: dict[str, Any]) -> int:
        collection = self._get_collection(collection_id)
        if collection is None:
            return 0
        existing = collection.get(where=where, include=[])
        count = len(existing["ids"]) if existing["ids"] else 0
        if count > 0:
            collection.delete(where=where)
        return count

    def _drop_collection_sync(self, collection_id: str) -> int:
        collection = self._get_collection(collection_id)
        if collection is None:
            return 0
        count = collection.count()
        self._client.delete_collection(name=collection_id)
        return count

    def _query_sync(
        self,
        collection_id: str,
        query_vector: list[float],
        top_k: int,
        filters: dict | None,
    ) -> list[RetrievedChunk]:
        collection = self._get_collection(collection_id)
        if collection is None:
            return []
        total = collection.count()
        if total == 0:
            return []

        kwargs: dict[str, Any] = {
            "query_embeddings": [query_vector],
            "n_results": min(top_k, total),
        }
        if filters:
            kwargs["where"] = self._translate_filters(filters)
        results = collection.query(**kwargs)

        if not results["documents"] or not results["documents"][0]:
            return []

        documents = results["documents"][0]
        metadatas = results["metadatas"][0] if results["metadatas"] else [{}] * len(documents)
        distances = results["distances"][0] if results["distances"] else [0.0] * len(documents)
        ids = results["ids"][0]

        retrieved = []
        for chunk_id, text, meta, distance in zip(ids, documents, metadatas, distances, strict=True):
            chunk = DocumentChunk(
                chunk_id=chunk_id,
                text=text,
                chunk_index=int(meta.get("chunk_index", 0)),
                course_id=str(meta.get("course_id", "")),
                chapter_id=str(meta.get("chapter_id", "")),
                material_id=str(meta.get("material_id", "")),
                start_char=int(meta.get("start_char", 0)),
                end_char=int(meta.get("end_char", 0)),
                token_count=int(meta.get("token_count", 0)),
            )
            similarity = max(0.0, min(1.0, 1.0 - distance))
            retrieved.append(RetrievedChunk(chunk=chunk, similarity_score=similarity))
        retrieved.sort(key=lambda rc: rc.similarity_score, reverse=True)
        return retrieved

    @staticmethod
    def _translate_filters(filters: dict[str, Any]) -> dict[str, Any]:
        """Turn a flat equality dict into a ChromaDB ``where`` clause."""
        clauses = [{key: value} for key, value in filters.items()]
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}

    async def _delete_where(self, collection_id: str, where: dict[str, Any]) -> int:
        try:
            count = await asyncio.to_thread(self._delete_where_sync, collection_id, where)
        except Exception as exc:
            raise VectorStoreWriteError(
                message=f"ChromaDB delete failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("chromadb_delete", collection=collection_id, where=where, deleted_count=count)
        return count
