"""Chunk and embedding models for the course vector store."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class DocumentChunk(BaseModel):
    """A bounded text span of a material, ready for embedding and storage.

    ``chunk_id`` is deterministic (``{material_id}_chunk_{index}``) so that
    re-embedding the same text upserts rather than appends.
    """

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    text: str
    chunk_index: int = Field(ge=0, description="Position of the chunk in source order.")
    course_id: str
    chapter_id: str
    material_id: str
    start_char: int = Field(ge=0)
    end_char: int = Field(ge=0)
    token_count: int = Field(default=0, ge=0, description="Approximate (chars / 4).")

    def metadata(self) -> dict[str, str | int]:
        """Flat metadata dict stored next to the vector."""
        return {
            "course_id": self.course_id,
            "chapter_id": self.chapter_id,
            "material_id": self.material_id,
            "chunk_index": self.chunk_index,
            "start_char": self.start_char,
            "end_char": self.end_char,
            "token_count": self.token_count,
        }


class RetrievedChunk(BaseModel):
    """A chunk returned from a similarity query."""

    model_config = ConfigDict(frozen=True)

    chunk: DocumentChunk
    similarity_score: float = Field(ge=0.0, le=1.0)


class EmbeddingResult(BaseModel):
    """Outcome of embedding one material's text."""

    model_config = ConfigDict(frozen=True)

    material_id: str
    collection: str
    chunks_added: int = 0
    chunks_replaced: int = Field(default=0, description="Stale chunks deleted before insert.")
    truncated: bool = Field(default=False, description="True when the chunk cap dropped chunks.")
