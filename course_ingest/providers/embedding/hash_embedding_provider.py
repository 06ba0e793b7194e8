"""Local hashed bag-of-words embedding provider.

Produces deterministic, L2-normalized vectors without any network call.
Each lowercase word is hashed into one of ``dimension`` buckets and weighted
by ``1 / (1 + log1p(position))`` so earlier words count slightly more.
Quality is far below a learned model, but similar texts do land near each
other, which keeps retrieval usable when no embedding API is configured.
"""

from __future__ import annotations

import hashlib
import re

import numpy as np

from course_ingest.interfaces.embedding_provider import IEmbeddingProvider

_NON_WORD = re.compile(r"[^\w\s]")


class HashEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider that hashes words into a fixed-size vector."""

    def __init__(self, dimension: int = 384) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self._dimension = dimension

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [self._vectorize(text) for text in texts]

    async def embed_single(self, text: str) -> list[float]:
        return self._vectorize(text)

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "hash"

    def is_available(self) -> bool:
        return True

    def _vectorize(self, text: str) -> list[float]:
        vector = np.zeros(self._dimension, dtype=np.float32)
        if not text:
            return vector.tolist()

        words = _NON_WORD.sub(" ", text.lower()).split()
        for position, word in enumerate(words):
            digest = hashlib.blake2b(word.encode("utf-8"), digest_size=8).digest()
            # Earlier words weigh more, so word order shifts the vector slightly.
            bucket = int.from_bytes(digest, "little") % self._dimension
            vector[bucket] += 1.0 / (1.0 + np.log1p(position))

        norm = float(np.linalg.norm(vector))
        if norm > 0:
            vector /= norm
        return vector.tolist()
