"""Character-window text chunking with overlap and boundary snapping.

Splits a material's final text into :class:`~course_ingest.models.rag.DocumentChunk`
objects of at most ``chunk_size`` characters, where consecutive chunks
share about ``overlap`` characters of context.

Each cut is snapped back to the nearest natural boundary inside a short
lookback window (half the overlap), preferring in order:

1. a paragraph break (blank line),
2. a sentence end (``.``, ``!`` or ``?`` followed by whitespace, not after a
   common abbreviation such as "Dr." or "etc."),
3. any whitespace.

If none is found the cut stays at the hard limit.  The next window starts
``overlap`` characters before the cut, moved forward to a word start when
one is close.  Whitespace-only windows are dropped; chunk ids are derived
from the material id and index, so re-chunking the same text is stable.
"""

from __future__ import annotations

import re

import structlog

from course_ingest.models.rag import DocumentChunk

logger = structlog.get_logger(logger_name=__name__)

_ABBREVIATIONS = frozenset(
    {
        "dr",
        "mr",
        "mrs",
        "ms",
        "prof",
        "jr",
        "sr",
        "st",
        "vs",
        "etc",
        "approx",
        "dept",
        "fig",
        "eq",
        "no",
        "vol",
        "e.g",
        "i.e",
    }
)

_SENTENCE_END = re.compile(r"[.!?][\"')\]]?\s")
_WORD_BEFORE = re.compile(r"([\w.]+)$")


class TextChunker:
    """Split text into ordered, overlapping character windows.

    Parameters
    ----------
    chunk_size:
        Maximum characters per chunk (default 700).
    overlap:
        Characters shared by consecutive chunks (default 100).  Must be
        smaller than ``chunk_size``.
    """

    def __init__(self, chunk_size: int = 700, overlap: int = 100) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError("overlap must be >= 0 and smaller than chunk_size")
        self._chunk_size = chunk_size
        self._overlap = overlap
        self._lookback = max(1, overlap // 2)

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def overlap(self) -> int:
        return self._overlap

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(
        self,
        text: str,
        course_id: str,
        chapter_id: str,
        material_id: str,
    ) -> list[DocumentChunk]:
        """Split *text* into :class:`DocumentChunk` objects in source order.

        Returns
        -------
        list[DocumentChunk]
            Chunks with consecutive ``chunk_index`` values starting at 0.
            Empty or whitespace-only input returns an empty list.
        """
        if not text or not text.strip():
            return []

        chunks: list[DocumentChunk] = []
        for start, end in self._windows(text):
            piece = text[start:end]
            stripped = piece.strip()
            if not stripped:
                continue
            lead = len(piece) - len(piece.lstrip())
            index = len(chunks)
            chunks.append(
                DocumentChunk(
                    chunk_id=f"{material_id}_chunk_{index}",
                    text=stripped,
                    chunk_index=index,
                    course_id=course_id,
                    chapter_id=chapter_id,
                    material_id=material_id,
                    start_char=start + lead,
                    end_char=start + lead + len(stripped),
                    token_count=max(1, len(stripped) // 4),
                )
            )

        logger.debug(
            "chunking_complete",
            material_id=material_id,
            text_length=len(text),
            chunks_created=len(chunks),
            chunk_size=self._chunk_size,
            overlap=self._overlap,
        )
        return chunks

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _windows(self, text: str) -> list[tuple[int, int]]:
        """Return ``(start, end)`` spans covering *text*."""
        length = len(text)
        spans: list[tuple[int, int]] = []
        start = 0
        while start < length:
            end = min(start + self._chunk_size, length)
            if end < length:
                end = self._snap_end(text, start, end)
            spans.append((start, end))
            if end >= length:
                break
            next_start = max(end - self._overlap, start + 1)
            start = self._snap_start(text, next_start, end)
        return spans

    def _snap_end(self, text: str, start: int, end: int) -> int:
        lo = max(start + 1, end - self._lookback)

        para = text.rfind("\n\n", lo, end)
        if para != -1:
            return para + 2

        sentence_cut = -1
        for match in _SENTENCE_END.finditer(text, lo, end + 1):
            if match.end() > end:
                break
            if not self._is_abbreviation(text, match.start()):
                sentence_cut = match.end()
        if sentence_cut != -1:
            return sentence_cut

        for pos in range(end, lo - 1, -1):
            if text[pos].isspace():
                return pos
        return end

    def _snap_start(self, text: str, start: int, end: int) -> int:
        """Move *start* forward to the beginning of a word when one is near."""
        if start == 0 or text[start - 1].isspace():
            return start
        limit = min(end, start + self._lookback)
        for pos in range(start, limit):
            if text[pos].isspace():
                return pos + 1
        return start

    @staticmethod
    def _is_abbreviation(text: str, period_pos: int) -> bool:
        match = _WORD_BEFORE.search(text, max(0, period_pos - 12), period_pos)
        if not match:
            return False
        return match.group(1).lower().rstrip(".") in _ABBREVIATIONS
