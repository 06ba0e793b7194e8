"""Document extractor: raw uploaded file -> plain text plus page breakdown.

Dispatches on the declared mime type:

* ``application/pdf`` -> :class:`PDFProcessor` (per page)
* ``application/vnd.openxmlformats-officedocument.wordprocessingml.document``
  -> :class:`DocxProcessor` (per heading section)
* ``application/msword`` (legacy .doc) and anything else ->
  :class:`UnsupportedFormatError`

The joined text is normalized and must reach ``min_text_length`` characters,
otherwise :class:`EmptyExtractionError` is raised so the job fails instead of
completing with useless text.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog

from course_ingest.models.extraction import ExtractedPage, ExtractionResult
from course_ingest.services.ingestion.source_processors.docx_processor import DocxProcessor
from course_ingest.services.ingestion.source_processors.pdf_processor import PDFProcessor
from course_ingest.utils.errors import (
    EmptyExtractionError,
    ExtractionError,
    UnsupportedFormatError,
)
from course_ingest.utils.text_normalizer import normalize_text

logger = structlog.get_logger(logger_name=__name__)

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_MIME = "application/msword"

SUPPORTED_MIME_TYPES = frozenset({PDF_MIME, DOCX_MIME})

_PAGE_SEPARATOR = "\n\n"


class DocumentExtractor:
    """Turn an uploaded file into an :class:`ExtractionResult`.

    Parameters
    ----------
    min_text_length:
        Minimum normalized text length for a usable extraction.
    max_pages:
        PDF page cap.
    """

    def __init__(
        self,
        min_text_length: int = 50,
        max_pages: int = 100,
        pdf_processor: PDFProcessor | None = None,
        docx_processor: DocxProcessor | None = None,
    ) -> None:
        self._min_text_length = min_text_length
        self._max_pages = max_pages
        self._pdf = pdf_processor or PDFProcessor(max_pages=max_pages)
        self._docx = docx_processor or DocxProcessor()

    async def extract_async(self, file_path: str, mime_type: str) -> ExtractionResult:
        """Run :meth:`extract` in a worker thread (PDF/DOCX parsing is blocking)."""
        return await asyncio.to_thread(self.extract, file_path, mime_type)

    def extract(self, file_path: str, mime_type: str) -> ExtractionResult:
        """Extract text from *file_path*.

        Raises
        ------
        UnsupportedFormatError
            For legacy .doc, unknown mime types and unreadable files.
        EmptyExtractionError
            If the normalized text is shorter than ``min_text_length``.
        ExtractionError
            If the file does not exist.
        """
        # Strip parameters such as "; charset=binary" before dispatching.
        mime = (mime_type or "").split(";")[0].strip().lower()

        if mime == DOC_MIME:
            raise UnsupportedFormatError(
                message="Legacy .doc format is not supported. Please convert the file to .docx"
            )
        if mime not in SUPPORTED_MIME_TYPES:
            raise UnsupportedFormatError(message=f"Unsupported file type: {mime_type or 'unknown'}")
        if not Path(file_path).is_file():
            raise ExtractionError(message=f"File not found: {file_path}")

        if mime == PDF_MIME:
            raw_pages, page_count = self._pdf.extract_pages(file_path)
        else:
            raw_pages = self._docx.extract_sections(file_path)
            page_count = len(raw_pages)

        # Pages are normalized individually, then the joined text once more.
        pages = [
            ExtractedPage(index=p.index, text=normalize_text(p.text))
            for p in raw_pages
        ]
        full_text = normalize_text(_PAGE_SEPARATOR.join(p.text for p in pages if p.text))

        if len(full_text) < self._min_text_length:
            logger.warning(
                "extraction_too_short",
                file_path=file_path,
                mime_type=mime,
                text_length=len(full_text),
                min_length=self._min_text_length,
            )
            raise EmptyExtractionError(
                message=(
                    f"Could not extract meaningful text from the document "
                    f"({len(full_text)} characters, minimum {self._min_text_length})"
                )
            )

        logger.info(
            "extraction_complete",
            file_path=file_path,
            mime_type=mime,
            page_count=page_count,
            text_length=len(full_text),
        )
        return ExtractionResult(
            full_text=full_text,
            pages=pages,
            page_count=page_count,
            mime_type=mime,
            truncated_pages=mime == PDF_MIME and page_count > self._max_pages,
        )
