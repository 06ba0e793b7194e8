"""Source processor for PDF documents.

Reads PDF files with PyMuPDF (fitz) one page at a time, keeping only the
decoded page text.  The document handle is closed before the caller joins
the pages, so the parsed PDF and the final text are never held together.
"""

from __future__ import annotations

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from course_ingest.models.extraction import ExtractedPage
from course_ingest.utils.errors import UnsupportedFormatError

logger = structlog.get_logger(logger_name=__name__)


class PDFProcessor:
    """Extract per-page text from a PDF file.

    Parameters
    ----------
    max_pages:
        Pages beyond this index are ignored.
    """

    def __init__(self, max_pages: int = 100) -> None:
        self._max_pages = max_pages

    def extract_pages(self, file_path: str) -> tuple[list[ExtractedPage], int]:
        """Read *file_path* and return its non-empty pages.

        Returns
        -------
        tuple[list[ExtractedPage], int]
            Pages with text (0-based ``index``) and the total page count of
            the document.

        Raises
        ------
        UnsupportedFormatError
            If PyMuPDF cannot open the file (corrupted or not a PDF).
        """
        try:
            doc = fitz.open(file_path)
        except Exception as exc:  # noqa: BLE001 -- fitz raises several unrelated types
            logger.error("pdf_open_failed", file_path=file_path, error=str(exc))
            raise UnsupportedFormatError(
                message=f"Could not open PDF: {exc}",
                provider_name="pymupdf",
            ) from exc

        pages: list[ExtractedPage] = []
        try:
            total_pages = len(doc)
            for page_num in range(min(total_pages, self._max_pages)):
                # Image-only pages come back empty and are skipped; the index
                # still counts them.
                text = doc[page_num].get_text("text").strip()
                if text:
                    pages.append(ExtractedPage(index=page_num, text=text))
        finally:
            doc.close()

        if total_pages > self._max_pages:
            logger.warning(
                "pdf_page_limit_reached",
                file_path=file_path,
                total_pages=total_pages,
                max_pages=self._max_pages,
            )
        if not pages:
            logger.warning("pdf_no_text_extracted", file_path=file_path)

        return pages, total_pages
