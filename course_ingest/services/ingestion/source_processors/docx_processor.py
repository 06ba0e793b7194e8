"""Source processor for Word (.docx) documents.

Uses python-docx.  Paragraphs are grouped into sections that start at each
``Heading`` styled paragraph; a document without headings is one section.
Table rows are appended after the body text as ``cell | cell`` lines.
"""

from __future__ import annotations

import structlog
from docx import Document

from course_ingest.models.extraction import ExtractedPage
from course_ingest.utils.errors import UnsupportedFormatError

logger = structlog.get_logger(logger_name=__name__)


class DocxProcessor:
    """Extract sectioned text from a .docx file."""

    def extract_sections(self, file_path: str) -> list[ExtractedPage]:
        try:
            document = Document(file_path)
        except Exception as exc:  # noqa: BLE001 -- zip, xml and package errors
            logger.error("docx_open_failed", file_path=file_path, error=str(exc))
            raise UnsupportedFormatError(
                message=f"Could not open DOCX: {exc}",
                provider_name="python-docx",
            ) from exc

        # A heading closes the current section unless it is still empty, so
        # a leading heading stays with the body that follows it.
        sections: list[list[str]] = [[]]
        for paragraph in document.paragraphs:
            text = paragraph.text.strip()
            if not text:
                continue
            style_name = paragraph.style.name if paragraph.style is not None else ""
            if style_name.startswith("Heading") and sections[-1]:
                sections.append([])
            sections[-1].append(text)

        # python-docx keeps tables outside document.paragraphs.
        table_lines = []
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    table_lines.append(" | ".join(cells))
        if table_lines:
            sections.append(table_lines)

        pages = [
            ExtractedPage(index=i, text="\n".join(lines))
            for i, lines in enumerate(s for s in sections if s)
        ]
        if not pages:
            logger.warning("docx_no_text_extracted", file_path=file_path)
        return pages
