"""Output of the document extractor."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ExtractedPage(BaseModel):
    """Text of one PDF page or one DOCX section."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0, description="0-based page or section index.")
    text: str


class ExtractionResult(BaseModel):
    """Plain text of a document plus its page/section breakdown."""

    model_config = ConfigDict(frozen=True)

    full_text: str
    pages: list[ExtractedPage] = Field(default_factory=list)
    page_count: int = Field(default=0, ge=0, description="Pages/sections in the source file.")
    mime_type: str = ""
    truncated_pages: bool = Field(
        default=False, description="True when the page cap stopped extraction early."
    )
