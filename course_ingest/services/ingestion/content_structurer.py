"""Best-effort AI structuring of extracted text.

:class:`LLMContentStructurer` asks a generative model to reorganize raw
extracted text into Markdown sections.  It is an enhancement only: every
failure (timeout, API error, empty or implausibly short output) is logged
and the input text is returned unchanged, so structuring can never fail a
job.  :class:`NullContentStructurer` is the identity used when no model is
configured.
"""

from __future__ import annotations

import asyncio
import re

import structlog

from course_ingest.interfaces.content_structurer import IContentStructurer
from course_ingest.interfaces.llm_provider import ILLMProvider
from course_ingest.utils.errors import CourseIngestError
from course_ingest.utils.text_normalizer import truncate_text

logger = structlog.get_logger(logger_name=__name__)

_TRUNCATION_MARKER = "\n\n[Content truncated...]"

# Output shorter than this share of the input is treated as malformed.
_MIN_OUTPUT_RATIO = 0.1

_FENCE = re.compile(r"^```(?:markdown|md)?\s*\n(.*?)\n```\s*$", re.DOTALL)

_LANGUAGE_NAMES = {
    "en": "English",
    "fr": "French",
    "es": "Spanish",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "nl": "Dutch",
}

_SYSTEM_PROMPT = """\
You turn text extracted from course documents into clean study material.

The content is in {language}. Keep it in {language} and fix grammar only where extraction broke it.

Rules:
1. Use Markdown headings (#, ##, ###) for the document's structure.
2. Use bullet lists for enumerations and numbered lists for ordered steps.
3. Keep every piece of information; do not add or summarize content.
4. Repair obvious extraction artefacts (hyphenated line breaks, stray page numbers).
5. Keep technical terms, formulas and code exactly as written.

Reply with the Markdown document only."""


class NullContentStructurer(IContentStructurer):
    """Identity structurer."""

    async def structure(self, text: str, language: str = "en") -> str:
        return text

    def get_name(self) -> str:
        return "none"


class LLMContentStructurer(IContentStructurer):
    """Structure text with an :class:`ILLMProvider`.

    Parameters
    ----------
    llm:
        Generative model used for the rewrite.
    max_input_chars:
        Input beyond this length is cut (with a marker) before sending.
    min_input_chars:
        Shorter inputs are returned untouched without a model call.
    timeout_seconds:
        Hard bound on the model call.
    """

    def __init__(
        self,
        llm: ILLMProvider,
        max_input_chars: int = 12_000,
        min_input_chars: int = 100,
        timeout_seconds: float = 60.0,
        temperature: float = 0.2,
        max_tokens: int = 4000,
    ) -> None:
        self._llm = llm
        self._max_input_chars = max_input_chars
        self._min_input_chars = min_input_chars
        self._timeout = timeout_seconds
        self._temperature = temperature
        self._max_tokens = max_tokens

    def get_name(self) -> str:
        return f"llm:{self._llm.get_provider_name()}"

    async def structure(self, text: str, language: str = "en") -> str:
        if not text or len(text.strip()) < self._min_input_chars:
            return text

        prompt_text, truncated = truncate_text(text, self._max_input_chars, _TRUNCATION_MARKER)
        if truncated:
            logger.warning(
                "structurer_input_truncated",
                original_length=len(text),
                max_input_chars=self._max_input_chars,
            )

        system_prompt = _SYSTEM_PROMPT.format(language=_LANGUAGE_NAMES.get(language, language))
        user_prompt = f"Structure the following extracted document content:\n\n{prompt_text}"

        try:
            output = await asyncio.wait_for(
                self._llm.complete(
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    temperature=self._temperature,
                    max_tokens=self._max_tokens,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("structurer_timeout", timeout_seconds=self._timeout)
            return text
        except CourseIngestError as exc:
            logger.warning("structurer_failed", error=str(exc))
            return text
        except Exception as exc:  # noqa: BLE001 -- structuring must never fail the job
            logger.warning("structurer_unexpected_error", error=str(exc), error_type=type(exc).__name__)
            return text

        structured = self._clean_output(output)
        if len(structured) < len(prompt_text) * _MIN_OUTPUT_RATIO:
            logger.warning(
                "structurer_output_rejected",
                input_length=len(prompt_text),
                output_length=len(structured),
            )
            return text

        logger.info(
            "structurer_complete",
            input_length=len(text),
            output_length=len(structured),
            truncated=truncated,
        )
        return structured

    @staticmethod
    def _clean_output(output: str | None) -> str:
        if not output:
            return ""
        cleaned = output.strip()
        match = _FENCE.match(cleaned)
        if match:
            cleaned = match.group(1).strip()
        return cleaned
