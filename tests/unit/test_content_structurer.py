"""Unit tests for the best-effort content structurers."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from course_ingest.interfaces.llm_provider import ILLMProvider
from course_ingest.services.ingestion.content_structurer import (
    LLMContentStructurer,
    NullContentStructurer,
)
from course_ingest.utils.errors import LLMError

_TEXT = "Photosynthesis happens in chloroplasts. " * 10


def _llm(response: str | None = None, side_effect=None) -> MagicMock:  # noqa: ANN001
    llm = MagicMock(spec=ILLMProvider)
    llm.complete = AsyncMock(return_value=response, side_effect=side_effect)
    llm.get_provider_name.return_value = "mock"
    return llm


class TestLLMContentStructurer:
    @pytest.mark.asyncio
    async def test_returns_structured_markdown(self) -> None:
        structured = "# Photosynthesis\n\n" + _TEXT.strip()
        llm = _llm(structured)

        result = await LLMContentStructurer(llm).structure(_TEXT, "en")

        assert result == structured
        kwargs = llm.complete.await_args.kwargs
        assert "English" in kwargs["system_prompt"]
        assert _TEXT in kwargs["user_prompt"]

    @pytest.mark.asyncio
    async def test_strips_code_fence(self) -> None:
        llm = _llm("```markdown\n# Title\n\n" + _TEXT.strip() + "\n```")
        result = await LLMContentStructurer(llm).structure(_TEXT)
        assert result.startswith("# Title")
        assert "```" not in result

    @pytest.mark.asyncio
    async def test_short_input_skips_model(self) -> None:
        llm = _llm("unused")
        assert await LLMContentStructurer(llm, min_input_chars=100).structure("Too short.") == "Too short."
        llm.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_timeout_returns_input(self) -> None:
        async def _slow(**kwargs) -> str:
            await asyncio.sleep(5)
            return "late"

        llm = _llm(side_effect=_slow)
        result = await LLMContentStructurer(llm, timeout_seconds=0.05).structure(_TEXT)
        assert result == _TEXT

    @pytest.mark.asyncio
    async def test_provider_error_returns_input(self) -> None:
        llm = _llm(side_effect=LLMError(message="rate limited", provider_name="openai"))
        assert await LLMContentStructurer(llm).structure(_TEXT) == _TEXT

    @pytest.mark.asyncio
    async def test_unexpected_error_returns_input(self) -> None:
        llm = _llm(side_effect=KeyError("choices"))
        assert await LLMContentStructurer(llm).structure(_TEXT) == _TEXT

    @pytest.mark.asyncio
    async def test_implausibly_short_output_rejected(self) -> None:
        llm = _llm("# Ok")
        assert await LLMContentStructurer(llm).structure(_TEXT) == _TEXT

    @pytest.mark.asyncio
    async def test_long_input_truncated_with_marker(self) -> None:
        llm = _llm("# Summary\n\n" + "x" * 500)
        await LLMContentStructurer(llm, max_input_chars=200).structure(_TEXT * 3)

        user_prompt = llm.complete.await_args.kwargs["user_prompt"]
        assert user_prompt.endswith("[Content truncated...]")

    def test_name_includes_provider(self) -> None:
        assert LLMContentStructurer(_llm()).get_name() == "llm:mock"


class TestNullContentStructurer:
    @pytest.mark.asyncio
    async def test_identity(self) -> None:
        assert await NullContentStructurer().structure("anything", "fr") == "anything"
