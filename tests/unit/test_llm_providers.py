"""Unit tests for the OpenAI-compatible LLM provider and the log sink."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from course_ingest.config.settings import Settings
from course_ingest.providers.llm.openai_provider import OpenAILLMProvider
from course_ingest.providers.notification.log_sink import LogNotificationSink
from course_ingest.utils.errors import GenerationTimeoutError, LLMError

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _provider(**overrides: str) -> OpenAILLMProvider:
    settings = Settings(_env_file=None, openai_api_key="sk-test", **overrides)
    provider = OpenAILLMProvider(settings=settings)
    provider._client = MagicMock()
    return provider


def _completion(content: str | None) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.usage.total_tokens = 42
    return response


class TestOpenAILLMProvider:
    @pytest.mark.asyncio
    async def test_complete_success(self) -> None:
        provider = _provider()
        provider._client.chat.completions.create = AsyncMock(return_value=_completion("# Heading\n\nBody"))

        result = await provider.complete("system", "user", temperature=0.1, max_tokens=100)

        assert result == "# Heading\n\nBody"
        kwargs = provider._client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}
        assert kwargs["temperature"] == 0.1
        assert kwargs["max_tokens"] == 100

    @pytest.mark.asyncio
    async def test_empty_content(self) -> None:
        provider = _provider()
        provider._client.chat.completions.create = AsyncMock(return_value=_completion(None))

        with pytest.raises(LLMError, match="empty response"):
            await provider.complete("system", "user")

    @pytest.mark.asyncio
    async def test_timeout_maps_to_generation_timeout(self) -> None:
        provider = _provider()
        provider._client.chat.completions.create = AsyncMock(side_effect=openai.APITimeoutError(request=_REQUEST))

        with pytest.raises(GenerationTimeoutError):
            await provider.complete("system", "user")

    @pytest.mark.asyncio
    async def test_api_error_maps_to_llm_error(self) -> None:
        provider = _provider()
        provider._client.chat.completions.create = AsyncMock(
            side_effect=openai.APIConnectionError(request=_REQUEST)
        )

        with pytest.raises(LLMError) as exc_info:
            await provider.complete("system", "user")
        assert exc_info.value.provider_name == "openai"

    def test_base_url_changes_label(self) -> None:
        assert _provider().get_provider_name() == "openai"
        assert _provider(openai_base_url="http://localhost:11434/v1").get_provider_name() == "openai-compatible"

    def test_is_available(self) -> None:
        assert _provider().is_available() is True


class TestLogNotificationSink:
    @pytest.mark.asyncio
    async def test_events_logged(self) -> None:
        sink = LogNotificationSink()
        with patch("course_ingest.providers.notification.log_sink.logger") as mock_logger:
            await sink.emit_progress("user-1", "job-1", 40.0, "processing_pages", {"material_id": "m1"})
            await sink.emit_complete("user-1", "job-1", {"chunks_created": 5})
            await sink.emit_failed("user-1", "job-1", "boom")

        info_events = [c.args[0] for c in mock_logger.info.call_args_list]
        assert info_events == ["job:progress", "job:complete"]
        assert mock_logger.info.call_args_list[0].kwargs["material_id"] == "m1"
        mock_logger.warning.assert_called_once_with("job:failed", user_id="user-1", job_id="job-1", error="boom")
        assert sink.get_sink_name() == "log"
