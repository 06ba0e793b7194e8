"""OpenAI-compatible LLM provider adapter.

Wraps the ``openai`` async client to implement :class:`ILLMProvider`.  When
``openai_base_url`` is configured the client points at that URL instead of
the default OpenAI endpoint.
"""

from __future__ import annotations

import openai
import structlog

from course_ingest.config.settings import Settings
from course_ingest.interfaces.llm_provider import ILLMProvider
from course_ingest.utils.errors import GenerationTimeoutError, LLMError

logger = structlog.get_logger(logger_name=__name__)


class OpenAILLMProvider(ILLMProvider):
    """LLM provider backed by an OpenAI-compatible chat completions API."""

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key
        self._timeout = settings.llm_timeout_seconds

        client_kwargs: dict = {
            "api_key": self._api_key,
            "timeout": openai.Timeout(self._timeout, connect=5.0),
            # Retries belong to the job queue; a failed call surfaces immediately.
            "max_retries": 0,
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._text_model = settings.openai_text_model or "gpt-4o-mini"
        self._provider_label = "openai-compatible" if settings.openai_base_url else "openai"

    # ------------------------------------------------------------------
    # ILLMProvider implementation
    # ------------------------------------------------------------------

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        max_tokens: int = 4000,
    ) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._text_model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
            content = response.choices[0].message.content
            # A filtered or tool-only reply has no text content.
            if content is None:
                raise LLMError(
                    message=f"{self._provider_label} returned empty response",
                    provider_name=self.get_provider_name(),
                )
            logger.info(
                "openai_completion",
                model=self._text_model,
                provider=self._provider_label,
                tokens=response.usage.total_tokens if response.usage else None,
            )
            return content
        except openai.APITimeoutError as exc:
            raise GenerationTimeoutError(
                message=f"{self._provider_label} timed out after {self._timeout:.0f}s",
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise LLMError(
                message=f"{self._provider_label} API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        return bool(self._api_key)
