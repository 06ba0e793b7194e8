"""Abstract base class for generative text model providers."""

from __future__ import annotations

from abc import ABC, abstractmethod


class ILLMProvider(ABC):
    """Contract for text-completion services used by the content structurer."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.2,
        max_tokens: int = 4000,
    ) -> str:
        """Send a chat-style completion request and return the response text.

        Raises
        ------
        course_ingest.utils.errors.GenerationTimeoutError
            If the request exceeds the provider timeout.
        course_ingest.utils.errors.LLMError
            For any other API failure.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier such as ``"openai"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return whether the provider is configured and usable."""
