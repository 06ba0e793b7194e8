"""Abstract base class for the best-effort text structuring stage."""

from __future__ import annotations

from abc import ABC, abstractmethod


class IContentStructurer(ABC):
    """Reorganize raw extracted text into a cleaner structured form.

    Implementations must never raise: on any failure they return the input
    text unchanged.
    """

    @abstractmethod
    async def structure(self, text: str, language: str = "en") -> str:
        """Return structured text in *language*, or *text* itself on failure."""

    @abstractmethod
    def get_name(self) -> str:
        """Return a short identifier used in logs."""
