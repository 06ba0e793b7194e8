"""Whitespace normalization and bounding for extracted document text."""

from __future__ import annotations

import re

_BLANK_RUN = re.compile(r"\n{3,}")
_TRAILING_SPACES = re.compile(r"[ \t]+\n")


def normalize_text(text: str) -> str:
    """Normalize line endings and collapse runs of blank lines.

    ``\\r\\n`` and bare ``\\r`` become ``\\n``, trailing spaces before a newline
    are removed, three or more consecutive newlines collapse to a single
    blank line, and the result is stripped.  The function is idempotent.
    """
    if not text:
        return ""
    cleaned = text.replace("\r\n", "\n").replace("\r", "\n")
    cleaned = _TRAILING_SPACES.sub("\n", cleaned)
    cleaned = _BLANK_RUN.sub("\n\n", cleaned)
    return cleaned.strip()


def truncate_text(text: str, max_chars: int, marker: str = "") -> tuple[str, bool]:
    """Cut *text* to at most *max_chars* characters.

    Parameters
    ----------
    text:
        The text to bound.
    max_chars:
        Maximum number of characters kept from *text*.
    marker:
        Appended after the cut (not counted against *max_chars*).

    Returns
    -------
    tuple[str, bool]
        The possibly shortened text and whether a cut happened.
    """
    if max_chars <= 0 or len(text) <= max_chars:
        return text, False
    return text[:max_chars] + marker, True
