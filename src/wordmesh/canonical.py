"""Canonical key normalization for global word deduplication."""

from __future__ import annotations

import re
import string

from wordmesh.exceptions import ValidationError

_WHITESPACE = re.compile(r"\s+")
_PUNCTUATION = frozenset(string.punctuation)
_STRIP_CHARS = string.punctuation


def normalize(text: str) -> str:
    """Map raw word text to its canonical key.

    Outer whitespace is trimmed, internal runs collapse to one space,
    leading/trailing ASCII punctuation is stripped, the result is
    lowercased and spaces become hyphens. Remaining ASCII punctuation
    other than ``-`` is dropped and hyphen runs collapse.

    Never raises; text with no usable characters maps to ``""``.

    >>> normalize(" Run ")
    'run'
    >>> normalize("memory storage")
    'memory-storage'
    """
    collapsed = _WHITESPACE.sub(" ", text.strip())
    stripped = collapsed.strip(_STRIP_CHARS).strip()
    if not stripped:
        return ""

    replaced = stripped.lower().replace(" ", "-")
    cleaned: list[str] = []
    last_dash = False
    for ch in replaced:
        if ch == "-":
            if not last_dash:
                cleaned.append(ch)
                last_dash = True
        elif ch in _PUNCTUATION:
            continue
        else:
            cleaned.append(ch)
            last_dash = False

    return "".join(cleaned).strip("-")


def require_key(text: str) -> str:
    """Normalize *text*, raising ValidationError if nothing is left."""
    key = normalize(text)
    if not key:
        raise ValidationError(f"Word text normalizes to an empty key: {text!r}")
    return key


def display_text(text: str) -> str:
    """Trimmed, whitespace-collapsed form kept as a word's display text."""
    return _WHITESPACE.sub(" ", text.strip())
