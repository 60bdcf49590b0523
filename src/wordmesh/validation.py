"""Input validation for notes, tags, sense text and pagination."""

from __future__ import annotations

import re
from collections.abc import Iterable

from wordmesh.canonical import display_text
from wordmesh.exceptions import ValidationError

MAX_TAGS = 20
MAX_WORD_TEXT_LENGTH = 128
MAX_NOTE_LENGTH = 512
MAX_SENSE_TEXT_LENGTH = 512

MAX_PAGE_LIMIT = 100
MAX_PAGE_OFFSET = 10_000
DEFAULT_PAGE_LIMIT = 20

_TAG_RE = re.compile(r"^[A-Za-z0-9_-]{1,24}$")


def validate_word_text(text: str) -> str:
    """Return the display form of *text*, rejecting blank or oversized input."""
    if not isinstance(text, str):
        raise ValidationError(f"Word text must be a string, got {type(text).__name__}")
    value = display_text(text)
    if not value:
        raise ValidationError("Word text cannot be blank")
    if len(value) > MAX_WORD_TEXT_LENGTH:
        raise ValidationError(
            f"Word text too long: {len(value)} characters (max {MAX_WORD_TEXT_LENGTH})"
        )
    return value


def validate_sense_text(text: str) -> str:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Sense text cannot be blank")
    value = text.strip()
    if len(value) > MAX_SENSE_TEXT_LENGTH:
        raise ValidationError(
            f"Sense text too long: {len(value)} characters (max {MAX_SENSE_TEXT_LENGTH})"
        )
    return value


def validate_note(note: str | None) -> str | None:
    """Trim a note. ``None`` passes through; a blank note is rejected."""
    if note is None:
        return None
    if not isinstance(note, str) or not note.strip():
        raise ValidationError("Note cannot be blank")
    value = note.strip()
    if len(value) > MAX_NOTE_LENGTH:
        raise ValidationError(
            f"Note too long: {len(value)} characters (max {MAX_NOTE_LENGTH})"
        )
    return value


def normalize_tags(tags: Iterable[str]) -> list[str]:
    """Validate and dedupe tags case-insensitively, keeping first spelling."""
    if isinstance(tags, str):
        raise ValidationError("Tags must be a list of strings, not a string")
    seen: set[str] = set()
    normalized: list[str] = []
    for raw in tags:
        if not isinstance(raw, str):
            raise ValidationError(f"Invalid tag: {raw!r}")
        trimmed = raw.strip()
        if not _TAG_RE.match(trimmed):
            raise ValidationError(f"Invalid tag: {raw!r}")
        key = trimmed.lower()
        if key not in seen:
            seen.add(key)
            normalized.append(trimmed)
    if len(normalized) > MAX_TAGS:
        raise ValidationError(
            f"Tag limit exceeded: {len(normalized)} tags provided (max {MAX_TAGS})"
        )
    return normalized


def validate_page(limit: int, offset: int) -> tuple[int, int]:
    """Check pagination bounds: 1 <= limit <= 100, 0 <= offset <= 10000."""
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValidationError(f"limit must be an integer, got {limit!r}")
    if isinstance(offset, bool) or not isinstance(offset, int):
        raise ValidationError(f"offset must be an integer, got {offset!r}")
    if not 1 <= limit <= MAX_PAGE_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_LIMIT}, got {limit}")
    if not 0 <= offset <= MAX_PAGE_OFFSET:
        raise ValidationError(f"offset must be between 0 and {MAX_PAGE_OFFSET}, got {offset}")
    return limit, offset


def validate_id(value: int, name: str = "id") -> int:
    """Reject non-integer or non-positive identifiers."""
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{name} must be a positive integer, got {value!r}")
    return value
