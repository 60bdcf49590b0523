"""Custom exception hierarchy for wordmesh."""

from __future__ import annotations

from typing import Any


class WordmeshError(Exception):
    """Base exception for all wordmesh errors.

    Every subclass maps to one stable error ``kind`` and numeric ``code``
    so the request layer can translate failures without inspecting types.
    """

    kind = "Internal"
    code = 5000

    def __init__(self, message: str = "", *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class ValidationError(WordmeshError):
    """Malformed text, tags, notes, link kinds or pagination bounds."""

    kind = "ValidationFailed"
    code = 4001


class ConfigError(WordmeshError):
    """Invalid configuration file or environment override."""

    kind = "ConfigInvalid"
    code = 5001


class AlreadyExistsError(WordmeshError):
    """The word is already a member of the user's network."""

    kind = "AlreadyExists"
    code = 4201

    def __init__(self, message: str = "", *, user_word_id: int | None = None,
                 details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details=details)
        self.user_word_id = user_word_id


class NotInNetworkError(WordmeshError):
    """Membership or sense is absent, or belongs to another user."""

    kind = "NotInNetwork"
    code = 4202


class SenseDuplicateError(WordmeshError):
    kind = "SenseDuplicate"
    code = 4203


class PrimaryConflictError(WordmeshError):
    kind = "PrimaryConflict"
    code = 4204


class LinkExistsError(WordmeshError):
    kind = "LinkExists"
    code = 4301


class LinkSelfForbiddenError(WordmeshError):
    """A link would connect a word (or a sense's own word) to itself."""

    kind = "LinkSelfForbidden"
    code = 4302


class LinkTargetNotFoundError(WordmeshError):
    """Link endpoint does not exist."""

    kind = "LinkTargetNotFound"
    code = 4303


class LinkTypeInvalidError(WordmeshError):
    kind = "LinkTypeInvalid"
    code = 4304


class LinkLimitExceededError(WordmeshError):
    kind = "LinkLimitExceeded"
    code = 4305


class StoreUnavailableError(WordmeshError):
    """Transient store failure (timeout, lock, lost connection). Retryable."""

    kind = "StoreUnavailable"
    code = 5030
