"""Link kind constants and parsing for wordmesh."""

from __future__ import annotations

from wordmesh.exceptions import LinkTypeInvalidError
from wordmesh.models import EndpointType, SenseLinkKind, WordLinkKind

WORD_LINK_KINDS: frozenset[str] = frozenset(k.value for k in WordLinkKind)
SENSE_LINK_KINDS: frozenset[str] = frozenset(k.value for k in SenseLinkKind)


def parse_word_link_kind(kind: str | WordLinkKind) -> WordLinkKind:
    """Coerce *kind* to a WordLinkKind or raise LinkTypeInvalidError."""
    try:
        return WordLinkKind(kind)
    except ValueError:
        raise LinkTypeInvalidError(
            f"Invalid word link kind: {kind!r} "
            f"(expected one of {', '.join(sorted(WORD_LINK_KINDS))})"
        ) from None


def parse_sense_link_kind(kind: str | SenseLinkKind) -> SenseLinkKind:
    """Coerce *kind* to a SenseLinkKind or raise LinkTypeInvalidError."""
    try:
        return SenseLinkKind(kind)
    except ValueError:
        raise LinkTypeInvalidError(
            f"Invalid sense link kind: {kind!r} "
            f"(expected one of {', '.join(sorted(SENSE_LINK_KINDS))})"
        ) from None


def parse_link_kind(
    endpoint_type: EndpointType, kind: str,
) -> WordLinkKind | SenseLinkKind:
    """Parse *kind* against the vocabulary of *endpoint_type*."""
    if EndpointType(endpoint_type) is EndpointType.WORD:
        return parse_word_link_kind(kind)
    return parse_sense_link_kind(kind)


def ordered_pair(word_id_a: int, word_id_b: int) -> tuple[int, int]:
    """Canonical (min, max) endpoint order for symmetric word links."""
    return (word_id_a, word_id_b) if word_id_a <= word_id_b else (word_id_b, word_id_a)
