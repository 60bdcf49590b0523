"""Domain model dataclasses and enums for wordmesh."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class WordLinkKind(str, Enum):
    """Non-semantic, symmetric relations between two words."""

    SIMILAR_FORM = "similar_form"
    ROOT_AFFIX = "root_affix"


class SenseLinkKind(str, Enum):
    """Semantic relations from a user's sense to a word."""

    SYNONYM = "synonym"
    ANTONYM = "antonym"
    RELATED = "related"


class SearchScope(str, Enum):
    WORD = "word"
    SENSE = "sense"
    BOTH = "both"


class EndpointType(str, Enum):
    """Kind of the source endpoint a link is listed or deleted from."""

    WORD = "word"
    SENSE = "sense"


class MatchField(str, Enum):
    WORD = "word"
    SENSE = "sense"
    ALL = "all"


# ---------------------------------------------------------------------------
# Relational entities
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Word:
    """A global word anchor shared by every user."""

    id: int
    text: str
    canonical_key: str
    created_at: str


@dataclass(frozen=True, slots=True)
class UserWord:
    """A user's membership of a global word."""

    id: int
    user_id: int
    word_id: int
    tags: tuple[str, ...] = ()
    note: str | None = None
    created_at: str = ""


@dataclass(frozen=True, slots=True)
class UserSense:
    """A user's private sense attached to a membership."""

    id: int
    user_word_id: int
    text: str
    is_primary: bool = False
    sort_order: int = 0
    note: str | None = None
    created_at: str = ""


@dataclass(frozen=True, slots=True)
class SenseOwner:
    """Identifiers resolved from a sense id."""

    sense_id: int
    user_word_id: int
    user_id: int
    word_id: int


@dataclass(frozen=True, slots=True)
class RemovedSense:
    sense_id: int
    user_word_id: int
    sense: UserSense


@dataclass(frozen=True, slots=True)
class RemovedMembership:
    """What was deleted by removing a membership, for graph cleanup."""

    user_word_id: int
    user_id: int
    word_id: int
    sense_ids: tuple[int, ...] = ()


# ---------------------------------------------------------------------------
# Graph entities
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class WordLink:
    """Symmetric word link; ``word_id_a < word_id_b`` always holds."""

    word_id_a: int
    word_id_b: int
    kind: WordLinkKind
    user_id: int
    note: str | None = None
    created_at: str = ""

    def other(self, word_id: int) -> int:
        """Return the endpoint opposite *word_id*."""
        return self.word_id_b if word_id == self.word_id_a else self.word_id_a


@dataclass(frozen=True, slots=True)
class SenseWordLink:
    sense_id: int
    target_word_id: int
    kind: SenseLinkKind
    user_id: int
    note: str | None = None
    created_at: str = ""


# ---------------------------------------------------------------------------
# Views returned by the coordinator
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """One page of an offset-paginated result."""

    items: tuple[T, ...]
    limit: int
    offset: int
    total: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)


@dataclass(frozen=True, slots=True)
class SearchMatch:
    """A membership matched by a search query."""

    user_word_id: int
    word_id: int
    text: str
    canonical_key: str
    tags: tuple[str, ...]
    matched_on: MatchField
    relevance: int
    created_at: str
    sense_ids: tuple[int, ...] = ()


@dataclass(frozen=True, slots=True)
class UserWordView:
    """A membership with its word and senses, as returned to callers."""

    membership: UserWord
    word: Word
    senses: tuple[UserSense, ...] = ()
    created: bool = False

    @property
    def user_word_id(self) -> int:
        return self.membership.id

    @property
    def already_existed(self) -> bool:
        return not self.created

    @property
    def primary_sense(self) -> UserSense | None:
        return next((s for s in self.senses if s.is_primary), None)


@dataclass(frozen=True, slots=True)
class LinkView:
    """A word or sense link, annotated with entity-store state."""

    endpoint_type: EndpointType
    kind: str
    user_id: int
    source_id: int
    target_id: int
    note: str | None = None
    created_at: str = ""
    source_word_id: int | None = None
    target_in_network: bool = True
    created: bool = False
    auto_joined: bool = False


@dataclass(frozen=True, slots=True)
class SenseInput:
    """First-sense payload accepted by ``add_to_network``."""

    text: str
    is_primary: bool = False
    sort_order: int | None = None
    note: str | None = None
