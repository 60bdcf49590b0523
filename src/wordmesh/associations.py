"""AssociationStore: word and sense links in the graph store."""

from __future__ import annotations

import abc
import itertools
import logging
import threading
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

import networkx as nx

from wordmesh.exceptions import LinkSelfForbiddenError, LinkTargetNotFoundError
from wordmesh.models import SenseLinkKind, SenseWordLink, WordLink, WordLinkKind
from wordmesh.relations import (
    SENSE_LINK_KINDS,
    WORD_LINK_KINDS,
    ordered_pair,
    parse_sense_link_kind,
    parse_word_link_kind,
)
from wordmesh.validation import DEFAULT_PAGE_LIMIT, validate_id, validate_note, validate_page

logger = logging.getLogger(__name__)


def utc_now() -> str:
    """ISO-8601 UTC timestamp with microseconds, sortable as text."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _kinds(kind: Any, parse: Callable[[Any], Any], every: frozenset[str]) -> list[str]:
    """Kind filter as a list of values; ``None`` means every kind."""
    if kind is None:
        return sorted(every)
    return [parse(kind).value]


class AssociationStore(abc.ABC):
    """Owns WordLink and SenseWordLink edges.

    Every write is a merge keyed by the edge's natural identity
    ``(endpoints, kind, user_id)``: writing the same logical edge twice
    yields one edge whose note is the latest non-null value. Deletes are
    by natural key and succeed when the edge is absent.

    Subclasses implement the underscore primitives against a concrete
    graph engine; validation and endpoint ordering live here.
    """

    # ------------------------------------------------------------------
    # Word links
    # ------------------------------------------------------------------

    def upsert_word_link(
        self,
        word_id_a: int,
        word_id_b: int,
        kind: WordLinkKind | str,
        user_id: int,
        note: str | None = None,
    ) -> tuple[WordLink, bool]:
        """Merge a symmetric word link. Returns ``(link, created)``."""
        link_kind = parse_word_link_kind(kind)
        validate_id(word_id_a, "word_id_a")
        validate_id(word_id_b, "word_id_b")
        validate_id(user_id, "user_id")
        if word_id_a == word_id_b:
            raise LinkSelfForbiddenError(f"Cannot link word {word_id_a} to itself")
        clean_note = validate_note(note)
        low, high = ordered_pair(word_id_a, word_id_b)
        link, created = self._merge_word_link(low, high, link_kind, user_id, clean_note, utc_now())
        logger.debug(
            f"{'Created' if created else 'Merged'} word link "
            f"{low}-{high} ({link_kind.value}, user={user_id})"
        )
        return link, created

    def find_word_link(
        self, word_id_a: int, word_id_b: int, kind: WordLinkKind | str, user_id: int,
    ) -> WordLink | None:
        link_kind = parse_word_link_kind(kind)
        if word_id_a == word_id_b:
            return None
        low, high = ordered_pair(word_id_a, word_id_b)
        return self._get_word_link(low, high, link_kind, user_id)

    def list_word_links(
        self,
        word_id: int,
        kind: WordLinkKind | str | None = None,
        limit: int = DEFAULT_PAGE_LIMIT,
        offset: int = 0,
        *,
        user_id: int | None = None,
    ) -> list[WordLink]:
        """Word links touching *word_id* on either side, newest first."""
        kinds = _kinds(kind, parse_word_link_kind, WORD_LINK_KINDS)
        limit, offset = validate_page(limit, offset)
        return self._query_word_links(word_id, kinds, limit, offset, user_id)

    def count_word_links(
        self,
        word_id: int,
        kind: WordLinkKind | str | None = None,
        *,
        user_id: int | None = None,
    ) -> int:
        kinds = _kinds(kind, parse_word_link_kind, WORD_LINK_KINDS)
        return self._count_word_links(word_id, kinds, user_id)

    def delete_word_link(
        self, word_id_a: int, word_id_b: int, kind: WordLinkKind | str, user_id: int,
    ) -> bool:
        """Delete a word link by natural key. Returns False if absent."""
        link_kind = parse_word_link_kind(kind)
        if word_id_a == word_id_b:
            return False
        low, high = ordered_pair(word_id_a, word_id_b)
        deleted = self._delete_word_link(low, high, link_kind, user_id)
        logger.debug(f"Delete word link {low}-{high} ({link_kind.value}, user={user_id}): {deleted}")
        return deleted

    def delete_user_word_links(self, word_id: int, user_id: int) -> int:
        """Remove every word link of *user_id* touching *word_id*."""
        return self._delete_user_word_links(word_id, user_id)

    # ------------------------------------------------------------------
    # Sense links
    # ------------------------------------------------------------------

    def upsert_sense_word_link(
        self,
        sense_id: int,
        target_word_id: int,
        kind: SenseLinkKind | str,
        user_id: int,
        note: str | None = None,
    ) -> tuple[SenseWordLink, bool]:
        """Merge a directed sense-to-word link. Returns ``(link, created)``.

        The sense node must already exist (see ``merge_sense_node``);
        otherwise LinkTargetNotFoundError is raised.
        """
        link_kind = parse_sense_link_kind(kind)
        validate_id(sense_id, "sense_id")
        validate_id(target_word_id, "target_word_id")
        validate_id(user_id, "user_id")
        clean_note = validate_note(note)
        link, created = self._merge_sense_link(
            sense_id, target_word_id, link_kind, user_id, clean_note, utc_now(),
        )
        logger.debug(
            f"{'Created' if created else 'Merged'} sense link "
            f"{sense_id}->{target_word_id} ({link_kind.value}, user={user_id})"
        )
        return link, created

    def find_sense_link(
        self, sense_id: int, target_word_id: int, kind: SenseLinkKind | str, user_id: int,
    ) -> SenseWordLink | None:
        link_kind = parse_sense_link_kind(kind)
        return self._get_sense_link(sense_id, target_word_id, link_kind, user_id)

    def list_sense_links(
        self,
        sense_id: int,
        kind: SenseLinkKind | str | None = None,
        limit: int = DEFAULT_PAGE_LIMIT,
        offset: int = 0,
        *,
        user_id: int | None = None,
    ) -> list[SenseWordLink]:
        """Outgoing links of a sense, newest first."""
        kinds = _kinds(kind, parse_sense_link_kind, SENSE_LINK_KINDS)
        limit, offset = validate_page(limit, offset)
        return self._query_sense_links(sense_id, kinds, limit, offset, user_id)

    def count_sense_links(
        self,
        sense_id: int,
        kind: SenseLinkKind | str | None = None,
        *,
        user_id: int | None = None,
    ) -> int:
        kinds = _kinds(kind, parse_sense_link_kind, SENSE_LINK_KINDS)
        return self._count_sense_links(sense_id, kinds, user_id)

    def delete_sense_link(
        self, sense_id: int, target_word_id: int, kind: SenseLinkKind | str, user_id: int,
    ) -> bool:
        """Delete a sense link by natural key. Returns False if absent."""
        link_kind = parse_sense_link_kind(kind)
        return self._delete_sense_link(sense_id, target_word_id, link_kind, user_id)

    def delete_all_sense_links(self, sense_id: int) -> int:
        """Remove every outgoing edge of a sense, and the sense node.

        Used by cascade cleanup only. Returns the number of edges removed.
        """
        deleted = self._delete_sense_node(sense_id)
        logger.debug(f"Removed {deleted} link(s) of sense {sense_id}")
        return deleted

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def merge_sense_node(self, sense_id: int, user_id: int, word_id: int) -> None:
        """Create the graph node for a sense if it does not exist yet."""
        self._merge_sense_node(sense_id, user_id, word_id)

    def ensure_schema(self) -> None:
        """Create engine-side uniqueness constraints, where supported."""

    def close(self) -> None:
        """Release engine resources."""

    # ------------------------------------------------------------------
    # Engine primitives
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def _merge_word_link(
        self, low: int, high: int, kind: WordLinkKind, user_id: int,
        note: str | None, now: str,
    ) -> tuple[WordLink, bool]: ...

    @abc.abstractmethod
    def _get_word_link(
        self, low: int, high: int, kind: WordLinkKind, user_id: int,
    ) -> WordLink | None: ...

    @abc.abstractmethod
    def _query_word_links(
        self, word_id: int, kinds: Sequence[str], limit: int, offset: int,
        user_id: int | None,
    ) -> list[WordLink]: ...

    @abc.abstractmethod
    def _count_word_links(
        self, word_id: int, kinds: Sequence[str], user_id: int | None,
    ) -> int: ...

    @abc.abstractmethod
    def _delete_word_link(
        self, low: int, high: int, kind: WordLinkKind, user_id: int,
    ) -> bool: ...

    @abc.abstractmethod
    def _delete_user_word_links(self, word_id: int, user_id: int) -> int: ...

    @abc.abstractmethod
    def _merge_sense_link(
        self, sense_id: int, target_word_id: int, kind: SenseLinkKind,
        user_id: int, note: str | None, now: str,
    ) -> tuple[SenseWordLink, bool]: ...

    @abc.abstractmethod
    def _get_sense_link(
        self, sense_id: int, target_word_id: int, kind: SenseLinkKind, user_id: int,
    ) -> SenseWordLink | None: ...

    @abc.abstractmethod
    def _query_sense_links(
        self, sense_id: int, kinds: Sequence[str], limit: int, offset: int,
        user_id: int | None,
    ) -> list[SenseWordLink]: ...

    @abc.abstractmethod
    def _count_sense_links(
        self, sense_id: int, kinds: Sequence[str], user_id: int | None,
    ) -> int: ...

    @abc.abstractmethod
    def _delete_sense_link(
        self, sense_id: int, target_word_id: int, kind: SenseLinkKind, user_id: int,
    ) -> bool: ...

    @abc.abstractmethod
    def _delete_sense_node(self, sense_id: int) -> int: ...

    @abc.abstractmethod
    def _merge_sense_node(self, sense_id: int, user_id: int, word_id: int) -> None: ...


# ---------------------------------------------------------------------------
# In-process backend
# ---------------------------------------------------------------------------

def _word_node(word_id: int) -> tuple[str, int]:
    return ("word", word_id)


def _sense_node(sense_id: int) -> tuple[str, int]:
    return ("sense", sense_id)


class MemoryAssociationStore(AssociationStore):
    """Graph store backed by a ``networkx.MultiDiGraph``.

    Nodes are ``("word", id)`` and ``("sense", id)``; parallel edges are
    keyed by ``(kind, user_id)``, so the edge key plus its endpoints is
    the natural identity. Each primitive runs under one lock, which plays
    the part of the engine's atomic MERGE.
    """

    def __init__(self) -> None:
        self._graph = nx.MultiDiGraph()
        self._lock = threading.Lock()
        self._seq = itertools.count()

    def to_networkx(self) -> nx.MultiDiGraph:
        """A copy of the underlying graph, for inspection."""
        with self._lock:
            return self._graph.copy()

    # -- word links ----------------------------------------------------

    def _merge_word_link(self, low, high, kind, user_id, note, now):
        u, v, key = _word_node(low), _word_node(high), (kind.value, user_id)
        with self._lock:
            self._graph.add_node(u, word_id=low)
            self._graph.add_node(v, word_id=high)
            created = not self._graph.has_edge(u, v, key)
            if created:
                self._graph.add_edge(
                    u, v, key=key, kind=kind.value, user_id=user_id,
                    note=note, created_at=now, seq=next(self._seq),
                )
            elif note is not None:
                self._graph.edges[u, v, key]["note"] = note
            return _to_word_link(u, v, self._graph.edges[u, v, key]), created

    def _get_word_link(self, low, high, kind, user_id):
        u, v, key = _word_node(low), _word_node(high), (kind.value, user_id)
        with self._lock:
            if not self._graph.has_edge(u, v, key):
                return None
            return _to_word_link(u, v, self._graph.edges[u, v, key])

    def _word_edges(self, word_id, kinds, user_id):
        node = _word_node(word_id)
        if node not in self._graph:
            return []
        edges = itertools.chain(
            self._graph.out_edges(node, data=True),
            self._graph.in_edges(node, data=True),
        )
        found = [
            (u, v, data) for u, v, data in edges
            if u[0] == "word" and v[0] == "word"
            and data["kind"] in kinds
            and (user_id is None or data["user_id"] == user_id)
        ]
        found.sort(key=lambda e: (e[2]["created_at"], e[2]["seq"]), reverse=True)
        return found

    def _query_word_links(self, word_id, kinds, limit, offset, user_id):
        with self._lock:
            edges = self._word_edges(word_id, kinds, user_id)
            return [_to_word_link(u, v, d) for u, v, d in edges[offset:offset + limit]]

    def _count_word_links(self, word_id, kinds, user_id):
        with self._lock:
            return len(self._word_edges(word_id, kinds, user_id))

    def _delete_word_link(self, low, high, kind, user_id):
        u, v, key = _word_node(low), _word_node(high), (kind.value, user_id)
        with self._lock:
            if not self._graph.has_edge(u, v, key):
                return False
            self._graph.remove_edge(u, v, key)
            return True

    def _delete_user_word_links(self, word_id, user_id):
        with self._lock:
            node = _word_node(word_id)
            if node not in self._graph:
                return 0
            doomed = [
                (u, v, k) for u, v, k, data in itertools.chain(
                    self._graph.out_edges(node, keys=True, data=True),
                    self._graph.in_edges(node, keys=True, data=True),
                )
                if u[0] == "word" and v[0] == "word" and data["user_id"] == user_id
            ]
            self._graph.remove_edges_from(doomed)
            return len(doomed)

    # -- sense links ---------------------------------------------------

    def _merge_sense_link(self, sense_id, target_word_id, kind, user_id, note, now):
        s, t, key = _sense_node(sense_id), _word_node(target_word_id), (kind.value, user_id)
        with self._lock:
            if s not in self._graph:
                raise LinkTargetNotFoundError(f"Sense node not found: {sense_id!r}")
            self._graph.add_node(t, word_id=target_word_id)
            created = not self._graph.has_edge(s, t, key)
            if created:
                self._graph.add_edge(
                    s, t, key=key, kind=kind.value, user_id=user_id,
                    note=note, created_at=now, seq=next(self._seq),
                )
            elif note is not None:
                self._graph.edges[s, t, key]["note"] = note
            return _to_sense_link(s, t, self._graph.edges[s, t, key]), created

    def _get_sense_link(self, sense_id, target_word_id, kind, user_id):
        s, t, key = _sense_node(sense_id), _word_node(target_word_id), (kind.value, user_id)
        with self._lock:
            if not self._graph.has_edge(s, t, key):
                return None
            return _to_sense_link(s, t, self._graph.edges[s, t, key])

    def _sense_edges(self, sense_id, kinds, user_id):
        node = _sense_node(sense_id)
        if node not in self._graph:
            return []
        found = [
            (u, v, data) for u, v, data in self._graph.out_edges(node, data=True)
            if data["kind"] in kinds
            and (user_id is None or data["user_id"] == user_id)
        ]
        found.sort(key=lambda e: (e[2]["created_at"], e[2]["seq"]), reverse=True)
        return found

    def _query_sense_links(self, sense_id, kinds, limit, offset, user_id):
        with self._lock:
            edges = self._sense_edges(sense_id, kinds, user_id)
            return [_to_sense_link(u, v, d) for u, v, d in edges[offset:offset + limit]]

    def _count_sense_links(self, sense_id, kinds, user_id):
        with self._lock:
            return len(self._sense_edges(sense_id, kinds, user_id))

    def _delete_sense_link(self, sense_id, target_word_id, kind, user_id):
        s, t, key = _sense_node(sense_id), _word_node(target_word_id), (kind.value, user_id)
        with self._lock:
            if not self._graph.has_edge(s, t, key):
                return False
            self._graph.remove_edge(s, t, key)
            return True

    def _delete_sense_node(self, sense_id):
        node = _sense_node(sense_id)
        with self._lock:
            if node not in self._graph:
                return 0
            deleted = self._graph.out_degree(node)
            self._graph.remove_node(node)
            return deleted

    # -- nodes ---------------------------------------------------------

    def _merge_sense_node(self, sense_id, user_id, word_id):
        node = _sense_node(sense_id)
        with self._lock:
            if node not in self._graph:
                self._graph.add_node(node, sense_id=sense_id, user_id=user_id, word_id=word_id)


def _to_word_link(u: tuple[str, int], v: tuple[str, int], data: dict) -> WordLink:
    return WordLink(
        word_id_a=u[1],
        word_id_b=v[1],
        kind=WordLinkKind(data["kind"]),
        user_id=data["user_id"],
        note=data["note"],
        created_at=data["created_at"],
    )


def _to_sense_link(s: tuple[str, int], t: tuple[str, int], data: dict) -> SenseWordLink:
    return SenseWordLink(
        sense_id=s[1],
        target_word_id=t[1],
        kind=SenseLinkKind(data["kind"]),
        user_id=data["user_id"],
        note=data["note"],
        created_at=data["created_at"],
    )
