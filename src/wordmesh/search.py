"""SearchIndex: paginated lookup over a user's memberships and senses."""

from __future__ import annotations

import logging
import sqlite3
import threading
from typing import Any

from wordmesh import db as _db
from wordmesh.canonical import normalize
from wordmesh.db import reads_db
from wordmesh.exceptions import ValidationError
from wordmesh.models import MatchField, Page, SearchMatch, SearchScope
from wordmesh.validation import DEFAULT_PAGE_LIMIT, normalize_tags, validate_page

logger = logging.getLogger(__name__)

# Relevance ranks; lower sorts first.
RANK_WORD_EXACT = 0
RANK_WORD_PREFIX = 1
RANK_WORD_SUBSTRING = 2
RANK_SENSE_EXACT = 3
RANK_SENSE_PREFIX = 4
RANK_SENSE_SUBSTRING = 5

_WORD_RANK_SQL = f"""
    CASE
        WHEN w.canonical_key = :q THEN {RANK_WORD_EXACT}
        WHEN substr(w.canonical_key, 1, length(:q)) = :q THEN {RANK_WORD_PREFIX}
        WHEN instr(w.canonical_key, :q) > 0 THEN {RANK_WORD_SUBSTRING}
    END
"""

_SENSE_RANK_SQL = f"""
    (SELECT MIN(
        CASE
            WHEN s.normalized_text = :q THEN {RANK_SENSE_EXACT}
            WHEN substr(s.normalized_text, 1, length(:q)) = :q THEN {RANK_SENSE_PREFIX}
            WHEN instr(s.normalized_text, :q) > 0 THEN {RANK_SENSE_SUBSTRING}
        END)
     FROM user_senses s WHERE s.user_word_id = uw.id)
"""

_TAG_FILTER_SQL = (
    " AND EXISTS (SELECT 1 FROM user_word_tags t "
    "WHERE t.user_word_id = uw.id AND t.tag = :tag COLLATE NOCASE)"
)


class SearchIndex:
    """Read path over the entity store.

    Matching is prefix/substring over canonical text: the query is
    normalized exactly like word text, so ``"Memory Storage"`` and
    ``"memory-storage"`` find the same rows. Results are ordered by
    relevance (word matches before sense matches, exact before prefix
    before substring), then newest membership first.
    """

    def __init__(self, conn: sqlite3.Connection, lock: threading.RLock) -> None:
        self._conn = conn
        self._lock = lock

    @reads_db
    def search(
        self,
        user_id: int,
        query: str | None = None,
        scope: SearchScope | str = SearchScope.BOTH,
        limit: int = DEFAULT_PAGE_LIMIT,
        offset: int = 0,
        *,
        tag: str | None = None,
    ) -> Page[SearchMatch]:
        limit, offset = validate_page(limit, offset)
        try:
            scope = SearchScope(scope)
        except ValueError:
            raise ValidationError(f"Invalid search scope: {scope!r}") from None

        params: dict[str, Any] = {"user_id": user_id}
        tag_sql = ""
        if tag is not None:
            params["tag"] = normalize_tags([tag])[0]
            tag_sql = _TAG_FILTER_SQL

        needle = normalize(query) if query else ""
        if query and query.strip() and not needle:
            # Punctuation-only queries cannot match any canonical text.
            return Page(items=(), limit=limit, offset=offset, total=0)

        if needle:
            params["q"] = needle
            word_rank = _WORD_RANK_SQL if scope is not SearchScope.SENSE else "NULL"
            sense_rank = _SENSE_RANK_SQL if scope is not SearchScope.WORD else "NULL"
        else:
            word_rank = sense_rank = "NULL"

        inner = (
            "SELECT uw.id AS user_word_id, uw.word_id, w.text, w.canonical_key, "
            f"uw.created_at, {word_rank} AS word_rank, {sense_rank} AS sense_rank "
            "FROM user_words uw JOIN words w ON w.id = uw.word_id "
            f"WHERE uw.user_id = :user_id{tag_sql}"
        )
        ranked = (
            "SELECT *, COALESCE(word_rank, sense_rank) AS relevance "
            f"FROM ({inner})"
        )
        if needle:
            ranked += " WHERE COALESCE(word_rank, sense_rank) IS NOT NULL"

        total = self._conn.execute(
            f"SELECT COUNT(*) FROM ({ranked})", params,
        ).fetchone()[0]
        rows = self._conn.execute(
            f"{ranked} ORDER BY relevance, created_at DESC, user_word_id DESC "
            "LIMIT :limit OFFSET :offset",
            {**params, "limit": limit, "offset": offset},
        ).fetchall()

        sense_hits = self._matching_senses(
            [r["user_word_id"] for r in rows], needle,
        ) if needle and scope is not SearchScope.WORD else {}

        items = tuple(
            SearchMatch(
                user_word_id=r["user_word_id"],
                word_id=r["word_id"],
                text=r["text"],
                canonical_key=r["canonical_key"],
                tags=_db.get_tags(self._conn, r["user_word_id"]),
                matched_on=_matched_on(r, needle),
                relevance=r["relevance"] if r["relevance"] is not None else 0,
                created_at=r["created_at"],
                sense_ids=sense_hits.get(r["user_word_id"], ()),
            )
            for r in rows
        )
        logger.debug(
            f"Search user={user_id} q={needle!r} scope={scope.value}: "
            f"{len(items)} of {total}"
        )
        return Page(items=items, limit=limit, offset=offset, total=total)

    def _matching_senses(
        self, user_word_ids: list[int], needle: str,
    ) -> dict[int, tuple[int, ...]]:
        """Sense ids whose text contains *needle*, grouped by membership."""
        if not user_word_ids:
            return {}
        rows = self._conn.execute(
            "SELECT id, user_word_id FROM user_senses "
            f"WHERE user_word_id IN ({_db.placeholders(user_word_ids)}) "
            "AND instr(normalized_text, ?) > 0 ORDER BY sort_order, id",
            [*user_word_ids, needle],
        ).fetchall()
        hits: dict[int, list[int]] = {}
        for row in rows:
            hits.setdefault(row["user_word_id"], []).append(row["id"])
        return {k: tuple(v) for k, v in hits.items()}


def _matched_on(row: sqlite3.Row, needle: str) -> MatchField:
    if not needle:
        return MatchField.ALL
    if row["word_rank"] is not None:
        return MatchField.WORD
    return MatchField.SENSE
