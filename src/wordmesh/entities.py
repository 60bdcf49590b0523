"""EntityStore: words, memberships and senses in the relational store."""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from wordmesh import db as _db
from wordmesh.canonical import normalize, require_key
from wordmesh.db import modifies_db, reads_db
from wordmesh.exceptions import (
    NotInNetworkError,
    PrimaryConflictError,
    SenseDuplicateError,
    ValidationError,
)
from wordmesh.models import (
    Page,
    RemovedMembership,
    RemovedSense,
    SearchMatch,
    SearchScope,
    SenseOwner,
    UserSense,
    UserWord,
    Word,
)
from wordmesh.search import SearchIndex
from wordmesh.validation import (
    DEFAULT_PAGE_LIMIT,
    normalize_tags,
    validate_id,
    validate_note,
    validate_sense_text,
    validate_word_text,
)

logger = logging.getLogger(__name__)

# Sentinel for "no change" in update methods
_UNSET: Any = type("_UNSET", (), {"__repr__": lambda self: "..."})()

_MAX_KEY_LENGTH = 160

_SENSE_COLUMNS = (
    "id, user_word_id, text, is_primary, sort_order, note, created_at"
)


def _row_to_word(row: sqlite3.Row) -> Word:
    return Word(
        id=row["id"],
        text=row["text"],
        canonical_key=row["canonical_key"],
        created_at=row["created_at"],
    )


def _row_to_sense(row: sqlite3.Row) -> UserSense:
    return UserSense(
        id=row["id"],
        user_word_id=row["user_word_id"],
        text=row["text"],
        is_primary=bool(row["is_primary"]),
        sort_order=row["sort_order"],
        note=row["note"],
        created_at=row["created_at"],
    )


class EntityStore:
    """Owns Word, UserWord and UserSense rows.

    Uniqueness is arbitrated by the table constraints: concurrent upserts
    resolve through conflict-tolerant inserts, never through a
    check-then-insert. One connection is shared by all callers and guarded
    by a re-entrant lock; every mutation runs in a single transaction.

    Mutations that act on user-owned rows accept a keyword ``user_id``;
    when given, a row owned by someone else is reported as
    NotInNetworkError, exactly like a missing row.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        _db.check_schema_version(conn)
        _db.init_db(conn)
        self._lock = threading.RLock()
        self._search = SearchIndex(conn, self._lock)

    @classmethod
    def open(cls, db_path: str | Path = ":memory:", timeout: float = 5.0) -> EntityStore:
        """Connect to *db_path* and initialize the schema."""
        return cls(_db.connect(db_path, timeout=timeout))

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> EntityStore:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Words
    # ------------------------------------------------------------------

    @modifies_db
    def get_or_create_word(self, text: str) -> Word:
        """Return the global word for *text*, creating it on first use.

        The first display text registered for a canonical key is kept;
        later spellings that normalize to the same key return that row.
        """
        display = validate_word_text(text)
        key = require_key(display)
        if len(key) > _MAX_KEY_LENGTH:
            raise ValidationError(
                f"Canonical key too long: {len(key)} characters (max {_MAX_KEY_LENGTH})"
            )
        cur = self._conn.execute(
            "INSERT OR IGNORE INTO words (text, canonical_key) VALUES (?, ?)",
            (display, key),
        )
        if cur.rowcount == 1:
            logger.debug(f"Created word {key!r} (id={cur.lastrowid})")
        return _row_to_word(_db.get_word_row_by_key(self._conn, key))

    @reads_db
    def get_word(self, word_id: int) -> Word | None:
        row = _db.get_word_row(self._conn, word_id)
        return _row_to_word(row) if row else None

    @reads_db
    def find_word(self, text: str) -> Word | None:
        """Look up a word by the canonical key of *text*."""
        key = normalize(text)
        if not key:
            return None
        row = _db.get_word_row_by_key(self._conn, key)
        return _row_to_word(row) if row else None

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------

    @modifies_db
    def upsert_membership(
        self,
        user_id: int,
        word_id: int,
        tags: Iterable[str] | None = None,
        note: str | None = None,
    ) -> tuple[UserWord, bool]:
        """Add *word_id* to the user's network, or return the existing row.

        Returns ``(membership, created)``. On an existing membership,
        *tags* and *note* overwrite the stored values when not None.
        """
        validate_id(user_id, "user_id")
        validate_id(word_id, "word_id")
        clean_tags = normalize_tags(tags) if tags is not None else None
        clean_note = validate_note(note)

        if _db.get_word_row(self._conn, word_id) is None:
            raise NotInNetworkError(f"Word not found: {word_id!r}")

        cur = self._conn.execute(
            "INSERT INTO user_words (user_id, word_id, note) VALUES (?, ?, ?) "
            "ON CONFLICT (user_id, word_id) DO NOTHING",
            (user_id, word_id, clean_note),
        )
        created = cur.rowcount == 1
        row = self._conn.execute(
            "SELECT id FROM user_words WHERE user_id = ? AND word_id = ?",
            (user_id, word_id),
        ).fetchone()
        user_word_id = row["id"]

        if clean_tags is not None:
            _db.replace_tags(self._conn, user_word_id, clean_tags)
        if not created and clean_note is not None:
            self._conn.execute(
                "UPDATE user_words SET note = ? WHERE id = ?",
                (clean_note, user_word_id),
            )
        if created:
            logger.debug(f"User {user_id} joined word {word_id} (user_word_id={user_word_id})")
        return self._fetch_membership(user_word_id), created

    @reads_db
    def get_membership(self, user_word_id: int, *, user_id: int | None = None) -> UserWord | None:
        row = _db.get_membership_row(self._conn, user_word_id)
        if row is None or (user_id is not None and row["user_id"] != user_id):
            return None
        return self._fetch_membership(user_word_id)

    @reads_db
    def find_membership(self, user_id: int, word_id: int) -> UserWord | None:
        row = self._conn.execute(
            "SELECT id FROM user_words WHERE user_id = ? AND word_id = ?",
            (user_id, word_id),
        ).fetchone()
        return self._fetch_membership(row["id"]) if row else None

    @reads_db
    def list_memberships(self, user_id: int) -> list[UserWord]:
        """All memberships of a user, newest first."""
        rows = self._conn.execute(
            "SELECT id FROM user_words WHERE user_id = ? "
            "ORDER BY created_at DESC, id DESC",
            (user_id,),
        ).fetchall()
        return [self._fetch_membership(r["id"]) for r in rows]

    @modifies_db
    def remove_membership(
        self, user_word_id: int, *, user_id: int | None = None,
    ) -> RemovedMembership | None:
        """Delete a membership and its senses.

        Senses are deleted first and their ids collected so the caller can
        clean up their graph edges. Returns None if nothing was deleted.
        """
        row = _db.get_membership_row(self._conn, user_word_id)
        if row is None:
            return None
        self._check_owner(row["user_id"], user_id, f"Membership not found: {user_word_id!r}")

        sense_ids = tuple(
            r["id"] for r in self._conn.execute(
                "SELECT id FROM user_senses WHERE user_word_id = ? ORDER BY id",
                (user_word_id,),
            )
        )
        self._conn.execute("DELETE FROM user_senses WHERE user_word_id = ?", (user_word_id,))
        self._conn.execute("DELETE FROM user_word_tags WHERE user_word_id = ?", (user_word_id,))
        self._conn.execute("DELETE FROM user_words WHERE id = ?", (user_word_id,))
        logger.debug(
            f"Removed membership {user_word_id} with {len(sense_ids)} sense(s)"
        )
        return RemovedMembership(
            user_word_id=user_word_id,
            user_id=row["user_id"],
            word_id=row["word_id"],
            sense_ids=sense_ids,
        )

    # ------------------------------------------------------------------
    # Senses
    # ------------------------------------------------------------------

    @modifies_db
    def add_sense(
        self,
        user_word_id: int,
        text: str,
        is_primary: bool = False,
        sort_order: int | None = None,
        note: str | None = None,
        *,
        exist_ok: bool = False,
        user_id: int | None = None,
    ) -> UserSense:
        """Attach a sense to a membership.

        A primary sense demotes the current primary in the same
        transaction. A duplicate text raises SenseDuplicateError unless
        *exist_ok*, in which case the existing sense is returned as is.
        """
        clean_text = validate_sense_text(text)
        clean_note = validate_note(note)
        if sort_order is not None:
            _check_sort_order(sort_order)
        self._require_membership(user_word_id, user_id)

        if exist_ok:
            existing = self._conn.execute(
                f"SELECT {_SENSE_COLUMNS} FROM user_senses "
                "WHERE user_word_id = ? AND text = ?",
                (user_word_id, clean_text),
            ).fetchone()
            if existing is not None:
                return _row_to_sense(existing)

        if sort_order is None:
            sort_order = self._conn.execute(
                "SELECT COALESCE(MAX(sort_order), -1) + 1 FROM user_senses "
                "WHERE user_word_id = ?",
                (user_word_id,),
            ).fetchone()[0]
        if is_primary:
            self._clear_primary(user_word_id)

        try:
            cur = self._conn.execute(
                "INSERT INTO user_senses "
                "(user_word_id, text, normalized_text, is_primary, sort_order, note) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (user_word_id, clean_text, normalize(clean_text),
                 1 if is_primary else 0, sort_order, clean_note),
            )
        except sqlite3.IntegrityError as e:
            conflict = _sense_conflict(e, user_word_id, clean_text)
            if conflict is None:
                raise
            raise conflict from e
        return _row_to_sense(_db.get_sense_row(self._conn, cur.lastrowid))

    @modifies_db
    def update_sense(
        self,
        sense_id: int,
        *,
        text: str | None = None,
        is_primary: bool | None = None,
        sort_order: int | None = None,
        note: str | None = _UNSET,
        user_id: int | None = None,
    ) -> UserSense:
        """Update a sense. Pass ``note=None`` to clear the note."""
        row = self._require_sense(sense_id, user_id)
        user_word_id = row["user_word_id"]

        updates: list[str] = []
        params: list[Any] = []
        if text is not None:
            clean_text = validate_sense_text(text)
            updates.extend(["text = ?", "normalized_text = ?"])
            params.extend([clean_text, normalize(clean_text)])
        if sort_order is not None:
            _check_sort_order(sort_order)
            updates.append("sort_order = ?")
            params.append(sort_order)
        if note is not _UNSET:
            updates.append("note = ?")
            params.append(validate_note(note))
        if is_primary is not None:
            if is_primary:
                self._clear_primary(user_word_id, keep=sense_id)
            updates.append("is_primary = ?")
            params.append(1 if is_primary else 0)

        if updates:
            params.append(sense_id)
            try:
                self._conn.execute(
                    f"UPDATE user_senses SET {', '.join(updates)} WHERE id = ?",
                    params,
                )
            except sqlite3.IntegrityError as e:
                conflict = _sense_conflict(e, user_word_id, text)
                if conflict is None:
                    raise
                raise conflict from e
        return _row_to_sense(_db.get_sense_row(self._conn, sense_id))

    @modifies_db
    def remove_sense(
        self, sense_id: int, *, user_id: int | None = None,
    ) -> RemovedSense | None:
        """Delete a sense. Returns None if it was already gone."""
        row = _db.get_sense_row(self._conn, sense_id)
        if row is None:
            return None
        owner = self._sense_owner(sense_id)
        self._check_owner(owner.user_id, user_id, f"Sense not found: {sense_id!r}")
        self._conn.execute("DELETE FROM user_senses WHERE id = ?", (sense_id,))
        logger.debug(f"Removed sense {sense_id} from membership {row['user_word_id']}")
        return RemovedSense(
            sense_id=sense_id,
            user_word_id=row["user_word_id"],
            sense=_row_to_sense(row),
        )

    @reads_db
    def get_sense(self, sense_id: int) -> UserSense | None:
        row = _db.get_sense_row(self._conn, sense_id)
        return _row_to_sense(row) if row else None

    @reads_db
    def find_sense(self, user_word_id: int, text: str) -> UserSense | None:
        row = self._conn.execute(
            f"SELECT {_SENSE_COLUMNS} FROM user_senses "
            "WHERE user_word_id = ? AND text = ?",
            (user_word_id, text.strip()),
        ).fetchone()
        return _row_to_sense(row) if row else None

    @reads_db
    def list_senses(self, user_word_id: int) -> list[UserSense]:
        """Senses of a membership ordered by sort_order, then id."""
        rows = self._conn.execute(
            f"SELECT {_SENSE_COLUMNS} FROM user_senses "
            "WHERE user_word_id = ? ORDER BY sort_order, id",
            (user_word_id,),
        ).fetchall()
        return [_row_to_sense(r) for r in rows]

    @reads_db
    def get_sense_owner(self, sense_id: int) -> SenseOwner | None:
        """Resolve the membership, user and word a sense belongs to."""
        return self._sense_owner(sense_id)

    # ------------------------------------------------------------------
    # Consistency checks
    # ------------------------------------------------------------------

    @reads_db
    def existing_word_ids(self, word_ids: Iterable[int]) -> set[int]:
        ids = list(set(word_ids))
        if not ids:
            return set()
        rows = self._conn.execute(
            f"SELECT id FROM words WHERE id IN ({_db.placeholders(ids)})", ids,
        ).fetchall()
        return {r[0] for r in rows}

    @reads_db
    def existing_sense_ids(self, sense_ids: Iterable[int]) -> set[int]:
        ids = list(set(sense_ids))
        if not ids:
            return set()
        rows = self._conn.execute(
            f"SELECT id FROM user_senses WHERE id IN ({_db.placeholders(ids)})", ids,
        ).fetchall()
        return {r[0] for r in rows}

    @reads_db
    def member_word_ids(self, user_id: int, word_ids: Iterable[int]) -> set[int]:
        """The subset of *word_ids* present in the user's network."""
        ids = list(set(word_ids))
        if not ids:
            return set()
        rows = self._conn.execute(
            f"SELECT word_id FROM user_words WHERE user_id = ? "
            f"AND word_id IN ({_db.placeholders(ids)})",
            [user_id, *ids],
        ).fetchall()
        return {r[0] for r in rows}

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

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
        return self._search.search(user_id, query, scope, limit, offset, tag=tag)

    # ------------------------------------------------------------------
    # Internal helpers (callers hold the lock)
    # ------------------------------------------------------------------

    def _fetch_membership(self, user_word_id: int) -> UserWord:
        row = _db.get_membership_row(self._conn, user_word_id)
        return UserWord(
            id=row["id"],
            user_id=row["user_id"],
            word_id=row["word_id"],
            tags=_db.get_tags(self._conn, user_word_id),
            note=row["note"],
            created_at=row["created_at"],
        )

    def _sense_owner(self, sense_id: int) -> SenseOwner | None:
        row = self._conn.execute(
            "SELECT s.id AS sense_id, s.user_word_id, uw.user_id, uw.word_id "
            "FROM user_senses s JOIN user_words uw ON uw.id = s.user_word_id "
            "WHERE s.id = ?",
            (sense_id,),
        ).fetchone()
        if row is None:
            return None
        return SenseOwner(
            sense_id=row["sense_id"],
            user_word_id=row["user_word_id"],
            user_id=row["user_id"],
            word_id=row["word_id"],
        )

    def _require_membership(self, user_word_id: int, user_id: int | None) -> sqlite3.Row:
        row = _db.get_membership_row(self._conn, user_word_id)
        message = f"Membership not found: {user_word_id!r}"
        if row is None:
            raise NotInNetworkError(message)
        self._check_owner(row["user_id"], user_id, message)
        return row

    def _require_sense(self, sense_id: int, user_id: int | None) -> sqlite3.Row:
        row = _db.get_sense_row(self._conn, sense_id)
        message = f"Sense not found: {sense_id!r}"
        if row is None:
            raise NotInNetworkError(message)
        if user_id is not None:
            self._check_owner(self._sense_owner(sense_id).user_id, user_id, message)
        return row

    @staticmethod
    def _check_owner(owner_id: int, user_id: int | None, message: str) -> None:
        if user_id is not None and owner_id != user_id:
            raise NotInNetworkError(message)

    def _clear_primary(self, user_word_id: int, keep: int | None = None) -> None:
        """Demote the current primary sense of a membership."""
        self._conn.execute(
            "UPDATE user_senses SET is_primary = 0 "
            "WHERE user_word_id = ? AND is_primary = 1 AND id IS NOT ?",
            (user_word_id, keep),
        )


def _check_sort_order(sort_order: int) -> None:
    if isinstance(sort_order, bool) or not isinstance(sort_order, int):
        raise ValidationError(f"sort_order must be an integer, got {sort_order!r}")


def _sense_conflict(
    exc: sqlite3.IntegrityError, user_word_id: int, text: str | None,
) -> Exception | None:
    """Translate a user_senses constraint violation into a domain error."""
    message = str(exc)
    if "user_senses.text" in message:
        return SenseDuplicateError(
            f"Sense already exists for membership {user_word_id}: {text!r}"
        )
    if "user_senses.user_word_id" in message:
        return PrimaryConflictError(
            f"Membership {user_word_id} already has a primary sense"
        )
    return None
