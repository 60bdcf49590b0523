"""Database connection, DDL, and low-level helpers for the entity store."""

from __future__ import annotations

import functools
import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from wordmesh.exceptions import StoreUnavailableError, WordmeshError

SCHEMA_VERSION = "1.1"

_F = TypeVar("_F", bound=Callable[..., Any])

# ---------------------------------------------------------------------------
# DDL statements
# ---------------------------------------------------------------------------

_DDL = """
-- Meta table
CREATE TABLE IF NOT EXISTS meta (
    key TEXT NOT NULL,
    value TEXT,
    UNIQUE (key)
);

-- Ids of words, memberships and senses are never reused: graph edges
-- refer to them by value and may outlive the row.

-- Global word anchors
CREATE TABLE IF NOT EXISTS words (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    text TEXT NOT NULL CHECK (length(text) <= 128),
    canonical_key TEXT NOT NULL CHECK (length(canonical_key) BETWEEN 1 AND 160),
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    UNIQUE (canonical_key)
);

-- Per-user memberships
CREATE TABLE IF NOT EXISTS user_words (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    word_id INTEGER NOT NULL REFERENCES words (id),
    note TEXT,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    UNIQUE (user_id, word_id)
);
CREATE INDEX IF NOT EXISTS user_word_user_index ON user_words (user_id);

CREATE TABLE IF NOT EXISTS user_word_tags (
    user_word_id INTEGER NOT NULL REFERENCES user_words (id) ON DELETE CASCADE,
    position INTEGER NOT NULL,
    tag TEXT NOT NULL,
    UNIQUE (user_word_id, tag)
);
CREATE INDEX IF NOT EXISTS user_word_tag_index ON user_word_tags (tag COLLATE NOCASE);

-- Per-user senses
CREATE TABLE IF NOT EXISTS user_senses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_word_id INTEGER NOT NULL REFERENCES user_words (id) ON DELETE CASCADE,
    text TEXT NOT NULL,
    normalized_text TEXT NOT NULL,
    is_primary INTEGER NOT NULL DEFAULT 0 CHECK (is_primary IN (0, 1)),
    sort_order INTEGER NOT NULL DEFAULT 0,
    note TEXT,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now')),
    UNIQUE (user_word_id, text)
);
CREATE INDEX IF NOT EXISTS user_sense_user_word_index ON user_senses (user_word_id);
CREATE UNIQUE INDEX IF NOT EXISTS user_sense_primary_index
    ON user_senses (user_word_id) WHERE is_primary = 1;
"""

# SQLite messages for conditions a retry can clear.
_TRANSIENT_MARKERS = (
    "database is locked",
    "database table is locked",
    "database is busy",
    "unable to open database",
    "disk i/o error",
    "interrupted",
)


def connect(
    db_path: str | Path = ":memory:",
    timeout: float = 5.0,
) -> sqlite3.Connection:
    """Open a database connection with wordmesh PRAGMA settings.

    *timeout* is the busy timeout in seconds; a write blocked longer than
    that fails with "database is locked", which the store reports as
    StoreUnavailableError.
    """
    db_path_str = str(db_path)
    conn = sqlite3.connect(
        db_path_str,
        timeout=timeout,
        check_same_thread=False,
    )
    conn.execute("PRAGMA foreign_keys = ON")
    if db_path_str != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    """Initialize all tables if they don't exist. Set schema version."""
    conn.executescript(_DDL)
    conn.execute(
        "INSERT OR IGNORE INTO meta (key, value) VALUES ('schema_version', ?)",
        (SCHEMA_VERSION,),
    )
    conn.execute(
        "INSERT OR IGNORE INTO meta (key, value) "
        "VALUES ('created_at', strftime('%Y-%m-%dT%H:%M:%f', 'now'))",
    )
    conn.commit()


def check_schema_version(conn: sqlite3.Connection) -> None:
    """Verify the database schema version is compatible."""
    try:
        row = conn.execute(
            "SELECT value FROM meta WHERE key = 'schema_version'"
        ).fetchone()
    except sqlite3.OperationalError:
        # meta table doesn't exist - uninitialized DB
        return
    if row is None:
        return
    version = row[0]
    if version != SCHEMA_VERSION:
        raise WordmeshError(
            f"Incompatible schema version: {version} "
            f"(expected {SCHEMA_VERSION})"
        )


def is_transient(exc: sqlite3.Error) -> bool:
    """True for SQLite errors that a later retry may clear."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------

def get_word_row(conn: sqlite3.Connection, word_id: int) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT id, text, canonical_key, created_at FROM words WHERE id = ?",
        (word_id,),
    ).fetchone()


def get_word_row_by_key(conn: sqlite3.Connection, canonical_key: str) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT id, text, canonical_key, created_at FROM words WHERE canonical_key = ?",
        (canonical_key,),
    ).fetchone()


def get_membership_row(conn: sqlite3.Connection, user_word_id: int) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT id, user_id, word_id, note, created_at FROM user_words WHERE id = ?",
        (user_word_id,),
    ).fetchone()


def get_tags(conn: sqlite3.Connection, user_word_id: int) -> tuple[str, ...]:
    """Tags of a membership, in insertion order."""
    rows = conn.execute(
        "SELECT tag FROM user_word_tags WHERE user_word_id = ? ORDER BY position",
        (user_word_id,),
    ).fetchall()
    return tuple(r[0] for r in rows)


def replace_tags(conn: sqlite3.Connection, user_word_id: int, tags: list[str]) -> None:
    conn.execute("DELETE FROM user_word_tags WHERE user_word_id = ?", (user_word_id,))
    conn.executemany(
        "INSERT INTO user_word_tags (user_word_id, position, tag) VALUES (?, ?, ?)",
        [(user_word_id, i, tag) for i, tag in enumerate(tags)],
    )


def get_sense_row(conn: sqlite3.Connection, sense_id: int) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT id, user_word_id, text, is_primary, sort_order, note, created_at "
        "FROM user_senses WHERE id = ?",
        (sense_id,),
    ).fetchone()


# ---------------------------------------------------------------------------
# Method decorators
# ---------------------------------------------------------------------------

def modifies_db(method: _F) -> _F:
    """Decorator: run a store mutation in one transaction under the store lock.

    Transient sqlite3 errors surface as StoreUnavailableError.
    """

    @functools.wraps(method)
    def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            try:
                with self._conn:
                    return method(self, *args, **kwargs)
            except sqlite3.Error as exc:
                if is_transient(exc):
                    raise StoreUnavailableError(
                        f"Relational store unavailable: {exc}"
                    ) from exc
                raise

    return wrapper  # type: ignore[return-value]


def reads_db(method: _F) -> _F:
    """Decorator: serialize a read on the shared connection."""

    @functools.wraps(method)
    def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            try:
                return method(self, *args, **kwargs)
            except sqlite3.Error as exc:
                if is_transient(exc):
                    raise StoreUnavailableError(
                        f"Relational store unavailable: {exc}"
                    ) from exc
                raise

    return wrapper  # type: ignore[return-value]


def placeholders(values: Any) -> str:
    """``?, ?, ?`` for an IN clause over *values*."""
    return ", ".join("?" for _ in values)
