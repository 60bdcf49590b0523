"""Neo4j-backed AssociationStore."""

from __future__ import annotations

import logging
from typing import Any

from neo4j import Driver, GraphDatabase, Query
from neo4j.exceptions import (
    Neo4jError,
    ServiceUnavailable,
    SessionExpired,
    TransientError,
)

from wordmesh.associations import AssociationStore
from wordmesh.exceptions import LinkTargetNotFoundError, StoreUnavailableError
from wordmesh.models import SenseLinkKind, SenseWordLink, WordLink, WordLinkKind

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Cypher statements
# ---------------------------------------------------------------------------

_CONSTRAINTS = (
    "CREATE CONSTRAINT word_id_unique IF NOT EXISTS "
    "FOR (w:Word) REQUIRE w.word_id IS UNIQUE",
    "CREATE CONSTRAINT user_sense_id_unique IF NOT EXISTS "
    "FOR (s:UserSense) REQUIRE s.sense_id IS UNIQUE",
)

_LINK_FIELDS = (
    "r.kind AS kind, r.user_id AS user_id, r.note AS note, "
    "r.created_at AS created_at"
)

_MERGE_WORD_LINK = f"""
MERGE (a:Word {{word_id: $low}})
MERGE (b:Word {{word_id: $high}})
MERGE (a)-[r:WORD_TO_WORD {{kind: $kind, user_id: $user_id}}]->(b)
ON CREATE SET r.created_at = $now, r.updated_at = $now, r.note = $note
ON MATCH SET r.updated_at = $now, r.note = coalesce($note, r.note)
RETURN a.word_id AS low, b.word_id AS high, {_LINK_FIELDS},
       r.created_at = r.updated_at AS is_new
"""

_GET_WORD_LINK = f"""
MATCH (a:Word {{word_id: $low}})-[r:WORD_TO_WORD {{kind: $kind, user_id: $user_id}}]->(b:Word {{word_id: $high}})
RETURN a.word_id AS low, b.word_id AS high, {_LINK_FIELDS}
"""

_WORD_LINK_MATCH = """
MATCH (a:Word)-[r:WORD_TO_WORD]->(b:Word)
WHERE (a.word_id = $word_id OR b.word_id = $word_id)
  AND r.kind IN $kinds
  AND ($user_id IS NULL OR r.user_id = $user_id)
"""

_LIST_WORD_LINKS = _WORD_LINK_MATCH + f"""
RETURN a.word_id AS low, b.word_id AS high, {_LINK_FIELDS}
ORDER BY r.created_at DESC, low DESC, high DESC
SKIP $offset LIMIT $limit
"""

_COUNT_WORD_LINKS = _WORD_LINK_MATCH + "RETURN count(r) AS total"

_DELETE_WORD_LINK = """
MATCH (:Word {word_id: $low})-[r:WORD_TO_WORD {kind: $kind, user_id: $user_id}]->(:Word {word_id: $high})
DELETE r
RETURN count(r) AS deleted
"""

_DELETE_USER_WORD_LINKS = """
MATCH (:Word {word_id: $word_id})-[r:WORD_TO_WORD {user_id: $user_id}]-(:Word)
DELETE r
RETURN count(r) AS deleted
"""

_MERGE_SENSE_LINK = f"""
MATCH (s:UserSense {{sense_id: $sense_id}})
MERGE (t:Word {{word_id: $target_word_id}})
MERGE (s)-[r:SENSE_TO_WORD {{kind: $kind, user_id: $user_id}}]->(t)
ON CREATE SET r.created_at = $now, r.updated_at = $now, r.note = $note
ON MATCH SET r.updated_at = $now, r.note = coalesce($note, r.note)
RETURN s.sense_id AS sense_id, t.word_id AS target_word_id, {_LINK_FIELDS},
       r.created_at = r.updated_at AS is_new
"""

_GET_SENSE_LINK = f"""
MATCH (s:UserSense {{sense_id: $sense_id}})-[r:SENSE_TO_WORD {{kind: $kind, user_id: $user_id}}]->(t:Word {{word_id: $target_word_id}})
RETURN s.sense_id AS sense_id, t.word_id AS target_word_id, {_LINK_FIELDS}
"""

_SENSE_LINK_MATCH = """
MATCH (s:UserSense {sense_id: $sense_id})-[r:SENSE_TO_WORD]->(t:Word)
WHERE r.kind IN $kinds
  AND ($user_id IS NULL OR r.user_id = $user_id)
"""

_LIST_SENSE_LINKS = _SENSE_LINK_MATCH + f"""
RETURN s.sense_id AS sense_id, t.word_id AS target_word_id, {_LINK_FIELDS}
ORDER BY r.created_at DESC, target_word_id DESC
SKIP $offset LIMIT $limit
"""

_COUNT_SENSE_LINKS = _SENSE_LINK_MATCH + "RETURN count(r) AS total"

_DELETE_SENSE_LINK = """
MATCH (:UserSense {sense_id: $sense_id})-[r:SENSE_TO_WORD {kind: $kind, user_id: $user_id}]->(:Word {word_id: $target_word_id})
DELETE r
RETURN count(r) AS deleted
"""

_DELETE_SENSE_NODE = """
MATCH (s:UserSense {sense_id: $sense_id})
OPTIONAL MATCH (s)-[r:SENSE_TO_WORD]->()
WITH s, count(r) AS deleted
DETACH DELETE s
RETURN deleted
"""

_MERGE_SENSE_NODE = """
MERGE (s:UserSense {sense_id: $sense_id})
ON CREATE SET s.user_id = $user_id, s.word_id = $word_id
"""


class Neo4jAssociationStore(AssociationStore):
    """AssociationStore on Neo4j, using Cypher MERGE for idempotent writes.

    Word links are ``(:Word)-[:WORD_TO_WORD]->(:Word)`` with the lower
    word id as the start node; sense links are
    ``(:UserSense)-[:SENSE_TO_WORD]->(:Word)``. Each call runs as one
    auto-commit query bounded by *timeout* seconds. Connection loss,
    expired sessions, transient engine errors and timeouts surface as
    StoreUnavailableError.
    """

    def __init__(
        self,
        driver: Driver,
        database: str | None = None,
        timeout: float | None = 5.0,
    ) -> None:
        self._driver = driver
        self._database = database
        self._timeout = timeout

    @classmethod
    def connect(
        cls,
        uri: str,
        username: str,
        password: str,
        database: str | None = None,
        timeout: float | None = 5.0,
    ) -> Neo4jAssociationStore:
        driver = GraphDatabase.driver(uri, auth=(username, password))
        return cls(driver, database=database, timeout=timeout)

    def close(self) -> None:
        self._driver.close()

    def ensure_schema(self) -> None:
        for statement in _CONSTRAINTS:
            self._run(statement)
        logger.info("Graph constraints ensured")

    def _run(self, cypher: str, **params: Any) -> list[dict[str, Any]]:
        """Run one auto-commit query and return its records as dicts."""
        try:
            with self._driver.session(database=self._database) as session:
                result = session.run(Query(cypher, timeout=self._timeout), params)
                return [record.data() for record in result]
        except (ServiceUnavailable, SessionExpired, TransientError) as exc:
            raise StoreUnavailableError(f"Graph store unavailable: {exc}") from exc
        except Neo4jError as exc:
            if "TransactionTimedOut" in (exc.code or ""):
                raise StoreUnavailableError(f"Graph query timed out: {exc}") from exc
            raise

    def _single(self, cypher: str, **params: Any) -> dict[str, Any] | None:
        records = self._run(cypher, **params)
        return records[0] if records else None

    # -- word links ----------------------------------------------------

    def _merge_word_link(self, low, high, kind, user_id, note, now):
        record = self._single(
            _MERGE_WORD_LINK, low=low, high=high, kind=kind.value,
            user_id=user_id, note=note, now=now,
        )
        return _to_word_link(record), bool(record["is_new"])

    def _get_word_link(self, low, high, kind, user_id):
        record = self._single(
            _GET_WORD_LINK, low=low, high=high, kind=kind.value, user_id=user_id,
        )
        return _to_word_link(record) if record else None

    def _query_word_links(self, word_id, kinds, limit, offset, user_id):
        records = self._run(
            _LIST_WORD_LINKS, word_id=word_id, kinds=list(kinds),
            user_id=user_id, limit=limit, offset=offset,
        )
        return [_to_word_link(r) for r in records]

    def _count_word_links(self, word_id, kinds, user_id):
        record = self._single(
            _COUNT_WORD_LINKS, word_id=word_id, kinds=list(kinds), user_id=user_id,
        )
        return record["total"] if record else 0

    def _delete_word_link(self, low, high, kind, user_id):
        record = self._single(
            _DELETE_WORD_LINK, low=low, high=high, kind=kind.value, user_id=user_id,
        )
        return bool(record and record["deleted"])

    def _delete_user_word_links(self, word_id, user_id):
        record = self._single(_DELETE_USER_WORD_LINKS, word_id=word_id, user_id=user_id)
        return record["deleted"] if record else 0

    # -- sense links ---------------------------------------------------

    def _merge_sense_link(self, sense_id, target_word_id, kind, user_id, note, now):
        record = self._single(
            _MERGE_SENSE_LINK, sense_id=sense_id, target_word_id=target_word_id,
            kind=kind.value, user_id=user_id, note=note, now=now,
        )
        if record is None:
            raise LinkTargetNotFoundError(f"Sense node not found: {sense_id!r}")
        return _to_sense_link(record), bool(record["is_new"])

    def _get_sense_link(self, sense_id, target_word_id, kind, user_id):
        record = self._single(
            _GET_SENSE_LINK, sense_id=sense_id, target_word_id=target_word_id,
            kind=kind.value, user_id=user_id,
        )
        return _to_sense_link(record) if record else None

    def _query_sense_links(self, sense_id, kinds, limit, offset, user_id):
        records = self._run(
            _LIST_SENSE_LINKS, sense_id=sense_id, kinds=list(kinds),
            user_id=user_id, limit=limit, offset=offset,
        )
        return [_to_sense_link(r) for r in records]

    def _count_sense_links(self, sense_id, kinds, user_id):
        record = self._single(
            _COUNT_SENSE_LINKS, sense_id=sense_id, kinds=list(kinds), user_id=user_id,
        )
        return record["total"] if record else 0

    def _delete_sense_link(self, sense_id, target_word_id, kind, user_id):
        record = self._single(
            _DELETE_SENSE_LINK, sense_id=sense_id, target_word_id=target_word_id,
            kind=kind.value, user_id=user_id,
        )
        return bool(record and record["deleted"])

    def _delete_sense_node(self, sense_id):
        record = self._single(_DELETE_SENSE_NODE, sense_id=sense_id)
        return record["deleted"] if record else 0

    # -- nodes ---------------------------------------------------------

    def _merge_sense_node(self, sense_id, user_id, word_id):
        self._run(_MERGE_SENSE_NODE, sense_id=sense_id, user_id=user_id, word_id=word_id)


def _to_word_link(record: dict[str, Any]) -> WordLink:
    return WordLink(
        word_id_a=record["low"],
        word_id_b=record["high"],
        kind=WordLinkKind(record["kind"]),
        user_id=record["user_id"],
        note=record["note"],
        created_at=record["created_at"],
    )


def _to_sense_link(record: dict[str, Any]) -> SenseWordLink:
    return SenseWordLink(
        sense_id=record["sense_id"],
        target_word_id=record["target_word_id"],
        kind=SenseLinkKind(record["kind"]),
        user_id=record["user_id"],
        note=record["note"],
        created_at=record["created_at"],
    )
