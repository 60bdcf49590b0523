"""ConsistencyCoordinator: the service surface over both stores."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from wordmesh.associations import AssociationStore, MemoryAssociationStore
from wordmesh.canonical import require_key
from wordmesh.config import LimitsConfig, Settings
from wordmesh.entities import _UNSET, EntityStore
from wordmesh.exceptions import (
    AlreadyExistsError,
    LinkExistsError,
    LinkLimitExceededError,
    LinkSelfForbiddenError,
    LinkTargetNotFoundError,
    NotInNetworkError,
    StoreUnavailableError,
    ValidationError,
)
from wordmesh.models import (
    EndpointType,
    LinkView,
    Page,
    RemovedMembership,
    SearchMatch,
    SearchScope,
    SenseInput,
    SenseWordLink,
    UserSense,
    UserWordView,
    Word,
    WordLink,
)
from wordmesh.neo4j_store import Neo4jAssociationStore
from wordmesh.relations import parse_link_kind, parse_sense_link_kind, parse_word_link_kind
from wordmesh.retry import RetryPolicy
from wordmesh.validation import (
    DEFAULT_PAGE_LIMIT,
    normalize_tags,
    validate_id,
    validate_note,
    validate_page,
    validate_sense_text,
    validate_word_text,
)

logger = logging.getLogger(__name__)
drift_logger = logging.getLogger("wordmesh.drift")


def _endpoint_type(value: EndpointType | str) -> EndpointType:
    try:
        return EndpointType(value)
    except ValueError:
        raise ValidationError(f"Invalid endpoint type: {value!r}") from None


def _sense_input(value: SenseInput | str | None) -> SenseInput | None:
    if value is None or isinstance(value, SenseInput):
        return value
    if isinstance(value, str):
        return SenseInput(text=value)
    raise ValidationError(f"first_sense must be text or SenseInput, got {type(value).__name__}")


def _word_link_view(
    link: WordLink, *, created: bool = False, target_in_network: bool = True,
) -> LinkView:
    return LinkView(
        endpoint_type=EndpointType.WORD,
        kind=link.kind.value,
        user_id=link.user_id,
        source_id=link.word_id_a,
        target_id=link.word_id_b,
        note=link.note,
        created_at=link.created_at,
        source_word_id=link.word_id_a,
        target_in_network=target_in_network,
        created=created,
    )


def _sense_link_view(
    link: SenseWordLink,
    source_word_id: int | None,
    *,
    created: bool = False,
    auto_joined: bool = False,
    target_in_network: bool = True,
) -> LinkView:
    return LinkView(
        endpoint_type=EndpointType.SENSE,
        kind=link.kind.value,
        user_id=link.user_id,
        source_id=link.sense_id,
        target_id=link.target_word_id,
        note=link.note,
        created_at=link.created_at,
        source_word_id=source_word_id,
        target_in_network=target_in_network,
        created=created,
        auto_joined=auto_joined,
    )


class ConsistencyCoordinator:
    """Sequences multi-store operations as idempotent sagas.

    The entity store is written first and the graph second. Every step is
    an upsert, a merge or a delete-if-exists, so a failed saga is repaired
    by running it again. The one undo step removes a sense link written
    after its sense was deleted concurrently. Steps that fail with
    StoreUnavailableError are retried under the configured policy, while
    validation and invariant errors surface immediately. After the first
    failed step the remaining steps are skipped.

    Graph edges that outlive their entities (ConsistencyDrift) are dropped
    from read results and logged on the ``wordmesh.drift`` logger.

    Callers are trusted: ``user_id`` must already be authenticated.
    """

    def __init__(
        self,
        entities: EntityStore,
        associations: AssociationStore,
        *,
        retry: RetryPolicy | None = None,
        limits: LimitsConfig | None = None,
    ) -> None:
        self._entities = entities
        self._associations = associations
        self._retry = retry or RetryPolicy()
        self._limits = limits or LimitsConfig()

    @classmethod
    def from_settings(cls, settings: Settings) -> ConsistencyCoordinator:
        """Open both stores as configured."""
        entities = EntityStore.open(
            settings.database.path, timeout=settings.database.timeout_seconds,
        )
        graph = settings.graph
        if graph.backend == "neo4j":
            associations: AssociationStore = Neo4jAssociationStore.connect(
                graph.uri,
                graph.username,
                graph.password,
                database=graph.database,
                timeout=graph.timeout_seconds,
            )
        else:
            associations = MemoryAssociationStore()
        associations.ensure_schema()
        logger.info(
            f"Opened wordmesh stores (database={settings.database.path}, "
            f"graph={graph.backend})"
        )
        return cls(
            entities,
            associations,
            retry=RetryPolicy(settings.retry),
            limits=settings.limits,
        )

    def close(self) -> None:
        self._associations.close()
        self._entities.close()

    def __enter__(self) -> ConsistencyCoordinator:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Network membership
    # ------------------------------------------------------------------

    def add_to_network(
        self,
        user_id: int,
        text: str,
        tags: Iterable[str] | None = None,
        note: str | None = None,
        first_sense: SenseInput | str | None = None,
        *,
        exist_ok: bool = True,
    ) -> UserWordView:
        """Add a word to the user's network, creating the global word if needed.

        Steps: get_or_create_word, upsert_membership, then an optional
        first sense. Repeating the call returns the same membership with
        ``created=False``; with ``exist_ok=False`` it raises
        AlreadyExistsError carrying the existing ``user_word_id``.
        """
        validate_id(user_id, "user_id")
        require_key(validate_word_text(text))
        clean_tags = normalize_tags(tags) if tags is not None else None
        clean_note = validate_note(note)
        sense = _sense_input(first_sense)
        if sense is not None:
            validate_sense_text(sense.text)
            validate_note(sense.note)

        word = self._retry.call(self._entities.get_or_create_word, text)
        if exist_ok:
            membership, created = self._retry.call(
                self._entities.upsert_membership, user_id, word.id, clean_tags, clean_note,
            )
        else:
            membership, created = self._retry.call(
                self._entities.upsert_membership, user_id, word.id,
            )
            if not created:
                raise AlreadyExistsError(
                    f"Word already in network: {word.canonical_key!r}",
                    user_word_id=membership.id,
                )
            if clean_tags is not None or clean_note is not None:
                self._retry.call(
                    self._entities.upsert_membership, user_id, word.id, clean_tags, clean_note,
                )

        if sense is not None:
            self._retry.call(
                self._entities.add_sense,
                membership.id,
                sense.text,
                sense.is_primary,
                sense.sort_order,
                sense.note,
                exist_ok=True,
            )

        logger.info(
            f"User {user_id} {'added' if created else 're-added'} "
            f"{word.canonical_key!r} (user_word_id={membership.id})"
        )
        return self._view(membership.id, created)

    def remove_from_network(self, user_id: int, user_word_id: int) -> RemovedMembership:
        """Remove a membership, its senses, and their graph edges.

        The relational delete runs first; graph cleanup follows. If the
        cleanup cannot complete, the leftover edges are orphans (filtered
        at read time), they are logged for reconciliation and
        StoreUnavailableError is raised with their ids in ``details``.
        """
        removed = self._retry.call(
            self._entities.remove_membership, user_word_id, user_id=user_id,
        )
        if removed is None:
            raise NotInNetworkError(f"Membership not found: {user_word_id!r}")
        self._cleanup_graph(removed.sense_ids, word_id=removed.word_id, user_id=user_id)
        logger.info(
            f"User {user_id} removed user_word_id={user_word_id} "
            f"({len(removed.sense_ids)} sense(s))"
        )
        return removed

    def get_network_word(self, user_id: int, user_word_id: int) -> UserWordView:
        membership = self._entities.get_membership(user_word_id, user_id=user_id)
        if membership is None:
            raise NotInNetworkError(f"Membership not found: {user_word_id!r}")
        return self._view(membership.id)

    def find_word(self, text: str) -> Word | None:
        """Look up a global word by text, whoever's network it is in."""
        return self._entities.find_word(text)

    def find_network_word(self, user_id: int, text: str) -> UserWordView | None:
        """Resolve word text to the user's membership, if any."""
        word = self._entities.find_word(text)
        if word is None:
            return None
        membership = self._entities.find_membership(user_id, word.id)
        return self._view(membership.id) if membership else None

    def list_network(self, user_id: int) -> list[UserWordView]:
        return [self._view(m.id) for m in self._entities.list_memberships(user_id)]

    # ------------------------------------------------------------------
    # Senses
    # ------------------------------------------------------------------

    def add_sense(
        self,
        user_id: int,
        user_word_id: int,
        text: str,
        is_primary: bool = False,
        sort_order: int | None = None,
        note: str | None = None,
    ) -> UserSense:
        """Attach a sense. Not retried: a strict insert is not idempotent."""
        sense = self._entities.add_sense(
            user_word_id, text, is_primary, sort_order, note, user_id=user_id,
        )
        logger.info(f"User {user_id} added sense {sense.id} to user_word_id={user_word_id}")
        return sense

    def update_sense(
        self,
        user_id: int,
        sense_id: int,
        *,
        text: str | None = None,
        is_primary: bool | None = None,
        sort_order: int | None = None,
        note: str | None = _UNSET,
    ) -> UserSense:
        return self._retry.call(
            self._entities.update_sense,
            sense_id,
            text=text,
            is_primary=is_primary,
            sort_order=sort_order,
            note=note,
            user_id=user_id,
        )

    def remove_sense(self, user_id: int, sense_id: int) -> UserSense | None:
        """Delete a sense and its graph edges.

        Deleting an absent sense is a no-op that still re-runs graph
        cleanup, which repairs an earlier attempt that failed midway.
        Returns the deleted sense, or None if it was already gone.
        """
        removed = self._retry.call(self._entities.remove_sense, sense_id, user_id=user_id)
        self._cleanup_graph([sense_id])
        if removed is not None:
            logger.info(f"User {user_id} removed sense {sense_id}")
            return removed.sense
        return None

    def find_sense(self, user_id: int, user_word_id: int, text: str) -> UserSense | None:
        if self._entities.get_membership(user_word_id, user_id=user_id) is None:
            raise NotInNetworkError(f"Membership not found: {user_word_id!r}")
        return self._entities.find_sense(user_word_id, text)

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    def create_word_link(
        self,
        user_id: int,
        word_id_a: int,
        word_id_b: int,
        kind: str,
        note: str | None = None,
        *,
        exist_ok: bool = True,
    ) -> LinkView:
        """Link two words for this user. No relational side effect."""
        validate_id(user_id, "user_id")
        link_kind = parse_word_link_kind(kind)
        if word_id_a == word_id_b:
            raise LinkSelfForbiddenError(f"Cannot link word {word_id_a} to itself")
        validate_note(note)

        existing_words = self._retry.call(
            self._entities.existing_word_ids, [word_id_a, word_id_b],
        )
        for word_id in (word_id_a, word_id_b):
            if word_id not in existing_words:
                raise LinkTargetNotFoundError(f"Word not found: {word_id!r}")

        existing = self._retry.call(
            self._associations.find_word_link, word_id_a, word_id_b, link_kind, user_id,
        )
        if existing is not None and not exist_ok:
            raise LinkExistsError(
                f"Word link already exists: {existing.word_id_a}-{existing.word_id_b} "
                f"({link_kind.value})"
            )
        if existing is None:
            for word_id in (word_id_a, word_id_b):
                self._check_limit(
                    self._associations.count_word_links,
                    word_id,
                    user_id,
                    self._limits.max_links_per_word,
                    f"word {word_id}",
                )

        link, created = self._retry.call(
            self._associations.upsert_word_link,
            word_id_a, word_id_b, link_kind, user_id, note,
        )
        return _word_link_view(link, created=created)

    def create_sense_word_link(
        self,
        user_id: int,
        sense_id: int,
        target_word_id: int,
        kind: str,
        note: str | None = None,
        *,
        exist_ok: bool = True,
    ) -> LinkView:
        """Link one of the user's senses to a word.

        The target word joins the user's network if it is not there yet
        (auto-join). If the graph write then fails the membership stays,
        the error is raised, and the call can simply be repeated.
        """
        validate_id(user_id, "user_id")
        link_kind = parse_sense_link_kind(kind)
        validate_note(note)

        owner = self._retry.call(self._entities.get_sense_owner, sense_id)
        if owner is None or owner.user_id != user_id:
            raise NotInNetworkError(f"Sense not found: {sense_id!r}")
        if target_word_id == owner.word_id:
            raise LinkSelfForbiddenError(
                f"Sense {sense_id} cannot link to its own word {target_word_id}"
            )
        if self._retry.call(self._entities.get_word, target_word_id) is None:
            raise LinkTargetNotFoundError(f"Word not found: {target_word_id!r}")

        existing = self._retry.call(
            self._associations.find_sense_link, sense_id, target_word_id, link_kind, user_id,
        )
        if existing is not None and not exist_ok:
            raise LinkExistsError(
                f"Sense link already exists: {sense_id}->{target_word_id} "
                f"({link_kind.value})"
            )
        if existing is None:
            self._check_limit(
                self._associations.count_sense_links,
                sense_id,
                user_id,
                self._limits.max_links_per_sense,
                f"sense {sense_id}",
            )

        _, auto_joined = self._retry.call(
            self._entities.upsert_membership, user_id, target_word_id,
        )
        if auto_joined:
            logger.info(f"User {user_id} auto-joined word {target_word_id} via sense {sense_id}")
        self._retry.call(
            self._associations.merge_sense_node, sense_id, user_id, owner.word_id,
        )
        link, created = self._retry.call(
            self._associations.upsert_sense_word_link,
            sense_id, target_word_id, link_kind, user_id, note,
        )
        if not self._retry.call(self._entities.existing_sense_ids, [sense_id]):
            # removed between the owner check and the graph writes
            self._report_drift(
                "sense removed while its link was written",
                sense_id=sense_id, target_word_id=target_word_id,
                kind=link_kind.value, user_id=user_id,
            )
            self._cleanup_graph([sense_id])
            raise NotInNetworkError(f"Sense not found: {sense_id!r}")
        return _sense_link_view(
            link, owner.word_id, created=created, auto_joined=auto_joined,
        )

    def list_links(
        self,
        user_id: int,
        endpoint_type: EndpointType | str,
        endpoint_id: int,
        kind: str | None = None,
        limit: int = DEFAULT_PAGE_LIMIT,
        offset: int = 0,
    ) -> Page[LinkView]:
        """List the user's links at a word or sense, newest first.

        Edges whose entities no longer exist are dropped and logged.
        ``total`` is the graph count less the edges dropped from this page.
        """
        endpoint = _endpoint_type(endpoint_type)
        limit, offset = validate_page(limit, offset)
        if endpoint is EndpointType.WORD:
            return self._list_word_links(user_id, endpoint_id, kind, limit, offset)
        return self._list_sense_links(user_id, endpoint_id, kind, limit, offset)

    def delete_link(
        self,
        user_id: int,
        endpoint_type: EndpointType | str,
        source_id: int,
        target_id: int,
        kind: str,
    ) -> bool:
        """Delete one of the user's links by natural key.

        Returns False when there was nothing to delete.
        """
        endpoint = _endpoint_type(endpoint_type)
        link_kind = parse_link_kind(endpoint, kind)
        if endpoint is EndpointType.WORD:
            return self._retry.call(
                self._associations.delete_word_link, source_id, target_id, link_kind, user_id,
            )
        owner = self._retry.call(self._entities.get_sense_owner, source_id)
        if owner is not None and owner.user_id != user_id:
            raise NotInNetworkError(f"Sense not found: {source_id!r}")
        return self._retry.call(
            self._associations.delete_sense_link, source_id, target_id, link_kind, user_id,
        )

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
        return self._retry.call(
            self._entities.search, user_id, query, scope, limit, offset, tag=tag,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _view(self, user_word_id: int, created: bool = False) -> UserWordView:
        membership = self._entities.get_membership(user_word_id)
        if membership is None:
            raise NotInNetworkError(f"Membership not found: {user_word_id!r}")
        return UserWordView(
            membership=membership,
            word=self._entities.get_word(membership.word_id),
            senses=tuple(self._entities.list_senses(user_word_id)),
            created=created,
        )

    def _check_limit(self, count, endpoint_id, user_id, maximum, label) -> None:
        if not maximum:
            return
        current = self._retry.call(count, endpoint_id, user_id=user_id)
        if current >= maximum:
            raise LinkLimitExceededError(
                f"Link limit reached for {label}: {current} (max {maximum})"
            )

    def _cleanup_graph(
        self,
        sense_ids: Iterable[int],
        *,
        word_id: int | None = None,
        user_id: int | None = None,
    ) -> None:
        """Remove graph edges of deleted senses, then the user's word links."""
        pending = list(sense_ids)
        try:
            while pending:
                self._retry.call(self._associations.delete_all_sense_links, pending[0])
                pending.pop(0)
            if word_id is not None and user_id is not None:
                self._retry.call(self._associations.delete_user_word_links, word_id, user_id)
        except StoreUnavailableError as exc:
            details = {"orphaned_sense_ids": pending, "word_id": word_id, "user_id": user_id}
            drift_logger.warning(
                f"Graph cleanup incomplete; orphaned sense ids {pending} "
                f"(word_id={word_id}, user_id={user_id}): {exc}",
                extra={"drift": details},
            )
            raise StoreUnavailableError(
                "Graph cleanup incomplete", details=details,
            ) from exc

    def _list_word_links(self, user_id, word_id, kind, limit, offset) -> Page[LinkView]:
        links = self._retry.call(
            self._associations.list_word_links, word_id, kind, limit, offset, user_id=user_id,
        )
        total = self._retry.call(
            self._associations.count_word_links, word_id, kind, user_id=user_id,
        )
        endpoints = {w for link in links for w in (link.word_id_a, link.word_id_b)}
        existing = self._entities.existing_word_ids(endpoints)
        members = self._entities.member_word_ids(user_id, endpoints)

        items = []
        for link in links:
            if link.word_id_a not in existing or link.word_id_b not in existing:
                self._report_drift(
                    "word link references a missing word",
                    word_id_a=link.word_id_a, word_id_b=link.word_id_b,
                    kind=link.kind.value, user_id=link.user_id,
                )
                continue
            items.append(_word_link_view(
                link, target_in_network=link.other(word_id) in members,
            ))
        dropped = len(links) - len(items)
        return Page(items=tuple(items), limit=limit, offset=offset, total=total - dropped)

    def _list_sense_links(self, user_id, sense_id, kind, limit, offset) -> Page[LinkView]:
        owner = self._entities.get_sense_owner(sense_id)
        if owner is not None and owner.user_id != user_id:
            raise NotInNetworkError(f"Sense not found: {sense_id!r}")
        links = self._retry.call(
            self._associations.list_sense_links, sense_id, kind, limit, offset, user_id=user_id,
        )
        total = self._retry.call(
            self._associations.count_sense_links, sense_id, kind, user_id=user_id,
        )
        targets = {link.target_word_id for link in links}
        existing = self._entities.existing_word_ids(targets)
        members = self._entities.member_word_ids(user_id, targets)

        items = []
        for link in links:
            if owner is None or link.target_word_id not in existing:
                self._report_drift(
                    "sense link references a missing entity",
                    sense_id=link.sense_id, target_word_id=link.target_word_id,
                    kind=link.kind.value, user_id=link.user_id,
                )
                continue
            items.append(_sense_link_view(
                link, owner.word_id,
                target_in_network=link.target_word_id in members,
            ))
        dropped = len(links) - len(items)
        return Page(items=tuple(items), limit=limit, offset=offset, total=total - dropped)

    @staticmethod
    def _report_drift(message: str, **fields: Any) -> None:
        drift_logger.warning(
            f"Consistency drift: {message} {fields}", extra={"drift": fields},
        )
