"""Tests for the Neo4j association store against a mocked driver."""

from unittest.mock import MagicMock

import pytest
from neo4j.exceptions import ServiceUnavailable, SessionExpired

from wordmesh.exceptions import LinkTargetNotFoundError, StoreUnavailableError
from wordmesh.models import SenseLinkKind, WordLinkKind
from wordmesh.neo4j_store import Neo4jAssociationStore


class FakeRecord:
    def __init__(self, **values):
        self._values = values

    def data(self):
        return dict(self._values)


def _link_record(**overrides):
    values = dict(
        low=2, high=9, kind="similar_form", user_id=1, note=None,
        created_at="2026-01-01T00:00:00.000000+00:00", is_new=True,
    )
    values.update(overrides)
    return FakeRecord(**values)


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def store(session):
    driver = MagicMock()
    driver.session.return_value.__enter__.return_value = session
    return Neo4jAssociationStore(driver, database="wordmesh", timeout=2.5)


def _last_call(session):
    query, params = session.run.call_args.args
    return query, params


class TestWordLinks:

    def test_merge_orders_endpoints(self, store, session):
        session.run.return_value = [_link_record()]
        link, created = store.upsert_word_link(9, 2, "similar_form", user_id=1)
        query, params = _last_call(session)
        assert "MERGE" in query.text
        assert query.timeout == 2.5
        assert (params["low"], params["high"]) == (2, 9)
        assert params["kind"] == "similar_form"
        assert created
        assert link.kind is WordLinkKind.SIMILAR_FORM
        assert (link.word_id_a, link.word_id_b) == (2, 9)

    def test_merge_existing(self, store, session):
        session.run.return_value = [_link_record(is_new=False, note="kept")]
        link, created = store.upsert_word_link(2, 9, "similar_form", user_id=1)
        assert not created
        assert link.note == "kept"

    def test_find_missing(self, store, session):
        session.run.return_value = []
        assert store.find_word_link(2, 9, "root_affix", 1) is None

    def test_list_passes_paging_and_kinds(self, store, session):
        session.run.return_value = [_link_record(), _link_record(low=1, high=2)]
        links = store.list_word_links(2, limit=5, offset=10, user_id=1)
        _, params = _last_call(session)
        assert params["limit"] == 5 and params["offset"] == 10
        assert sorted(params["kinds"]) == ["root_affix", "similar_form"]
        assert params["user_id"] == 1
        assert [link.other(2) for link in links] == [9, 1]

    def test_count(self, store, session):
        session.run.return_value = [FakeRecord(total=7)]
        assert store.count_word_links(2, "root_affix") == 7
        _, params = _last_call(session)
        assert params["kinds"] == ["root_affix"]
        assert params["user_id"] is None

    def test_delete(self, store, session):
        session.run.return_value = [FakeRecord(deleted=1)]
        assert store.delete_word_link(9, 2, "similar_form", 1)
        session.run.return_value = [FakeRecord(deleted=0)]
        assert not store.delete_word_link(9, 2, "similar_form", 1)

    def test_database_is_selected(self, store, session):
        session.run.return_value = []
        store.find_word_link(1, 2, "root_affix", 1)
        store._driver.session.assert_called_with(database="wordmesh")


class TestSenseLinks:

    def test_missing_sense_node(self, store, session):
        session.run.return_value = []
        with pytest.raises(LinkTargetNotFoundError):
            store.upsert_sense_word_link(10, 2, "synonym", user_id=1)

    def test_merge(self, store, session):
        session.run.return_value = [FakeRecord(
            sense_id=10, target_word_id=2, kind="antonym", user_id=1, note=None,
            created_at="2026-01-01T00:00:00.000000+00:00", is_new=True,
        )]
        link, created = store.upsert_sense_word_link(10, 2, "antonym", user_id=1)
        assert created
        assert link.kind is SenseLinkKind.ANTONYM
        assert link.target_word_id == 2

    def test_delete_all(self, store, session):
        session.run.return_value = [FakeRecord(deleted=3)]
        assert store.delete_all_sense_links(10) == 3
        query, params = _last_call(session)
        assert "DETACH DELETE" in query.text
        assert params == {"sense_id": 10}

    def test_merge_sense_node(self, store, session):
        session.run.return_value = []
        store.merge_sense_node(10, user_id=1, word_id=4)
        _, params = _last_call(session)
        assert params == {"sense_id": 10, "user_id": 1, "word_id": 4}


class TestErrors:

    @pytest.mark.parametrize("exc", [ServiceUnavailable("down"), SessionExpired("gone")])
    def test_unavailable(self, store, session, exc):
        session.run.side_effect = exc
        with pytest.raises(StoreUnavailableError):
            store.count_word_links(1)

    def test_ensure_schema(self, store, session):
        session.run.return_value = []
        store.ensure_schema()
        texts = [c.args[0].text for c in session.run.call_args_list]
        assert len(texts) == 2
        assert all("CREATE CONSTRAINT" in t for t in texts)

    def test_close(self, store):
        store.close()
        store._driver.close.assert_called_once()
