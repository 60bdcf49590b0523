"""Tests for the in-process association store."""

import pytest

from wordmesh.exceptions import (
    LinkSelfForbiddenError,
    LinkTargetNotFoundError,
    LinkTypeInvalidError,
    ValidationError,
)
from wordmesh.models import SenseLinkKind, WordLinkKind


class TestWordLinks:

    def test_endpoints_are_ordered(self, graph):
        link, created = graph.upsert_word_link(9, 2, "similar_form", user_id=1)
        assert created
        assert (link.word_id_a, link.word_id_b) == (2, 9)
        assert link.kind is WordLinkKind.SIMILAR_FORM
        assert link.other(2) == 9 and link.other(9) == 2

    def test_reverse_pair_is_same_edge(self, graph):
        graph.upsert_word_link(1, 2, "root_affix", user_id=1)
        _, created = graph.upsert_word_link(2, 1, "root_affix", user_id=1)
        assert not created
        assert graph.count_word_links(1) == 1
        assert graph.to_networkx().number_of_edges() == 1

    def test_note_merge(self, graph):
        graph.upsert_word_link(1, 2, "root_affix", user_id=1, note="first")
        link, _ = graph.upsert_word_link(1, 2, "root_affix", user_id=1)
        assert link.note == "first"
        link, _ = graph.upsert_word_link(2, 1, "root_affix", user_id=1, note="second")
        assert link.note == "second"

    def test_kinds_and_users_are_distinct_edges(self, graph):
        graph.upsert_word_link(1, 2, "root_affix", user_id=1)
        graph.upsert_word_link(1, 2, "similar_form", user_id=1)
        graph.upsert_word_link(1, 2, "root_affix", user_id=2)
        assert graph.count_word_links(1) == 3
        assert graph.count_word_links(1, user_id=1) == 2
        assert graph.count_word_links(1, "root_affix") == 2
        assert graph.find_word_link(2, 1, "root_affix", 2) is not None
        assert graph.find_word_link(1, 2, "similar_form", 2) is None

    def test_list_newest_first_from_either_side(self, graph):
        graph.upsert_word_link(5, 1, "root_affix", user_id=1)
        graph.upsert_word_link(5, 9, "root_affix", user_id=1)
        graph.upsert_word_link(5, 7, "similar_form", user_id=1)
        links = graph.list_word_links(5)
        assert [link.other(5) for link in links] == [7, 9, 1]
        page = graph.list_word_links(5, limit=1, offset=1)
        assert [link.other(5) for link in page] == [9]
        assert [link.other(5) for link in graph.list_word_links(5, kind="similar_form")] == [7]

    def test_self_link(self, graph):
        with pytest.raises(LinkSelfForbiddenError):
            graph.upsert_word_link(3, 3, "root_affix", user_id=1)

    def test_invalid_kind(self, graph):
        with pytest.raises(LinkTypeInvalidError):
            graph.upsert_word_link(1, 2, "synonym", user_id=1)
        with pytest.raises(LinkTypeInvalidError):
            graph.list_word_links(1, kind="nope")

    def test_invalid_ids(self, graph):
        with pytest.raises(ValidationError):
            graph.upsert_word_link(0, 2, "root_affix", user_id=1)
        with pytest.raises(ValidationError):
            graph.upsert_word_link(1, 2, "root_affix", user_id=0)

    def test_delete(self, graph):
        graph.upsert_word_link(1, 2, "root_affix", user_id=1)
        assert graph.delete_word_link(2, 1, "root_affix", 1)
        assert not graph.delete_word_link(2, 1, "root_affix", 1)
        assert not graph.delete_word_link(3, 3, "root_affix", 1)

    def test_delete_user_word_links(self, graph):
        graph.upsert_word_link(1, 2, "root_affix", user_id=1)
        graph.upsert_word_link(3, 1, "similar_form", user_id=1)
        graph.upsert_word_link(1, 2, "root_affix", user_id=2)
        assert graph.delete_user_word_links(1, user_id=1) == 2
        assert graph.count_word_links(1) == 1
        assert graph.delete_user_word_links(42, user_id=1) == 0


class TestSenseLinks:

    def test_requires_sense_node(self, graph):
        with pytest.raises(LinkTargetNotFoundError):
            graph.upsert_sense_word_link(10, 2, "synonym", user_id=1)

    def test_upsert_is_idempotent(self, graph):
        graph.merge_sense_node(10, user_id=1, word_id=1)
        graph.merge_sense_node(10, user_id=1, word_id=1)
        link, created = graph.upsert_sense_word_link(10, 2, "synonym", user_id=1, note="n")
        again, created_again = graph.upsert_sense_word_link(10, 2, SenseLinkKind.SYNONYM, user_id=1)
        assert created and not created_again
        assert again.note == "n"
        assert again.created_at == link.created_at
        assert graph.count_sense_links(10) == 1

    def test_directed(self, graph):
        graph.merge_sense_node(10, user_id=1, word_id=1)
        graph.upsert_sense_word_link(10, 2, "antonym", user_id=1)
        assert graph.find_sense_link(10, 2, "antonym", 1) is not None
        assert graph.count_word_links(2) == 0

    def test_list_and_filter(self, graph):
        graph.merge_sense_node(10, user_id=1, word_id=1)
        graph.upsert_sense_word_link(10, 2, "synonym", user_id=1)
        graph.upsert_sense_word_link(10, 3, "related", user_id=1)
        assert [link.target_word_id for link in graph.list_sense_links(10)] == [3, 2]
        assert [link.target_word_id for link in graph.list_sense_links(10, "synonym")] == [2]
        assert graph.list_sense_links(10, user_id=2) == []
        assert graph.list_sense_links(99) == []

    def test_delete_all_removes_node(self, graph):
        graph.merge_sense_node(10, user_id=1, word_id=1)
        graph.upsert_sense_word_link(10, 2, "synonym", user_id=1)
        graph.upsert_sense_word_link(10, 3, "related", user_id=1)
        assert graph.delete_all_sense_links(10) == 2
        assert ("sense", 10) not in graph.to_networkx()
        assert graph.delete_all_sense_links(10) == 0

    def test_delete_one(self, graph):
        graph.merge_sense_node(10, user_id=1, word_id=1)
        graph.upsert_sense_word_link(10, 2, "synonym", user_id=1)
        assert not graph.delete_sense_link(10, 2, "synonym", 2)
        assert graph.delete_sense_link(10, 2, "synonym", 1)
        assert not graph.delete_sense_link(10, 2, "synonym", 1)
