"""Tests for words and memberships in the entity store."""

import threading

import pytest

from wordmesh.exceptions import NotInNetworkError, ValidationError


class TestWords:

    def test_get_or_create(self, entities):
        word = entities.get_or_create_word("Memory Storage")
        assert word.text == "Memory Storage"
        assert word.canonical_key == "memory-storage"
        assert word.created_at

    def test_same_key_same_word(self, entities):
        first = entities.get_or_create_word("Memory")
        again = entities.get_or_create_word("  memory!")
        assert again.id == first.id
        # first display text wins
        assert again.text == "Memory"

    @pytest.mark.parametrize("text", ["", "   ", "?!", "x" * 129])
    def test_invalid_text(self, entities, text):
        with pytest.raises(ValidationError):
            entities.get_or_create_word(text)

    def test_find_word(self, entities):
        word = entities.get_or_create_word("run")
        assert entities.find_word(" RUN ").id == word.id
        assert entities.find_word("walk") is None
        assert entities.find_word("...") is None

    def test_get_word(self, entities):
        word = entities.get_or_create_word("run")
        assert entities.get_word(word.id) == word
        assert entities.get_word(9999) is None

    def test_concurrent_creation_yields_one_word(self, entities):
        results = []

        def create():
            results.append(entities.get_or_create_word("Parallel").id)

        threads = [threading.Thread(target=create) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(set(results)) == 1


class TestMemberships:

    def test_upsert_creates_then_returns_existing(self, entities):
        word = entities.get_or_create_word("run")
        first, created = entities.upsert_membership(1, word.id, ["verbs"], "daily")
        again, created_again = entities.upsert_membership(1, word.id)
        assert created and not created_again
        assert again.id == first.id
        assert again.tags == ("verbs",)
        assert again.note == "daily"

    def test_upsert_overwrites_tags_and_note(self, entities):
        word = entities.get_or_create_word("run")
        entities.upsert_membership(1, word.id, ["verbs"], "daily")
        updated, _ = entities.upsert_membership(1, word.id, ["Motion", "motion", "sport"], "weekly")
        assert updated.tags == ("Motion", "sport")
        assert updated.note == "weekly"

    def test_unknown_word(self, entities):
        with pytest.raises(NotInNetworkError):
            entities.upsert_membership(1, 4242)

    def test_users_are_independent(self, entities):
        word = entities.get_or_create_word("run")
        a, _ = entities.upsert_membership(1, word.id)
        b, _ = entities.upsert_membership(2, word.id)
        assert a.id != b.id
        assert entities.find_membership(2, word.id).id == b.id
        assert entities.get_membership(a.id, user_id=2) is None

    def test_list_memberships_newest_first(self, entities):
        ids = []
        for text in ("one", "two", "three"):
            word = entities.get_or_create_word(text)
            ids.append(entities.upsert_membership(1, word.id)[0].id)
        listed = [m.id for m in entities.list_memberships(1)]
        assert listed == list(reversed(ids))
        assert entities.list_memberships(2) == []

    def test_remove_membership(self, entities):
        word = entities.get_or_create_word("run")
        membership, _ = entities.upsert_membership(1, word.id, ["verbs"])
        s1 = entities.add_sense(membership.id, "move fast")
        s2 = entities.add_sense(membership.id, "operate")

        removed = entities.remove_membership(membership.id, user_id=1)
        assert removed.sense_ids == (s1.id, s2.id)
        assert removed.word_id == word.id
        assert entities.get_membership(membership.id) is None
        assert entities.get_sense(s1.id) is None
        # the global word survives
        assert entities.get_word(word.id) is not None

    def test_remove_missing_membership(self, entities):
        assert entities.remove_membership(12345) is None

    def test_remove_foreign_membership(self, entities):
        word = entities.get_or_create_word("run")
        membership, _ = entities.upsert_membership(1, word.id)
        with pytest.raises(NotInNetworkError):
            entities.remove_membership(membership.id, user_id=2)
        assert entities.get_membership(membership.id) is not None

    def test_member_and_existing_ids(self, entities):
        run = entities.get_or_create_word("run")
        walk = entities.get_or_create_word("walk")
        entities.upsert_membership(1, run.id)
        assert entities.existing_word_ids([run.id, walk.id, 999]) == {run.id, walk.id}
        assert entities.member_word_ids(1, [run.id, walk.id]) == {run.id}
        assert entities.member_word_ids(1, []) == set()
