"""Tests for input validation helpers and link kinds."""

import pytest

from wordmesh.exceptions import LinkTypeInvalidError, ValidationError
from wordmesh.models import EndpointType, SenseLinkKind, WordLinkKind
from wordmesh.relations import (
    ordered_pair,
    parse_link_kind,
    parse_sense_link_kind,
    parse_word_link_kind,
)
from wordmesh.validation import (
    MAX_TAGS,
    normalize_tags,
    validate_id,
    validate_note,
    validate_page,
    validate_sense_text,
    validate_word_text,
)


class TestTags:

    def test_dedupe_case_insensitive_keeps_first(self):
        assert normalize_tags(["CS", "cs", "ml", " Cs "]) == ["CS", "ml"]

    def test_limit(self):
        normalize_tags([f"t{i}" for i in range(MAX_TAGS)])
        with pytest.raises(ValidationError, match="Tag limit"):
            normalize_tags([f"t{i}" for i in range(MAX_TAGS + 1)])

    def test_duplicates_do_not_count_towards_limit(self):
        tags = [f"t{i}" for i in range(MAX_TAGS)] + ["T0", "T1"]
        assert len(normalize_tags(tags)) == MAX_TAGS

    @pytest.mark.parametrize("tag", ["", "has space", "x" * 25, "emoji🙂", 3])
    def test_invalid_tag(self, tag):
        with pytest.raises(ValidationError):
            normalize_tags([tag])

    def test_string_is_not_a_tag_list(self):
        with pytest.raises(ValidationError):
            normalize_tags("cs")


class TestText:

    def test_word_text_display_form(self):
        assert validate_word_text("  Memory   Storage ") == "Memory Storage"

    @pytest.mark.parametrize("text", ["", "   ", None, "x" * 129])
    def test_word_text_rejected(self, text):
        with pytest.raises(ValidationError):
            validate_word_text(text)

    def test_sense_text(self):
        assert validate_sense_text("  recall ability ") == "recall ability"
        with pytest.raises(ValidationError):
            validate_sense_text(" ")
        with pytest.raises(ValidationError):
            validate_sense_text("x" * 513)

    def test_note(self):
        assert validate_note(None) is None
        assert validate_note(" seen in a paper ") == "seen in a paper"
        with pytest.raises(ValidationError):
            validate_note("   ")
        with pytest.raises(ValidationError):
            validate_note("x" * 513)


class TestPaging:

    def test_bounds(self):
        assert validate_page(1, 0) == (1, 0)
        assert validate_page(100, 10_000) == (100, 10_000)

    @pytest.mark.parametrize("limit, offset", [
        (0, 0), (101, 0), (20, -1), (20, 10_001), (True, 0), ("20", 0),
    ])
    def test_out_of_bounds(self, limit, offset):
        with pytest.raises(ValidationError):
            validate_page(limit, offset)

    def test_ids(self):
        assert validate_id(7) == 7
        for bad in (0, -1, True, "7", None):
            with pytest.raises(ValidationError):
                validate_id(bad)


class TestLinkKinds:

    def test_parse(self):
        assert parse_word_link_kind("similar_form") is WordLinkKind.SIMILAR_FORM
        assert parse_sense_link_kind(SenseLinkKind.ANTONYM) is SenseLinkKind.ANTONYM

    def test_word_kind_is_not_a_sense_kind(self):
        with pytest.raises(LinkTypeInvalidError):
            parse_sense_link_kind("root_affix")
        with pytest.raises(LinkTypeInvalidError):
            parse_word_link_kind("synonym")

    def test_parse_by_endpoint(self):
        assert parse_link_kind(EndpointType.WORD, "root_affix") is WordLinkKind.ROOT_AFFIX
        assert parse_link_kind("sense", "related") is SenseLinkKind.RELATED

    def test_ordered_pair(self):
        assert ordered_pair(9, 2) == (2, 9)
        assert ordered_pair(2, 9) == (2, 9)
