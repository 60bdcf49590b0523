"""
Tests for batch network imports.
"""
import pytest

from wordmesh.batch import (
    BatchResult,
    ChangeResult,
    OperationType,
    OPTIONAL_FIELDS,
    ParseError,
    REQUIRED_FIELDS,
    execute_change_request,
    load_change_request,
    load_yaml_file,
    validate_change_request,
)
from wordmesh.batch.cli import main

REQUEST = """\
user: 1
session:
  name: Reading notes
changes:
  - operation: add_word
    text: memory
    tags: [cs]
    sense: recall ability
  - operation: add_word
    text: storage
  - operation: link_sense
    word: memory
    sense: recall ability
    target: storage
    kind: related
  - operation: link_words
    source: memory
    target: storage
    kind: root_affix
"""


def _request(*changes, user=1):
    return load_change_request({"user": user, "changes": list(changes)})


class TestParser:
    """Tests for YAML parsing."""

    def test_load_from_string(self):
        request = load_change_request(REQUEST)
        assert request.user_id == 1
        assert request.session_name == "Reading notes"
        assert [c.operation for c in request.changes] == [
            "add_word", "add_word", "link_sense", "link_words",
        ]
        assert request.changes[0].params["tags"] == ["cs"]

    def test_line_numbers(self):
        request = load_change_request(REQUEST)
        assert request.changes[0].line_number == 5
        assert request.changes[1].line_number == 9

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "notes.yaml"
        path.write_text(REQUEST, encoding="utf-8")
        request = load_change_request(path)
        assert request.source_file == path
        assert len(request.changes) == 4

    def test_load_yaml_file(self, tmp_path):
        path = tmp_path / "notes.yaml"
        path.write_text(REQUEST, encoding="utf-8")
        data = load_yaml_file(path)
        assert data["user"] == 1
        assert len(data["changes"]) == 4

    def test_load_from_dict(self):
        request = _request({"operation": "add_word", "text": "run"})
        assert request.changes[0].word == "run"
        assert request.changes[0].line_number is None

    @pytest.mark.parametrize("text, message", [
        ("changes:\n  - operation: add_word\n", "user"),
        ("user: abc\nchanges:\n  - operation: add_word\n", "positive integer"),
        ("user: 0\nchanges:\n  - operation: add_word\n", "positive integer"),
        ("user: 1\n", "changes"),
        ("user: 1\nchanges: []\n", "cannot be empty"),
        ("user: 1\nchanges: add_word\n", "must be a list"),
        ("user: 1\nchanges:\n  - add_word\n", "mapping"),
        ("user: 1\nchanges:\n  - text: run\n", "operation"),
        ("- just\n- a list\n", "mapping"),
    ])
    def test_parse_errors(self, text, message):
        with pytest.raises(ParseError, match=message):
            load_change_request(text)

    def test_invalid_yaml_reports_line(self):
        with pytest.raises(ParseError) as exc_info:
            load_change_request("user: 1\nchanges:\n  - operation: [unclosed\n")
        assert exc_info.value.line is not None

    def test_file_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_change_request(tmp_path / "missing.yaml")


class TestValidation:
    """Schema checks, without stores."""

    def test_valid_request(self):
        result = validate_change_request(load_change_request(REQUEST))
        assert result.is_valid
        assert result.error_count == 0

    @pytest.mark.parametrize("change, field", [
        ({"operation": "rename_word", "word": "x"}, "operation"),
        ({"operation": "add_word"}, "text"),
        ({"operation": "add_word", "text": "!!!"}, "text"),
        ({"operation": "add_word", "text": "run", "tags": "verbs"}, "tags"),
        ({"operation": "add_word", "text": "run", "tags": ["bad tag"]}, "tags"),
        ({"operation": "add_word", "text": "run", "note": "  "}, "note"),
        ({"operation": "add_sense", "word": "run", "text": "x", "primary": "yes"}, "primary"),
        ({"operation": "add_sense", "word": "run", "text": "x", "sort_order": 1.5}, "sort_order"),
        ({"operation": "update_sense", "word": "run", "sense": " "}, "sense"),
        ({"operation": "link_words", "source": "a", "target": "b", "kind": "synonym"}, "kind"),
        ({"operation": "link_words", "source": "Run", "target": "run!", "kind": "root_affix"},
         "target"),
        ({"operation": "link_sense", "word": "run", "sense": "x", "target": "walk",
          "kind": "root_affix"}, "kind"),
        ({"operation": "link_sense", "word": "run", "sense": "x", "target": "RUN",
          "kind": "synonym"}, "target"),
    ])
    def test_errors(self, change, field):
        result = validate_change_request(_request(change))
        assert not result.is_valid
        assert result.errors[0].field == field
        assert result.errors[0].index == 0

    def test_unknown_field_is_a_warning(self):
        result = validate_change_request(
            _request({"operation": "remove_word", "word": "run", "colour": "red"})
        )
        assert result.is_valid
        assert "colour" in result.warnings[0].message

    def test_sense_text_is_not_word_text(self):
        result = validate_change_request(
            _request({"operation": "add_sense", "word": "run", "text": "?!"})
        )
        assert result.is_valid

    def test_every_operation_has_field_rules(self):
        for op in OperationType:
            assert op.value in REQUIRED_FIELDS
            assert op.value in OPTIONAL_FIELDS


class TestReferences:
    """Referential checks against the stores."""

    def test_words_added_earlier_count(self, coordinator):
        result = validate_change_request(load_change_request(REQUEST), coordinator)
        assert result.is_valid
        assert result.warning_count == 0

    def test_missing_words_warn(self, coordinator):
        coordinator.add_to_network(2, "storage")
        request = _request(
            {"operation": "remove_word", "word": "ghost"},
            {"operation": "link_sense", "word": "memory", "sense": "x",
             "target": "storage", "kind": "related"},
            {"operation": "link_sense", "word": "memory", "sense": "x",
             "target": "nowhere", "kind": "related"},
        )
        result = validate_change_request(request, coordinator)
        assert result.is_valid
        messages = [(w.index, w.message) for w in result.warnings]
        assert (0, "Word 'ghost' is not in the network of user 1") in messages
        # storage exists for another user, so only the source word is missing
        assert [m for i, m in messages if i == 1] == [
            "Word 'memory' is not in the network of user 1",
        ]
        assert (2, "Word 'nowhere' does not exist") in messages


class TestExecutor:

    def test_execute(self, coordinator):
        result = execute_change_request(load_change_request(REQUEST), coordinator)
        assert isinstance(result, BatchResult)
        assert result.success_count == 4
        assert result.failure_count == 0

        memory = coordinator.find_network_word(1, "memory")
        storage = coordinator.find_network_word(1, "storage")
        assert memory.membership.tags == ("cs",)
        sense_links = coordinator.list_links(1, "sense", memory.senses[0].id)
        assert [v.target_id for v in sense_links] == [storage.word.id]
        assert coordinator.list_links(1, "word", storage.word.id).total == 1

    def test_reapply_is_idempotent(self, coordinator):
        request = load_change_request(REQUEST)
        execute_change_request(request, coordinator)
        again = execute_change_request(request, coordinator)
        assert again.success_count == 4
        assert len(coordinator.list_network(1)) == 2

    def test_dry_run_writes_nothing(self, coordinator):
        result = execute_change_request(load_change_request(REQUEST), coordinator, dry_run=True)
        assert result.dry_run
        assert result.success_count == 4
        assert all(c.message.startswith("Would execute") for c in result.changes)
        assert coordinator.find_word("memory") is None

    def test_continues_on_error(self, coordinator):
        request = _request(
            {"operation": "remove_word", "word": "ghost"},
            {"operation": "add_word", "text": "run"},
            {"operation": "add_sense", "word": "run", "text": "move fast"},
            {"operation": "add_sense", "word": "run", "text": "move fast"},
        )
        result = execute_change_request(request, coordinator)
        assert [c.success for c in result.changes] == [False, True, True, False]
        assert result.changes[0].error_kind == "NotInNetwork"
        assert result.changes[3].error_kind == "SenseDuplicate"
        assert result.changes[1].created_id == coordinator.find_network_word(1, "run").user_word_id
        assert result.failure_count == 2
        assert result.skipped_count == 0

    def test_sense_lifecycle(self, coordinator):
        request = _request(
            {"operation": "add_word", "text": "run", "sense": {"text": "move fast", "primary": True}},
            {"operation": "add_sense", "word": "run", "text": "operate", "note": "machines"},
            {"operation": "update_sense", "word": "run", "sense": "operate", "primary": True},
            {"operation": "remove_sense", "word": "run", "sense": "move fast"},
        )
        result = execute_change_request(request, coordinator)
        assert result.failure_count == 0
        view = coordinator.find_network_word(1, "run")
        assert [(s.text, s.is_primary, s.note) for s in view.senses] == [
            ("operate", True, "machines"),
        ]

    def test_unlink_and_remove(self, coordinator):
        execute_change_request(load_change_request(REQUEST), coordinator)
        request = _request(
            {"operation": "unlink_words", "source": "storage", "target": "memory",
             "kind": "root_affix"},
            {"operation": "unlink_words", "source": "storage", "target": "unheard-of",
             "kind": "root_affix"},
            {"operation": "unlink_sense", "word": "memory", "sense": "recall ability",
             "target": "storage", "kind": "related"},
            {"operation": "unlink_sense", "word": "memory", "sense": "recall ability",
             "target": "unheard-of", "kind": "related"},
            {"operation": "remove_word", "word": "memory"},
        )
        result = execute_change_request(request, coordinator)
        assert result.failure_count == 0
        assert result.changes[1].message.startswith("No link")
        assert result.changes[3].message.startswith("No link")
        storage = coordinator.find_network_word(1, "storage")
        assert coordinator.list_links(1, "word", storage.word.id).total == 0
        assert coordinator.find_network_word(1, "memory") is None

    def test_link_sense_to_unknown_word_fails(self, coordinator):
        request = _request(
            {"operation": "add_word", "text": "memory", "sense": "recall ability"},
            {"operation": "link_sense", "word": "memory", "sense": "recall ability",
             "target": "nowhere", "kind": "related"},
        )
        result = execute_change_request(request, coordinator)
        assert result.changes[1].error_kind == "LinkTargetNotFound"

    def test_skipped_count(self):
        result = BatchResult(
            user_id=1, total_count=3, success_count=1, failure_count=1,
            changes=[ChangeResult(index=0, operation="add_word", success=True, message="")],
            duration_seconds=0.0,
        )
        assert result.skipped_count == 1


class TestCli:

    @pytest.fixture
    def files(self, tmp_path):
        config = tmp_path / "wordmesh.yaml"
        config.write_text(
            f"database:\n  path: {tmp_path / 'wm.db'}\nlogging:\n  level: WARNING\n",
            encoding="utf-8",
        )
        request = tmp_path / "notes.yaml"
        request.write_text(REQUEST, encoding="utf-8")
        return config, request

    def test_validate(self, files, capsys):
        config, request = files
        assert main(["--config", str(config), "validate", str(request)]) == 0
        assert "Validation passed!" in capsys.readouterr().out

    def test_apply(self, files, capsys):
        config, request = files
        assert main(["--config", str(config), "apply", str(request), "--yes"]) == 0
        out = capsys.readouterr().out
        assert "Success: 4" in out
        assert "Failed:  0" in out

    def test_apply_dry_run(self, files, capsys):
        config, request = files
        assert main(["--config", str(config), "apply", str(request), "--dry-run"]) == 0
        assert "nothing was written" in capsys.readouterr().out

    def test_apply_aborted(self, files, monkeypatch):
        config, request = files
        monkeypatch.setattr("builtins.input", lambda prompt: "n")
        assert main(["--config", str(config), "apply", str(request)]) == 1

    def test_parse_error(self, files, tmp_path, capsys):
        config, _ = files
        bad = tmp_path / "bad.yaml"
        bad.write_text("user: 1\n", encoding="utf-8")
        assert main(["--config", str(config), "validate", str(bad)]) == 1
        assert "[PARSE ERROR]" in capsys.readouterr().out

    def test_bad_config(self, tmp_path, capsys):
        assert main(["--config", str(tmp_path / "none.yaml"), "validate", "x.yaml"]) == 1
        assert "[CONFIG ERROR]" in capsys.readouterr().out

    def test_no_command(self, capsys):
        assert main([]) == 1
