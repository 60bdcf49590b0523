"""
YAML parser for batch network import requests.

A request looks like::

    user: 42
    session:
      name: "Import reading notes"
    changes:
      - operation: add_word
        text: memory
        tags: [cs]
        sense: recall ability
      - operation: link_sense
        word: memory
        sense: recall ability
        target: storage
        kind: related
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .schema import Change, ChangeRequest


class ParseError(Exception):
    """Error parsing a change request file."""

    def __init__(self, message: str, line: Optional[int] = None):
        self.line = line
        super().__init__(message)


def load_change_request(
    source: Union[str, Path, Dict[str, Any]],
) -> ChangeRequest:
    """Load a change request from a YAML file, YAML string or dictionary.

    Raises:
        ParseError: If the content cannot be parsed or is malformed
        FileNotFoundError: If a file path is given and does not exist
    """
    if isinstance(source, dict):
        return _parse_change_request(source, change_lines=[])

    source_path: Optional[Path] = None
    if isinstance(source, Path) or _is_file_path(source):
        source_path = Path(source)
        if not source_path.exists():
            raise FileNotFoundError(f"File not found: {source_path}")
        text = source_path.read_text(encoding="utf-8")
    else:
        text = source

    data, change_lines = _load_yaml(text)
    return _parse_change_request(data, change_lines, source_path)


def load_yaml_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Load the raw YAML mapping of a request file."""
    data, _ = _load_yaml(Path(path).read_text(encoding="utf-8"))
    return data


def _is_file_path(s: str) -> bool:
    """Single-line strings with a separator or YAML suffix are paths."""
    if "\n" in s:
        return False
    return "/" in s or "\\" in s or s.endswith((".yaml", ".yml"))


def _load_yaml(text: str) -> tuple[Dict[str, Any], List[Optional[int]]]:
    """Parse YAML text, returning the mapping and 1-based change line numbers."""
    try:
        node = yaml.compose(text, Loader=yaml.SafeLoader)
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        raise ParseError(f"Invalid YAML: {e}", line=mark.line + 1 if mark else None) from e

    if data is None:
        raise ParseError("Empty YAML content")
    if not isinstance(data, dict):
        raise ParseError("YAML root must be a mapping (dictionary)")
    return data, _change_lines(node)


def _change_lines(root: Any) -> List[Optional[int]]:
    if not isinstance(root, yaml.MappingNode):
        return []
    for key, value in root.value:
        if getattr(key, "value", None) == "changes" and isinstance(value, yaml.SequenceNode):
            return [item.start_mark.line + 1 for item in value.value]
    return []


def _parse_change_request(
    data: Dict[str, Any],
    change_lines: List[Optional[int]],
    source_path: Optional[Path] = None,
) -> ChangeRequest:
    user_id = data.get("user")
    if user_id is None:
        raise ParseError("Missing required field: 'user'")
    if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id < 1:
        raise ParseError("Field 'user' must be a positive integer")

    session = data.get("session") or {}
    if not isinstance(session, dict):
        raise ParseError("Field 'session' must be a mapping")

    changes_data = data.get("changes")
    if changes_data is None:
        raise ParseError("Missing required field: 'changes'")
    if not isinstance(changes_data, list):
        raise ParseError("Field 'changes' must be a list")
    if not changes_data:
        raise ParseError("Field 'changes' cannot be empty")

    return ChangeRequest(
        user_id=user_id,
        changes=[
            _parse_change(i, item, change_lines[i] if i < len(change_lines) else None)
            for i, item in enumerate(changes_data)
        ],
        session_name=session.get("name"),
        session_description=session.get("description"),
        source_file=source_path,
    )


def _parse_change(index: int, item: Any, line: Optional[int]) -> Change:
    if not isinstance(item, dict):
        raise ParseError(f"Change #{index + 1} must be a mapping (dictionary)", line=line)
    operation = item.get("operation")
    if not operation:
        raise ParseError(f"Change #{index + 1}: Missing required field 'operation'", line=line)
    if not isinstance(operation, str):
        raise ParseError(f"Change #{index + 1}: Field 'operation' must be a string", line=line)
    return Change(
        operation=operation,
        params={k: v for k, v in item.items() if k != "operation"},
        line_number=line,
    )
