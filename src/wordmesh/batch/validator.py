"""
Validation for batch network import requests.

Provides schema validation (required fields, types, link kinds, tag and
text rules) and, when a coordinator is supplied, referential validation
(words named by a change are in the user's network or added earlier in
the same request).
"""
from __future__ import annotations

import logging
from typing import Any, List, Set

from wordmesh.canonical import normalize, require_key
from wordmesh.exceptions import WordmeshError
from wordmesh.relations import SENSE_LINK_KINDS, WORD_LINK_KINDS
from wordmesh.validation import (
    normalize_tags,
    validate_note,
    validate_sense_text,
    validate_word_text,
)

from .schema import (
    Change,
    ChangeRequest,
    OPTIONAL_FIELDS,
    OperationType,
    REQUIRED_FIELDS,
    SENSE_LINK_OPERATIONS,
    ValidationError,
    ValidationResult,
    ValidationWarning,
    WORD_LINK_OPERATIONS,
)

logger = logging.getLogger(__name__)

# Fields holding word text that must normalize to a non-empty key
_WORD_FIELDS = ("text", "word", "source", "target")


def validate_change_request(
    request: ChangeRequest,
    coordinator: Any = None,
) -> ValidationResult:
    """Validate a change request.

    Args:
        request: The change request to validate
        coordinator: Optional ConsistencyCoordinator; when given, words
            referenced by changes are checked against the user's network

    Returns:
        ValidationResult with errors and warnings
    """
    errors: List[ValidationError] = []
    warnings: List[ValidationWarning] = []
    added: Set[str] = set()

    for i, change in enumerate(request.changes):
        change_errors, change_warnings = _validate_change(change, i)
        errors.extend(change_errors)
        warnings.extend(change_warnings)

        if coordinator is not None and not change_errors:
            warnings.extend(
                _check_references(change, i, request.user_id, coordinator, added)
            )
        if change.operation == OperationType.ADD_WORD.value:
            added.add(normalize(str(change.params.get("text", ""))))

    return ValidationResult(
        is_valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
    )


def _validate_change(
    change: Change,
    index: int,
) -> tuple[List[ValidationError], List[ValidationWarning]]:
    errors: List[ValidationError] = []
    warnings: List[ValidationWarning] = []
    op = change.operation

    def error(field: str, message: str) -> None:
        errors.append(
            ValidationError(
                index=index,
                operation=op,
                field=field,
                message=message,
                line_number=change.line_number,
            )
        )

    valid_operations = {o.value for o in OperationType}
    if op not in valid_operations:
        error(
            "operation",
            f"Unknown operation '{op}'. Valid: {', '.join(sorted(valid_operations))}",
        )
        return errors, warnings

    params = change.params
    for name in REQUIRED_FIELDS[op]:
        if params.get(name) in (None, ""):
            error(name, f"Missing required field '{name}'")
    if errors:
        return errors, warnings

    known = set(REQUIRED_FIELDS[op]) | set(OPTIONAL_FIELDS[op])
    for name in sorted(set(params) - known):
        warnings.append(
            ValidationWarning(
                index=index,
                operation=op,
                message=f"Unknown field '{name}' will be ignored",
                line_number=change.line_number,
            )
        )

    for name in _WORD_FIELDS:
        if name == "text" and op != OperationType.ADD_WORD.value:
            continue
        if name in params:
            _check(error, name, _word_key, params[name])

    if op in (OperationType.ADD_SENSE.value, OperationType.UPDATE_SENSE.value):
        if "text" in params:
            _check(error, "text", validate_sense_text, params["text"])
    if "sense" in params:
        sense = params["sense"]
        sense_text = sense.get("text") if isinstance(sense, dict) else sense
        _check(error, "sense", validate_sense_text, sense_text)
    if "note" in params:
        _check(error, "note", validate_note, params["note"])
    if "tags" in params:
        if params["tags"] is not None and not isinstance(params["tags"], list):
            error("tags", "Field 'tags' must be a list")
        else:
            _check(error, "tags", normalize_tags, params["tags"] or [])
    if "primary" in params and not isinstance(params["primary"], bool):
        error("primary", "Field 'primary' must be true or false")
    if "sort_order" in params and (
        isinstance(params["sort_order"], bool) or not isinstance(params["sort_order"], int)
    ):
        error("sort_order", "Field 'sort_order' must be an integer")

    if op in WORD_LINK_OPERATIONS:
        _check_kind(error, params["kind"], WORD_LINK_KINDS)
        if normalize(str(params["source"])) == normalize(str(params["target"])):
            error("target", "A word cannot be linked to itself")
    elif op in SENSE_LINK_OPERATIONS:
        _check_kind(error, params["kind"], SENSE_LINK_KINDS)
        if normalize(str(params["word"])) == normalize(str(params["target"])):
            error("target", "A sense cannot be linked to its own word")

    return errors, warnings


def _word_key(value: Any) -> str:
    return require_key(validate_word_text(value))


def _check(error: Any, field: str, validator: Any, value: Any) -> None:
    try:
        validator(value)
    except WordmeshError as e:
        error(field, str(e))


def _check_kind(error: Any, kind: Any, valid: Set[str] | frozenset) -> None:
    if not isinstance(kind, str) or kind not in valid:
        error("kind", f"Invalid link kind '{kind}'. Valid: {', '.join(sorted(valid))}")


def _check_references(
    change: Change,
    index: int,
    user_id: int,
    coordinator: Any,
    added: Set[str],
) -> List[ValidationWarning]:
    """Warn about words that are neither in the network nor added earlier."""
    op = change.operation
    if op == OperationType.ADD_WORD.value:
        return []
    params = change.params
    in_network = [params.get("word") or params.get("source")]
    if op in WORD_LINK_OPERATIONS:
        in_network.append(params.get("target"))
    # sense link targets are auto-joined, so they only have to exist
    existing = [params.get("target")] if op in SENSE_LINK_OPERATIONS else []

    warnings = []

    def warn(message: str) -> None:
        warnings.append(
            ValidationWarning(
                index=index,
                operation=op,
                message=message,
                line_number=change.line_number,
            )
        )

    for name in in_network:
        if name and normalize(str(name)) not in added \
                and coordinator.find_network_word(user_id, str(name)) is None:
            warn(f"Word '{name}' is not in the network of user {user_id}")
    for name in existing:
        if name and normalize(str(name)) not in added \
                and coordinator.find_word(str(name)) is None:
            warn(f"Word '{name}' does not exist")
    return warnings
