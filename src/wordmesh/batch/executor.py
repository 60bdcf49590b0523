"""
Executor for batch network import requests.

Applies each change through the ConsistencyCoordinator. Changes run in
order; a failed change is reported and the batch moves on, so a partly
applied file can be fixed and re-applied as a whole.
"""
from __future__ import annotations

import logging
import time
from typing import Any, List

from wordmesh.coordinator import ConsistencyCoordinator
from wordmesh.exceptions import LinkTargetNotFoundError, NotInNetworkError, WordmeshError
from wordmesh.models import EndpointType, SenseInput, UserSense, UserWordView

from .schema import (
    BatchResult,
    Change,
    ChangeRequest,
    ChangeResult,
    OperationType,
)

logger = logging.getLogger(__name__)


def execute_change_request(
    request: ChangeRequest,
    coordinator: ConsistencyCoordinator,
    dry_run: bool = False,
) -> BatchResult:
    """Execute a batch change request.

    Args:
        request: The change request to execute
        coordinator: Coordinator the changes are applied through
        dry_run: If True, only report what would be done

    Returns:
        BatchResult with details of each change
    """
    start_time = time.time()
    label = request.session_name or f"batch for user {request.user_id}"
    logger.info(f"Executing {label!r}: {len(request.changes)} change(s), dry_run={dry_run}")

    handlers = {
        OperationType.ADD_WORD.value: _exec_add_word,
        OperationType.REMOVE_WORD.value: _exec_remove_word,
        OperationType.ADD_SENSE.value: _exec_add_sense,
        OperationType.UPDATE_SENSE.value: _exec_update_sense,
        OperationType.REMOVE_SENSE.value: _exec_remove_sense,
        OperationType.LINK_WORDS.value: _exec_link_words,
        OperationType.UNLINK_WORDS.value: _exec_unlink_words,
        OperationType.LINK_SENSE.value: _exec_link_sense,
        OperationType.UNLINK_SENSE.value: _exec_unlink_sense,
    }

    results: List[ChangeResult] = []
    for i, change in enumerate(request.changes):
        if dry_run:
            results.append(_dry_run_change(change, i))
            continue
        handler = handlers.get(change.operation)
        if handler is None:
            results.append(
                ChangeResult(
                    index=i,
                    operation=change.operation,
                    success=False,
                    message=f"Unknown operation: {change.operation}",
                    error=f"Unknown operation: {change.operation}",
                )
            )
            continue
        results.append(_execute_change(handler, change, i, request.user_id, coordinator))

    success_count = sum(1 for r in results if r.success)
    result = BatchResult(
        user_id=request.user_id,
        total_count=len(results),
        success_count=success_count,
        failure_count=len(results) - success_count,
        changes=results,
        duration_seconds=time.time() - start_time,
        dry_run=dry_run,
    )
    logger.info(
        f"Finished {label!r}: {result.success_count} ok, {result.failure_count} failed "
        f"in {result.duration_seconds:.2f}s"
    )
    return result


def _execute_change(
    handler: Any,
    change: Change,
    index: int,
    user_id: int,
    coordinator: ConsistencyCoordinator,
) -> ChangeResult:
    op = change.operation
    try:
        return handler(change, index, user_id, coordinator)
    except WordmeshError as e:
        logger.warning(f"Change #{index + 1} ({op}) failed: {e}")
        return ChangeResult(
            index=index,
            operation=op,
            success=False,
            message=f"Error: {e}",
            target=change.word or change.source,
            error=str(e),
            error_kind=e.kind,
        )
    except Exception as e:
        logger.exception(f"Error executing change #{index + 1} ({op})")
        return ChangeResult(
            index=index,
            operation=op,
            success=False,
            message=f"Error: {e}",
            target=change.word or change.source,
            error=str(e),
        )


def _dry_run_change(change: Change, index: int) -> ChangeResult:
    """Report a change without touching either store."""
    return ChangeResult(
        index=index,
        operation=change.operation,
        success=True,
        message=f"Would execute {change.operation}",
        target=change.word or change.source,
    )


def _ok(change: Change, index: int, message: str, target: Any = None,
        created_id: int | None = None) -> ChangeResult:
    return ChangeResult(
        index=index,
        operation=change.operation,
        success=True,
        message=message,
        target=None if target is None else str(target),
        created_id=created_id,
    )


# -----------------------------------------------------------------------------
# Lookups
# -----------------------------------------------------------------------------

def _network_word(coordinator: ConsistencyCoordinator, user_id: int, text: Any) -> UserWordView:
    view = coordinator.find_network_word(user_id, str(text))
    if view is None:
        raise NotInNetworkError(f"Word '{text}' is not in the network of user {user_id}")
    return view


def _global_word_id(coordinator: ConsistencyCoordinator, text: Any) -> int | None:
    word = coordinator.find_word(str(text))
    return word.id if word else None


def _sense(
    coordinator: ConsistencyCoordinator, user_id: int, view: UserWordView, text: Any,
) -> UserSense:
    sense = coordinator.find_sense(user_id, view.user_word_id, str(text))
    if sense is None:
        raise NotInNetworkError(f"Sense '{text}' not found on '{view.word.text}'")
    return sense


def _first_sense(value: Any) -> SenseInput | None:
    if value is None:
        return None
    if isinstance(value, dict):
        return SenseInput(
            text=value.get("text", ""),
            is_primary=bool(value.get("primary", False)),
            sort_order=value.get("sort_order"),
            note=value.get("note"),
        )
    return SenseInput(text=str(value))


# -----------------------------------------------------------------------------
# Operations
# -----------------------------------------------------------------------------

def _exec_add_word(change: Change, index: int, user_id: int,
                   coordinator: ConsistencyCoordinator) -> ChangeResult:
    params = change.params
    view = coordinator.add_to_network(
        user_id,
        params["text"],
        tags=params.get("tags"),
        note=params.get("note"),
        first_sense=_first_sense(params.get("sense")),
    )
    verb = "Added" if view.created else "Updated"
    return _ok(
        change, index,
        f"{verb} '{view.word.text}' (user_word_id={view.user_word_id})",
        target=view.word.text,
        created_id=view.user_word_id if view.created else None,
    )


def _exec_remove_word(change: Change, index: int, user_id: int,
                      coordinator: ConsistencyCoordinator) -> ChangeResult:
    view = _network_word(coordinator, user_id, change.params["word"])
    removed = coordinator.remove_from_network(user_id, view.user_word_id)
    return _ok(
        change, index,
        f"Removed '{view.word.text}' and {len(removed.sense_ids)} sense(s)",
        target=view.word.text,
    )


def _exec_add_sense(change: Change, index: int, user_id: int,
                    coordinator: ConsistencyCoordinator) -> ChangeResult:
    params = change.params
    view = _network_word(coordinator, user_id, params["word"])
    sense = coordinator.add_sense(
        user_id,
        view.user_word_id,
        params["text"],
        is_primary=bool(params.get("primary", False)),
        sort_order=params.get("sort_order"),
        note=params.get("note"),
    )
    return _ok(
        change, index,
        f"Added sense {sense.id} to '{view.word.text}'",
        target=view.word.text,
        created_id=sense.id,
    )


def _exec_update_sense(change: Change, index: int, user_id: int,
                       coordinator: ConsistencyCoordinator) -> ChangeResult:
    params = change.params
    view = _network_word(coordinator, user_id, params["word"])
    sense = _sense(coordinator, user_id, view, params["sense"])
    updates: dict[str, Any] = {
        "text": params.get("text"),
        "is_primary": params.get("primary"),
        "sort_order": params.get("sort_order"),
    }
    if "note" in params:
        updates["note"] = params["note"]
    updated = coordinator.update_sense(user_id, sense.id, **updates)
    return _ok(
        change, index,
        f"Updated sense {updated.id} of '{view.word.text}'",
        target=view.word.text,
    )


def _exec_remove_sense(change: Change, index: int, user_id: int,
                       coordinator: ConsistencyCoordinator) -> ChangeResult:
    params = change.params
    view = _network_word(coordinator, user_id, params["word"])
    sense = _sense(coordinator, user_id, view, params["sense"])
    coordinator.remove_sense(user_id, sense.id)
    return _ok(
        change, index,
        f"Removed sense {sense.id} from '{view.word.text}'",
        target=view.word.text,
    )


def _exec_link_words(change: Change, index: int, user_id: int,
                     coordinator: ConsistencyCoordinator) -> ChangeResult:
    params = change.params
    source = _network_word(coordinator, user_id, params["source"])
    target = _network_word(coordinator, user_id, params["target"])
    link = coordinator.create_word_link(
        user_id, source.word.id, target.word.id, params["kind"], params.get("note"),
    )
    state = "Linked" if link.created else "Already linked"
    return _ok(
        change, index,
        f"{state} '{source.word.text}' -{params['kind']}- '{target.word.text}'",
        target=source.word.text,
    )


def _exec_unlink_words(change: Change, index: int, user_id: int,
                       coordinator: ConsistencyCoordinator) -> ChangeResult:
    params = change.params
    source_id = _global_word_id(coordinator, params["source"])
    target_id = _global_word_id(coordinator, params["target"])
    deleted = False
    if source_id is not None and target_id is not None:
        deleted = coordinator.delete_link(
            user_id, EndpointType.WORD, source_id, target_id, params["kind"],
        )
    state = "Unlinked" if deleted else "No link between"
    return _ok(
        change, index,
        f"{state} '{params['source']}' and '{params['target']}'",
        target=params["source"],
    )


def _exec_link_sense(change: Change, index: int, user_id: int,
                     coordinator: ConsistencyCoordinator) -> ChangeResult:
    params = change.params
    view = _network_word(coordinator, user_id, params["word"])
    sense = _sense(coordinator, user_id, view, params["sense"])
    target_id = _global_word_id(coordinator, params["target"])
    if target_id is None:
        raise LinkTargetNotFoundError(f"Word '{params['target']}' does not exist")
    link = coordinator.create_sense_word_link(
        user_id, sense.id, target_id, params["kind"], params.get("note"),
    )
    message = f"Linked sense {sense.id} -{params['kind']}-> '{params['target']}'"
    if link.auto_joined:
        message += " (target added to network)"
    elif not link.created:
        message = f"Sense {sense.id} already linked to '{params['target']}'"
    return _ok(change, index, message, target=view.word.text)


def _exec_unlink_sense(change: Change, index: int, user_id: int,
                       coordinator: ConsistencyCoordinator) -> ChangeResult:
    params = change.params
    view = _network_word(coordinator, user_id, params["word"])
    sense = _sense(coordinator, user_id, view, params["sense"])
    target_id = _global_word_id(coordinator, params["target"])
    deleted = False
    if target_id is not None:
        deleted = coordinator.delete_link(
            user_id, EndpointType.SENSE, sense.id, target_id, params["kind"],
        )
    state = "Unlinked" if deleted else "No link from"
    return _ok(
        change, index,
        f"{state} sense {sense.id} to '{params['target']}'",
        target=view.word.text,
    )
