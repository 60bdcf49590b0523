"""
Command-line interface for batch network imports.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional

from wordmesh import __version__
from wordmesh.config import Settings, configure_logging
from wordmesh.coordinator import ConsistencyCoordinator
from wordmesh.exceptions import WordmeshError

from .executor import execute_change_request
from .parser import ParseError, load_change_request
from .schema import BatchResult, ChangeRequest, ValidationResult
from .validator import validate_change_request


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the wordmesh-batch CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        settings = Settings.load(args.config)
    except WordmeshError as e:
        print(f"\n  [CONFIG ERROR] {e}")
        return 1
    configure_logging(settings)
    return args.func(args, settings)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wordmesh-batch",
        description="Apply batch changes to a user's word network",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Settings file (default: ./wordmesh.yaml if present)",
    )

    subparsers = parser.add_subparsers(title="commands", dest="command")

    validate_parser = subparsers.add_parser(
        "validate",
        help="Check a network change file without writing anything",
    )
    validate_parser.add_argument("file", type=Path, help="YAML change request")
    validate_parser.add_argument(
        "--no-check-refs",
        action="store_true",
        help="Skip checks against the stores (word existence, membership)",
    )
    validate_parser.set_defaults(func=cmd_validate)

    apply_parser = subparsers.add_parser(
        "apply",
        help="Apply a network change file to both stores",
    )
    apply_parser.add_argument("file", type=Path, help="YAML change request")
    apply_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be done without writing",
    )
    apply_parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Apply without asking for confirmation",
    )
    apply_parser.add_argument(
        "--user",
        type=int,
        help="Override the user id from the file",
    )
    apply_parser.set_defaults(func=cmd_apply)

    return parser


def cmd_validate(args: argparse.Namespace, settings: Settings) -> int:
    print(f"\nChecking {args.file} ...")
    request = _load(args.file)
    if request is None:
        return 1
    _print_request(request)

    if args.no_check_refs:
        result = validate_change_request(request)
    else:
        with ConsistencyCoordinator.from_settings(settings) as coordinator:
            result = validate_change_request(request, coordinator)

    print("\nFindings:")
    _print_validation_result(result)

    if result.is_valid:
        print("\nValidation passed!")
        return 0
    print(f"\nFound {result.error_count} error(s), {result.warning_count} warning(s)")
    return 1


def cmd_apply(args: argparse.Namespace, settings: Settings) -> int:
    print(f"\nReading {args.file} ...")
    request = _load(args.file)
    if request is None:
        return 1
    if args.user is not None:
        request.user_id = args.user
    _print_request(request)

    with ConsistencyCoordinator.from_settings(settings) as coordinator:
        print("\nValidating...")
        validation = validate_change_request(request, coordinator)
        if not validation.is_valid:
            print("\nValidation failed:")
            _print_validation_result(validation)
            print(f"\nFound {validation.error_count} error(s). Nothing was applied.")
            return 1
        if validation.warning_count:
            print("\nWarnings:")
            _print_validation_result(validation, warnings_only=True)

        if args.dry_run:
            print("\n[DRY RUN] Simulating execution...")
        elif not args.yes:
            response = input(
                f"\nApply {len(request.changes)} changes for user {request.user_id}? [y/N] "
            )
            if response.lower() not in ("y", "yes"):
                print("Aborted.")
                return 1

        print(f"\n{'Simulating' if args.dry_run else 'Applying'} changes...")
        result = execute_change_request(request, coordinator, dry_run=args.dry_run)

    _print_batch_result(result)
    return 1 if result.failure_count else 0


def _load(path: Path) -> ChangeRequest | None:
    try:
        return load_change_request(path)
    except ParseError as e:
        print(f"\n  [PARSE ERROR] {e}")
        if e.line:
            print(f"               Line: {e.line}")
    except FileNotFoundError as e:
        print(f"\n  [ERROR] {e}")
    return None


def _print_request(request: ChangeRequest) -> None:
    print(f"  User:    {request.user_id}")
    print(f"  Changes: {len(request.changes)}")
    if request.session_name:
        print(f"  Session: \"{request.session_name}\"")


def _print_validation_result(
    result: ValidationResult,
    warnings_only: bool = False,
) -> None:
    if not warnings_only:
        for error in result.errors:
            line_info = f" (line {error.line_number})" if error.line_number else ""
            print(f"  [ERROR] Change #{error.index + 1} ({error.operation}): {error.message}{line_info}")
            if error.field:
                print(f"          Field: {error.field}")

    for warning in result.warnings:
        line_info = f" (line {warning.line_number})" if warning.line_number else ""
        print(f"  [WARN]  Change #{warning.index + 1} ({warning.operation}): {warning.message}{line_info}")


def _print_batch_result(result: BatchResult) -> None:
    print()
    for change in result.changes:
        status = "OK" if change.success else "FAILED"
        kind = f" [{change.error_kind}]" if change.error_kind else ""
        print(f"  [{change.index + 1}/{result.total_count}] {change.operation}: {status}{kind}")
        if change.message:
            print(f"         {change.message}")

    print("\nResults:")
    print(f"  Total:   {result.total_count}")
    print(f"  Success: {result.success_count}")
    print(f"  Failed:  {result.failure_count}")
    print(f"  Elapsed: {result.duration_seconds:.2f}s")
    if result.dry_run:
        print("\nDry run: nothing was written.")


if __name__ == "__main__":
    sys.exit(main())
