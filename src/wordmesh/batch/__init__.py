"""
Batch network imports for wordmesh.

Changes to one user's network are written as a YAML request and applied
through the ConsistencyCoordinator.

Example usage:
    from wordmesh import ConsistencyCoordinator, Settings
    from wordmesh.batch import (
        load_change_request,
        validate_change_request,
        execute_change_request,
    )

    request = load_change_request("reading-notes.yaml")

    with ConsistencyCoordinator.from_settings(Settings.load()) as coordinator:
        validation = validate_change_request(request, coordinator)
        if validation.is_valid:
            result = execute_change_request(request, coordinator)
            print(f"Applied {result.success_count}/{result.total_count} changes")
"""

from .schema import (
    # Enums and constants
    OperationType as OperationType,
    REQUIRED_FIELDS as REQUIRED_FIELDS,
    OPTIONAL_FIELDS as OPTIONAL_FIELDS,
    # Data classes
    Change as Change,
    ChangeRequest as ChangeRequest,
    ValidationError as ValidationError,
    ValidationWarning as ValidationWarning,
    ValidationResult as ValidationResult,
    ChangeResult as ChangeResult,
    BatchResult as BatchResult,
)

from .parser import (
    load_change_request as load_change_request,
    load_yaml_file as load_yaml_file,
    ParseError as ParseError,
)

from .validator import (
    validate_change_request as validate_change_request,
)

from .executor import (
    execute_change_request as execute_change_request,
)

__all__ = [
    "OperationType",
    "REQUIRED_FIELDS",
    "OPTIONAL_FIELDS",
    "Change",
    "ChangeRequest",
    "ValidationError",
    "ValidationWarning",
    "ValidationResult",
    "ChangeResult",
    "BatchResult",
    "load_change_request",
    "load_yaml_file",
    "validate_change_request",
    "execute_change_request",
    "ParseError",
]
