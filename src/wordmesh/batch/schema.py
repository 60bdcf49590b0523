"""
Data classes and constants for batch network imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


# =============================================================================
# Operation Types
# =============================================================================

class OperationType(str, Enum):
    """Supported batch operations."""
    ADD_WORD = "add_word"
    REMOVE_WORD = "remove_word"
    ADD_SENSE = "add_sense"
    UPDATE_SENSE = "update_sense"
    REMOVE_SENSE = "remove_sense"
    LINK_WORDS = "link_words"
    UNLINK_WORDS = "unlink_words"
    LINK_SENSE = "link_sense"
    UNLINK_SENSE = "unlink_sense"


# Operations whose `kind` is a word-to-word link kind
WORD_LINK_OPERATIONS = {
    OperationType.LINK_WORDS.value,
    OperationType.UNLINK_WORDS.value,
}

# Operations whose `kind` is a sense-to-word link kind
SENSE_LINK_OPERATIONS = {
    OperationType.LINK_SENSE.value,
    OperationType.UNLINK_SENSE.value,
}


# =============================================================================
# Field Requirements
# =============================================================================

# Required fields for each operation
REQUIRED_FIELDS: Dict[str, List[str]] = {
    OperationType.ADD_WORD.value: ["text"],
    OperationType.REMOVE_WORD.value: ["word"],
    OperationType.ADD_SENSE.value: ["word", "text"],
    OperationType.UPDATE_SENSE.value: ["word", "sense"],
    OperationType.REMOVE_SENSE.value: ["word", "sense"],
    OperationType.LINK_WORDS.value: ["source", "target", "kind"],
    OperationType.UNLINK_WORDS.value: ["source", "target", "kind"],
    OperationType.LINK_SENSE.value: ["word", "sense", "target", "kind"],
    OperationType.UNLINK_SENSE.value: ["word", "sense", "target", "kind"],
}

# Optional fields for each operation
OPTIONAL_FIELDS: Dict[str, List[str]] = {
    OperationType.ADD_WORD.value: ["tags", "note", "sense"],
    OperationType.REMOVE_WORD.value: [],
    OperationType.ADD_SENSE.value: ["primary", "sort_order", "note"],
    OperationType.UPDATE_SENSE.value: ["text", "primary", "sort_order", "note"],
    OperationType.REMOVE_SENSE.value: [],
    OperationType.LINK_WORDS.value: ["note"],
    OperationType.UNLINK_WORDS.value: [],
    OperationType.LINK_SENSE.value: ["note"],
    OperationType.UNLINK_SENSE.value: [],
}


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class Change:
    """Single change operation."""
    operation: str
    params: Dict[str, Any]
    line_number: Optional[int] = None

    @property
    def word(self) -> Optional[str]:
        """Word text the change targets, if any."""
        return self.params.get("word") or self.params.get("text")

    @property
    def source(self) -> Optional[str]:
        return self.params.get("source")

    @property
    def target(self) -> Optional[str]:
        return self.params.get("target")


@dataclass
class ChangeRequest:
    """Parsed change request from YAML."""
    user_id: int
    changes: List[Change]
    session_name: Optional[str] = None
    session_description: Optional[str] = None
    source_file: Optional[Path] = None


@dataclass
class ValidationError:
    """Validation error for a specific change."""
    index: int
    operation: str
    field: str
    message: str
    line_number: Optional[int] = None


@dataclass
class ValidationWarning:
    """Validation warning for a specific change."""
    index: int
    operation: str
    message: str
    line_number: Optional[int] = None


@dataclass
class ValidationResult:
    """Result of validating a change request."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[ValidationWarning] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)


@dataclass
class ChangeResult:
    """Result of executing a single change."""
    index: int
    operation: str
    success: bool
    message: str
    target: Optional[str] = None
    created_id: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None


@dataclass
class BatchResult:
    """Result of executing a batch change request."""
    user_id: int
    total_count: int
    success_count: int
    failure_count: int
    changes: List[ChangeResult]
    duration_seconds: float
    dry_run: bool = False

    @property
    def skipped_count(self) -> int:
        return self.total_count - self.success_count - self.failure_count
