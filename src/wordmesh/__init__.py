__version__ = "0.1.0"

from .canonical import (
    normalize as normalize,
    display_text as display_text,
)

from .models import (
    WordLinkKind as WordLinkKind,
    SenseLinkKind as SenseLinkKind,
    SearchScope as SearchScope,
    EndpointType as EndpointType,
    MatchField as MatchField,
    Word as Word,
    UserWord as UserWord,
    UserSense as UserSense,
    WordLink as WordLink,
    SenseWordLink as SenseWordLink,
    Page as Page,
    SearchMatch as SearchMatch,
    UserWordView as UserWordView,
    LinkView as LinkView,
    SenseInput as SenseInput,
    RemovedMembership as RemovedMembership,
)

from .exceptions import (
    WordmeshError as WordmeshError,
    ValidationError as ValidationError,
    ConfigError as ConfigError,
    AlreadyExistsError as AlreadyExistsError,
    NotInNetworkError as NotInNetworkError,
    SenseDuplicateError as SenseDuplicateError,
    PrimaryConflictError as PrimaryConflictError,
    LinkExistsError as LinkExistsError,
    LinkSelfForbiddenError as LinkSelfForbiddenError,
    LinkTargetNotFoundError as LinkTargetNotFoundError,
    LinkTypeInvalidError as LinkTypeInvalidError,
    LinkLimitExceededError as LinkLimitExceededError,
    StoreUnavailableError as StoreUnavailableError,
)

from .config import Settings as Settings
from .entities import EntityStore as EntityStore
from .associations import (
    AssociationStore as AssociationStore,
    MemoryAssociationStore as MemoryAssociationStore,
)
from .neo4j_store import Neo4jAssociationStore as Neo4jAssociationStore
from .retry import RetryPolicy as RetryPolicy
from .coordinator import ConsistencyCoordinator as ConsistencyCoordinator

# Batch module - import as submodule to avoid naming conflicts
from . import batch

__all__ = [
    "batch",
    # Service surface
    "ConsistencyCoordinator",
    "EntityStore",
    "AssociationStore",
    "MemoryAssociationStore",
    "Neo4jAssociationStore",
    "RetryPolicy",
    "Settings",
    # Normalization
    "normalize",
    "display_text",
    # Enums
    "WordLinkKind",
    "SenseLinkKind",
    "SearchScope",
    "EndpointType",
    "MatchField",
    # Models
    "Word",
    "UserWord",
    "UserSense",
    "WordLink",
    "SenseWordLink",
    "Page",
    "SearchMatch",
    "UserWordView",
    "LinkView",
    "SenseInput",
    "RemovedMembership",
    # Errors
    "WordmeshError",
    "ValidationError",
    "ConfigError",
    "AlreadyExistsError",
    "NotInNetworkError",
    "SenseDuplicateError",
    "PrimaryConflictError",
    "LinkExistsError",
    "LinkSelfForbiddenError",
    "LinkTargetNotFoundError",
    "LinkTypeInvalidError",
    "LinkLimitExceededError",
    "StoreUnavailableError",
]
