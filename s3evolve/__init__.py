"""s3evolve: lazy, zero-downtime schema migrations for JSON documents stored in S3."""

__version__ = "0.1.0"

# Core components
from s3evolve.core.client import S3ClientManager
from s3evolve.core.document import (
    MIGRATION_VERSION_FIELD,
    StoredDocument,
    get_migration_version,
)
from s3evolve.core.exceptions import (
    S3evolveError,
    RegistryConfigurationError,
    MigrationTransformError,
    UnsupportedDocumentVersion,
    InvalidDocumentVersion,
    ConcurrentWriteConflict,
    StoreUnavailable,
    S3OperationError,
    DocumentNotFoundError,
    FieldDeclarationError,
    S3ConfigurationError,
)
from s3evolve.core.query import (
    And,
    Condition,
    FilterOperator,
    Not,
    Or,
    all_of,
    any_of,
    negate,
    stale_predicate,
    version_in_range,
)
from s3evolve.core.service import VersionedDataService
from s3evolve.core.settings import S3evolveSettings
from s3evolve.core.store import DocumentStore, StorePage

# Migration components
from s3evolve.migrations import (
    MigrationOperation,
    MigrationStep,
    step,
    MigrationRegistry,
    LifecycleHooks,
    load_registry,
    load_steps,
    AddField,
    ConditionalTransform,
    CopyField,
    MergeFields,
    SplitField,
    TransformField,
    WrapInList,
    BackoffPolicy,
    ReconciliationHistory,
    ReconciliationJob,
    ReconciliationProgress,
    FieldHistory,
    QueryCompatibilityShim,
    Representation,
    VersionRange,
)

__all__ = [
    # Version
    "__version__",
    # Core
    "S3ClientManager",
    "S3evolveSettings",
    "DocumentStore",
    "StorePage",
    "StoredDocument",
    "VersionedDataService",
    "MIGRATION_VERSION_FIELD",
    "get_migration_version",
    # Errors
    "S3evolveError",
    "RegistryConfigurationError",
    "MigrationTransformError",
    "UnsupportedDocumentVersion",
    "InvalidDocumentVersion",
    "ConcurrentWriteConflict",
    "StoreUnavailable",
    "S3OperationError",
    "DocumentNotFoundError",
    "FieldDeclarationError",
    "S3ConfigurationError",
    # Predicates
    "And",
    "Condition",
    "FilterOperator",
    "Not",
    "Or",
    "all_of",
    "any_of",
    "negate",
    "stale_predicate",
    "version_in_range",
    # Migrations
    "MigrationOperation",
    "MigrationStep",
    "step",
    "MigrationRegistry",
    "LifecycleHooks",
    "load_registry",
    "load_steps",
    "AddField",
    "ConditionalTransform",
    "CopyField",
    "MergeFields",
    "SplitField",
    "TransformField",
    "WrapInList",
    # Reconciliation
    "BackoffPolicy",
    "ReconciliationHistory",
    "ReconciliationJob",
    "ReconciliationProgress",
    # Query shim
    "FieldHistory",
    "QueryCompatibilityShim",
    "Representation",
    "VersionRange",
]
