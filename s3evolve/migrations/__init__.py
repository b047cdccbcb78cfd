"""Lazy migration engine for s3evolve.

Documents are upgraded in memory when they are loaded and stamped with
the target version when they are saved. A background reconciliation job
converges the rest of the collection, and the query shim keeps filters
working while old and new shapes coexist.
"""

from s3evolve.migrations.base import MigrationOperation, MigrationStep, step
from s3evolve.migrations.hooks import LifecycleHooks
from s3evolve.migrations.loader import load_registry, load_steps
from s3evolve.migrations.operations import (
    AddField,
    ConditionalTransform,
    CopyField,
    MergeFields,
    SplitField,
    TransformField,
    WrapInList,
)
from s3evolve.migrations.reconcile import (
    BackoffPolicy,
    ReconciliationHistory,
    ReconciliationJob,
    ReconciliationProgress,
    ReconciliationRecord,
)
from s3evolve.migrations.registry import MigrationRegistry
from s3evolve.migrations.shim import (
    FieldHistory,
    QueryCompatibilityShim,
    Representation,
    VersionRange,
)

__all__ = [
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
    "BackoffPolicy",
    "ReconciliationHistory",
    "ReconciliationJob",
    "ReconciliationProgress",
    "ReconciliationRecord",
    "FieldHistory",
    "QueryCompatibilityShim",
    "Representation",
    "VersionRange",
]
