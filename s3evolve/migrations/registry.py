"""Ordered migration registry: apply-on-read and stamp-on-write."""

import copy
import logging
from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType
from typing import Any

from s3evolve.core.document import (
    MIGRATION_VERSION_FIELD,
    document_identity,
    get_migration_version,
)
from s3evolve.core.exceptions import (
    MigrationTransformError,
    RegistryConfigurationError,
    UnsupportedDocumentVersion,
)
from s3evolve.migrations.base import MigrationStep, Transform, coerce_step

logger = logging.getLogger(__name__)

_MISSING = object()


class MigrationRegistry:
    """An immutable, ordered set of migration steps plus a target version.

    The registry is built once at process start and then shared by every
    request handler and by the reconciliation job. Nothing on it changes
    after ``__init__``, so it needs no locking.

    Example:
        >>> registry = MigrationRegistry([
        ...     MigrationStep(1, WrapInList("telephone", "telephones").forward),
        ... ])
        >>> registry.read_upgrade({"id": 1, "telephone": "555"})
        {'id': 1, 'telephone': '555', 'telephones': ['555']}
    """

    __slots__ = ("_steps", "_by_version", "_target_version", "_minimum_version")

    def __init__(
        self,
        steps: Iterable[MigrationStep | tuple[int, Transform]] = (),
        target_version: int | None = None,
        minimum_version: int = 0,
    ):
        """Build and validate the registry.

        Args:
            steps: MigrationSteps or ``(version, transform)`` pairs, any order
            target_version: Version stamped on write; defaults to the
                highest step version
            minimum_version: Oldest stored version still supported; steps
                up to it have been retired

        Raises:
            RegistryConfigurationError: On duplicate or non-positive
                versions, or a target below the highest step version
        """
        try:
            coerced = [coerce_step(s) for s in steps]
        except TypeError as e:
            raise RegistryConfigurationError(str(e)) from e

        by_version: dict[int, MigrationStep] = {}
        for s in coerced:
            if not isinstance(s.version, int) or isinstance(s.version, bool):
                raise RegistryConfigurationError(
                    f"Step version must be a positive integer, got {s.version!r}",
                    version=None,
                )
            if s.version <= 0:
                raise RegistryConfigurationError(
                    f"Step version must be positive, got {s.version}",
                    version=s.version,
                )
            if s.version in by_version:
                raise RegistryConfigurationError(
                    f"Duplicate step version {s.version}",
                    version=s.version,
                )
            if s.transform is None and not s.operations:
                raise RegistryConfigurationError(
                    f"Step {s.version} has neither a transform nor operations",
                    version=s.version,
                )
            by_version[s.version] = s

        highest = max(by_version, default=0)
        if target_version is None:
            target_version = highest
        if not isinstance(target_version, int) or isinstance(target_version, bool):
            raise RegistryConfigurationError(
                f"Target version must be an integer, got {target_version!r}"
            )
        if target_version < highest:
            raise RegistryConfigurationError(
                f"Target version {target_version} is below the highest step "
                f"version {highest}",
                version=highest,
            )
        if minimum_version < 0 or minimum_version > target_version:
            raise RegistryConfigurationError(
                f"Minimum version {minimum_version} must be between 0 and the "
                f"target version {target_version}"
            )
        retired = [v for v in by_version if v <= minimum_version]
        if retired:
            raise RegistryConfigurationError(
                f"Steps {sorted(retired)} are at or below the minimum supported "
                f"version {minimum_version}; remove them",
                version=min(retired),
            )

        ordered = sorted(by_version.values(), key=lambda s: s.version)
        self._steps = tuple(ordered)
        self._by_version = MappingProxyType({s.version: s for s in ordered})
        self._target_version = target_version
        self._minimum_version = minimum_version

    @classmethod
    def from_pairs(
        cls,
        pairs: Iterable[tuple[int, Transform]],
        target_version: int | None = None,
        minimum_version: int = 0,
    ) -> "MigrationRegistry":
        """Build a registry from ``(version, transform)`` pairs."""
        return cls(pairs, target_version=target_version, minimum_version=minimum_version)

    @property
    def target_version(self) -> int:
        return self._target_version

    @property
    def minimum_version(self) -> int:
        return self._minimum_version

    @property
    def steps(self) -> Mapping[int, MigrationStep]:
        """Read-only mapping of version to step, in ascending order."""
        return self._by_version

    @property
    def versions(self) -> tuple[int, ...]:
        return tuple(s.version for s in self._steps)

    def get_step(self, version: int) -> MigrationStep | None:
        return self._by_version.get(version)

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[MigrationStep]:
        return iter(self._steps)

    def __contains__(self, version: object) -> bool:
        return version in self._by_version

    def __repr__(self) -> str:
        return (
            f"MigrationRegistry(versions={list(self.versions)}, "
            f"target_version={self._target_version})"
        )

    def pending_steps(self, version: int) -> list[MigrationStep]:
        """Return the steps a document stored at ``version`` still needs."""
        return [s for s in self._steps if s.version > version]

    def needs_upgrade(self, document: dict[str, Any]) -> bool:
        """True when the document is stored below the target version."""
        return get_migration_version(document) < self._target_version

    def read_upgrade(
        self,
        document: dict[str, Any],
        document_id: str | None = None,
    ) -> dict[str, Any]:
        """Upgrade a loaded document to the latest logical shape.

        Applies every step whose version is above the document's stored
        version, in ascending order, to a deep copy of the document. The
        input is never mutated and the stored ``migrationVersion`` (or its
        absence) is carried over unchanged; stamping happens on save.

        Args:
            document: The raw document as loaded from the store
            document_id: Identity used in error reports; defaults to the
                document's ``id`` field

        Returns:
            The upgraded working copy

        Raises:
            MigrationTransformError: If any step's transform fails
            UnsupportedDocumentVersion: If the document predates the
                minimum supported version
            InvalidDocumentVersion: If the stored migrationVersion is not a
                non-negative integer
        """
        if document_id is None:
            document_id = document_identity(document)
        version = get_migration_version(document, document_id)

        if version < self._minimum_version:
            raise UnsupportedDocumentVersion(
                document_id, version, self._minimum_version
            )

        stored_version = document.get(MIGRATION_VERSION_FIELD, _MISSING)
        result = copy.deepcopy(document)

        for s in self.pending_steps(version):
            try:
                result = s.apply(result)
            except Exception as e:
                logger.error(
                    f"Migration step {s.version} failed on document {document_id}: {e}"
                )
                raise MigrationTransformError(document_id, s.version, e) from e
            if not isinstance(result, dict):
                raise MigrationTransformError(
                    document_id,
                    s.version,
                    TypeError(
                        f"transform returned {type(result).__name__}, expected dict"
                    ),
                )

        if stored_version is _MISSING:
            result.pop(MIGRATION_VERSION_FIELD, None)
        else:
            result[MIGRATION_VERSION_FIELD] = stored_version
        return result

    def write_stamp(self, document: dict[str, Any]) -> dict[str, Any]:
        """Stamp a document with the target version right before it is saved.

        Overwrites any prior ``migrationVersion``. The document is modified
        in place and returned for convenience.
        """
        document[MIGRATION_VERSION_FIELD] = self._target_version
        return document
