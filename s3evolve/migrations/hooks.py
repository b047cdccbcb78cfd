"""Lifecycle hooks consumed by the data-access layer.

The persistence layer calls ``after_load`` with every raw document it
reads, before mapping it to a domain object, and ``before_save`` with
every raw document immediately before sending it to the store. How those
calls are triggered is up to the persistence layer.
"""

from typing import Any, Callable

from s3evolve.migrations.registry import MigrationRegistry

AfterLoadHook = Callable[[dict[str, Any]], dict[str, Any]]
BeforeSaveHook = Callable[[dict[str, Any]], dict[str, Any]]


class LifecycleHooks:
    """The two entry points of the engine, bound to one registry."""

    def __init__(self, registry: MigrationRegistry):
        self.registry = registry

    def after_load(
        self, raw_document: dict[str, Any], document_id: str | None = None
    ) -> dict[str, Any]:
        """Upgrade a freshly loaded document; see MigrationRegistry.read_upgrade."""
        return self.registry.read_upgrade(raw_document, document_id=document_id)

    def before_save(self, raw_document: dict[str, Any]) -> dict[str, Any]:
        """Stamp a document about to be persisted with the target version."""
        return self.registry.write_stamp(raw_document)
