"""Data-access service wiring the store to the lifecycle hooks."""

import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any

from s3evolve.core.document import StoredDocument
from s3evolve.core.exceptions import DocumentNotFoundError
from s3evolve.core.query import MatchAll, Predicate
from s3evolve.core.store import DocumentStore
from s3evolve.migrations.hooks import LifecycleHooks

logger = logging.getLogger(__name__)


class VersionedDataService:
    """Loads and saves documents of one collection through the hooks.

    Every document handed out has been through ``after_load``; every
    document written has been through ``before_save``. Callers only ever
    see the latest logical shape.
    """

    def __init__(self, store: DocumentStore, hooks: LifecycleHooks):
        """Initialize the service.

        Args:
            store: The collection to read and write
            hooks: Lifecycle hooks bound to the migration registry
        """
        self.store = store
        self.hooks = hooks

    async def get(self, doc_id: str) -> dict[str, Any]:
        """Load a document in the latest logical shape.

        Raises:
            DocumentNotFoundError: If the document does not exist
            MigrationTransformError: If upgrading the document fails
        """
        document, _ = await self.get_with_token(doc_id)
        return document

    async def get_with_token(self, doc_id: str) -> tuple[dict[str, Any], str | None]:
        """Load a document together with the ETag to save it back with."""
        stored = await self.store.load(doc_id)
        return self._upgrade(stored), stored.etag

    async def save(
        self,
        doc_id: str,
        document: dict[str, Any],
        if_match: str | None = None,
    ) -> str | None:
        """Stamp and write a document.

        Args:
            doc_id: The document id
            document: The document in the latest logical shape
            if_match: ETag from get_with_token for an optimistic save

        Returns:
            The new ETag

        Raises:
            ConcurrentWriteConflict: If ``if_match`` no longer matches
            DocumentNotFoundError: If ``if_match`` was given and the document
                has been deleted
        """
        self.hooks.before_save(document)
        return await self.store.put(doc_id, document, if_match=if_match)

    async def create(self, document: dict[str, Any]) -> dict[str, Any]:
        """Create a new document, assigning an ``id`` when it has none."""
        doc_id = str(document.setdefault("id", str(uuid.uuid4())))
        self.hooks.before_save(document)
        await self.store.put(doc_id, document, if_none_match="*")
        return document

    async def delete(self, doc_id: str) -> None:
        await self.store.delete(doc_id)

    async def find(
        self,
        predicate: Predicate | None = None,
        limit: int | None = None,
        page_size: int = 100,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield upgraded documents whose *stored* form matches ``predicate``.

        The predicate is evaluated against the raw document, so filters on
        fields whose shape changed across versions should be compiled with
        the QueryCompatibilityShim.
        """
        if limit is not None and limit <= 0:
            return
        predicate = predicate or MatchAll()
        found = 0
        async for page in self.store.scan(page_size):
            for key in page.keys:
                try:
                    stored = await self.store.load_key(key)
                except DocumentNotFoundError:
                    logger.debug(f"{key} vanished during scan")
                    continue
                if not predicate.matches(stored.data):
                    continue
                yield self._upgrade(stored)
                found += 1
                if limit is not None and found >= limit:
                    return

    def _upgrade(self, stored: StoredDocument) -> dict[str, Any]:
        return self.hooks.after_load(
            stored.data, document_id=self.store.id_for(stored.key)
        )
