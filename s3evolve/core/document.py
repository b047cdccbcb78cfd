"""Versioned document helpers.

A stored document is a plain JSON object with one reserved top-level
field, ``migrationVersion``. A missing (or null) field means version 0;
any other value must be a non-negative integer.
"""

from dataclasses import dataclass
from typing import Any

from s3evolve.core.exceptions import InvalidDocumentVersion

MIGRATION_VERSION_FIELD = "migrationVersion"


def get_migration_version(document: dict[str, Any], document_id: str | None = None) -> int:
    """Return the stored version of a document, treating absence as 0.

    Raises:
        InvalidDocumentVersion: If the stored value is not a non-negative int
    """
    version = document.get(MIGRATION_VERSION_FIELD)
    if version is None:
        return 0
    if not isinstance(version, int) or isinstance(version, bool) or version < 0:
        raise InvalidDocumentVersion(
            document_id if document_id is not None else document_identity(document),
            version,
        )
    return version


def document_identity(document: dict[str, Any], default: str | None = None) -> str | None:
    """Best-effort identity of a document for error messages."""
    doc_id = document.get("id")
    if doc_id is None:
        return default
    return str(doc_id)


@dataclass
class StoredDocument:
    """A document as loaded from the store, with its concurrency token.

    Attributes:
        key: The S3 key the document was read from
        data: The decoded JSON document
        etag: The object's ETag at read time
    """

    key: str
    data: dict[str, Any]
    etag: str | None = None

    @property
    def migration_version(self) -> int:
        return get_migration_version(self.data)
