"""S3-backed document collection.

Each document is one JSON object under the collection prefix. The
object's ETag is the optimistic-concurrency token: conditional writes
send it back as ``IfMatch`` and S3 rejects the write with a 412 when the
object changed in the meantime.
"""

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from s3evolve.core.document import StoredDocument
from s3evolve.core.exceptions import (
    ConcurrentWriteConflict,
    DocumentNotFoundError,
    S3OperationError,
    StoreUnavailable,
)

logger = logging.getLogger(__name__)

SYSTEM_PREFIX = "_system/"

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
_CONFLICT_CODES = {"PreconditionFailed", "412", "ConditionalRequestConflict", "409"}
_UNAVAILABLE_CODES = {
    "500",
    "502",
    "503",
    "504",
    "InternalError",
    "ServiceUnavailable",
    "SlowDown",
    "RequestTimeout",
    "Throttling",
}
_TRANSPORT_ERRORS = (
    EndpointConnectionError,
    ConnectionClosedError,
    ConnectTimeoutError,
    ReadTimeoutError,
)


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


@dataclass
class StorePage:
    """One page of document keys from a collection listing."""

    keys: list[str] = field(default_factory=list)
    next_token: str | None = None

    @property
    def is_last(self) -> bool:
        return self.next_token is None


class DocumentStore:
    """Reads and writes JSON documents of one collection in a bucket."""

    def __init__(self, s3_client, bucket_name: str, prefix: str):
        """Initialize the store.

        Args:
            s3_client: The async S3 client to use
            bucket_name: The S3 bucket name
            prefix: Key prefix of the collection (e.g. "data/users/")
        """
        self.s3_client = s3_client
        self.bucket_name = bucket_name
        self.prefix = prefix if prefix.endswith("/") or not prefix else f"{prefix}/"

    def key_for(self, doc_id: str) -> str:
        """Return the S3 key of a document id."""
        return f"{self.prefix}{doc_id}.json"

    def id_for(self, key: str) -> str:
        """Return the document id encoded in an S3 key."""
        name = key[len(self.prefix):] if key.startswith(self.prefix) else key
        return name[: -len(".json")] if name.endswith(".json") else name

    def _resolve_key(self, doc_id_or_key: str) -> str:
        if doc_id_or_key.startswith(self.prefix) and doc_id_or_key.endswith(".json"):
            return doc_id_or_key
        return self.key_for(doc_id_or_key)

    def _translate(self, error: Exception, operation: str, key: str | None) -> Exception:
        """Map a botocore error to the engine's error taxonomy."""
        if isinstance(error, _TRANSPORT_ERRORS):
            return StoreUnavailable(original_error=error)
        if isinstance(error, ClientError):
            code = _error_code(error)
            if code in _NOT_FOUND_CODES and key is not None:
                return DocumentNotFoundError(key)
            if code in _UNAVAILABLE_CODES:
                return StoreUnavailable(original_error=error)
            return S3OperationError(
                f"{operation} failed ({code}): {error}",
                operation=operation,
                key=key,
                original_error=error,
            )
        return error

    async def load(self, doc_id: str) -> StoredDocument:
        """Load a document by id.

        Raises:
            DocumentNotFoundError: If no document has this id
            StoreUnavailable: If S3 cannot be reached
        """
        return await self.load_key(self.key_for(doc_id))

    async def load_key(self, key: str) -> StoredDocument:
        """Load a document by its full S3 key, together with its ETag."""
        try:
            response = await self.s3_client.get_object(
                Bucket=self.bucket_name,
                Key=key,
            )
            body = await response["Body"].read()
        except (ClientError, *_TRANSPORT_ERRORS) as e:
            raise self._translate(e, "get_object", key) from e

        try:
            data = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise S3OperationError(
                f"Object '{key}' is not a JSON document: {e}",
                operation="get_object",
                key=key,
                original_error=e,
            ) from e
        if not isinstance(data, dict):
            raise S3OperationError(
                f"Object '{key}' is not a JSON object",
                operation="get_object",
                key=key,
            )

        return StoredDocument(key=key, data=data, etag=response.get("ETag"))

    async def put(
        self,
        doc_id_or_key: str,
        data: dict[str, Any],
        if_match: str | None = None,
        if_none_match: str | None = None,
    ) -> str | None:
        """Write a document, optionally as a conditional write.

        Args:
            doc_id_or_key: Document id or full S3 key
            data: The document to store
            if_match: Only write if the stored ETag still equals this value
            if_none_match: Pass "*" to only write if the object does not exist

        Returns:
            The ETag of the written object

        Raises:
            ConcurrentWriteConflict: If the write precondition failed
            DocumentNotFoundError: If ``if_match`` was given and the object
                has been deleted since it was read
            StoreUnavailable: If S3 cannot be reached
        """
        key = self._resolve_key(doc_id_or_key)
        params = {
            "Bucket": self.bucket_name,
            "Key": key,
            "Body": json.dumps(data, default=str).encode("utf-8"),
            "ContentType": "application/json",
        }
        if if_match is not None:
            params["IfMatch"] = if_match
        if if_none_match is not None:
            params["IfNoneMatch"] = if_none_match

        try:
            response = await self.s3_client.put_object(**params)
        except ClientError as e:
            if _error_code(e) in _CONFLICT_CODES:
                raise ConcurrentWriteConflict(key, expected_etag=if_match) from e
            raise self._translate(e, "put_object", key) from e
        except _TRANSPORT_ERRORS as e:
            raise self._translate(e, "put_object", key) from e

        return response.get("ETag")

    async def delete(self, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is a no-op."""
        key = self.key_for(doc_id)
        try:
            await self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
        except (ClientError, *_TRANSPORT_ERRORS) as e:
            raise self._translate(e, "delete_object", None) from e

    async def list_page(
        self,
        continuation_token: str | None = None,
        page_size: int = 100,
    ) -> StorePage:
        """List one page of document keys in the collection.

        Args:
            continuation_token: Token returned by the previous page
            page_size: Maximum number of keys to request

        Returns:
            A StorePage; its ``next_token`` is None on the last page
        """
        params = {
            "Bucket": self.bucket_name,
            "Prefix": self.prefix,
            "MaxKeys": page_size,
        }
        if continuation_token:
            params["ContinuationToken"] = continuation_token

        try:
            response = await self.s3_client.list_objects_v2(**params)
        except (ClientError, *_TRANSPORT_ERRORS) as e:
            raise self._translate(e, "list_objects_v2", None) from e

        system_prefix = f"{self.prefix}{SYSTEM_PREFIX}"
        keys = [
            obj["Key"]
            for obj in response.get("Contents", [])
            if obj["Key"].endswith(".json")
            and not obj["Key"].startswith(system_prefix)
        ]
        next_token = None
        if response.get("IsTruncated", False):
            next_token = response.get("NextContinuationToken")

        return StorePage(keys=keys, next_token=next_token)

    async def scan(self, page_size: int = 100) -> AsyncIterator[StorePage]:
        """Iterate over the collection one page at a time."""
        token = None
        while True:
            page = await self.list_page(token, page_size)
            yield page
            if page.is_last:
                break
            token = page.next_token

    def _system_key(self, name: str) -> str:
        return f"{self.prefix}{SYSTEM_PREFIX}{name}"

    async def read_system_record(self, name: str) -> dict[str, Any] | None:
        """Read a JSON record kept next to the collection, or None if absent."""
        key = self._system_key(name)
        try:
            response = await self.s3_client.get_object(
                Bucket=self.bucket_name,
                Key=key,
            )
            body = await response["Body"].read()
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return None
            raise self._translate(e, "get_object", None) from e
        except _TRANSPORT_ERRORS as e:
            raise self._translate(e, "get_object", None) from e
        return json.loads(body.decode("utf-8"))

    async def write_system_record(self, name: str, data: dict[str, Any]) -> None:
        """Write a JSON record kept next to the collection."""
        key = self._system_key(name)
        try:
            await self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=json.dumps(data, default=str).encode("utf-8"),
                ContentType="application/json",
            )
        except (ClientError, *_TRANSPORT_ERRORS) as e:
            raise self._translate(e, "put_object", None) from e
