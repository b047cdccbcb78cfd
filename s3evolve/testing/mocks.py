"""Mock S3 client for testing s3evolve."""

import hashlib
import inspect
import json
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List
from unittest.mock import AsyncMock

from botocore.exceptions import ClientError


class InMemoryS3:
    """In-memory S3 mock for testing without external dependencies.

    This class provides a fully async-compatible mock S3 client that stores
    all data in memory. It implements the S3 operations used by s3evolve,
    including conditional writes (``IfMatch`` / ``IfNoneMatch``) and
    continuation-token pagination.

    Errors can be injected per operation to simulate outages:

    Example:
        >>> s3 = InMemoryS3()
        >>> s3.inject_error("list_objects_v2", InMemoryS3.client_error("SlowDown"))
        >>> await s3.list_objects_v2(Bucket="test")  # raises once
    """

    def __init__(self):
        """Initialize the in-memory S3 mock."""
        # Storage: {bucket_name: {key: bytes}}
        self._storage: Dict[str, Dict[str, bytes]] = {}
        # Metadata: {bucket_name: {key: dict}}
        self._metadata: Dict[str, Dict[str, dict]] = {}
        self._injected: Dict[str, List[Exception]] = defaultdict(list)
        self._before_put: List[Callable[[str, str], Any]] = []
        self.calls: Dict[str, int] = defaultdict(int)

    @staticmethod
    def client_error(code: str, operation: str = "Operation", message: str = "") -> ClientError:
        """Build a botocore ClientError with the given error code."""
        return ClientError(
            {"Error": {"Code": code, "Message": message or code}},
            operation,
        )

    def inject_error(self, operation: str, error: Exception, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""
        self._injected[operation].extend([error] * times)

    def before_put(self, callback: Callable[[str, str], Any]) -> None:
        """Register an async or sync callback run before every put_object.

        The callback receives ``(bucket, key)``; it can write to the mock to
        simulate a concurrent foreground save.
        """
        self._before_put.append(callback)

    def _check_injected(self, operation: str) -> None:
        self.calls[operation] += 1
        if self._injected[operation]:
            raise self._injected[operation].pop(0)

    def _ensure_bucket(self, bucket: str) -> None:
        """Ensure a bucket exists in storage."""
        if bucket not in self._storage:
            self._storage[bucket] = {}
            self._metadata[bucket] = {}

    async def create_bucket(self, Bucket: str, **kwargs) -> dict:
        self._ensure_bucket(Bucket)
        return {}

    async def head_bucket(self, Bucket: str, **kwargs) -> dict:
        if Bucket not in self._storage:
            raise self.client_error("404", "HeadBucket", "Bucket not found")
        return {}

    async def put_object(
        self,
        Bucket: str,
        Key: str,
        Body: bytes | str,
        ContentType: str = "application/octet-stream",
        IfMatch: str | None = None,
        IfNoneMatch: str | None = None,
        **kwargs
    ) -> dict:
        """Store an object, honouring S3 conditional-write preconditions.

        Args:
            Bucket: The bucket name
            Key: The object key
            Body: The object data (bytes or string)
            ContentType: The content type
            IfMatch: Only write if the current ETag equals this value
            IfNoneMatch: "*" to only write if the key does not exist

        Returns:
            Dict with ETag

        Raises:
            ClientError: PreconditionFailed when a precondition fails, or
                NoSuchKey for an IfMatch write to a missing key (as S3 does)
        """
        self._check_injected("put_object")
        for callback in list(self._before_put):
            result = callback(Bucket, Key)
            if inspect.isawaitable(result):
                await result

        self._ensure_bucket(Bucket)
        current = self._metadata[Bucket].get(Key)
        if IfMatch is not None and current is None:
            raise self.client_error(
                "NoSuchKey", "PutObject", "The specified key does not exist."
            )
        if IfMatch is not None and current["ETag"] != IfMatch:
            raise self.client_error("PreconditionFailed", "PutObject")
        if IfNoneMatch == "*" and current is not None:
            raise self.client_error("PreconditionFailed", "PutObject")

        return {"ETag": self._write(Bucket, Key, Body, ContentType)}

    def _write(
        self,
        bucket: str,
        key: str,
        body: bytes | str,
        content_type: str = "application/octet-stream",
    ) -> str:
        self._ensure_bucket(bucket)
        if isinstance(body, str):
            body = body.encode("utf-8")

        self._storage[bucket][key] = body
        self._metadata[bucket][key] = {
            "ContentType": content_type,
            "ContentLength": len(body),
            "LastModified": datetime.now(timezone.utc),
            "ETag": f'"{hashlib.md5(body).hexdigest()}"',
        }
        return self._metadata[bucket][key]["ETag"]

    def store_document(self, bucket: str, key: str, data: dict) -> str:
        """Write a JSON document directly, bypassing hooks and injected errors.

        Returns:
            The new ETag
        """
        return self._write(
            bucket, key, json.dumps(data).encode("utf-8"), "application/json"
        )

    async def get_object(self, Bucket: str, Key: str, **kwargs) -> dict:
        """Retrieve an object from the mock S3.

        Raises:
            ClientError: If object doesn't exist
        """
        self._check_injected("get_object")
        if Bucket not in self._storage or Key not in self._storage[Bucket]:
            raise self.client_error(
                "NoSuchKey", "GetObject", "The specified key does not exist."
            )

        body = AsyncMock()
        body.read = AsyncMock(return_value=self._storage[Bucket][Key])

        metadata = self._metadata[Bucket].get(Key, {})

        return {
            "Body": body,
            "ContentType": metadata.get("ContentType", "application/octet-stream"),
            "ContentLength": metadata.get("ContentLength", len(self._storage[Bucket][Key])),
            "LastModified": metadata.get("LastModified", datetime.now(timezone.utc)),
            "ETag": metadata.get("ETag", '"mock-etag"'),
        }

    async def delete_object(self, Bucket: str, Key: str, **kwargs) -> dict:
        self._check_injected("delete_object")
        if Bucket in self._storage and Key in self._storage[Bucket]:
            del self._storage[Bucket][Key]
            self._metadata[Bucket].pop(Key, None)
        return {}

    async def list_objects_v2(
        self,
        Bucket: str,
        Prefix: str = "",
        MaxKeys: int = 1000,
        ContinuationToken: str | None = None,
        **kwargs
    ) -> dict:
        """List objects in a bucket.

        Args:
            Bucket: The bucket name
            Prefix: Filter by key prefix
            MaxKeys: Maximum number of keys to return
            ContinuationToken: Pagination token (the last key of the
                previous page, like S3's opaque token)

        Returns:
            Dict with Contents and pagination info
        """
        self._check_injected("list_objects_v2")
        if Bucket not in self._storage:
            return {"KeyCount": 0, "IsTruncated": False}

        all_keys = sorted(
            key for key in self._storage[Bucket].keys()
            if key.startswith(Prefix)
        )
        if ContinuationToken:
            all_keys = [key for key in all_keys if key > ContinuationToken]

        page_keys = all_keys[:MaxKeys]
        if not page_keys:
            return {"KeyCount": 0, "IsTruncated": False}

        contents = []
        for key in page_keys:
            metadata = self._metadata[Bucket].get(key, {})
            contents.append({
                "Key": key,
                "Size": metadata.get("ContentLength", len(self._storage[Bucket][key])),
                "LastModified": metadata.get("LastModified", datetime.now(timezone.utc)),
                "ETag": metadata.get("ETag", '"mock-etag"'),
            })

        result = {
            "Contents": contents,
            "KeyCount": len(contents),
            "MaxKeys": MaxKeys,
            "Prefix": Prefix,
            "IsTruncated": len(all_keys) > MaxKeys,
        }

        if result["IsTruncated"]:
            result["NextContinuationToken"] = page_keys[-1]

        return result

    def clear(self) -> None:
        """Clear all stored data."""
        self._storage.clear()
        self._metadata.clear()
        self._injected.clear()
        self._before_put.clear()

    def get_bucket_data(self, bucket: str) -> dict:
        """Get all data in a bucket (for testing assertions).

        Returns:
            Dict of {key: data} for the bucket
        """
        return {
            key: json.loads(data.decode("utf-8"))
            for key, data in self._storage.get(bucket, {}).items()
            if data
        }

    def get_etag(self, bucket: str, key: str) -> str | None:
        return self._metadata.get(bucket, {}).get(key, {}).get("ETag")


@contextmanager
def mock_s3_client():
    """Context manager providing an in-memory S3 mock.

    Yields:
        InMemoryS3 instance
    """
    mock = InMemoryS3()
    try:
        yield mock
    finally:
        mock.clear()
