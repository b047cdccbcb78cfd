"""S3 client manager for handling S3 connections."""

import threading
from collections.abc import AsyncGenerator
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, Protocol, runtime_checkable

from aiobotocore.client import AioBaseClient
from aiobotocore.session import get_session
from boto3.session import Session
from botocore.client import BaseClient
from botocore.config import Config
from botocore.exceptions import ClientError

from s3evolve.core.exceptions import S3OperationError, StoreUnavailable
from s3evolve.core.settings import S3evolveSettings


@runtime_checkable
class S3ClientProtocol(Protocol):
    """Protocol for the S3 operations the engine relies on."""

    async def get_object(self, Bucket: str, Key: str, **kwargs) -> dict[str, Any]:
        """Get an object from S3."""
        ...

    async def put_object(
        self, Bucket: str, Key: str, Body: bytes | str, **kwargs
    ) -> dict[str, Any]:
        """Put an object to S3, optionally conditioned on IfMatch/IfNoneMatch."""
        ...

    async def delete_object(self, Bucket: str, Key: str, **kwargs) -> dict[str, Any]:
        """Delete an object from S3."""
        ...

    async def list_objects_v2(self, Bucket: str, **kwargs) -> dict[str, Any]:
        """List objects in S3."""
        ...


def adjust_endpoint_url(
    endpoint_url: str | None, bucket_name: str | None
) -> str | None:
    """Adjust endpoint URL for path-style addressing if needed.

    Args:
        endpoint_url: The S3 endpoint URL
        bucket_name: The S3 bucket name

    Returns:
        Adjusted endpoint URL or None
    """
    if not endpoint_url:
        return None
    if bucket_name and f"{bucket_name}." in endpoint_url:
        return endpoint_url.replace(f"{bucket_name}.", "")
    return endpoint_url


class S3ClientManager:
    """Creates S3 clients from settings.

    Async clients are used for all document traffic; the sync client
    only bootstraps the bucket.
    """

    def __init__(self, settings: S3evolveSettings | None = None):
        self.settings = settings or S3evolveSettings()
        self._endpoint_url = adjust_endpoint_url(
            self.settings.aws_url, self.settings.aws_bucket_name
        )
        self._client_config = Config(
            s3={"addressing_style": "path"},
            retries={
                "max_attempts": self.settings.aws_retry_attempts,
                "mode": "standard",
            },
        )
        self._sync_client: BaseClient | None = None
        self._async_session = None
        self._lock = threading.Lock()

    @property
    def endpoint_url(self) -> str | None:
        return self._endpoint_url

    def get_sync_client(self) -> BaseClient:
        """Get or create a synchronous S3 client.

        Raises:
            StoreUnavailable: If client creation fails
        """
        if self._sync_client is None:
            with self._lock:
                if self._sync_client is None:
                    try:
                        session = Session()
                        self._sync_client = session.client(
                            "s3",
                            region_name=self.settings.aws_default_region,
                            aws_access_key_id=self.settings.aws_access_key_id,
                            aws_secret_access_key=self.settings.aws_secret_access_key,
                            endpoint_url=self._endpoint_url,
                            config=self._client_config,
                        )
                    except Exception as e:
                        raise StoreUnavailable(
                            message=f"Failed to create sync S3 client: {e}",
                            original_error=e,
                            endpoint=self._endpoint_url,
                        )
        return self._sync_client

    @asynccontextmanager
    async def get_async_client(self) -> AsyncGenerator[AioBaseClient, None]:
        """Get an async S3 client within a context manager.

        Only client creation failures are translated here; errors raised by
        the body of the ``async with`` block propagate unchanged.

        Yields:
            An aiobotocore S3 client
        """
        if self._async_session is None:
            self._async_session = get_session()

        async with AsyncExitStack() as stack:
            try:
                client = await stack.enter_async_context(
                    self._async_session.create_client(
                        "s3",
                        region_name=self.settings.aws_default_region,
                        aws_access_key_id=self.settings.aws_access_key_id,
                        aws_secret_access_key=self.settings.aws_secret_access_key,
                        endpoint_url=self._endpoint_url,
                        config=self._client_config,
                    )
                )
            except Exception as e:
                raise StoreUnavailable(
                    message=f"Failed to create async S3 client: {e}",
                    original_error=e,
                    endpoint=self._endpoint_url,
                )
            yield client

    def ensure_bucket_exists(self) -> None:
        """Ensure the configured bucket exists, creating it if necessary.

        Raises:
            StoreUnavailable: If bucket creation fails
            S3OperationError: If the bucket check is refused
        """
        bucket = self.settings.require_bucket()
        client = self.get_sync_client()
        try:
            client.head_bucket(Bucket=bucket)
        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            if error_code in ("404", "NoSuchBucket", "NotFound"):
                try:
                    client.create_bucket(Bucket=bucket)
                except ClientError as create_error:
                    raise StoreUnavailable(
                        message=f"Failed to create bucket: {create_error}",
                        original_error=create_error,
                        endpoint=self._endpoint_url,
                    )
            elif error_code == "403":
                raise S3OperationError(
                    "AccessDenied checking bucket existence",
                    operation="head_bucket",
                )
            else:
                raise S3OperationError(
                    f"Error checking bucket: {e}", operation="head_bucket"
                )

    def close(self) -> None:
        """Release the sync client."""
        if self._sync_client:
            self._sync_client.close()
            self._sync_client = None
