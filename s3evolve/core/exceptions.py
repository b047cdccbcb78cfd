"""Custom exceptions for s3evolve.

This module provides a hierarchy of exceptions with helpful error messages
so that operators can tell a broken deploy from a transient store outage.
"""


class S3evolveError(Exception):
    """Base exception for all s3evolve errors.

    All s3evolve exceptions inherit from this class, making it easy
    to catch all engine-specific errors.
    """

    def __init__(self, message: str, hint: str | None = None):
        """Initialize the exception.

        Args:
            message: The error message
            hint: Optional hint for resolving the error
        """
        self.message = message
        self.hint = hint
        super().__init__(message)

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message}\nHint: {self.hint}"
        return self.message


class RegistryConfigurationError(S3evolveError):
    """Raised when a migration registry is malformed.

    This is a start-up error: a process that cannot build its registry
    must not serve traffic.
    """

    def __init__(self, message: str, version: int | None = None):
        """Initialize the configuration error.

        Args:
            message: The error message
            version: The step version involved, if any
        """
        self.version = version

        hint = None
        if "duplicate" in message.lower():
            hint = "Each migration step needs its own version number."
        elif "target" in message.lower():
            hint = "The target version must be at least the highest step version."
        elif "positive" in message.lower():
            hint = "Step versions start at 1; version 0 means 'never migrated'."

        super().__init__(message, hint)


class MigrationTransformError(S3evolveError):
    """Raised when a step's transform fails for a specific document."""

    def __init__(
        self,
        document_id: str | None,
        version: int,
        original_error: Exception | None = None,
    ):
        """Initialize the transform error.

        Args:
            document_id: Identity of the document being upgraded
            version: Version of the step whose transform failed
            original_error: The exception raised by the transform
        """
        self.document_id = document_id
        self.version = version
        self.original_error = original_error

        message = (
            f"Migration step {version} failed for document "
            f"'{document_id if document_id is not None else 'unknown'}'"
        )
        if original_error is not None:
            message = f"{message}: {original_error}"

        super().__init__(
            message,
            "The stored document is untouched; fix the step and reload it.",
        )


class UnsupportedDocumentVersion(S3evolveError):
    """Raised when a document predates the registry's oldest supported version."""

    def __init__(
        self,
        document_id: str | None,
        version: int,
        minimum_version: int,
    ):
        self.document_id = document_id
        self.version = version
        self.minimum_version = minimum_version
        super().__init__(
            f"Document '{document_id}' is at version {version}, "
            f"below the minimum supported version {minimum_version}",
            "Run the reconciliation job with a release that still ships the "
            "retired steps before raising the minimum version.",
        )


class InvalidDocumentVersion(S3evolveError):
    """Raised when a stored migrationVersion is not a non-negative integer."""

    def __init__(self, document_id: str | None, value: object):
        self.document_id = document_id
        self.value = value
        super().__init__(
            f"Document '{document_id}' has an invalid migrationVersion {value!r}",
            "migrationVersion must be a non-negative integer or absent; "
            "repair the stored document.",
        )


class ConcurrentWriteConflict(S3evolveError):
    """Raised when a conditional write loses against a concurrent write."""

    def __init__(self, key: str, expected_etag: str | None = None):
        """Initialize the conflict error.

        Args:
            key: The S3 key that was being written
            expected_etag: The ETag the write was conditioned on
        """
        self.key = key
        self.expected_etag = expected_etag
        super().__init__(
            f"Object '{key}' changed since it was read",
            "Reload the document and apply the change again.",
        )


class StoreUnavailable(S3evolveError):
    """Raised when the S3 store cannot be reached or is throttling.

    This exception wraps underlying transport errors with helpful
    context about what might be wrong.
    """

    def __init__(
        self,
        message: str | None = None,
        original_error: Exception | None = None,
        endpoint: str | None = None,
    ):
        """Initialize the unavailable error.

        Args:
            message: Custom error message (optional)
            original_error: The original exception that caused this error
            endpoint: The S3 endpoint URL being connected to
        """
        self.original_error = original_error
        self.endpoint = endpoint

        if message:
            final_message = message
            hint = None
        elif original_error:
            final_message, hint = self._format_error(original_error, endpoint)
        else:
            final_message = "S3 store is unavailable"
            hint = "Check your network connection and AWS endpoint configuration."

        super().__init__(final_message, hint)

    def _format_error(
        self, error: Exception, endpoint: str | None
    ) -> tuple[str, str | None]:
        """Format the error message based on the underlying error."""
        error_str = str(error)

        if "Could not connect" in error_str or "Connection refused" in error_str:
            if endpoint and "localhost" in endpoint:
                return (
                    f"Could not connect to S3 at {endpoint}",
                    "If using LocalStack, ensure it's running: docker run -d -p 4566:4566 localstack/localstack",
                )
            return (
                f"Could not connect to S3 at {endpoint or 'AWS'}",
                "Check your network connection and AWS endpoint configuration.",
            )

        if "SlowDown" in error_str or "ServiceUnavailable" in error_str:
            return (
                "S3 is throttling requests",
                "Lower the reconciliation concurrency or page size.",
            )

        if "timeout" in error_str.lower():
            return (f"Timed out talking to S3: {error}", None)

        return (f"S3 store unavailable: {error}", None)


class S3OperationError(S3evolveError):
    """Raised when an S3 operation fails for a non-transient reason."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        key: str | None = None,
        original_error: Exception | None = None,
    ):
        """Initialize the operation error.

        Args:
            message: The error message
            operation: The S3 operation that failed (e.g., 'get_object')
            key: The S3 key involved in the operation
            original_error: The original exception
        """
        self.operation = operation
        self.key = key
        self.original_error = original_error

        hint = None
        if "NoSuchBucket" in message:
            hint = "The specified bucket does not exist."
        elif "AccessDenied" in message:
            hint = "Check your IAM permissions for this operation."
        elif "NotImplemented" in message:
            hint = "The S3 endpoint may not support conditional writes."

        super().__init__(message, hint)


class DocumentNotFoundError(S3evolveError):
    """Raised when a document does not exist in the collection."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Document '{key}' not found")


class FieldDeclarationError(S3evolveError):
    """Raised when a field's version-range declaration is inconsistent."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field

        hint = None
        if field:
            hint = f"Check the version ranges declared for field '{field}'."

        super().__init__(message, hint)


class S3ConfigurationError(S3evolveError):
    """Raised when s3evolve configuration is invalid."""

    def __init__(
        self,
        message: str | None = None,
        missing_fields: list[str] | None = None,
    ):
        """Initialize the configuration error.

        Args:
            message: Custom error message
            missing_fields: List of missing configuration fields
        """
        self.missing_fields = missing_fields or []

        if missing_fields:
            fields_str = ", ".join(missing_fields)
            message = f"Missing required configuration: {fields_str}"
            hint = "Set these as environment variables or in your .env file."
        else:
            hint = "Check your s3evolve configuration."

        super().__init__(message or "Invalid s3evolve configuration", hint)
