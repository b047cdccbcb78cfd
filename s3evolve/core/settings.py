"""Settings for s3evolve, loaded from the environment or a .env file."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from s3evolve.core.exceptions import S3ConfigurationError


class S3evolveSettings(BaseSettings):
    """Runtime configuration.

    Every field can be set through an environment variable of the same
    name in upper case (e.g. ``AWS_BUCKET_NAME``).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # AWS
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_default_region: str = "us-east-1"
    aws_bucket_name: str | None = None
    aws_url: str | None = None
    aws_retry_attempts: int = Field(3, ge=0)

    # Layout
    s3_base_path: str = "s3evolve-data/"
    collection: str | None = None

    # Reconciliation
    reconcile_page_size: int = Field(100, ge=1, le=1000)
    reconcile_concurrency: int = Field(8, ge=1)
    reconcile_backoff_initial: float = Field(1.0, ge=0)
    reconcile_backoff_max: float = Field(60.0, ge=0)
    reconcile_max_passes: int = Field(1, ge=1)

    log_level: str = "INFO"

    def collection_prefix(self, collection: str | None = None) -> str:
        """Return the S3 prefix holding a collection's documents."""
        name = collection or self.collection
        if not name:
            raise S3ConfigurationError(missing_fields=["collection"])
        base = self.s3_base_path
        if base and not base.endswith("/"):
            base = f"{base}/"
        return f"{base}{name.strip('/')}/"

    def require_bucket(self) -> str:
        """Return the bucket name, failing loudly when it is not configured."""
        if not self.aws_bucket_name:
            raise S3ConfigurationError(missing_fields=["aws_bucket_name"])
        return self.aws_bucket_name
