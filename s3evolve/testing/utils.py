"""Testing utilities for s3evolve."""

from unittest import IsolatedAsyncioTestCase

from s3evolve.core.document import MIGRATION_VERSION_FIELD
from s3evolve.core.settings import S3evolveSettings
from s3evolve.core.store import DocumentStore
from s3evolve.testing.mocks import InMemoryS3


def create_test_settings(
    bucket_name: str = "test-bucket",
    base_path: str = "test/",
    collection: str = "documents",
    **overrides
) -> S3evolveSettings:
    """Create s3evolve settings for testing.

    Args:
        bucket_name: The S3 bucket name for tests
        base_path: The S3 base path for tests
        collection: The collection name for tests
        **overrides: Additional settings to override

    Returns:
        S3evolveSettings instance configured for testing
    """
    values = dict(
        aws_bucket_name=bucket_name,
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        aws_default_region="us-east-1",
        aws_url="http://localhost:4566",
        s3_base_path=base_path,
        collection=collection,
        reconcile_backoff_initial=0.0,
    )
    values.update(overrides)
    return S3evolveSettings(**values)


def seed_documents(
    s3: InMemoryS3,
    store: DocumentStore,
    documents: dict[str, dict],
) -> dict[str, str]:
    """Write raw documents straight into the mock, keyed by document id.

    Returns:
        Mapping of document id to ETag
    """
    return {
        doc_id: s3.store_document(store.bucket_name, store.key_for(doc_id), data)
        for doc_id, data in documents.items()
    }


def stored_versions(s3: InMemoryS3, store: DocumentStore) -> dict[str, int | None]:
    """Return the stored migrationVersion of every document in a collection."""
    return {
        store.id_for(key): data.get(MIGRATION_VERSION_FIELD)
        for key, data in s3.get_bucket_data(store.bucket_name).items()
        if key.startswith(store.prefix) and "/_system/" not in key
    }


class S3TestCase(IsolatedAsyncioTestCase):
    """Base test case with an in-memory S3 and a document store.

    Example:
        >>> class TestUsers(S3TestCase):
        ...     async def test_load(self):
        ...         self.seed({"u1": {"name": "A"}})
        ...         stored = await self.store.load("u1")
        ...         self.assertEqual(stored.data["name"], "A")
    """

    bucket_name: str = "test-bucket"
    base_path: str = "test/"
    collection: str = "documents"

    def setUp(self) -> None:
        """Set up test fixtures."""
        super().setUp()
        self.s3_client = InMemoryS3()
        self.settings = create_test_settings(
            bucket_name=self.bucket_name,
            base_path=self.base_path,
            collection=self.collection,
        )
        self.store = DocumentStore(
            self.s3_client,
            self.bucket_name,
            self.settings.collection_prefix(),
        )

    def tearDown(self) -> None:
        """Clean up after test."""
        self.s3_client.clear()
        super().tearDown()

    def seed(self, documents: dict[str, dict]) -> dict[str, str]:
        return seed_documents(self.s3_client, self.store, documents)
