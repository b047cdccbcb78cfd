"""Pytest fixtures for s3evolve testing.

To use these fixtures, add to your conftest.py:

    pytest_plugins = ["s3evolve.testing.fixtures"]

Or import specific fixtures:

    from s3evolve.testing.fixtures import s3evolve_settings, mock_s3
"""

import pytest

from s3evolve.core.settings import S3evolveSettings
from s3evolve.core.store import DocumentStore
from s3evolve.migrations.base import MigrationStep
from s3evolve.migrations.operations import WrapInList
from s3evolve.migrations.registry import MigrationRegistry
from s3evolve.testing.mocks import InMemoryS3
from s3evolve.testing.utils import create_test_settings


@pytest.fixture
def s3evolve_settings() -> S3evolveSettings:
    """Provide test settings for s3evolve."""
    return create_test_settings()


@pytest.fixture
def mock_s3() -> InMemoryS3:
    """Provide in-memory S3 mock."""
    s3 = InMemoryS3()
    yield s3
    s3.clear()


@pytest.fixture
def s3_test_bucket() -> str:
    """Provide test bucket name."""
    return "test-bucket"


@pytest.fixture
def document_store(
    mock_s3: InMemoryS3,
    s3evolve_settings: S3evolveSettings,
) -> DocumentStore:
    """Provide a DocumentStore over the mock for the test collection."""
    return DocumentStore(
        mock_s3,
        s3evolve_settings.require_bucket(),
        s3evolve_settings.collection_prefix(),
    )


@pytest.fixture
def telephone_registry() -> MigrationRegistry:
    """Registry with one step turning ``telephone`` into ``telephones``."""
    return MigrationRegistry([
        MigrationStep(
            version=1,
            description="telephone becomes a list",
            operations=[WrapInList("telephone", "telephones")],
        ),
    ])
