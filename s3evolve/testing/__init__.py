"""Testing utilities for s3evolve.

This module provides an in-memory S3 mock with conditional-write support,
test settings and pytest fixtures.

Usage in conftest.py:
    from s3evolve.testing import InMemoryS3, mock_s3_client

    @pytest.fixture
    def s3_client():
        with mock_s3_client() as client:
            yield client

Or use provided fixtures directly:
    pytest_plugins = ["s3evolve.testing.fixtures"]
"""

from s3evolve.testing.mocks import InMemoryS3, mock_s3_client
from s3evolve.testing.utils import (
    S3TestCase,
    create_test_settings,
    seed_documents,
    stored_versions,
)

__all__ = [
    "InMemoryS3",
    "mock_s3_client",
    "create_test_settings",
    "seed_documents",
    "stored_versions",
    "S3TestCase",
]
