"""Shared pytest configuration."""

pytest_plugins = ["s3evolve.testing.fixtures"]
