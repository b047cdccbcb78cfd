"""Tests for the s3evolve command line interface."""

import json
import textwrap
from contextlib import asynccontextmanager

import pytest
from click.testing import CliRunner

from s3evolve import __version__, cli as cli_module
from s3evolve.cli import cli
from s3evolve.core.document import MIGRATION_VERSION_FIELD
from s3evolve.testing import InMemoryS3

STEP_FILE = """
from s3evolve.migrations import MigrationStep, WrapInList

telephones = MigrationStep(
    version=1,
    description="telephone becomes a list",
    operations=[WrapInList("telephone", "telephones")],
)
"""


@pytest.fixture
def steps_dir(tmp_path):
    directory = tmp_path / "migrations"
    directory.mkdir()
    (directory / "001_telephones.py").write_text(textwrap.dedent(STEP_FILE))
    return directory


@pytest.fixture
def shared_s3(monkeypatch):
    """Route the CLI's S3 clients to one in-memory mock."""
    s3 = InMemoryS3()
    s3.manager_calls = []

    class FakeManager:
        def __init__(self, settings):
            self.settings = settings

        def ensure_bucket_exists(self):
            s3.manager_calls.append(("ensure_bucket_exists", self.settings.aws_bucket_name))

        def close(self):
            s3.manager_calls.append(("close", None))

        @asynccontextmanager
        async def get_async_client(self):
            yield s3

    monkeypatch.setattr(cli_module, "S3ClientManager", FakeManager)
    return s3


def store_args(*extra):
    return [*extra, "--bucket", "cli-bucket", "--collection", "users", "--base-path", "app/"]


class TestCli:
    def test_version(self):
        result = CliRunner().invoke(cli, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_steps(self, steps_dir):
        result = CliRunner().invoke(cli, ["steps", "--steps-dir", str(steps_dir)])

        assert result.exit_code == 0
        assert "1: telephone becomes a list" in result.output
        assert "Target version: 1" in result.output

    def test_steps_bad_target(self, steps_dir):
        result = CliRunner().invoke(
            cli, ["steps", "--steps-dir", str(steps_dir), "--target", "0"]
        )

        assert result.exit_code != 0
        assert "Target version 0" in result.output

    def test_reconcile(self, steps_dir, shared_s3):
        shared_s3.store_document("cli-bucket", "app/users/a.json", {"telephone": "555"})
        shared_s3.store_document("cli-bucket", "app/users/b.json", {"telephone": "777"})

        result = CliRunner().invoke(
            cli, ["reconcile", *store_args("--steps-dir", str(steps_dir))]
        )

        assert result.exit_code == 0, result.output
        assert "Collection converged" in result.output
        data = shared_s3.get_bucket_data("cli-bucket")
        assert data["app/users/a.json"]["telephones"] == ["555"]
        assert data["app/users/b.json"][MIGRATION_VERSION_FIELD] == 1

    def test_status(self, shared_s3):
        shared_s3.store_document("cli-bucket", "app/users/a.json", {})
        shared_s3.store_document("cli-bucket", "app/users/b.json", {MIGRATION_VERSION_FIELD: 1})

        result = CliRunner().invoke(cli, ["status", *store_args("--target", "1")])

        assert result.exit_code == 0, result.output
        assert "v0: 1 (stale)" in result.output
        assert "v1: 1 (current)" in result.output

    def test_history(self, steps_dir, shared_s3):
        shared_s3.store_document("cli-bucket", "app/users/a.json", {})
        runner = CliRunner()

        runner.invoke(cli, ["reconcile", *store_args("--steps-dir", str(steps_dir))])
        result = runner.invoke(cli, ["history", *store_args()])

        assert result.exit_code == 0, result.output
        assert "v1 done: 1 migrated" in result.output

    def test_history_empty(self, shared_s3):
        result = CliRunner().invoke(cli, ["history", *store_args()])

        assert "No reconciliation runs recorded" in result.output

    def test_reconcile_reports_json(self, steps_dir, shared_s3):
        shared_s3.store_document("cli-bucket", "app/users/a.json", {})

        result = CliRunner().invoke(
            cli, ["reconcile", *store_args("--steps-dir", str(steps_dir))]
        )

        payload = result.output[result.output.index("{"): result.output.rindex("}") + 1]
        assert json.loads(payload)["migrated"] == 1

    def test_init(self, shared_s3):
        result = CliRunner().invoke(cli, ["init", "--bucket", "cli-bucket"])

        assert result.exit_code == 0, result.output
        assert "Bucket 'cli-bucket' is ready" in result.output
        assert shared_s3.manager_calls == [
            ("ensure_bucket_exists", "cli-bucket"),
            ("close", None),
        ]

    def test_status_lists_invalid_versions(self, shared_s3):
        shared_s3.store_document("cli-bucket", "app/users/a.json", {MIGRATION_VERSION_FIELD: 1})
        shared_s3.store_document("cli-bucket", "app/users/b.json", {MIGRATION_VERSION_FIELD: "abc"})

        result = CliRunner().invoke(cli, ["status", *store_args()])

        assert result.exit_code == 0, result.output
        assert "v1: 1" in result.output
        assert "invalid migrationVersion: 1" in result.output
        assert "app/users/b.json" in result.output
