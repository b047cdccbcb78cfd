"""s3evolve CLI tool."""

import asyncio
import json
import logging
from collections import Counter

import click

from s3evolve.core.client import S3ClientManager
from s3evolve.core.document import get_migration_version
from s3evolve.core.exceptions import InvalidDocumentVersion, S3evolveError
from s3evolve.core.settings import S3evolveSettings
from s3evolve.core.store import DocumentStore
from s3evolve.migrations.loader import load_registry
from s3evolve.migrations.reconcile import (
    BackoffPolicy,
    ReconciliationHistory,
    ReconciliationJob,
    ReconciliationProgress,
)


def _settings(bucket, endpoint, base_path, collection) -> S3evolveSettings:
    overrides = {"aws_bucket_name": bucket, "collection": collection}
    if endpoint:
        overrides["aws_url"] = endpoint
    if base_path is not None:
        overrides["s3_base_path"] = base_path
    return S3evolveSettings(**overrides)


def _configure_logging(settings: S3evolveSettings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _store_options(func):
    func = click.option("--base-path", default=None, help="S3 base path for data")(func)
    func = click.option("--endpoint", help="S3 endpoint URL (for LocalStack)")(func)
    func = click.option("--collection", required=True, help="Collection name")(func)
    func = click.option("--bucket", required=True, help="S3 bucket name")(func)
    return func


@click.group()
def cli():
    """s3evolve CLI - Lazy schema migrations for S3-stored documents."""
    pass


@cli.command()
def version():
    """Show s3evolve version."""
    from s3evolve import __version__

    click.echo(f"s3evolve version: {__version__}")


@cli.command()
@click.option("--bucket", required=True, help="S3 bucket name")
@click.option("--endpoint", help="S3 endpoint URL (for LocalStack)")
def init(bucket, endpoint):
    """Create the bucket if it does not exist."""
    overrides = {"aws_bucket_name": bucket}
    if endpoint:
        overrides["aws_url"] = endpoint
    settings = S3evolveSettings(**overrides)
    _configure_logging(settings)

    manager = S3ClientManager(settings)
    try:
        manager.ensure_bucket_exists()
    except S3evolveError as e:
        raise click.ClickException(str(e))
    finally:
        manager.close()

    click.echo(f"✅ Bucket '{bucket}' is ready")


@cli.command()
@click.option("--steps-dir", default="migrations", type=click.Path(), help="Migration steps directory")
@click.option("--target", type=int, default=None, help="Target version (defaults to the highest step)")
def steps(steps_dir, target):
    """List the migration steps and the target version."""
    try:
        registry = load_registry(steps_dir, target_version=target)
    except S3evolveError as e:
        raise click.ClickException(str(e))

    if not len(registry):
        click.echo("No migration steps")
    for s in registry:
        click.echo(f"  {s.version}: {s.description or '(no description)'}")
    click.echo(f"\nTarget version: {registry.target_version}")


@cli.command()
@_store_options
@click.option("--steps-dir", default="migrations", type=click.Path(), help="Migration steps directory")
@click.option("--target", type=int, default=None, help="Target version (defaults to the highest step)")
@click.option("--page-size", type=int, default=None, help="Keys listed per page")
@click.option("--concurrency", type=int, default=None, help="Documents processed in parallel")
@click.option("--max-passes", type=int, default=None, help="Re-scan passes while conflicts remain")
def reconcile(bucket, collection, endpoint, base_path, steps_dir, target, page_size, concurrency, max_passes):
    """Converge every stale document of a collection to the target version."""
    settings = _settings(bucket, endpoint, base_path, collection)
    _configure_logging(settings)

    try:
        registry = load_registry(steps_dir, target_version=target)
    except S3evolveError as e:
        raise click.ClickException(str(e))

    def report(progress: ReconciliationProgress) -> None:
        click.echo(
            f"  page {progress.pages}: {progress.migrated} migrated, "
            f"{progress.conflicts} conflicts, {progress.failed} failed"
        )

    async def _run() -> ReconciliationProgress:
        manager = S3ClientManager(settings)
        async with manager.get_async_client() as s3_client:
            store = DocumentStore(s3_client, bucket, settings.collection_prefix())
            job = ReconciliationJob(
                store,
                registry,
                page_size=page_size or settings.reconcile_page_size,
                concurrency=concurrency or settings.reconcile_concurrency,
                backoff=BackoffPolicy(
                    initial=settings.reconcile_backoff_initial,
                    maximum=settings.reconcile_backoff_max,
                ),
                history=ReconciliationHistory(store),
                on_progress=report,
            )
            return await job.run(max_passes=max_passes or settings.reconcile_max_passes)

    click.echo(f"Reconciling '{collection}' to version {registry.target_version}")
    try:
        progress = asyncio.run(_run())
    except S3evolveError as e:
        raise click.ClickException(str(e))

    click.echo(json.dumps(progress.to_dict(), indent=2))
    if progress.converged:
        click.echo("✅ Collection converged")
    else:
        click.echo("⚠️  Stale documents remain; run again later")


@cli.command()
@_store_options
@click.option("--target", type=int, default=None, help="Version considered current")
def status(bucket, collection, endpoint, base_path, target):
    """Count the documents of a collection per stored version."""
    settings = _settings(bucket, endpoint, base_path, collection)
    _configure_logging(settings)

    invalid: list[str] = []

    async def _status() -> Counter:
        counts: Counter = Counter()
        manager = S3ClientManager(settings)
        async with manager.get_async_client() as s3_client:
            store = DocumentStore(s3_client, bucket, settings.collection_prefix())
            async for page in store.scan(settings.reconcile_page_size):
                for key in page.keys:
                    stored = await store.load_key(key)
                    try:
                        counts[get_migration_version(stored.data)] += 1
                    except InvalidDocumentVersion:
                        invalid.append(key)
        return counts

    try:
        counts = asyncio.run(_status())
    except S3evolveError as e:
        raise click.ClickException(str(e))

    if not counts and not invalid:
        click.echo("No documents found")
        return

    click.echo(f"\n📋 Versions in '{collection}':\n")
    for stored_version in sorted(counts):
        marker = ""
        if target is not None:
            marker = " (stale)" if stored_version < target else " (current)"
        click.echo(f"  v{stored_version}: {counts[stored_version]}{marker}")
    if invalid:
        click.echo(f"  invalid migrationVersion: {len(invalid)}")
        for key in invalid[:10]:
            click.echo(f"    ❌ {key}")


@cli.command()
@_store_options
def history(bucket, collection, endpoint, base_path):
    """Show past reconciliation runs of a collection."""
    settings = _settings(bucket, endpoint, base_path, collection)

    async def _history():
        manager = S3ClientManager(settings)
        async with manager.get_async_client() as s3_client:
            store = DocumentStore(s3_client, bucket, settings.collection_prefix())
            return await ReconciliationHistory(store).records()

    try:
        records = asyncio.run(_history())
    except S3evolveError as e:
        raise click.ClickException(str(e))

    if not records:
        click.echo("No reconciliation runs recorded")
        return

    for record in records:
        state = "stopped" if record.stopped else "done"
        click.echo(
            f"  {record.finished_at.isoformat()} v{record.target_version} {state}: "
            f"{record.migrated} migrated, {record.conflicts} conflicts, "
            f"{record.failed} failed"
        )


if __name__ == "__main__":
    cli()
