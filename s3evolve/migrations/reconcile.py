"""Background reconciliation of stale documents.

The job walks a collection page by page and rewrites every document
stored below the registry's target version. Each write-back is
conditioned on the ETag read with the document, so a foreground save that
lands in between is never overwritten: the job's write is rejected and
the document is left for the next pass.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, List

from s3evolve.core.document import get_migration_version
from s3evolve.core.exceptions import (
    ConcurrentWriteConflict,
    DocumentNotFoundError,
    InvalidDocumentVersion,
    MigrationTransformError,
    S3OperationError,
    StoreUnavailable,
    UnsupportedDocumentVersion,
)
from s3evolve.core.store import DocumentStore, StorePage
from s3evolve.migrations.registry import MigrationRegistry

logger = logging.getLogger(__name__)


@dataclass
class BackoffPolicy:
    """Exponential backoff used while the store is unavailable.

    Attributes:
        initial: Delay before the first retry, in seconds
        maximum: Upper bound for a single delay
        multiplier: Growth factor between consecutive delays
        max_consecutive_failures: Give up after this many failures in a
            row; None retries forever
    """

    initial: float = 1.0
    maximum: float = 60.0
    multiplier: float = 2.0
    max_consecutive_failures: int | None = None

    def delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.maximum, self.initial * (self.multiplier ** max(attempt - 1, 0)))


@dataclass
class ReconciliationProgress:
    """Counters describing a reconciliation run.

    Attributes:
        passes: Completed or running passes over the collection
        pages: Pages processed
        scanned: Documents looked at
        migrated: Documents rewritten at the target version
        up_to_date: Documents already at or above the target version
        conflicts: Write-backs rejected because of a concurrent write
        failed: Documents whose upgrade raised
        deferred: Documents left for later because the store was unavailable
        skipped: Documents that vanished between listing and loading
        pending: Conflicts and deferrals of the last pass, still stale
    """

    target_version: int = 0
    passes: int = 0
    pages: int = 0
    scanned: int = 0
    migrated: int = 0
    up_to_date: int = 0
    conflicts: int = 0
    failed: int = 0
    deferred: int = 0
    skipped: int = 0
    pending: int = 0
    stopped: bool = False
    started_at: datetime | None = None
    finished_at: datetime | None = None
    failed_documents: List[str] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        """True when the last pass left nothing behind that a retry could fix."""
        return self.pending == 0 and self.failed == 0 and not self.stopped

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "target_version": self.target_version,
            "passes": self.passes,
            "pages": self.pages,
            "scanned": self.scanned,
            "migrated": self.migrated,
            "up_to_date": self.up_to_date,
            "conflicts": self.conflicts,
            "failed": self.failed,
            "deferred": self.deferred,
            "skipped": self.skipped,
            "pending": self.pending,
            "stopped": self.stopped,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "failed_documents": list(self.failed_documents),
        }


@dataclass
class _PassCounters:
    conflicts: int = 0
    deferred: int = 0


@dataclass
class ReconciliationRecord:
    """Record of a finished reconciliation run stored in S3."""

    target_version: int
    migrated: int
    conflicts: int
    failed: int
    stopped: bool
    finished_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @classmethod
    def from_progress(cls, progress: ReconciliationProgress) -> "ReconciliationRecord":
        return cls(
            target_version=progress.target_version,
            migrated=progress.migrated,
            conflicts=progress.conflicts,
            failed=progress.failed,
            stopped=progress.stopped,
            finished_at=progress.finished_at or datetime.now(timezone.utc),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "target_version": self.target_version,
            "migrated": self.migrated,
            "conflicts": self.conflicts,
            "failed": self.failed,
            "stopped": self.stopped,
            "finished_at": self.finished_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReconciliationRecord":
        """Create from dictionary."""
        return cls(
            target_version=data["target_version"],
            migrated=data.get("migrated", 0),
            conflicts=data.get("conflicts", 0),
            failed=data.get("failed", 0),
            stopped=data.get("stopped", False),
            finished_at=datetime.fromisoformat(data["finished_at"]),
        )


class ReconciliationHistory:
    """Keeps past run records next to the collection."""

    HISTORY_NAME = "reconciliation_history.json"

    def __init__(self, store: DocumentStore, limit: int = 100):
        self.store = store
        self.limit = limit

    async def records(self) -> List[ReconciliationRecord]:
        data = await self.store.read_system_record(self.HISTORY_NAME)
        if not data:
            return []
        return [ReconciliationRecord.from_dict(r) for r in data.get("records", [])]

    async def append(self, record: ReconciliationRecord) -> None:
        data = await self.store.read_system_record(self.HISTORY_NAME) or {"records": []}
        data["records"].append(record.to_dict())
        data["records"] = data["records"][-self.limit:]
        await self.store.write_system_record(self.HISTORY_NAME, data)


class ReconciliationJob:
    """Converges a collection to the registry's target version.

    The job:
    - Lists the collection one page at a time (never the whole collection)
    - Upgrades at most ``concurrency`` documents at once
    - Writes back with ``IfMatch`` on the ETag it read
    - Drops documents that lost a race and re-scans in a later pass
    - Backs off and resumes when the store is unavailable

    Example:
        >>> job = ReconciliationJob(store, registry, page_size=100, concurrency=4)
        >>> progress = await job.run(max_passes=3)
        >>> progress.migrated
        42
    """

    def __init__(
        self,
        store: DocumentStore,
        registry: MigrationRegistry,
        page_size: int = 100,
        concurrency: int = 8,
        backoff: BackoffPolicy | None = None,
        history: ReconciliationHistory | None = None,
        on_progress: Callable[[ReconciliationProgress], Any] | None = None,
    ):
        """Initialize the job.

        Args:
            store: The collection to reconcile
            registry: Registry providing read_upgrade and write_stamp
            page_size: Keys requested per listing call
            concurrency: Maximum documents processed at the same time
            backoff: Retry policy for store outages
            history: Where to record finished runs, if anywhere
            on_progress: Called with the progress after every page
        """
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.store = store
        self.registry = registry
        self.page_size = page_size
        self.concurrency = concurrency
        self.backoff = backoff or BackoffPolicy()
        self.history = history
        self.on_progress = on_progress

        self._progress = ReconciliationProgress(target_version=registry.target_version)
        self._stop_requested = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def progress(self) -> ReconciliationProgress:
        return self._progress

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, max_passes: int = 1) -> asyncio.Task:
        """Run the job in a background task.

        Raises:
            RuntimeError: If the job is already running
        """
        if self.is_running:
            raise RuntimeError("Reconciliation job is already running")
        self._stop_requested.clear()
        self._task = asyncio.create_task(self._run(max_passes))
        return self._task

    def stop(self) -> None:
        """Ask the job to stop at the next page boundary."""
        self._stop_requested.set()

    async def cancel(self) -> None:
        """Cancel the background task immediately.

        Documents already written stay migrated; documents not yet written
        stay at their old version. No document is left half-written.
        """
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def wait(self) -> ReconciliationProgress:
        """Wait for the background task and return its progress."""
        if self._task is None:
            return self._progress
        return await self._task

    async def run(self, max_passes: int = 1) -> ReconciliationProgress:
        """Reconcile the collection.

        A further pass is made while the previous one hit conflicts or
        deferred documents, up to ``max_passes``.

        Returns:
            The progress counters of the run
        """
        self._stop_requested.clear()
        return await self._run(max_passes)

    async def _run(self, max_passes: int) -> ReconciliationProgress:
        progress = self._progress = ReconciliationProgress(
            target_version=self.registry.target_version,
            started_at=datetime.now(timezone.utc),
        )
        logger.info(
            f"Reconciling {self.store.prefix} to version "
            f"{self.registry.target_version}"
        )

        try:
            for _ in range(max_passes):
                if self._stop_requested.is_set():
                    progress.stopped = True
                    break
                progress.passes += 1
                counters = await self._run_pass()
                progress.pending = counters.conflicts + counters.deferred
                if self._stop_requested.is_set():
                    progress.stopped = True
                    break
                if counters.conflicts == 0 and counters.deferred == 0:
                    break
                logger.info(
                    f"Pass {progress.passes} left {counters.conflicts} conflict(s) "
                    f"and {counters.deferred} deferred document(s); re-scanning"
                )
        except asyncio.CancelledError:
            progress.stopped = True
            progress.finished_at = datetime.now(timezone.utc)
            logger.warning(f"Reconciliation of {self.store.prefix} cancelled")
            raise

        progress.finished_at = datetime.now(timezone.utc)
        logger.info(
            f"Reconciliation of {self.store.prefix} finished: "
            f"{progress.migrated} migrated, {progress.up_to_date} up to date, "
            f"{progress.conflicts} conflicts, {progress.failed} failed"
        )

        if self.history is not None:
            try:
                await self.history.append(ReconciliationRecord.from_progress(progress))
            except (StoreUnavailable, S3OperationError) as e:
                logger.warning(f"Failed to record reconciliation run: {e}")

        return progress

    async def _run_pass(self) -> _PassCounters:
        counters = _PassCounters()
        token = None
        while not self._stop_requested.is_set():
            page = await self._list_with_backoff(token)
            outage = await self._process_page(page, counters)
            self._progress.pages += 1
            self._notify()

            if page.is_last:
                break
            token = page.next_token
            if outage:
                await asyncio.sleep(self.backoff.initial)
        return counters

    async def _list_with_backoff(self, token: str | None) -> StorePage:
        attempt = 0
        while True:
            try:
                return await self.store.list_page(token, self.page_size)
            except StoreUnavailable as e:
                attempt += 1
                limit = self.backoff.max_consecutive_failures
                if limit is not None and attempt >= limit:
                    logger.error(
                        f"Giving up on {self.store.prefix} after {attempt} "
                        f"failed listing attempts: {e}"
                    )
                    raise
                delay = self.backoff.delay(attempt)
                logger.warning(
                    f"Store unavailable while listing {self.store.prefix} "
                    f"(attempt {attempt}), retrying in {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)

    async def _process_page(self, page: StorePage, counters: _PassCounters) -> bool:
        """Process every key of a page; True if the store was unavailable."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(key: str) -> bool:
            async with semaphore:
                return await self._reconcile_document(key, counters)

        results = await asyncio.gather(*(bounded(key) for key in page.keys))
        return any(results)

    async def _reconcile_document(self, key: str, counters: _PassCounters) -> bool:
        progress = self._progress
        progress.scanned += 1

        try:
            stored = await self.store.load_key(key)
        except DocumentNotFoundError:
            progress.skipped += 1
            return False
        except StoreUnavailable as e:
            logger.warning(f"Deferring {key}: {e}")
            progress.deferred += 1
            counters.deferred += 1
            return True
        except S3OperationError as e:
            logger.error(f"Failed to load {key} during reconciliation: {e}")
            self._record_failure(key)
            return False

        doc_id = self.store.id_for(key)
        try:
            version = get_migration_version(stored.data, doc_id)
        except InvalidDocumentVersion as e:
            logger.error(f"Cannot reconcile {key}: {e.message}")
            self._record_failure(key)
            return False

        if version >= self.registry.target_version:
            progress.up_to_date += 1
            return False

        if stored.etag is None:
            # Write-backs are always conditional
            logger.error(f"No ETag returned for {key}; refusing an unconditional write")
            self._record_failure(key)
            return False

        try:
            upgraded = self.registry.read_upgrade(stored.data, document_id=doc_id)
        except (MigrationTransformError, UnsupportedDocumentVersion) as e:
            logger.error(f"Cannot reconcile {key}: {e.message}")
            self._record_failure(key)
            return False

        self.registry.write_stamp(upgraded)

        try:
            await self.store.put(key, upgraded, if_match=stored.etag)
        except ConcurrentWriteConflict:
            logger.info(f"Concurrent write on {key}; leaving it for the next pass")
            progress.conflicts += 1
            counters.conflicts += 1
            return False
        except DocumentNotFoundError:
            logger.info(f"{key} was deleted before its write-back")
            progress.skipped += 1
            return False
        except StoreUnavailable as e:
            logger.warning(f"Deferring {key}: {e}")
            progress.deferred += 1
            counters.deferred += 1
            return True
        except S3OperationError as e:
            logger.error(f"Failed to write {key} during reconciliation: {e}")
            self._record_failure(key)
            return False

        progress.migrated += 1
        return False

    def _record_failure(self, key: str) -> None:
        self._progress.failed += 1
        if len(self._progress.failed_documents) < 100:
            self._progress.failed_documents.append(key)

    def _notify(self) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(self._progress)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")
