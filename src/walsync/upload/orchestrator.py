"""Upload coordinator: per-file entry point of the Walrus upload pipeline.

For each file the coordinator decides between three paths before handing
off to :class:`~walsync.upload.executor.StageExecutor`:

* **skip** -- the blob is already certified on Walrus (no local record, or
  a stale ``completed`` record);
* **fresh start** -- no record and nothing certified remotely;
* **resume** -- a record exists at a non-terminal stage.

Files are processed strictly one after another.  Per-file errors are
logged and counted, never raised, so one bad file cannot abort a batch.
Configuration errors are the exception: they are raised before any I/O.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from walsync.upload.executor import (
    OutcomeKind,
    StageExecutor,
    StageOutcome,
    resolve_certification_status,
)
from walsync.upload.gateway import BlobGateway, CertificationStatus
from walsync.upload.options import UploadOptions, validate_options
from walsync.upload.records import RESUMABLE_STAGES, Stage, UploadRecord
from walsync.upload.state import AsyncUploadStateStore

if TYPE_CHECKING:
    from walsync.upload.progress import UploadProgressTracker

logger = logging.getLogger(__name__)


async def pending_records(store: AsyncUploadStateStore) -> list[UploadRecord]:
    """Return persisted records in a resumable stage."""
    records = await store.list_all()
    return [r for r in records if r.stage in RESUMABLE_STAGES]


async def list_resumable_paths(store: AsyncUploadStateStore) -> list[str]:
    """Return the distinct source paths of resumable records."""
    paths: list[str] = []
    for record in await pending_records(store):
        if record.source_path not in paths:
            paths.append(record.source_path)
    return paths


class UploadCoordinator:
    """Resolves new/resumable/done uploads and runs them sequentially.

    Usage::

        async with AsyncUploadStateStore(config.state_db) as store:
            coordinator = UploadCoordinator(client, store, signer.address)
            await coordinator.upload_many(paths, UploadOptions(epochs=5))
            print(coordinator.summary)

    Args:
        gateway: Remote protocol operations.
        store: Durable record store.
        owner: Sui address of the signer that owns registered blobs.
        max_resets: Passed to the stage executor.
        progress: Optional :class:`UploadProgressTracker` (omit for headless mode).
    """

    def __init__(
        self,
        gateway: BlobGateway,
        store: AsyncUploadStateStore,
        owner: str,
        *,
        max_resets: int = 2,
        progress: UploadProgressTracker | None = None,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._progress = progress
        self._executor = StageExecutor(
            gateway,
            store,
            owner,
            max_resets=max_resets,
            on_transition=self._on_transition,
        )

        self._succeeded = 0
        self._skipped = 0
        self._failed = 0
        self._total = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def upload_one(
        self, path: str | Path, options: UploadOptions | None
    ) -> StageOutcome:
        """Upload (or resume, or skip) a single file.

        Raises:
            ConfigurationError: If *options* are invalid.  Nothing else is
                raised; per-file failures come back as the outcome.
        """
        options = validate_options(options)
        source = Path(path).absolute()
        self._total += 1
        if self._progress is not None:
            self._progress.file_started(str(source))

        try:
            outcome = await self._upload(source, options)
        except Exception as exc:
            logger.debug("Unhandled error uploading %s", source, exc_info=True)
            outcome = StageOutcome(OutcomeKind.FATAL_FAILURE, None, None, str(exc))

        self._record_outcome(source, outcome)
        return outcome

    async def upload_many(
        self, paths: Iterable[str | Path], options: UploadOptions | None
    ) -> dict[str, int]:
        """Upload *paths* one at a time and return the summary counts."""
        options = validate_options(options)
        for path in paths:
            await self.upload_one(path, options)
        logger.info(
            "Upload complete: %d succeeded, %d skipped, %d failed of %d total",
            self._succeeded, self._skipped, self._failed, self._total,
        )
        return self.summary

    async def list_resumable(self) -> list[str]:
        """Return the source paths of resumable uploads, for ``--resume``."""
        return await list_resumable_paths(self._store)

    @property
    def summary(self) -> dict[str, int]:
        """Return upload summary counts."""
        return {
            "total": self._total,
            "succeeded": self._succeeded,
            "skipped": self._skipped,
            "failed": self._failed,
        }

    # ------------------------------------------------------------------
    # Decision logic
    # ------------------------------------------------------------------

    async def _upload(self, source: Path, options: UploadOptions) -> StageOutcome:
        data = await asyncio.to_thread(source.read_bytes)
        fingerprint = await self._gateway.compute_fingerprint(data)
        record = await self._store.load(fingerprint)

        if record is None:
            status = await resolve_certification_status(self._gateway, fingerprint)
            if status is CertificationStatus.CERTIFIED:
                logger.info(
                    "Skipping: %s already exists with blob ID: %s", source.name, fingerprint
                )
                return StageOutcome(OutcomeKind.SKIPPED, fingerprint, None)
            record = UploadRecord(fingerprint=fingerprint, source_path=str(source))
            await self._store.save(record)
            logger.info(
                "Uploading: %s (%d bytes) [epochs: %d, deletable: %s] - BlobId: %s",
                source.name, len(data), options.epochs, options.deletable, fingerprint,
            )

        elif record.stage is Stage.COMPLETED:
            status = await resolve_certification_status(self._gateway, fingerprint)
            if status is CertificationStatus.CERTIFIED:
                logger.info("Removing stale completed state for %s", fingerprint)
                await self._store.remove(fingerprint)
                return StageOutcome(OutcomeKind.SKIPPED, fingerprint, Stage.COMPLETED)
            record = await self._executor.reset(
                record, "completed locally but not certified on Walrus"
            )

        else:
            logger.info(
                "Resuming: %s at stage %s - BlobId: %s",
                source.name, record.stage.value, fingerprint,
            )

        if record.source_path != str(source):
            logger.info(
                "Blob %s now tracked from %s (was %s)",
                fingerprint, source, record.source_path,
            )
            record.source_path = str(source)

        return await self._executor.execute(record, data, options)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _record_outcome(self, source: Path, outcome: StageOutcome) -> None:
        path = str(source)
        if outcome.kind is OutcomeKind.SUCCEEDED:
            self._succeeded += 1
            if self._progress is not None:
                self._progress.file_succeeded(path)
        elif outcome.kind is OutcomeKind.SKIPPED:
            self._skipped += 1
            if self._progress is not None:
                self._progress.file_skipped(path)
        else:
            self._failed += 1
            logger.error("Failed to upload: %s: %s", source.name, outcome.error)
            if self._progress is not None:
                self._progress.file_failed(path, outcome.error or "")

    def _on_transition(self, record: UploadRecord) -> None:
        logger.debug("%s -> %s", record.fingerprint, record.stage.value)
        if self._progress is not None:
            self._progress.stage_changed(record)
