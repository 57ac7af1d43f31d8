"""Async SQLite store for per-blob upload records.

Wraps aiosqlite to provide keyed load/save/remove/list operations for
:class:`~walsync.upload.records.UploadRecord`.  Records are stored as JSON
text, one row per fingerprint.

The database file, its parent directory and the table are created lazily
on the first write.  Reads against a store that was never written return
"not found" without touching the filesystem.

Each write commits immediately -- no transactions are held across
``await`` boundaries.  There is no optimistic-locking guard: a single
orchestrator instance is assumed to own the store.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite
from pydantic import ValidationError

from walsync.upload.records import UploadRecord

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS upload_records (
    fingerprint TEXT PRIMARY KEY,
    source_path TEXT NOT NULL,
    stage TEXT NOT NULL,
    payload TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


class AsyncUploadStateStore:
    """Durable, keyed store of upload records.

    Usage::

        async with AsyncUploadStateStore(".walsync/state.db") as store:
            record = await store.load(blob_id)
            await store.save(record)
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None
        self._schema_ready = False

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the database if it already exists.

        A missing database is left uncreated until the first write; an
        unreadable file is treated as an empty store.
        """
        await self._readable()

    async def close(self) -> None:
        """Close the connection if open."""
        if self._db is not None:
            await self._db.close()
            self._db = None
            self._schema_ready = False

    async def __aenter__(self) -> AsyncUploadStateStore:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _open(self) -> aiosqlite.Connection:
        db = await aiosqlite.connect(str(self.db_path))
        try:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA synchronous=NORMAL")
        except aiosqlite.Error:
            await db.close()
            raise
        self._db = db
        return db

    async def _ensure_writable(self) -> aiosqlite.Connection:
        """Create the backing database and table on first use."""
        if self._db is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            await self._open()
            logger.debug("Opened state store at %s", self.db_path)
        if not self._schema_ready:
            await self._db.execute(_SCHEMA)
            await self._db.commit()
            self._schema_ready = True
        return self._db

    async def _readable(self) -> aiosqlite.Connection | None:
        """Open an existing database for reading; unreadable files count as absent."""
        if self._db is None and self.db_path.exists():
            try:
                await self._open()
            except aiosqlite.Error as exc:
                logger.warning("Ignoring unreadable state store %s: %s", self.db_path, exc)
                return None
        return self._db

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    @staticmethod
    def _parse(fingerprint: str, payload: str) -> UploadRecord | None:
        try:
            return UploadRecord.model_validate_json(payload)
        except ValidationError as exc:
            logger.warning("Discarding corrupt state for %s: %s", fingerprint, exc)
            return None

    # ------------------------------------------------------------------
    # Record operations
    # ------------------------------------------------------------------

    async def save(self, record: UploadRecord) -> UploadRecord:
        """Persist *record*, overwriting any previous value for its fingerprint.

        Stamps ``updated_at`` on the record in place.

        Returns:
            The same record, for chaining.
        """
        db = await self._ensure_writable()
        record.updated_at = self._now()
        await db.execute(
            """INSERT OR REPLACE INTO upload_records
                   (fingerprint, source_path, stage, payload, updated_at)
               VALUES (?, ?, ?, ?, ?)""",
            (
                record.fingerprint,
                record.source_path,
                record.stage.value,
                record.model_dump_json(),
                record.updated_at.isoformat(),
            ),
        )
        await db.commit()
        logger.debug("Saved %s at stage %s", record.fingerprint, record.stage.value)
        return record

    async def load(self, fingerprint: str) -> UploadRecord | None:
        """Return the record for *fingerprint*, or ``None``.

        Missing rows, a missing table and unparseable payloads are all
        reported as ``None`` so the caller falls back to a fresh start.
        """
        db = await self._readable()
        if db is None:
            return None
        try:
            cursor = await db.execute(
                "SELECT payload FROM upload_records WHERE fingerprint = ?",
                (fingerprint,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            logger.debug("State lookup for %s failed: %s", fingerprint, exc)
            return None
        if row is None:
            return None
        return self._parse(fingerprint, row["payload"])

    async def remove(self, fingerprint: str) -> None:
        """Delete the record for *fingerprint*; a missing record is a no-op."""
        db = await self._readable()
        if db is None:
            return
        try:
            await db.execute(
                "DELETE FROM upload_records WHERE fingerprint = ?",
                (fingerprint,),
            )
            await db.commit()
        except aiosqlite.Error as exc:
            logger.debug("Nothing to remove for %s: %s", fingerprint, exc)
            return
        logger.debug("Removed state for %s", fingerprint)

    async def list_all(self) -> list[UploadRecord]:
        """Return every parseable record, ordered by source path."""
        db = await self._readable()
        if db is None:
            return []
        try:
            cursor = await db.execute(
                "SELECT fingerprint, payload FROM upload_records ORDER BY source_path"
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            logger.debug("State listing failed: %s", exc)
            return []
        records = [self._parse(row["fingerprint"], row["payload"]) for row in rows]
        return [r for r in records if r is not None]
