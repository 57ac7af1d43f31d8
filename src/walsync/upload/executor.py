"""Stage executor: drives one upload record through the Walrus protocol.

Stages run in order::

    encoding -> registered -> uploading -> certifying -> completed

Every state-affecting step is persisted before the next remote call, so a
killed process resumes from the last saved stage.  Recovery rules:

* A failed node write (an exception, or zero confirmations) deletes the
  registered ledger object on a best-effort basis and resets the record
  to ``encoding`` in a single save, then starts over.  Partially written
  shares are never resumed in place.
* A failed certification is terminal: the record moves to ``failed`` with
  ``last_error`` set and waits for an operator-driven ``--resume``.
* Before certifying, the remote status is checked so that a certification
  that landed just before a crash is not submitted twice.

Failures are returned as :class:`StageOutcome` values; only programming
errors (illegal FSM transitions) and store faults propagate.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from walsync.upload.exceptions import NodeWriteError, PreconditionError
from walsync.upload.fsm import next_stage
from walsync.upload.gateway import BlobGateway, CertificationStatus
from walsync.upload.options import UploadOptions
from walsync.upload.records import Stage, UploadRecord, count_confirmations, encode_bytes
from walsync.upload.state import AsyncUploadStateStore

logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    """How a single upload attempt ended."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    RECOVERABLE_FAILURE = "recoverable_failure"
    FATAL_FAILURE = "fatal_failure"


@dataclass(frozen=True)
class StageOutcome:
    """Result of running (part of) an upload.

    Attributes:
        kind: Success, skip, or the class of failure.
        fingerprint: Blob id of the upload (``None`` if never computed).
        stage: Last stage observed for the record (``None`` if no record).
        error: Failure description, if any.
    """

    kind: OutcomeKind
    fingerprint: str | None
    stage: Stage | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.kind in (OutcomeKind.SUCCEEDED, OutcomeKind.SKIPPED)


async def resolve_certification_status(
    gateway: BlobGateway, fingerprint: str
) -> CertificationStatus:
    """Ask the network whether *fingerprint* is certified.

    Falls back to a read-back probe when the status lookup itself fails;
    if the probe fails too the blob is treated as absent.
    """
    try:
        return await gateway.get_certification_status(fingerprint)
    except Exception as exc:
        logger.warning(
            "Status lookup for %s failed (%s); probing for a readable blob",
            fingerprint, exc,
        )
    try:
        exists = await gateway.read_raw(fingerprint)
    except Exception as exc:
        logger.warning("Read-back probe for %s failed: %s", fingerprint, exc)
        return CertificationStatus.ABSENT
    return CertificationStatus.CERTIFIED if exists else CertificationStatus.ABSENT


class StageExecutor:
    """Finite-state machine runner for upload records.

    Args:
        gateway: Remote protocol operations.
        store: Durable record store.
        owner: Sui address that owns registered blobs.
        max_resets: Restarts from ``encoding`` allowed per :meth:`execute`
            call after failed node writes.
        on_transition: Optional callback invoked after every persisted save.
    """

    def __init__(
        self,
        gateway: BlobGateway,
        store: AsyncUploadStateStore,
        owner: str,
        *,
        max_resets: int = 2,
        on_transition: Callable[[UploadRecord], None] | None = None,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._owner = owner
        self._max_resets = max_resets
        self._on_transition = on_transition

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def execute(
        self, record: UploadRecord, data: bytes, options: UploadOptions
    ) -> StageOutcome:
        """Run *record* from its persisted stage until it stops.

        Args:
            record: The persisted record (a fresh one starts at ``encoding``).
            data: Current bytes of the source file.
            options: Validated upload options.
        """
        resets = 0
        while True:
            stage = record.stage
            logger.debug("Executing %s at stage %s", record.fingerprint, stage.value)

            if stage is Stage.COMPLETED:
                logger.info("%s is already completed; nothing to do", record.fingerprint)
                return StageOutcome(OutcomeKind.SUCCEEDED, record.fingerprint, stage)

            if stage is Stage.FAILED:
                result = await self._retry_failed(record)
            elif stage is Stage.ENCODING:
                result = await self._encode_and_register(record, data, options)
            elif stage is Stage.REGISTERED:
                result = await self._write_shares(record, options)
                if isinstance(result, UploadRecord) and result.stage is Stage.ENCODING:
                    resets += 1
                    if resets > self._max_resets:
                        message = (
                            f"Node writes failed {resets} times; "
                            "left at encoding for a later retry"
                        )
                        logger.error("%s: %s", record.fingerprint, message)
                        return StageOutcome(
                            OutcomeKind.RECOVERABLE_FAILURE,
                            record.fingerprint,
                            Stage.ENCODING,
                            message,
                        )
            else:
                result = await self._certify(record, options)

            if isinstance(result, StageOutcome):
                return result
            record = result

    async def reset(self, record: UploadRecord, reason: str) -> UploadRecord:
        """Roll *record* back to ``encoding`` in one save.

        A registered ledger object is deleted first on a best-effort basis.
        """
        next_stage(record.stage, "reset")
        if record.remote_object_id:
            await self._cleanup_remote(record.remote_object_id)
        fresh = record.reset()
        await self._persist(fresh)
        logger.warning("Reset %s to encoding: %s", record.fingerprint, reason)
        return fresh

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _encode_and_register(
        self, record: UploadRecord, data: bytes, options: UploadOptions
    ) -> UploadRecord | StageOutcome:
        """Stage 1: erasure-encode the bytes and register the blob on Sui."""
        fingerprint = record.fingerprint
        try:
            encoded = await self._gateway.encode(data)
            if encoded.fingerprint != fingerprint:
                raise PreconditionError(
                    f"Encoded blob id {encoded.fingerprint} does not match {fingerprint}; "
                    "the source file changed during upload"
                )
            object_id = await self._gateway.register(
                size=len(data),
                epochs=options.epochs,
                fingerprint=fingerprint,
                root_hash=encoded.root_hash,
                deletable=options.deletable,
                owner=self._owner,
            )
        except Exception as exc:
            logger.error("Encoding/registration of %s failed: %s", fingerprint, exc)
            record.last_error = str(exc)
            await self._persist(record)
            return StageOutcome(
                OutcomeKind.RECOVERABLE_FAILURE, fingerprint, record.stage, str(exc)
            )

        registered = record.model_copy(
            update={
                "stage": next_stage(record.stage, "register"),
                "remote_object_id": object_id,
                "root_hash": encode_bytes(encoded.root_hash),
                "encoded_metadata": encoded.metadata,
                "node_share_map": encoded.node_share_map,
                "node_confirmations": None,
                "last_error": None,
            }
        )
        await self._persist(registered)
        logger.info("Registered %s as object %s", fingerprint, object_id)
        return registered

    async def _write_shares(
        self, record: UploadRecord, options: UploadOptions
    ) -> UploadRecord | StageOutcome:
        """Stage 2: store shares on the storage nodes."""
        missing = [
            name
            for name, value in (
                ("encoded_metadata", record.encoded_metadata),
                ("node_share_map", record.node_share_map),
                ("remote_object_id", record.remote_object_id),
            )
            if value is None
        ]
        if missing:
            return await self._precondition_failure(
                record, f"Cannot write shares without {', '.join(missing)}"
            )

        fingerprint = record.fingerprint
        try:
            confirmations = await self._gateway.write_to_nodes(
                fingerprint=fingerprint,
                metadata=record.encoded_metadata,
                node_share_map=record.node_share_map,
                deletable=options.deletable,
                object_id=record.remote_object_id,
            )
            valid = count_confirmations(confirmations)
            if valid == 0:
                raise NodeWriteError(
                    f"None of {len(confirmations)} storage nodes confirmed shares for {fingerprint}"
                )
        except Exception as exc:
            logger.error("Writing shares for %s failed: %s", fingerprint, exc)
            return await self.reset(record, f"node write failed: {exc}")

        logger.info(
            "%d/%d storage nodes confirmed shares for %s",
            valid, len(confirmations), fingerprint,
        )
        record.stage = next_stage(record.stage, "store_shares")
        record.node_confirmations = confirmations
        record.last_error = None
        await self._persist(record)
        return record

    async def _certify(
        self, record: UploadRecord, options: UploadOptions
    ) -> StageOutcome:
        """Stages 3-4: certify the blob on Sui, then drop the local record."""
        fingerprint = record.fingerprint
        if record.remote_object_id is None or count_confirmations(record.node_confirmations) == 0:
            return await self._precondition_failure(
                record, "Cannot certify without an object id and node confirmations"
            )

        if record.stage is Stage.UPLOADING:
            record.stage = next_stage(record.stage, "begin_certify")
            await self._persist(record)

        try:
            status = await resolve_certification_status(self._gateway, fingerprint)
            if status is CertificationStatus.CERTIFIED:
                logger.info("%s is already certified; skipping certification", fingerprint)
                await self._store.remove(fingerprint)
                return StageOutcome(OutcomeKind.SUCCEEDED, fingerprint, Stage.COMPLETED)

            await self._gateway.certify(
                fingerprint=fingerprint,
                object_id=record.remote_object_id,
                confirmations=record.node_confirmations,
                deletable=options.deletable,
            )
        except Exception as exc:
            logger.error("Certification of %s failed: %s", fingerprint, exc)
            record.stage = next_stage(record.stage, "fail")
            record.last_error = str(exc)
            await self._persist(record)
            return StageOutcome(OutcomeKind.FATAL_FAILURE, fingerprint, record.stage, str(exc))

        record.stage = next_stage(record.stage, "certify")
        record.last_error = None
        await self._persist(record)
        await self._store.remove(fingerprint)
        logger.info("Certified %s (object %s)", fingerprint, record.remote_object_id)
        return StageOutcome(OutcomeKind.SUCCEEDED, fingerprint, Stage.COMPLETED)

    async def _retry_failed(self, record: UploadRecord) -> UploadRecord | StageOutcome:
        """Restart a failed upload from scratch unless it is in fact certified."""
        status = await resolve_certification_status(self._gateway, record.fingerprint)
        if status is CertificationStatus.CERTIFIED:
            logger.info(
                "%s was certified despite the recorded failure; dropping local state",
                record.fingerprint,
            )
            await self._store.remove(record.fingerprint)
            return StageOutcome(OutcomeKind.SUCCEEDED, record.fingerprint, Stage.COMPLETED)
        return await self.reset(record, f"retrying after failure: {record.last_error}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _precondition_failure(
        self, record: UploadRecord, message: str
    ) -> UploadRecord | StageOutcome:
        """Fail a stage whose inputs are missing.

        Records that own a ledger object move to ``failed``; records without
        one have nothing on-chain to preserve and are reset to ``encoding``.
        """
        logger.error("%s: %s", record.fingerprint, message)
        if record.remote_object_id is None:
            fresh = record.reset()
            fresh.last_error = message
            next_stage(record.stage, "reset")
            await self._persist(fresh)
            return StageOutcome(
                OutcomeKind.RECOVERABLE_FAILURE, record.fingerprint, fresh.stage, message
            )
        record.stage = next_stage(record.stage, "fail")
        record.last_error = message
        await self._persist(record)
        return StageOutcome(OutcomeKind.FATAL_FAILURE, record.fingerprint, record.stage, message)

    async def _cleanup_remote(self, object_id: str) -> None:
        try:
            await self._gateway.delete_registered_object(object_id)
            logger.info("Deleted registered object %s", object_id)
        except Exception as exc:
            logger.warning("Could not delete registered object %s: %s", object_id, exc)

    async def _persist(self, record: UploadRecord) -> None:
        await self._store.save(record)
        if self._on_transition is not None:
            self._on_transition(record)
