"""Tests for StageExecutor stage handling and recovery rules.

Groups:
  - Happy path (stage order, write-ahead saves, example scenario)
  - Node write failures (full reset, bounded retries)
  - Certification (short-circuit, failure -> failed, status fallback)
  - Preconditions and failed-record retries
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from conftest import confirmation, fingerprint_of
from walsync.upload.exceptions import CertificationError
from walsync.upload.executor import (
    OutcomeKind,
    StageExecutor,
    resolve_certification_status,
)
from walsync.upload.gateway import CertificationStatus
from walsync.upload.records import BlobKind, ProtocolBlob, Stage, UploadRecord

OWNER = "0x" + "ab" * 32
DATA = b"executor test payload" * 10


def _fresh_record(data: bytes = DATA) -> UploadRecord:
    return UploadRecord(fingerprint=fingerprint_of(data), source_path="/data/file.bin")


def _registered_record(object_id: str = "0xobj9") -> UploadRecord:
    record = _fresh_record()
    record.stage = Stage.REGISTERED
    record.remote_object_id = object_id
    record.root_hash = "cm9vdA=="
    record.encoded_metadata = ProtocolBlob(kind=BlobKind.METADATA, payload={"size": 1})
    record.node_share_map = ProtocolBlob(kind=BlobKind.SHARE_MAP, payload={"nodes": []})
    return record


def _uploaded_record(stage: Stage = Stage.UPLOADING) -> UploadRecord:
    record = _registered_record()
    record.stage = stage
    record.node_confirmations = [confirmation(0), None, confirmation(2)]
    return record


# ======================================================================
# Happy path
# ======================================================================


class TestHappyPath:
    """A fresh record runs through every stage and is dropped at the end."""

    async def test_runs_stages_in_order(self, gateway, store, options):
        executor = StageExecutor(gateway, store, OWNER)
        record = await store.save(_fresh_record())

        outcome = await executor.execute(record, DATA, options)

        assert outcome.kind is OutcomeKind.SUCCEEDED
        assert outcome.stage is Stage.COMPLETED
        assert gateway.mutations() == ["encode", "register", "write_to_nodes", "certify"]
        assert await store.load(record.fingerprint) is None

    async def test_persists_every_stage_before_next_call(self, gateway, store, options):
        """Each saved stage is visible to the transition callback in order."""
        seen: list[Stage] = []
        executor = StageExecutor(
            gateway, store, OWNER, on_transition=lambda r: seen.append(r.stage)
        )

        await executor.execute(_fresh_record(), DATA, options)

        assert seen == [
            Stage.REGISTERED,
            Stage.UPLOADING,
            Stage.CERTIFYING,
            Stage.COMPLETED,
        ]

    async def test_registered_record_holds_protocol_fields(self, gateway, store, options):
        """The registered save carries object id, root hash and encoded payloads together."""
        snapshots: list[UploadRecord] = []
        executor = StageExecutor(
            gateway,
            store,
            OWNER,
            on_transition=lambda r: snapshots.append(r.model_copy(deep=True)),
        )

        await executor.execute(_fresh_record(), DATA, options)

        registered = snapshots[0]
        assert registered.stage is Stage.REGISTERED
        assert registered.remote_object_id == "0xobj1"
        assert registered.root_hash is not None
        assert registered.encoded_metadata.kind is BlobKind.METADATA
        assert registered.node_share_map.kind is BlobKind.SHARE_MAP
        assert registered.node_confirmations is None

    async def test_example_scenario_partial_confirmations(self, gateway, store, options):
        """3 confirmations and 1 null still proceed to certification."""
        gateway.write_results = [[confirmation(0), confirmation(1), None, confirmation(3)]]
        snapshots: list[UploadRecord] = []
        executor = StageExecutor(
            gateway,
            store,
            OWNER,
            on_transition=lambda r: snapshots.append(r.model_copy(deep=True)),
        )

        outcome = await executor.execute(_fresh_record(), DATA, options)

        assert outcome.kind is OutcomeKind.SUCCEEDED
        uploading = next(s for s in snapshots if s.stage is Stage.UPLOADING)
        assert uploading.valid_confirmations == 3
        assert len(uploading.node_confirmations) == 4
        assert gateway.count("get_certification_status") == 1
        assert gateway.count("certify") == 1
        assert await store.list_all() == []

    async def test_completed_record_is_noop(self, gateway, store, options):
        record = _uploaded_record(Stage.COMPLETED)
        executor = StageExecutor(gateway, store, OWNER)

        outcome = await executor.execute(record, DATA, options)

        assert outcome.kind is OutcomeKind.SUCCEEDED
        assert gateway.calls == []


# ======================================================================
# Node write failures
# ======================================================================


class TestNodeWriteFailure:
    """Stage-2 failures always roll back to encoding."""

    async def test_zero_confirmations_resets_and_deletes_object(self, gateway, store, options):
        gateway.write_results = [[None, None, None]]
        executor = StageExecutor(gateway, store, OWNER, max_resets=0)
        record = _fresh_record()

        outcome = await executor.execute(record, DATA, options)

        assert outcome.kind is OutcomeKind.RECOVERABLE_FAILURE
        assert outcome.stage is Stage.ENCODING
        assert gateway.deleted == ["0xobj1"]
        stored = await store.load(record.fingerprint)
        assert stored.stage is Stage.ENCODING
        assert stored.remote_object_id is None
        assert stored.encoded_metadata is None
        assert stored.node_share_map is None
        assert stored.node_confirmations is None

    async def test_write_exception_resets_then_retries(self, gateway, store, options):
        gateway.write_results = [ConnectionError("node unreachable")]
        executor = StageExecutor(gateway, store, OWNER, max_resets=2)

        outcome = await executor.execute(_fresh_record(), DATA, options)

        assert outcome.kind is OutcomeKind.SUCCEEDED
        assert gateway.deleted == ["0xobj1"]
        assert gateway.count("register") == 2
        assert gateway.count("certify") == 1

    async def test_reset_is_single_save(self, gateway, store, options):
        """The rollback is written in one save straight from registered to encoding."""
        gateway.write_results = [[]]
        seen: list[tuple[Stage, str | None]] = []
        executor = StageExecutor(
            gateway,
            store,
            OWNER,
            max_resets=0,
            on_transition=lambda r: seen.append((r.stage, r.remote_object_id)),
        )

        await executor.execute(_fresh_record(), DATA, options)

        assert seen == [(Stage.REGISTERED, "0xobj1"), (Stage.ENCODING, None)]

    async def test_cleanup_failure_does_not_block_reset(self, gateway, store, options):
        gateway.write_results = [[None]]
        gateway.delete_error = RuntimeError("object already gone")
        executor = StageExecutor(gateway, store, OWNER, max_resets=0)
        record = _fresh_record()

        outcome = await executor.execute(record, DATA, options)

        assert outcome.kind is OutcomeKind.RECOVERABLE_FAILURE
        stored = await store.load(record.fingerprint)
        assert stored.stage is Stage.ENCODING
        assert stored.remote_object_id is None

    async def test_resets_are_bounded(self, gateway, store, options):
        gateway.write_results = [[None], [None], [None], [None]]
        executor = StageExecutor(gateway, store, OWNER, max_resets=2)

        outcome = await executor.execute(_fresh_record(), DATA, options)

        assert outcome.kind is OutcomeKind.RECOVERABLE_FAILURE
        assert gateway.count("write_to_nodes") == 3
        assert gateway.deleted == ["0xobj1", "0xobj2", "0xobj3"]
        assert "3 times" in outcome.error


# ======================================================================
# Certification
# ======================================================================


class TestCertification:
    """Stage 3-4 behaviour: short-circuit, terminal failure, status fallback."""

    async def test_short_circuit_when_already_certified(self, gateway, store, options):
        record = await store.save(_uploaded_record(Stage.CERTIFYING))
        gateway.certified.add(record.fingerprint)
        executor = StageExecutor(gateway, store, OWNER)

        outcome = await executor.execute(record, DATA, options)

        assert outcome.kind is OutcomeKind.SUCCEEDED
        assert gateway.count("certify") == 0
        assert await store.load(record.fingerprint) is None

    async def test_certified_during_node_write_skips_certify(self, gateway, store, options):
        gateway.on_write = gateway.certified.add
        executor = StageExecutor(gateway, store, OWNER)
        record = _fresh_record()

        outcome = await executor.execute(record, DATA, options)

        assert outcome.kind is OutcomeKind.SUCCEEDED
        assert gateway.count("certify") == 0
        assert await store.load(record.fingerprint) is None

    async def test_certify_failure_marks_failed(self, gateway, store, options):
        gateway.certify_error = CertificationError("quorum not reached")
        executor = StageExecutor(gateway, store, OWNER)
        record = _fresh_record()

        outcome = await executor.execute(record, DATA, options)

        assert outcome.kind is OutcomeKind.FATAL_FAILURE
        assert outcome.stage is Stage.FAILED
        stored = await store.load(record.fingerprint)
        assert stored.stage is Stage.FAILED
        assert stored.last_error == "quorum not reached"
        assert stored.remote_object_id == "0xobj1"
        assert gateway.deleted == []

    async def test_uploading_record_moves_to_certifying_first(self, gateway, store, options):
        gateway.certify_error = CertificationError("rejected")
        seen: list[Stage] = []
        executor = StageExecutor(
            gateway, store, OWNER, on_transition=lambda r: seen.append(r.stage)
        )

        await executor.execute(_uploaded_record(Stage.UPLOADING), DATA, options)

        assert seen == [Stage.CERTIFYING, Stage.FAILED]

    async def test_status_failure_falls_back_to_read_probe(self, gateway):
        gateway.status_error = RuntimeError("status endpoint down")
        gateway.certified.add("fp1")

        status = await resolve_certification_status(gateway, "fp1")

        assert status is CertificationStatus.CERTIFIED
        assert gateway.names() == ["get_certification_status", "read_raw"]

    async def test_both_lookups_failing_means_absent(self, gateway):
        gateway.status_error = RuntimeError("status endpoint down")
        gateway.read_error = RuntimeError("aggregator down")

        status = await resolve_certification_status(gateway, "fp1")

        assert status is CertificationStatus.ABSENT


# ======================================================================
# Preconditions and retries
# ======================================================================


class TestPreconditionsAndRetries:
    """Missing stage inputs and operator-driven retries of failed records."""

    async def test_encode_failure_stays_at_encoding(self, gateway, store, options):
        gateway.encode_error = RuntimeError("encoder crashed")
        executor = StageExecutor(gateway, store, OWNER)
        record = _fresh_record()

        outcome = await executor.execute(record, DATA, options)

        assert outcome.kind is OutcomeKind.RECOVERABLE_FAILURE
        stored = await store.load(record.fingerprint)
        assert stored.stage is Stage.ENCODING
        assert stored.last_error == "encoder crashed"
        assert gateway.count("register") == 0

    async def test_changed_source_is_not_registered(self, gateway, store, options):
        executor = StageExecutor(gateway, store, OWNER)
        record = _fresh_record()

        outcome = await executor.execute(record, DATA + b"edited", options)

        assert outcome.kind is OutcomeKind.RECOVERABLE_FAILURE
        assert "changed" in outcome.error
        assert gateway.count("register") == 0

    async def test_missing_metadata_with_object_fails(self, gateway, store, options):
        record = _registered_record()
        record.encoded_metadata = None
        executor = StageExecutor(gateway, store, OWNER)

        outcome = await executor.execute(record, DATA, options)

        assert outcome.kind is OutcomeKind.FATAL_FAILURE
        stored = await store.load(record.fingerprint)
        assert stored.stage is Stage.FAILED
        assert "encoded_metadata" in stored.last_error
        assert gateway.count("write_to_nodes") == 0

    async def test_missing_object_id_resets(self, gateway, store, options):
        record = _registered_record()
        record.remote_object_id = None
        executor = StageExecutor(gateway, store, OWNER)

        outcome = await executor.execute(record, DATA, options)

        assert outcome.kind is OutcomeKind.RECOVERABLE_FAILURE
        stored = await store.load(record.fingerprint)
        assert stored.stage is Stage.ENCODING
        assert "remote_object_id" in stored.last_error

    async def test_certifying_without_confirmations_fails(self, gateway, store, options):
        record = _uploaded_record(Stage.CERTIFYING)
        record.node_confirmations = [None, None]
        executor = StageExecutor(gateway, store, OWNER)

        outcome = await executor.execute(record, DATA, options)

        assert outcome.kind is OutcomeKind.FATAL_FAILURE
        assert gateway.count("certify") == 0

    async def test_failed_record_is_cleaned_and_restarted(self, gateway, store, options):
        record = _uploaded_record(Stage.FAILED)
        record.last_error = "quorum not reached"
        executor = StageExecutor(gateway, store, OWNER)

        outcome = await executor.execute(record, DATA, options)

        assert outcome.kind is OutcomeKind.SUCCEEDED
        assert gateway.deleted == ["0xobj9"]
        assert gateway.mutations() == [
            "delete_registered_object",
            "encode",
            "register",
            "write_to_nodes",
            "certify",
        ]

    async def test_failed_but_certified_record_is_dropped(self, gateway, store, options):
        record = await store.save(_uploaded_record(Stage.FAILED))
        gateway.certified.add(record.fingerprint)
        executor = StageExecutor(gateway, store, OWNER)

        outcome = await executor.execute(record, DATA, options)

        assert outcome.kind is OutcomeKind.SUCCEEDED
        assert gateway.mutations() == []
        assert await store.load(record.fingerprint) is None

    async def test_reset_from_encoding_is_illegal(self, gateway, store):
        executor = StageExecutor(gateway, store, OWNER)

        with pytest.raises(TransitionNotAllowed):
            await executor.reset(_fresh_record(), "nothing to roll back")
