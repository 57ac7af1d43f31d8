"""Shared pytest fixtures for walsync tests.

Provides an in-memory fake of the Walrus gateway that records every call,
a temporary state store, upload options and a deterministic signer.
"""

from __future__ import annotations

import base64
import hashlib
from collections.abc import Callable
from pathlib import Path

import pytest

from walsync.upload.gateway import CertificationStatus, EncodedBlob
from walsync.upload.options import UploadOptions
from walsync.upload.records import BlobKind, ProtocolBlob
from walsync.upload.signer import SuiSigner
from walsync.upload.state import AsyncUploadStateStore

TEST_SEED = bytes([1]) * 32
TEST_SECRET = base64.b64encode(TEST_SEED).decode()


class SimulatedCrash(BaseException):
    """Stands in for the process being killed mid-upload.

    A BaseException, so ``except Exception`` handlers in the pipeline let
    it through.
    """


MUTATIONS = ("encode", "register", "write_to_nodes", "certify", "delete_registered_object")


class FakeGateway:
    """In-memory BlobGateway that records calls and can inject faults.

    Attributes:
        calls: ``(method, fingerprint_or_object_id)`` in call order.
        certified: Fingerprints the fake network reports as certified.
        deleted: Object ids passed to ``delete_registered_object``.
        write_results: Queue of confirmation lists (or exceptions) returned
            by successive ``write_to_nodes`` calls; defaults to 4 confirmations.
        crash_before: Method names that raise :class:`SimulatedCrash` on entry.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.certified: set[str] = set()
        self.registered: dict[str, str] = {}
        self.deleted: list[str] = []
        self.write_results: list[list[ProtocolBlob | None] | Exception] = []
        self.encode_error: Exception | None = None
        self.register_error: Exception | None = None
        self.certify_error: Exception | None = None
        self.status_error: Exception | None = None
        self.read_error: Exception | None = None
        self.delete_error: Exception | None = None
        self.crash_before: set[str] = set()
        self.on_write: Callable[[str], None] | None = None
        self._next_object = 0

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def mutations(self) -> list[str]:
        return [name for name in self.names() if name in MUTATIONS]

    def count(self, name: str) -> int:
        return self.names().count(name)

    def _enter(self, name: str, key: str) -> None:
        self.calls.append((name, key))
        if name in self.crash_before:
            self.crash_before.discard(name)
            raise SimulatedCrash(name)

    # ------------------------------------------------------------------
    # BlobGateway
    # ------------------------------------------------------------------

    async def compute_fingerprint(self, data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    async def encode(self, data: bytes) -> EncodedBlob:
        fingerprint = hashlib.sha256(data).hexdigest()
        self._enter("encode", fingerprint)
        if self.encode_error is not None:
            raise self.encode_error
        return EncodedBlob(
            fingerprint=fingerprint,
            metadata=ProtocolBlob(kind=BlobKind.METADATA, payload={"size": len(data)}),
            node_share_map=ProtocolBlob(
                kind=BlobKind.SHARE_MAP, payload={"nodes": ["n1", "n2", "n3", "n4"]}
            ),
            root_hash=hashlib.sha256(b"root" + data).digest(),
        )

    async def register(
        self,
        *,
        size: int,
        epochs: int,
        fingerprint: str,
        root_hash: bytes,
        deletable: bool,
        owner: str,
    ) -> str:
        self._enter("register", fingerprint)
        if self.register_error is not None:
            raise self.register_error
        self._next_object += 1
        object_id = f"0xobj{self._next_object}"
        self.registered[object_id] = fingerprint
        return object_id

    async def write_to_nodes(
        self,
        *,
        fingerprint: str,
        metadata: ProtocolBlob,
        node_share_map: ProtocolBlob,
        deletable: bool,
        object_id: str,
    ) -> list[ProtocolBlob | None]:
        self._enter("write_to_nodes", fingerprint)
        if self.on_write is not None:
            self.on_write(fingerprint)
        if self.write_results:
            result = self.write_results.pop(0)
            if isinstance(result, Exception):
                raise result
        else:
            result = [confirmation(i) for i in range(4)]
        return result

    async def certify(
        self,
        *,
        fingerprint: str,
        object_id: str,
        confirmations: list[ProtocolBlob | None],
        deletable: bool,
    ) -> None:
        self._enter("certify", fingerprint)
        if self.certify_error is not None:
            raise self.certify_error
        self.certified.add(fingerprint)

    async def get_certification_status(self, fingerprint: str) -> CertificationStatus:
        self._enter("get_certification_status", fingerprint)
        if self.status_error is not None:
            raise self.status_error
        if fingerprint in self.certified:
            return CertificationStatus.CERTIFIED
        if fingerprint in self.registered.values():
            return CertificationStatus.PENDING
        return CertificationStatus.ABSENT

    async def delete_registered_object(self, object_id: str) -> None:
        self._enter("delete_registered_object", object_id)
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(object_id)
        self.registered.pop(object_id, None)

    async def read_raw(self, fingerprint: str) -> bool:
        self._enter("read_raw", fingerprint)
        if self.read_error is not None:
            raise self.read_error
        return fingerprint in self.certified


def confirmation(index: int) -> ProtocolBlob:
    """Build a node confirmation payload."""
    return ProtocolBlob(kind=BlobKind.CONFIRMATION, payload={"node": index, "sig": f"s{index}"})


def fingerprint_of(data: bytes) -> str:
    """Fingerprint the fake gateway assigns to *data*."""
    return hashlib.sha256(data).hexdigest()


# ======================================================================
# Fixtures
# ======================================================================


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
async def store(tmp_path: Path):
    """State store backed by a temp database (created on first write)."""
    state = AsyncUploadStateStore(tmp_path / "state" / "walsync.db")
    await state.connect()
    yield state
    await state.close()


@pytest.fixture
def options() -> UploadOptions:
    return UploadOptions(epochs=5, deletable=False)


@pytest.fixture
def signer() -> SuiSigner:
    return SuiSigner.from_secret(TEST_SECRET)


@pytest.fixture
def sample_file(tmp_path: Path) -> Path:
    path = tmp_path / "document.pdf"
    path.write_bytes(b"walrus blob content " * 64)
    return path
