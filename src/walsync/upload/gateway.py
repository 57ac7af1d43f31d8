"""Capability interface for the Walrus storage network and Sui ledger.

The upload pipeline depends only on :class:`BlobGateway`.  Production code
uses :class:`~walsync.upload.client.WalrusBridgeClient`; tests substitute
an in-memory fake.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

from walsync.upload.records import ProtocolBlob


class CertificationStatus(str, Enum):
    """Remote certification state of a blob."""

    ABSENT = "absent"
    PENDING = "pending"
    CERTIFIED = "certified"


@dataclass(frozen=True)
class EncodedBlob:
    """Result of erasure-encoding a file's bytes."""

    fingerprint: str
    metadata: ProtocolBlob
    node_share_map: ProtocolBlob
    root_hash: bytes


@runtime_checkable
class BlobGateway(Protocol):
    """Remote protocol operations consumed by the stage executor."""

    async def compute_fingerprint(self, data: bytes) -> str: ...

    async def encode(self, data: bytes) -> EncodedBlob: ...

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
        """Create the ledger-side blob object and return its object id."""
        ...

    async def write_to_nodes(
        self,
        *,
        fingerprint: str,
        metadata: ProtocolBlob,
        node_share_map: ProtocolBlob,
        deletable: bool,
        object_id: str,
    ) -> list[ProtocolBlob | None]:
        """Store shares on every node; ``None`` marks a node that did not answer."""
        ...

    async def certify(
        self,
        *,
        fingerprint: str,
        object_id: str,
        confirmations: list[ProtocolBlob | None],
        deletable: bool,
    ) -> None:
        """Submit the certification; raises on rejection."""
        ...

    async def get_certification_status(self, fingerprint: str) -> CertificationStatus: ...

    async def delete_registered_object(self, object_id: str) -> None: ...

    async def read_raw(self, fingerprint: str) -> bool:
        """Return whether the blob can be read back from the network."""
        ...
