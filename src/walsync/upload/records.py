"""Durable per-blob upload record and the protocol payloads it carries.

One :class:`UploadRecord` exists per content fingerprint (the Walrus blob
id).  The record is the only thing that survives a process restart: file
bytes are never persisted, so resuming always re-reads the source file.

Protocol payloads produced by encoding and node writes are kept as
:class:`ProtocolBlob` values.  The orchestrator threads them through to the
gateway untouched and never looks inside them.
"""

from __future__ import annotations

import base64
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Stage(str, Enum):
    """Upload stages, in protocol order (plus ``failed``)."""

    ENCODING = "encoding"
    REGISTERED = "registered"
    UPLOADING = "uploading"
    CERTIFYING = "certifying"
    COMPLETED = "completed"
    FAILED = "failed"


# Stages at which a ledger object must already exist.
REGISTERED_STAGES: frozenset[Stage] = frozenset({
    Stage.REGISTERED,
    Stage.UPLOADING,
    Stage.CERTIFYING,
    Stage.COMPLETED,
    Stage.FAILED,
})

# Stages picked up by ``walsync sync --resume``.
RESUMABLE_STAGES: frozenset[Stage] = frozenset({
    Stage.ENCODING,
    Stage.REGISTERED,
    Stage.UPLOADING,
    Stage.CERTIFYING,
    Stage.FAILED,
})


class BlobKind(str, Enum):
    """Tag identifying what an opaque protocol payload represents."""

    METADATA = "metadata"
    SHARE_MAP = "share_map"
    CONFIRMATION = "confirmation"


class ProtocolBlob(BaseModel):
    """Immutable, tagged, JSON-serializable protocol payload."""

    model_config = ConfigDict(frozen=True)

    kind: BlobKind
    payload: Any = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UploadRecord(BaseModel):
    """Resumable state of a single blob upload."""

    fingerprint: str
    source_path: str
    stage: Stage = Stage.ENCODING
    remote_object_id: str | None = None
    root_hash: str | None = None
    encoded_metadata: ProtocolBlob | None = None
    node_share_map: ProtocolBlob | None = None
    node_confirmations: list[ProtocolBlob | None] | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    last_error: str | None = None

    @property
    def valid_confirmations(self) -> int:
        """Number of nodes that acknowledged their shares."""
        return count_confirmations(self.node_confirmations)

    def reset(self) -> UploadRecord:
        """Return a copy rolled back to ``encoding`` with protocol state cleared."""
        return self.model_copy(
            update={
                "stage": Stage.ENCODING,
                "remote_object_id": None,
                "root_hash": None,
                "encoded_metadata": None,
                "node_share_map": None,
                "node_confirmations": None,
                "last_error": None,
            }
        )


def count_confirmations(confirmations: list[ProtocolBlob | None] | None) -> int:
    """Count non-null entries in a node confirmation sequence."""
    if not confirmations:
        return 0
    return sum(1 for c in confirmations if c is not None)


def encode_bytes(data: bytes) -> str:
    """Base64-encode *data* for text-safe persistence or transport."""
    return base64.b64encode(data).decode("ascii")


def decode_bytes(text: str) -> bytes:
    """Inverse of :func:`encode_bytes`."""
    return base64.b64decode(text.encode("ascii"), validate=True)
