"""Resumable staged upload pipeline for Walrus.

Public API
----------
.. autoclass:: AsyncUploadStateStore
.. autoclass:: StageExecutor
.. autoclass:: UploadCoordinator
.. autoclass:: UploadProgressTracker
.. autoclass:: WalrusBridgeClient
.. autoclass:: SuiSigner
"""

from walsync.upload.client import (
    PermanentError,
    RateLimitError,
    TransientError,
    WalrusBridgeClient,
)
from walsync.upload.exceptions import (
    CertificationError,
    ConfigurationError,
    NodeWriteError,
    PreconditionError,
)
from walsync.upload.executor import OutcomeKind, StageExecutor, StageOutcome
from walsync.upload.gateway import BlobGateway, CertificationStatus, EncodedBlob
from walsync.upload.options import UploadOptions, validate_options
from walsync.upload.orchestrator import UploadCoordinator
from walsync.upload.progress import UploadProgressTracker
from walsync.upload.records import BlobKind, ProtocolBlob, Stage, UploadRecord
from walsync.upload.signer import SuiSigner
from walsync.upload.state import AsyncUploadStateStore

__all__ = [
    "AsyncUploadStateStore",
    "BlobGateway",
    "BlobKind",
    "CertificationError",
    "CertificationStatus",
    "ConfigurationError",
    "EncodedBlob",
    "NodeWriteError",
    "OutcomeKind",
    "PermanentError",
    "PreconditionError",
    "ProtocolBlob",
    "RateLimitError",
    "Stage",
    "StageExecutor",
    "StageOutcome",
    "SuiSigner",
    "TransientError",
    "UploadCoordinator",
    "UploadOptions",
    "UploadProgressTracker",
    "UploadRecord",
    "WalrusBridgeClient",
    "validate_options",
]
