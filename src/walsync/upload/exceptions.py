"""Exceptions raised by the staged upload pipeline."""

from __future__ import annotations


class ConfigurationError(Exception):
    """Raised when a required option or credential is missing or invalid.

    Always fatal: raised before any file read or gateway call and never
    swallowed by the upload coordinator.
    """


class PreconditionError(Exception):
    """Raised when the encoded blob id differs from the record's fingerprint.

    Means the source file changed between fingerprinting and encoding.
    Missing stage inputs on a persisted record are not raised; the
    executor resolves them directly.
    """


class NodeWriteError(Exception):
    """Raised when writing shares to storage nodes yields no confirmation."""


class CertificationError(Exception):
    """Raised when the ledger rejects (or never confirms) a certification."""
