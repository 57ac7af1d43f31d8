"""Immutable per-run upload options."""

from __future__ import annotations

from dataclasses import dataclass

from walsync.upload.exceptions import ConfigurationError


@dataclass(frozen=True)
class UploadOptions:
    """Per-run upload options, built once and never mutated.

    Blobs are not deletable unless asked for, matching the Walrus CLI's
    default of permanent storage.
    """

    epochs: int | None
    deletable: bool = False


def validate_options(options: UploadOptions | None) -> UploadOptions:
    """Check *options* before any file or network I/O.

    Raises:
        ConfigurationError: If options are missing or ``epochs`` is not a
            positive integer.
    """
    if options is None:
        raise ConfigurationError("Upload options are required")
    epochs = options.epochs
    if isinstance(epochs, bool) or not isinstance(epochs, int) or epochs <= 0:
        raise ConfigurationError(
            f"Should specify a positive number for `epochs` (got {epochs!r})"
        )
    return options
