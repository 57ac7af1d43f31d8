"""Credential lookup and configuration loading."""

from __future__ import annotations

import json
import os
from dataclasses import fields
from pathlib import Path

import keyring

from walsync.models import SyncConfig
from walsync.upload.exceptions import ConfigurationError
from walsync.upload.signer import SuiSigner

SERVICE_NAME = "walsync-sui"
KEY_NAME = "private_key"
ENV_VAR = "SUI_PRIVATE_KEY"


def get_private_key() -> str:
    """Get the Sui private key: system keyring first, then SUI_PRIVATE_KEY.

    Raises:
        ConfigurationError: If no key is found anywhere, with setup instructions.
    """
    secret = keyring.get_password(SERVICE_NAME, KEY_NAME)
    if secret:
        return secret

    secret = os.environ.get(ENV_VAR)
    if secret:
        return secret

    raise ConfigurationError(
        f"{ENV_VAR} environment variable is required.\n"
        f"Set it with: export {ENV_VAR}=\"your-private-key\"\n"
        "Or store it with: walsync config set-key"
    )


def load_signer() -> SuiSigner:
    """Resolve the private key and build the signer (fatal on failure)."""
    return SuiSigner.from_secret(get_private_key())


def load_sync_config(config_path: Path | None = None, **overrides: object) -> SyncConfig:
    """Load sync configuration from JSON, falling back to defaults.

    Reads from ``config/sync_config.json`` when *config_path* is ``None``.
    Unknown keys in the file are ignored.  Keyword *overrides* whose value
    is not ``None`` win over the file.

    Raises:
        ConfigurationError: If the file is not valid JSON or a value is invalid.
    """
    if config_path is None:
        config_path = Path("config/sync_config.json")

    data: dict = {}
    if config_path.exists():
        try:
            with open(config_path) as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid config file {config_path}: {exc}") from exc

    field_names = {f.name for f in fields(SyncConfig)}
    kwargs = {k: v for k, v in data.items() if k in field_names}
    kwargs.update({k: v for k, v in overrides.items() if k in field_names and v is not None})

    return SyncConfig(**kwargs)
