"""Ed25519 signer and Sui address derivation.

Only the Ed25519 scheme is supported.  A Sui address is the BLAKE2b-256
digest of the scheme flag byte followed by the 32-byte public key.
"""

from __future__ import annotations

import base64
import binascii
import hashlib

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from walsync.upload.exceptions import ConfigurationError

ED25519_FLAG = 0x00
_SEED_LEN = 32


class SuiSigner:
    """Signing capability plus the derived Sui address."""

    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._private_key = private_key
        self._public_key = private_key.public_key().public_bytes(
            Encoding.Raw, PublicFormat.Raw
        )
        digest = hashlib.blake2b(
            bytes([ED25519_FLAG]) + self._public_key, digest_size=32
        ).hexdigest()
        self._address = f"0x{digest}"

    @classmethod
    def from_secret(cls, secret: str) -> SuiSigner:
        """Build a signer from a base64 or hex encoded private key.

        Accepts a bare 32-byte seed or a 33-byte key prefixed with the
        Ed25519 scheme flag.

        Raises:
            ConfigurationError: If *secret* cannot be decoded into an
                Ed25519 key.
        """
        raw = _decode_secret(secret.strip())
        if len(raw) == _SEED_LEN + 1:
            if raw[0] != ED25519_FLAG:
                raise ConfigurationError(
                    f"Unsupported key scheme flag 0x{raw[0]:02x}; only Ed25519 keys are supported."
                )
            raw = raw[1:]
        if len(raw) != _SEED_LEN:
            raise ConfigurationError(
                "Invalid SUI_PRIVATE_KEY format. Make sure it's a valid base64 private key."
            )
        return cls(Ed25519PrivateKey.from_private_bytes(raw))

    @property
    def address(self) -> str:
        return self._address

    @property
    def public_key(self) -> bytes:
        return self._public_key

    def sign(self, message: bytes) -> bytes:
        """Return the 64-byte Ed25519 signature of *message*."""
        return self._private_key.sign(message)


def _decode_secret(secret: str) -> bytes:
    if len(secret) == 2 * _SEED_LEN:
        try:
            return bytes.fromhex(secret)
        except ValueError:
            pass
    try:
        return base64.b64decode(secret, validate=True)
    except binascii.Error as exc:
        raise ConfigurationError(
            "Invalid SUI_PRIVATE_KEY format. Make sure it's a valid base64 private key."
        ) from exc
