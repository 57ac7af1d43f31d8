"""HTTP client for the Walrus protocol bridge and public aggregator.

Implements :class:`~walsync.upload.gateway.BlobGateway` on top of two
``httpx.AsyncClient`` instances:

  1. The protocol bridge -- blob-id computation, erasure encoding, Sui
     register/certify/delete transactions and storage-node writes.
  2. The Walrus aggregator -- ``GET /v1/blobs/{blob_id}`` as a read-back
     existence probe.

File bytes travel base64-encoded.  Requests that create or destroy
on-chain state carry the signer's address, public key and an Ed25519
signature over the exact request body.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from walsync.upload.exceptions import CertificationError
from walsync.upload.gateway import CertificationStatus, EncodedBlob
from walsync.upload.records import BlobKind, ProtocolBlob, decode_bytes, encode_bytes
from walsync.upload.signer import SuiSigner

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------


class RateLimitError(Exception):
    """Raised when the bridge returns a 429 rate-limit response."""


class TransientError(Exception):
    """Raised on 5xx responses and transport failures that may succeed on retry."""


class PermanentError(Exception):
    """Raised on client errors (4xx except 429) that should not be retried."""


_STATUS_MAP: dict[str, CertificationStatus] = {
    "absent": CertificationStatus.ABSENT,
    "nonexistent": CertificationStatus.ABSENT,
    "pending": CertificationStatus.PENDING,
    "registered": CertificationStatus.PENDING,
    "certified": CertificationStatus.CERTIFIED,
    "permanent": CertificationStatus.CERTIFIED,
    "deletable": CertificationStatus.CERTIFIED,
}


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class WalrusBridgeClient:
    """Gateway client for Walrus uploads.

    Usage::

        signer = SuiSigner.from_secret(secret)
        async with WalrusBridgeClient(bridge_url, aggregator_url, signer) as client:
            blob_id = await client.compute_fingerprint(data)
            status = await client.get_certification_status(blob_id)
    """

    def __init__(
        self,
        bridge_url: str,
        aggregator_url: str,
        signer: SuiSigner,
        *,
        timeout: float = 60.0,
        max_retries: int = 3,
        retry_wait: wait_base | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._signer = signer
        self._max_retries = max(1, max_retries)
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=30)
        self._bridge = httpx.AsyncClient(
            base_url=bridge_url, timeout=timeout, transport=transport
        )
        self._aggregator = httpx.AsyncClient(
            base_url=aggregator_url, timeout=timeout, transport=transport
        )

    async def aclose(self) -> None:
        await self._bridge.aclose()
        await self._aggregator.aclose()

    async def __aenter__(self) -> WalrusBridgeClient:
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    async def compute_fingerprint(self, data: bytes) -> str:
        body = await self._call("POST", "/v1/blob-id", {"data": encode_bytes(data)})
        return body["blob_id"]

    async def encode(self, data: bytes) -> EncodedBlob:
        body = await self._call("POST", "/v1/encode", {"data": encode_bytes(data)})
        return EncodedBlob(
            fingerprint=body["blob_id"],
            metadata=ProtocolBlob(kind=BlobKind.METADATA, payload=body["metadata"]),
            node_share_map=ProtocolBlob(kind=BlobKind.SHARE_MAP, payload=body["share_map"]),
            root_hash=decode_bytes(body["root_hash"]),
        )

    # ------------------------------------------------------------------
    # Ledger + node operations
    # ------------------------------------------------------------------

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
        body = await self._call(
            "POST",
            "/v1/blobs/register",
            {
                "blob_id": fingerprint,
                "size": size,
                "epochs": epochs,
                "root_hash": encode_bytes(root_hash),
                "deletable": deletable,
                "owner": owner,
            },
            signed=True,
        )
        logger.debug("Registered %s as object %s", fingerprint, body["object_id"])
        return body["object_id"]

    async def write_to_nodes(
        self,
        *,
        fingerprint: str,
        metadata: ProtocolBlob,
        node_share_map: ProtocolBlob,
        deletable: bool,
        object_id: str,
    ) -> list[ProtocolBlob | None]:
        body = await self._call(
            "POST",
            f"/v1/blobs/{fingerprint}/shares",
            {
                "object_id": object_id,
                "metadata": metadata.payload,
                "share_map": node_share_map.payload,
                "deletable": deletable,
            },
            signed=True,
        )
        return [
            None if c is None else ProtocolBlob(kind=BlobKind.CONFIRMATION, payload=c)
            for c in body.get("confirmations", [])
        ]

    async def certify(
        self,
        *,
        fingerprint: str,
        object_id: str,
        confirmations: list[ProtocolBlob | None],
        deletable: bool,
    ) -> None:
        body = await self._call(
            "POST",
            f"/v1/blobs/{fingerprint}/certify",
            {
                "object_id": object_id,
                "confirmations": [None if c is None else c.payload for c in confirmations],
                "deletable": deletable,
            },
            signed=True,
        )
        if not body.get("certified"):
            reason = body.get("reason") or "certification was not confirmed"
            raise CertificationError(f"Certification of {fingerprint} failed: {reason}")

    async def get_certification_status(self, fingerprint: str) -> CertificationStatus:
        body = await self._call(
            "GET", f"/v1/blobs/{fingerprint}/status", allow_not_found=True
        )
        if body is None:
            return CertificationStatus.ABSENT
        raw = str(body.get("status", "")).lower()
        try:
            return _STATUS_MAP[raw]
        except KeyError:
            raise PermanentError(f"Unknown blob status {raw!r} for {fingerprint}") from None

    async def delete_registered_object(self, object_id: str) -> None:
        await self._call("DELETE", f"/v1/objects/{object_id}", signed=True)
        logger.debug("Deleted ledger object %s", object_id)

    async def read_raw(self, fingerprint: str) -> bool:
        """Probe the aggregator for *fingerprint* without downloading the body."""
        try:
            async with self._aggregator.stream("GET", f"/v1/blobs/{fingerprint}") as response:
                if response.status_code == 404:
                    return False
                self._raise_for_status(response)
                return True
        except httpx.TransportError as exc:
            raise TransientError(f"Aggregator unreachable: {exc}") from exc

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _call(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        *,
        signed: bool = False,
        allow_not_found: bool = False,
    ) -> Any:
        """Send a bridge request with retries and return the decoded JSON body.

        Returns ``None`` for a 404 when *allow_not_found* is set.
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type((TransientError, RateLimitError)),
            stop=stop_after_attempt(self._max_retries),
            wait=self._retry_wait,
            reraise=True,
        ):
            with attempt:
                response = await self._send(method, path, payload, signed=signed)
                if allow_not_found and response.status_code == 404:
                    return None
                self._raise_for_status(response)
        if not response.content:
            return {}
        return response.json()

    async def _send(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None,
        *,
        signed: bool,
    ) -> httpx.Response:
        content = b"" if payload is None else json.dumps(payload, separators=(",", ":")).encode()
        headers = {"Content-Type": "application/json"} if payload is not None else {}
        if signed:
            headers.update(self._signature_headers(content))
        try:
            return await self._bridge.request(method, path, content=content, headers=headers)
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise TransientError(f"{method} {path}: {exc}") from exc

    def _signature_headers(self, content: bytes) -> dict[str, str]:
        return {
            "X-Walrus-Signer": self._signer.address,
            "X-Walrus-Public-Key": encode_bytes(self._signer.public_key),
            "X-Walrus-Signature": encode_bytes(self._signer.sign(content)),
        }

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        code = response.status_code
        if code < 400:
            return
        detail = f"{response.request.method} {response.request.url.path} -> {code}"
        if code == 429:
            raise RateLimitError(f"429 rate limit: {detail}")
        if code >= 500:
            raise TransientError(detail)
        raise PermanentError(detail)
