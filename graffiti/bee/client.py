"""
Bee HTTP client — the subset of the Bee node API used by graffiti feeds.

Endpoints:
    POST /soc/{owner}/{identifier}?sig={signature}   upload a single-owner chunk
    GET  /chunks/{address}                           download raw chunk data
    POST /stamps/{amount}/{depth}                    buy a postage batch
    GET  /stamps, /stamps/{batch_id}                 inspect postage batches
    GET  /addresses                                  node overlay and keys

Zero external dependencies — uses stdlib urllib.request. Calls are blocking;
async callers run them on a worker thread.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any

from graffiti import (
    BEE_DEFAULT_TIMEOUT_SECS,
    BEE_STAMP_POLL_INTERVAL_SECS,
    BEE_STAMP_USABLE_TIMEOUT_SECS,
    DEFAULT_BEE_URL,
    POSTAGE_BATCH_ID_HEX_LENGTH,
    POSTAGE_STAMP_HEX_LENGTH,
)
from graffiti.errors import InvalidArgumentError, TransportError
from graffiti.signer import is_hex_string

log = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^[0-9a-f]{64}$")

_DEFAULT_HEADERS = {
    "accept": "application/json, text/plain, */*",
}


def is_postage_batch_id(value: Any) -> bool:
    return is_hex_string(value, POSTAGE_BATCH_ID_HEX_LENGTH)


def is_postage_stamp(value: Any) -> bool:
    return is_hex_string(value, POSTAGE_STAMP_HEX_LENGTH)


@dataclass(frozen=True)
class UploadOptions:
    """Optional upload headers.

    Attributes:
        pin: Pin the chunk locally on the node.
        encrypt: Ask the node to encrypt the upload.
        tag: Existing tag UID to attach the upload to.
        deferred: Upload to the node first and push to the network later.
    """

    pin: bool | None = None
    encrypt: bool | None = None
    tag: int | None = None
    deferred: bool | None = None


def _flag(value: bool) -> str:
    return "true" if value else "false"


def extract_upload_headers(postage: str, options: UploadOptions | None = None) -> dict[str, str]:
    """Build postage and option headers for an upload.

    A 64-char hex string is sent as a postage batch id, a 226-char hex
    string as a serialized postage stamp (envelope API).
    """
    headers: dict[str, str] = {}

    if is_postage_batch_id(postage):
        headers["swarm-postage-batch-id"] = postage
    elif is_postage_stamp(postage):
        headers["swarm-postage-stamp"] = postage
    else:
        raise InvalidArgumentError(
            "Postage is invalid. Define either a postage batch id or a postage stamp "
            "(coming from envelope)"
        )

    if options is None:
        return headers
    if options.pin:
        headers["swarm-pin"] = _flag(options.pin)
    if options.encrypt:
        headers["swarm-encrypt"] = _flag(options.encrypt)
    if options.tag:
        headers["swarm-tag"] = str(options.tag)
    if options.deferred is not None:
        headers["swarm-deferred-upload"] = _flag(options.deferred)
    return headers


def websocket_url(base_url: str, path: str) -> str:
    """Turn an http(s) node URL into the ws(s) URL of ``path``."""
    ws_base = re.sub(r"^http", "ws", base_url.rstrip("/"), count=1, flags=re.IGNORECASE)
    return f"{ws_base}/{path}"


class BeeClient:
    """Minimal Bee node HTTP client using stdlib urllib.

    Usage:
        client = BeeClient("http://localhost:1633")
        reference = client.upload_soc(owner, identifier, signature, data, batch_id)
        chunk = client.download_chunk(reference)
    """

    def __init__(
        self,
        url: str,
        timeout: float = BEE_DEFAULT_TIMEOUT_SECS,
        headers: dict[str, str] | None = None,
    ) -> None:
        if not url:
            raise ValueError("Bee API URL cannot be empty")
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.headers = dict(headers or {})

    @classmethod
    def from_env(cls) -> BeeClient:
        """Create a client from BEE_API_URL (default http://localhost:1633)."""
        return cls(os.environ.get("BEE_API_URL", "") or DEFAULT_BEE_URL)

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
        raw: bool = False,
    ) -> Any:
        """Execute a request. Returns parsed JSON, or the raw body if ``raw``.

        Raises TransportError on connection failures, HTTP errors, and
        unparseable JSON bodies.
        """
        url = f"{self.url}/{path}"
        query = {k: v for k, v in (params or {}).items() if v is not None}
        if query:
            url = f"{url}?{urllib.parse.urlencode(query)}"

        req = urllib.request.Request(url, data=data, method=method)
        for name, value in {**_DEFAULT_HEADERS, **self.headers, **(headers or {})}.items():
            req.add_header(name, value)

        log.debug("%s %s", method, url)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = resp.read()
        except urllib.error.HTTPError as e:
            # Bee reports errors as {"code": ..., "message": ...}
            message = e.reason
            try:
                message = json.loads(e.read().decode()).get("message", message)
            except (ValueError, AttributeError, OSError):
                pass
            raise TransportError(f"HTTP {e.code}: {message}", status=e.code) from e
        except urllib.error.URLError as e:
            raise TransportError(f"Connection failed: {e.reason}") from e
        except OSError as e:
            raise TransportError(f"Request failed: {e}") from e

        if raw:
            return body
        try:
            return json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise TransportError(f"Invalid JSON response from {path}: {e}") from e

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def upload_soc(
        self,
        owner: str,
        identifier: str,
        signature: str,
        data: bytes,
        postage: str,
        options: UploadOptions | None = None,
    ) -> str:
        """Upload a single-owner chunk. Returns the chunk reference (hex).

        Args:
            owner: Owner's Ethereum address in hex.
            identifier: Identifier in hex.
            signature: Signature in hex.
            data: Span-prefixed payload.
            postage: Postage batch id or serialized stamp in hex.
            options: Optional pin/encrypt/tag/deferred headers.
        """
        headers = {"content-type": "application/octet-stream"}
        headers.update(extract_upload_headers(postage, options))

        body = self.request(
            "POST",
            f"soc/{owner}/{identifier}",
            params={"sig": signature},
            data=data,
            headers=headers,
        )
        reference = body.get("reference") if isinstance(body, dict) else None
        if not isinstance(reference, str):
            raise TransportError("Upload response has no reference")

        log.info("Uploaded SOC %s (owner %s)", reference[:12], owner[:12])
        return reference

    def download_chunk(self, address: str) -> bytes:
        """Download raw chunk data by its 64-char hex address."""
        if not isinstance(address, str) or not _ADDRESS_RE.match(address):
            raise InvalidArgumentError(
                f"Chunk address must be 64 lowercase hex chars, got {address!r}"
            )
        return self.request("GET", f"chunks/{address}", raw=True)

    # ------------------------------------------------------------------
    # Postage and node info
    # ------------------------------------------------------------------

    def create_postage_batch(
        self,
        amount: str | int,
        depth: int,
        *,
        label: str | None = None,
        gas_price: int | None = None,
        immutable: bool | None = None,
        wait_for_usable: bool = False,
    ) -> str:
        """Buy a postage batch. Returns its batch id.

        With ``wait_for_usable`` polls the batch until the node reports it
        usable, giving up silently after 100 seconds.
        """
        headers: dict[str, str] = {}
        if gas_price is not None:
            headers["gas-price"] = str(gas_price)
        if immutable is not None:
            headers["immutable"] = _flag(immutable)

        body = self.request(
            "POST", f"stamps/{amount}/{depth}", params={"label": label}, headers=headers,
        )
        batch_id = body.get("batchID") if isinstance(body, dict) else None
        if not isinstance(batch_id, str):
            raise TransportError("Postage response has no batchID")

        if wait_for_usable:
            deadline = time.monotonic() + BEE_STAMP_USABLE_TIMEOUT_SECS
            while time.monotonic() < deadline:
                try:
                    if self.get_postage_batch(batch_id).get("usable"):
                        break
                except TransportError as e:
                    log.debug("Postage batch %s not visible yet: %s", batch_id[:12], e)
                time.sleep(BEE_STAMP_POLL_INTERVAL_SECS)

        return batch_id

    def list_postage_batches(self) -> list[dict[str, Any]]:
        return self.request("GET", "stamps").get("stamps", [])

    def get_postage_batch(self, batch_id: str) -> dict[str, Any]:
        return self.request("GET", f"stamps/{batch_id}")

    def get_node_addresses(self) -> dict[str, Any]:
        """Node identity: overlay, underlay, ethereum, publicKey, pssPublicKey."""
        return self.request("GET", "addresses")
