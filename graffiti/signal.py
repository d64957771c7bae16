"""
InformationSignal — read, write and listen on a shared graffiti topic.

Every writer of a topic uses the same key, derived from the resource id, and
the same identifier, keccak256(consensus id). All writers therefore land on
one pre-computable SOC address that readers can fetch or subscribe to
without coordination.

Light nodes do not take part in chunk push-sync, so a subscription opened on
a light node never receives messages.
"""

from __future__ import annotations

import asyncio
import logging
import urllib.parse
from typing import Any

from graffiti import (
    DEFAULT_RESOURCE_ID,
    MAX_PAYLOAD_SIZE,
    MIN_PAYLOAD_SIZE,
    SOC_PAYLOAD_OFFSET,
)
from graffiti.bee.client import BeeClient, UploadOptions, is_postage_batch_id, is_postage_stamp
from graffiti.bee.gsoc import Subscription, assert_subscription_handler, gsoc_subscribe
from graffiti.config import SignalOptions
from graffiti.data import Data, flex_bytes_at_offset, serialize_payload, wrap_bytes
from graffiti.errors import InvalidArgumentError, InvalidEndpointError, InvalidPayloadError
from graffiti.mining import MiningResult, mine_resource_id, mine_resource_id_async
from graffiti.signer import keccak256, make_resource_signer
from graffiti.soc import SingleOwnerChunk, make_single_owner_chunk, make_soc_address, parse_chunk_data

log = logging.getLogger(__name__)


def is_valid_bee_url(url: Any) -> bool:
    """True for an absolute http or https URL with a host."""
    if not isinstance(url, str):
        return False
    try:
        parsed = urllib.parse.urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def assert_bee_url(url: Any) -> None:
    if not is_valid_bee_url(url):
        raise InvalidEndpointError(f"URL is not valid: {url!r}")


class _RecordHandler:
    """Parses and validates frames before they reach the subscriber."""

    def __init__(self, signal: InformationSignal, handler: Any) -> None:
        self._signal = signal
        self._handler = handler
        self.on_error = handler.on_error

    async def on_message(self, data: Data) -> None:
        try:
            value = data.json()
        except ValueError as e:
            raise InvalidPayloadError(f"Message is not valid JSON: {e}") from e

        record = self._signal.assert_record(value)
        result = self._handler.on_message(record)
        if asyncio.iscoroutine(result):
            await result


class InformationSignal:
    """Reads and writes GSOC records of one consensus topic.

    Usage:
        signal = InformationSignal("http://localhost:1633", SignalOptions(postage=batch_id))
        await signal.write("hello")
        data = await signal.read()
        data.json()  # "hello"
    """

    def __init__(
        self,
        bee_url: str,
        options: SignalOptions | None = None,
        *,
        client: Any = None,
    ) -> None:
        assert_bee_url(bee_url)
        self.bee_url = bee_url
        self.options = options or SignalOptions()

        self.postage = self.options.postage
        if not (is_postage_batch_id(self.postage) or is_postage_stamp(self.postage)):
            raise InvalidArgumentError("Postage batch id or postage stamp has to be a hex string!")

        self.consensus_hash = keccak256(self.options.consensus_id.encode("utf-8"))
        self._client = client if client is not None else BeeClient(bee_url)

    def assert_record(self, value: Any) -> Any:
        """Run the configured validator. Returns the (possibly replaced) record."""
        try:
            result = self.options.validator(value)
        except InvalidPayloadError:
            raise
        except (ValueError, TypeError) as e:
            raise InvalidPayloadError(str(e)) from e
        return value if result is None else result

    def gsoc_address(self, resource_id: bytes | str = DEFAULT_RESOURCE_ID) -> bytes:
        """SOC address shared by all writers of ``resource_id`` on this topic."""
        return make_soc_address(self.consensus_hash, make_resource_signer(resource_id).address)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def write(
        self,
        data: Any,
        resource_id: bytes | str = DEFAULT_RESOURCE_ID,
        postage: str | None = None,
        upload_options: UploadOptions | None = None,
    ) -> SingleOwnerChunk:
        """Sign ``data`` as a GSOC record and upload it.

        Raises:
            InvalidPayloadError: the validator rejected ``data``.
            PayloadSizeError: serialized record exceeds one chunk.
            TransportError: the node refused the upload.
        """
        record = self.assert_record(data)
        signer = make_resource_signer(resource_id)
        soc = await make_single_owner_chunk(serialize_payload(record), self.consensus_hash, signer)

        owner, identifier, signature, body = soc.upload_parts()
        reference = await asyncio.to_thread(
            self._client.upload_soc,
            owner,
            identifier,
            signature,
            body,
            postage or self.postage,
            upload_options,
        )
        log.debug("GSOC write %s -> %s", soc.address_hex[:12], reference[:12])
        return soc

    async def send(
        self,
        data: Any,
        resource_id: bytes | str = DEFAULT_RESOURCE_ID,
    ) -> SingleOwnerChunk:
        """Same as write()."""
        return await self.write(data, resource_id)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def read(
        self,
        resource_id: bytes | str = DEFAULT_RESOURCE_ID,
        *,
        verify: bool | None = None,
    ) -> Data:
        """Fetch the latest record stored at the topic address.

        Raises:
            TransportError: chunk not found or node unreachable.
            PayloadSizeError: payload outside [1, 4096] bytes.
            VerificationError: ``verify`` is on and the chunk does not check out.
        """
        signer = make_resource_signer(resource_id)
        address = make_soc_address(self.consensus_hash, signer.address)

        data = await asyncio.to_thread(self._client.download_chunk, address.hex())

        if self.options.verify_reads if verify is None else verify:
            parse_chunk_data(data, self.consensus_hash, signer.address)

        payload = flex_bytes_at_offset(data, SOC_PAYLOAD_OFFSET, MIN_PAYLOAD_SIZE, MAX_PAYLOAD_SIZE)
        return wrap_bytes(payload)

    async def get_latest_gsoc_data(self, resource_id: bytes | str = DEFAULT_RESOURCE_ID) -> Data:
        """Same as read()."""
        return await self.read(resource_id)

    # ------------------------------------------------------------------
    # Subscribe
    # ------------------------------------------------------------------

    def subscribe(
        self,
        handler: Any,
        resource_id: bytes | str = DEFAULT_RESOURCE_ID,
        *,
        connect: Any = None,
    ) -> Subscription:
        """Listen for records written to the topic.

        ``handler.on_message`` receives each validated record,
        ``handler.on_error`` every decoding, validation, or transport error.
        Must be called from a running event loop. The returned subscription
        carries ``gsoc_address`` and an idempotent ``close()``.
        """
        assert_subscription_handler(handler)
        address = self.gsoc_address(resource_id)
        return gsoc_subscribe(
            self.bee_url,
            address.hex(),
            _RecordHandler(self, handler),
            connect=connect,
        )

    def listen(
        self,
        handler: Any,
        resource_id: bytes | str = DEFAULT_RESOURCE_ID,
    ) -> Subscription:
        """Same as subscribe()."""
        return self.subscribe(handler, resource_id)

    # ------------------------------------------------------------------
    # Mining
    # ------------------------------------------------------------------

    def mine_resource_id(self, bee_address: bytes | str, storage_depth: int) -> MiningResult:
        """Mine a resource id whose GSOC lands in the neighborhood of ``bee_address``.

        Blocks the calling thread; prefer mine_async() inside an event loop.
        """
        return mine_resource_id(self.consensus_hash, bee_address, storage_depth)

    def mine(self, bee_address: bytes | str, storage_depth: int) -> MiningResult:
        """Same as mine_resource_id()."""
        return self.mine_resource_id(bee_address, storage_depth)

    async def mine_async(self, bee_address: bytes | str, storage_depth: int) -> MiningResult:
        """mine_resource_id() on a worker thread."""
        return await mine_resource_id_async(self.consensus_hash, bee_address, storage_depth)
