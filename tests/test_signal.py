"""
Tests for InformationSignal — configuration, write/read, subscribe, mining.

The Bee node is replaced by a MagicMock client or the fake node from
test_bee; websocket frames come from a fake socket.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from graffiti import DEFAULT_CONSENSUS_ID, DEFAULT_POSTAGE_BATCH_ID
from graffiti.bee.client import BeeClient
from graffiti.config import SignalOptions, assert_information_signal_record, bee_url_from_env
from graffiti.errors import (
    InvalidArgumentError,
    InvalidEndpointError,
    InvalidPayloadError,
    PayloadSizeError,
    SignatureMismatchError,
    TransportError,
)
from graffiti.signal import InformationSignal, is_valid_bee_url
from graffiti.signer import keccak256, make_resource_signer
from graffiti.soc import make_soc_address

from tests.test_bee import FakeSocket, RecordingHandler, fake_bee  # noqa: F401

# Check if secp256k1 C bindings are available
try:
    import secp256k1
    HAS_SECP256K1 = True
except ImportError:
    HAS_SECP256K1 = False

requires_secp256k1 = pytest.mark.skipif(
    not HAS_SECP256K1,
    reason="secp256k1 C bindings not installed (pip install secp256k1)",
)

BEE_URL = "http://localhost:1633"
BATCH_ID = "ab" * 32


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_client():
    """Bee client that stores uploads in memory."""
    client = MagicMock(spec=BeeClient)
    chunks = {}

    def upload_soc(owner, identifier, signature, data, postage, options=None):
        address = keccak256(bytes.fromhex(identifier), bytes.fromhex(owner)).hex()
        chunks[address] = bytes.fromhex(identifier) + bytes.fromhex(signature) + data
        return address

    def download_chunk(address):
        if address not in chunks:
            raise TransportError("HTTP 404: Not Found", status=404)
        return chunks[address]

    client.upload_soc.side_effect = upload_soc
    client.download_chunk.side_effect = download_chunk
    client.chunks = chunks
    return client


@pytest.fixture
def signal(mock_client):
    return InformationSignal(BEE_URL, SignalOptions(postage=BATCH_ID), client=mock_client)


# ---------------------------------------------------------------------------
# TestConfig
# ---------------------------------------------------------------------------

class TestConfig:
    """Tests for options, environment, and construction checks."""

    def test_defaults(self):
        options = SignalOptions()
        assert options.consensus_id == DEFAULT_CONSENSUS_ID
        assert options.postage == DEFAULT_POSTAGE_BATCH_ID
        assert options.validator is assert_information_signal_record
        assert options.verify_reads is False

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("GRAFFITI_CONSENSUS_ID", "Chat:v2")
        monkeypatch.setenv("GRAFFITI_POSTAGE", BATCH_ID)
        options = SignalOptions.from_env(verify_reads=True)
        assert options.consensus_id == "Chat:v2"
        assert options.postage == BATCH_ID
        assert options.verify_reads is True

    def test_from_env_overrides_win(self, monkeypatch):
        monkeypatch.setenv("GRAFFITI_CONSENSUS_ID", "Chat:v2")
        assert SignalOptions.from_env(consensus_id="Other").consensus_id == "Other"

    def test_bee_url_from_env(self, monkeypatch):
        monkeypatch.delenv("BEE_API_URL", raising=False)
        assert bee_url_from_env() == "http://localhost:1633"
        monkeypatch.setenv("BEE_API_URL", "https://bee.example")
        assert bee_url_from_env() == "https://bee.example"

    def test_default_validator(self):
        assert_information_signal_record("hello")
        with pytest.raises(InvalidPayloadError):
            assert_information_signal_record({"text": "hello"})

    @pytest.mark.parametrize("url", ["", "localhost:1633", "ftp://bee", "http://", None, 1633])
    def test_invalid_endpoint(self, url):
        assert not is_valid_bee_url(url)
        with pytest.raises(InvalidEndpointError):
            InformationSignal(url)

    def test_valid_endpoints(self):
        assert is_valid_bee_url("http://localhost:1633")
        assert is_valid_bee_url("https://bee.example/api")

    @pytest.mark.parametrize("postage", ["", "xyz", "ab" * 31, "0x" + "ab" * 32])
    def test_invalid_postage(self, postage):
        with pytest.raises(InvalidArgumentError):
            InformationSignal(BEE_URL, SignalOptions(postage=postage))

    def test_consensus_hash(self):
        signal = InformationSignal(BEE_URL, SignalOptions(consensus_id="Chat:v2"))
        assert signal.consensus_hash == keccak256(b"Chat:v2")

    def test_default_client(self):
        signal = InformationSignal(BEE_URL)
        assert isinstance(signal._client, BeeClient)
        assert signal._client.url == BEE_URL


# ---------------------------------------------------------------------------
# TestWriteRead
# ---------------------------------------------------------------------------

class TestWriteRead:
    """Tests for writing and reading records."""

    @pytest.mark.asyncio
    async def test_write_rejects_invalid_record(self, signal, mock_client):
        with pytest.raises(InvalidPayloadError):
            await signal.write({"not": "a string"})
        mock_client.upload_soc.assert_not_called()

    @pytest.mark.asyncio
    async def test_validator_value_error_wrapped(self, mock_client):
        def validator(value):
            raise ValueError("nope")

        signal = InformationSignal(
            BEE_URL, SignalOptions(postage=BATCH_ID, validator=validator), client=mock_client,
        )
        with pytest.raises(InvalidPayloadError, match="nope"):
            await signal.write("hello")

    @requires_secp256k1
    @pytest.mark.asyncio
    async def test_write_then_read(self, signal):
        soc = await signal.write("hello")
        data = await signal.read()
        assert data.json() == "hello"
        assert bytes(data) == b'"hello"'
        assert soc.payload == b'"hello"'

    @requires_secp256k1
    @pytest.mark.asyncio
    async def test_write_uploads_soc(self, signal, mock_client):
        soc = await signal.write("hello")
        signer = make_resource_signer("any")

        assert soc.identifier == keccak256(DEFAULT_CONSENSUS_ID.encode())
        assert soc.owner == signer.address
        assert soc.address == signal.gsoc_address()

        args = mock_client.upload_soc.call_args[0]
        assert args[0] == signer.address.hex()
        assert args[1] == soc.identifier.hex()
        assert args[2] == soc.signature.hex()
        assert args[3] == soc.span + soc.payload
        assert args[4] == BATCH_ID

    @requires_secp256k1
    @pytest.mark.asyncio
    async def test_write_postage_override(self, signal, mock_client):
        await signal.write("hello", postage="cd" * 32)
        assert mock_client.upload_soc.call_args[0][4] == "cd" * 32

    @requires_secp256k1
    @pytest.mark.asyncio
    async def test_send_alias(self, signal):
        await signal.send("hi", "room-1")
        assert (await signal.get_latest_gsoc_data("room-1")).json() == "hi"

    @requires_secp256k1
    @pytest.mark.asyncio
    async def test_resources_are_separate(self, signal):
        await signal.write("one", "a")
        await signal.write("two", "b")
        assert (await signal.read("a")).json() == "one"
        assert (await signal.read("b")).json() == "two"
        assert signal.gsoc_address("a") != signal.gsoc_address("b")

    @requires_secp256k1
    @pytest.mark.asyncio
    async def test_payload_too_large(self, signal):
        with pytest.raises(PayloadSizeError):
            await signal.write("x" * 4096)

    @requires_secp256k1
    @pytest.mark.asyncio
    async def test_empty_payload_not_uploaded(self, mock_client):
        signal = InformationSignal(
            BEE_URL, SignalOptions(postage=BATCH_ID, validator=lambda value: None),
            client=mock_client,
        )
        with pytest.raises(PayloadSizeError):
            await signal.write(b"")
        mock_client.upload_soc.assert_not_called()

    @requires_secp256k1
    @pytest.mark.asyncio
    async def test_read_missing(self, signal):
        with pytest.raises(TransportError) as exc:
            await signal.read("nobody-wrote-here")
        assert exc.value.status == 404

    @requires_secp256k1
    @pytest.mark.asyncio
    async def test_read_short_chunk(self, signal, mock_client):
        mock_client.download_chunk.side_effect = None
        mock_client.download_chunk.return_value = b"\x00" * 105
        with pytest.raises(PayloadSizeError):
            await signal.read()

    @requires_secp256k1
    @pytest.mark.asyncio
    async def test_read_verify(self, signal, mock_client):
        await signal.write("hello")
        address = signal.gsoc_address().hex()
        assert (await signal.read(verify=True)).json() == "hello"

        tampered = mock_client.chunks[address][:-2] + b'!"'
        mock_client.chunks[address] = tampered
        assert (await signal.read()).text() == '"hell!"'
        with pytest.raises(SignatureMismatchError):
            await signal.read(verify=True)

    @requires_secp256k1
    @pytest.mark.asyncio
    async def test_verify_reads_option(self, mock_client):
        signal = InformationSignal(
            BEE_URL, SignalOptions(postage=BATCH_ID, verify_reads=True), client=mock_client,
        )
        await signal.write("hello")
        address = signal.gsoc_address().hex()
        mock_client.chunks[address] = mock_client.chunks[address][:-2] + b'!"'
        with pytest.raises(SignatureMismatchError):
            await signal.read()

    @requires_secp256k1
    @pytest.mark.asyncio
    async def test_against_fake_node(self, fake_bee):  # noqa: F811
        """Full round trip through BeeClient over HTTP."""
        signal = InformationSignal(fake_bee.url, SignalOptions(postage=BATCH_ID))
        soc = await signal.write("over http")
        assert soc.address_hex in fake_bee.chunks
        assert (await signal.read(verify=True)).json() == "over http"

        upload = fake_bee.requests[0]
        assert upload["headers"]["swarm-postage-batch-id"] == BATCH_ID


# ---------------------------------------------------------------------------
# TestSubscribe
# ---------------------------------------------------------------------------

def _connect_to(sock, urls=None):
    async def connect(url):
        if urls is not None:
            urls.append(url)
        return sock
    return connect


@requires_secp256k1
class TestSubscribe:
    """Tests for validated subscriptions."""

    @pytest.mark.asyncio
    async def test_records_validated(self, signal):
        sock = FakeSocket([b'"hello"', b"", b"42", b"not json", '"bye"'])
        urls = []
        handler = RecordingHandler()

        sub = signal.subscribe(handler, connect=_connect_to(sock, urls))
        await sub.wait_closed()

        assert urls == [f"ws://localhost:1633/gsoc/subscribe/{signal.gsoc_address().hex()}"]
        assert sub.gsoc_address == signal.gsoc_address()
        assert handler.messages == ["hello", "bye"]
        assert len(handler.errors) == 2
        assert all(isinstance(e, InvalidPayloadError) for e in handler.errors)

    @pytest.mark.asyncio
    async def test_custom_validator_replaces_record(self, mock_client):
        def validator(value):
            if not isinstance(value, dict) or "text" not in value:
                raise InvalidPayloadError("missing text")
            return value["text"]

        signal = InformationSignal(
            BEE_URL, SignalOptions(postage=BATCH_ID, validator=validator), client=mock_client,
        )
        sock = FakeSocket([b'{"text":"hi"}', b'{"other":1}'])
        handler = RecordingHandler()
        sub = signal.subscribe(handler, connect=_connect_to(sock))
        await sub.wait_closed()

        assert handler.messages == ["hi"]
        assert str(handler.errors[0]) == "missing text"

    @pytest.mark.asyncio
    async def test_async_on_message(self, signal):
        handler = MagicMock()
        handler.on_message = AsyncMock()
        handler.on_error = MagicMock()

        sock = FakeSocket([b'"a"'])
        sub = signal.subscribe(handler, "room", connect=_connect_to(sock))
        await sub.wait_closed()

        handler.on_message.assert_awaited_once_with("a")
        handler.on_error.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_handler(self, signal):
        with pytest.raises(TypeError):
            signal.subscribe(object())

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, signal):
        sock = FakeSocket(hold=True)
        connected = asyncio.Event()

        async def connect(url):
            connected.set()
            return sock

        sub = signal.subscribe(RecordingHandler(), connect=connect)
        await asyncio.wait_for(connected.wait(), 1)
        await asyncio.sleep(0)

        for _ in range(3):
            sub.close()
        await sub.wait_closed()
        sock.close.assert_awaited_once()


# ---------------------------------------------------------------------------
# TestMining
# ---------------------------------------------------------------------------

@requires_secp256k1
class TestSignalMining:
    """Tests for mining through the channel."""

    def test_mined_resource_lands_near_target(self, signal):
        target = "f0" * 32
        result = signal.mine(target, 4)
        assert signal.gsoc_address(result.resource_id) == result.address
        assert result.address[0] >> 4 == 0xF

    def test_mine_alias(self, signal):
        assert signal.mine("00" * 32, 2) == signal.mine_resource_id("00" * 32, 2)

    @pytest.mark.asyncio
    async def test_mine_async(self, signal):
        assert await signal.mine_async("00" * 32, 2) == signal.mine("00" * 32, 2)

    @pytest.mark.asyncio
    async def test_write_to_mined_resource(self, signal):
        result = signal.mine("00" * 32, 1)
        soc = await signal.write("near", result.resource_id)
        assert soc.address == result.address
        assert (await signal.read(result.resource_id_hex)).json() == "near"

    def test_topic_address(self, signal):
        signer = make_resource_signer("any")
        assert signal.gsoc_address() == make_soc_address(signal.consensus_hash, signer.address)
