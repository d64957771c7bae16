"""
Single-owner chunks (SOC) — construction, serialization, and verification.

Address:
    keccak256(identifier (32) + owner (20))

Signed digest:
    keccak256(identifier (32) + content address (32))

Serialized form (serialize_soc / parse_and_verify):
    [65 bytes: signature] [32 bytes: identifier] [20 bytes: owner]
    [8 bytes: span] [payload: 1..4096 bytes]

Network form (GET /chunks/{address}, parse_chunk_data):
    [32 bytes: identifier] [65 bytes: signature] [8 bytes: span] [payload]

The owner is not carried in the network form; it is recovered from the
signature. Uploads send owner, identifier and signature out-of-band (URL
path and query) and only span + payload in the body.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from graffiti import (
    CHUNK_MAX_PAYLOAD,
    IDENTIFIER_SIZE,
    MIN_PAYLOAD_SIZE,
    OWNER_SIZE,
    SIGNATURE_SIZE,
    SOC_PAYLOAD_OFFSET,
    SOC_SIGNATURE_OFFSET,
    SOC_SPAN_OFFSET,
    SPAN_SIZE,
)
from graffiti.chunk import chunk_hash as default_chunk_hash
from graffiti.errors import (
    InvalidArgumentError,
    InvalidIdentifierError,
    MalformedSocError,
    PayloadSizeError,
    SignatureMismatchError,
)
from graffiti.signer import Signer, keccak256, recover_address, resolve_signature, to_bytes

ChunkHash = Callable[[bytes], tuple[bytes, bytes]]

# Serialized form offsets
_SER_SIGNATURE = slice(0, SIGNATURE_SIZE)
_SER_IDENTIFIER = slice(SIGNATURE_SIZE, SIGNATURE_SIZE + IDENTIFIER_SIZE)
_SER_OWNER = slice(_SER_IDENTIFIER.stop, _SER_IDENTIFIER.stop + OWNER_SIZE)
_SER_SPAN = slice(_SER_OWNER.stop, _SER_OWNER.stop + SPAN_SIZE)
SERIALIZED_HEADER_SIZE = _SER_SPAN.stop  # 125


def make_soc_address(identifier: bytes, owner: bytes) -> bytes:
    """Network address of the SOC written by ``owner`` under ``identifier``."""
    if len(identifier) != IDENTIFIER_SIZE:
        raise InvalidIdentifierError(
            f"Identifier must be {IDENTIFIER_SIZE} bytes, got {len(identifier)}"
        )
    if len(owner) != OWNER_SIZE:
        raise InvalidArgumentError(f"Owner must be {OWNER_SIZE} bytes, got {len(owner)}")
    return keccak256(identifier, owner)


def signing_digest(identifier: bytes, content_address: bytes) -> bytes:
    """The 32-byte digest the owner signs."""
    return keccak256(identifier, content_address)


@dataclass(frozen=True)
class SingleOwnerChunk:
    """A signed single-owner chunk.

    Attributes:
        identifier: 32-byte identifier chosen by the writer.
        owner: 20-byte Ethereum address of the signer.
        signature: 65-byte r + s + v signature over signing_digest().
        span: 8-byte little-endian payload length.
        payload: Raw payload bytes.
        content_address: BMT address of span + payload.
    """

    identifier: bytes
    owner: bytes
    signature: bytes
    span: bytes
    payload: bytes
    content_address: bytes

    @property
    def address(self) -> bytes:
        return make_soc_address(self.identifier, self.owner)

    @property
    def address_hex(self) -> str:
        return self.address.hex()

    def data(self) -> bytes:
        """Span-prefixed payload (the upload body)."""
        return self.span + self.payload

    def upload_parts(self) -> tuple[str, str, str, bytes]:
        """(owner hex, identifier hex, signature hex, span + payload) for upload."""
        return self.owner.hex(), self.identifier.hex(), self.signature.hex(), self.data()

    def to_bytes(self) -> bytes:
        return serialize_soc(self)

    def to_chunk_data(self) -> bytes:
        """Network form as served by GET /chunks/{address}."""
        return self.identifier + self.signature + self.span + self.payload


async def make_single_owner_chunk(
    payload: bytes,
    identifier: bytes | str,
    signer: Signer,
    chunk_hash: ChunkHash = default_chunk_hash,
) -> SingleOwnerChunk:
    """Build and sign a SOC over ``payload``.

    Awaits the signer, which may be synchronous or asynchronous.

    Raises:
        InvalidIdentifierError: identifier is not exactly 32 bytes.
        PayloadSizeError: payload empty or larger than one chunk.
    """
    try:
        identifier = to_bytes(identifier, "identifier")
    except InvalidArgumentError as e:
        raise InvalidIdentifierError(str(e)) from e
    if len(identifier) != IDENTIFIER_SIZE:
        raise InvalidIdentifierError(
            f"Identifier must be {IDENTIFIER_SIZE} bytes, got {len(identifier)}"
        )

    owner = bytes(signer.address)
    if len(owner) != OWNER_SIZE:
        raise InvalidArgumentError(f"Signer address must be {OWNER_SIZE} bytes, got {len(owner)}")

    payload = bytes(payload)
    if len(payload) < MIN_PAYLOAD_SIZE:
        raise PayloadSizeError(
            f"Payload too short: {len(payload)} bytes (min {MIN_PAYLOAD_SIZE})"
        )
    span, content_address = chunk_hash(payload)
    signature = await resolve_signature(signer, signing_digest(identifier, content_address))

    return SingleOwnerChunk(
        identifier=identifier,
        owner=owner,
        signature=signature,
        span=span,
        payload=payload,
        content_address=content_address,
    )


def serialize_soc(soc: SingleOwnerChunk) -> bytes:
    """Serialize to signature + identifier + owner + span + payload."""
    return soc.signature + soc.identifier + soc.owner + soc.span + soc.payload


def _verified(
    identifier: bytes,
    signature: bytes,
    span: bytes,
    payload: bytes,
    expected_owner: bytes,
    chunk_hash: ChunkHash,
) -> SingleOwnerChunk:
    if not payload or len(payload) > CHUNK_MAX_PAYLOAD:
        raise MalformedSocError(
            f"Payload must be 1..{CHUNK_MAX_PAYLOAD} bytes, got {len(payload)}"
        )

    expected_span, content_address = chunk_hash(payload)
    if span != expected_span:
        raise MalformedSocError(
            f"Span {span.hex()} does not match payload length {len(payload)}"
        )

    signer = recover_address(signature, signing_digest(identifier, content_address))
    if signer != expected_owner:
        raise SignatureMismatchError(
            f"Signature recovers to {signer.hex()}, expected owner {expected_owner.hex()}"
        )

    return SingleOwnerChunk(
        identifier=identifier,
        owner=expected_owner,
        signature=signature,
        span=span,
        payload=payload,
        content_address=content_address,
    )


def _expect(identifier: bytes, owner: bytes) -> tuple[bytes, bytes]:
    identifier = bytes(identifier)
    owner = bytes(owner)
    if len(identifier) != IDENTIFIER_SIZE:
        raise InvalidIdentifierError(
            f"Identifier must be {IDENTIFIER_SIZE} bytes, got {len(identifier)}"
        )
    if len(owner) != OWNER_SIZE:
        raise InvalidArgumentError(f"Owner must be {OWNER_SIZE} bytes, got {len(owner)}")
    return identifier, owner


def parse_and_verify(
    data: bytes,
    expected_identifier: bytes,
    expected_owner: bytes,
    chunk_hash: ChunkHash = default_chunk_hash,
) -> SingleOwnerChunk:
    """Parse serialize_soc() output and verify it against the expected writer.

    Raises:
        MalformedSocError: wrong length, span inconsistent, or
            identifier differs from the expected one.
        SignatureMismatchError: owner field or recovered signer differs from
            ``expected_owner``.
    """
    expected_identifier, expected_owner = _expect(expected_identifier, expected_owner)
    data = bytes(data)
    if len(data) <= SERIALIZED_HEADER_SIZE:
        raise MalformedSocError(
            f"SOC too short: {len(data)} bytes (min {SERIALIZED_HEADER_SIZE + 1})"
        )

    identifier = data[_SER_IDENTIFIER]
    if identifier != expected_identifier:
        raise MalformedSocError(
            f"Identifier mismatch: got {identifier.hex()[:12]}, "
            f"expected {expected_identifier.hex()[:12]}"
        )
    owner = data[_SER_OWNER]
    if owner != expected_owner:
        raise SignatureMismatchError(
            f"Owner mismatch: got {owner.hex()}, expected {expected_owner.hex()}"
        )

    return _verified(
        identifier,
        data[_SER_SIGNATURE],
        data[_SER_SPAN],
        data[SERIALIZED_HEADER_SIZE:],
        expected_owner,
        chunk_hash,
    )


def parse_chunk_data(
    data: bytes,
    expected_identifier: bytes,
    expected_owner: bytes,
    chunk_hash: ChunkHash = default_chunk_hash,
) -> SingleOwnerChunk:
    """Parse and verify a SOC downloaded from GET /chunks/{address}.

    Same failure modes as parse_and_verify().
    """
    expected_identifier, expected_owner = _expect(expected_identifier, expected_owner)
    data = bytes(data)
    if len(data) <= SOC_PAYLOAD_OFFSET:
        raise MalformedSocError(
            f"Chunk too short: {len(data)} bytes (min {SOC_PAYLOAD_OFFSET + 1})"
        )

    identifier = data[:SOC_SIGNATURE_OFFSET]
    if identifier != expected_identifier:
        raise MalformedSocError(
            f"Identifier mismatch: got {identifier.hex()[:12]}, "
            f"expected {expected_identifier.hex()[:12]}"
        )

    return _verified(
        identifier,
        data[SOC_SIGNATURE_OFFSET:SOC_SPAN_OFFSET],
        data[SOC_SPAN_OFFSET:SOC_PAYLOAD_OFFSET],
        data[SOC_PAYLOAD_OFFSET:],
        expected_owner,
        chunk_hash,
    )
