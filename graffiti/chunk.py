"""
Content-addressed chunks — span encoding and binary Merkle tree (BMT) hashing.

Layout:
    span:    payload length, little-endian uint64 (8 bytes)
    payload: up to 4096 bytes

BMT:
    The payload is zero-padded to 4096 bytes and split into 128 segments of
    32 bytes. Pairs are hashed with keccak256 level by level up to a single
    root. Chunk address = keccak256(span + root).

This is the default ``chunk_hash`` collaborator of the SOC codec; any
callable with the same signature ``chunk_hash(payload) -> (span, address)``
can replace it.
"""

from __future__ import annotations

from dataclasses import dataclass

from graffiti import BMT_BRANCHES, CHUNK_MAX_PAYLOAD, SEGMENT_SIZE, SPAN_SIZE
from graffiti.errors import MalformedSocError, PayloadSizeError
from graffiti.signer import keccak256


def make_span(length: int) -> bytes:
    """Encode a payload length as the 8-byte little-endian span."""
    if length < 0:
        raise PayloadSizeError(f"Span cannot be negative: {length}")
    return length.to_bytes(SPAN_SIZE, "little")


def read_span(span: bytes) -> int:
    """Decode an 8-byte span."""
    if len(span) != SPAN_SIZE:
        raise MalformedSocError(f"Span must be {SPAN_SIZE} bytes, got {len(span)}")
    return int.from_bytes(span, "little")


def bmt_root(payload: bytes) -> bytes:
    """Root of the binary Merkle tree over the zero-padded payload."""
    if len(payload) > CHUNK_MAX_PAYLOAD:
        raise PayloadSizeError(
            f"Chunk payload too large: {len(payload)} bytes (max {CHUNK_MAX_PAYLOAD})"
        )
    padded = payload + b"\x00" * (CHUNK_MAX_PAYLOAD - len(payload))
    layer = [padded[i * SEGMENT_SIZE:(i + 1) * SEGMENT_SIZE] for i in range(BMT_BRANCHES)]

    while len(layer) > 1:
        layer = [keccak256(layer[i], layer[i + 1]) for i in range(0, len(layer), 2)]
    return layer[0]


@dataclass(frozen=True)
class ContentChunk:
    """A content-addressed chunk: span, payload, and its BMT address."""

    span: bytes
    payload: bytes
    address: bytes

    def data(self) -> bytes:
        """Span-prefixed payload, as uploaded to the node."""
        return self.span + self.payload


def make_content_chunk(payload: bytes, span: int | None = None) -> ContentChunk:
    """Build the content-addressed chunk for ``payload``.

    ``span`` defaults to the payload length; intermediate chunks of larger
    files carry the length of the subtree they cover instead.
    """
    payload = bytes(payload)
    span_bytes = make_span(len(payload) if span is None else span)
    address = keccak256(span_bytes, bmt_root(payload))
    return ContentChunk(span=span_bytes, payload=payload, address=address)


def chunk_hash(payload: bytes) -> tuple[bytes, bytes]:
    """Default chunk hash collaborator: returns (span, content address)."""
    chunk = make_content_chunk(payload)
    return chunk.span, chunk.address
