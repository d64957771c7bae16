"""
Byte helpers shared by the channel and the transport.
"""

from __future__ import annotations

import json
from typing import Any

from graffiti.errors import PayloadSizeError


class Data(bytes):
    """Bytes with convenience views for received payloads.

    ``hex()`` is inherited from bytes (lowercase, unprefixed).
    """

    def text(self) -> str:
        """UTF-8 decoded payload."""
        return self.decode("utf-8")

    def json(self) -> Any:
        """Payload parsed as JSON."""
        return json.loads(self.text())


def wrap_bytes(data: bytes) -> Data:
    return Data(data)


def serialize_payload(value: Any) -> bytes:
    """Encode a record for upload: bytes as-is, anything else as compact JSON."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    return json.dumps(value, separators=(",", ":")).encode("utf-8")


def flex_bytes_at_offset(data: bytes, offset: int, min_size: int, max_size: int) -> bytes:
    """Return ``data[offset:]`` if its length is within ``[min_size, max_size]``.

    Raises PayloadSizeError otherwise.
    """
    payload = data[offset:]
    if len(payload) < min_size:
        raise PayloadSizeError(
            f"Payload too short: {len(payload)} bytes (min {min_size})"
        )
    if len(payload) > max_size:
        raise PayloadSizeError(
            f"Payload too large: {len(payload)} bytes (max {max_size})"
        )
    return payload
