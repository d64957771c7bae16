"""
Proximity order between fixed-length addresses.

Proximity is the number of leading bits two addresses share, counted byte by
byte from the most significant bit. Two addresses are in the same
neighborhood of depth ``d`` when their proximity is at least ``d``.
"""

from __future__ import annotations

from graffiti.errors import InvalidArgumentError


def proximity(one: bytes, other: bytes) -> int:
    """Return the length in bits of the common leading prefix of two addresses."""
    if len(one) != len(other):
        raise InvalidArgumentError(
            f"Addresses must have equal length, got {len(one)} and {len(other)}"
        )

    for i in range(len(one)):
        diff = one[i] ^ other[i]
        if diff:
            # leading zeros of the differing byte
            return i * 8 + (8 - diff.bit_length())
    return len(one) * 8


def in_proximity(candidate: bytes, target: bytes, depth: int) -> bool:
    """True if ``candidate`` shares at least ``depth`` leading bits with ``target``."""
    return proximity(candidate, target) >= depth
