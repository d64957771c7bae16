"""
Resource id mining — find a graffiti resource id whose SOC address falls in
the neighborhood of a target overlay address.

Search order:
    Candidates come from a 256-bit counter stored little-endian: byte 0 is
    the least significant byte and carries propagate towards byte 31. The
    seed (all zeros by default) is never tested itself; the first candidate
    is seed + 1. The all-zero value is not a valid secp256k1 key anyway.

Cost:
    Each candidate derives a public key and two keccak256 hashes. Expected
    iterations are about 2**depth. The search is CPU-bound, has no timeout
    and no suspension point. Run it on a worker thread
    (mine_resource_id_async) and stop it through the cancel event.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Iterator

from graffiti import ADDRESS_SIZE, IDENTIFIER_SIZE, MAX_PROXIMITY_DEPTH
from graffiti.errors import InvalidArgumentError, MiningCancelledError
from graffiti.proximity import in_proximity
from graffiti.signer import make_resource_signer, to_bytes
from graffiti.soc import make_soc_address

log = logging.getLogger(__name__)

# How often the search loop looks at its cancel event
CANCEL_CHECK_INTERVAL = 64


@dataclass(frozen=True)
class MiningResult:
    """Outcome of a successful search.

    Attributes:
        resource_id: The 32-byte resource id (also the shared private key).
        address: The SOC address it produces under the consensus topic.
        iterations: Number of candidates tested.
    """

    resource_id: bytes
    address: bytes
    iterations: int

    @property
    def resource_id_hex(self) -> str:
        return self.resource_id.hex()


def validate_mining_args(target: bytes | str, depth: int) -> bytes:
    """Normalize the target address and check the depth. Returns target bytes."""
    target = to_bytes(target, "target address")
    if len(target) != ADDRESS_SIZE:
        raise InvalidArgumentError(
            f"Target address has to be {ADDRESS_SIZE} bytes, got {len(target)}"
        )
    if isinstance(depth, bool) or not isinstance(depth, int):
        raise InvalidArgumentError(f"Depth must be an integer, got {type(depth).__name__}")
    if not 0 <= depth <= MAX_PROXIMITY_DEPTH:
        raise InvalidArgumentError(
            f"Depth must be between 0 and {MAX_PROXIMITY_DEPTH}, got {depth}"
        )
    return target


def candidate_resource_ids(start: bytes | None = None) -> Iterator[bytes]:
    """Infinite sequence of candidate resource ids following ``start``.

    Restartable: calling again with the same seed replays the same sequence.
    """
    counter = bytearray(start if start is not None else bytes(IDENTIFIER_SIZE))
    if len(counter) != IDENTIFIER_SIZE:
        raise InvalidArgumentError(
            f"Start value must be {IDENTIFIER_SIZE} bytes, got {len(counter)}"
        )

    while True:
        for i in range(len(counter)):
            if counter[i] == 0xFF:
                counter[i] = 0
            else:
                counter[i] += 1
                break
        yield bytes(counter)


def resource_soc_address(consensus_topic: bytes, resource_id: bytes | str) -> bytes:
    """SOC address written by the shared key of ``resource_id`` under the topic."""
    return make_soc_address(consensus_topic, make_resource_signer(resource_id).address)


def mine_resource_id(
    consensus_topic: bytes,
    target: bytes | str,
    depth: int,
    *,
    start: bytes | None = None,
    cancel: threading.Event | None = None,
) -> MiningResult:
    """Search for the first resource id whose SOC address is within ``depth``
    bits of ``target``.

    Blocking and potentially long-running; see the module docstring.

    Raises:
        InvalidArgumentError: bad target, depth, topic, or seed.
        MiningCancelledError: ``cancel`` was set before a match was found.
    """
    target = validate_mining_args(target, depth)
    if len(consensus_topic) != IDENTIFIER_SIZE:
        raise InvalidArgumentError(
            f"Consensus topic must be {IDENTIFIER_SIZE} bytes, got {len(consensus_topic)}"
        )

    log.debug("Mining resource id for %s at depth %d", target.hex()[:12], depth)

    for iterations, resource_id in enumerate(candidate_resource_ids(start), start=1):
        if cancel is not None and (iterations - 1) % CANCEL_CHECK_INTERVAL == 0 and cancel.is_set():
            raise MiningCancelledError(f"Mining cancelled after {iterations - 1} candidates")

        address = resource_soc_address(consensus_topic, resource_id)
        if in_proximity(address, target, depth):
            log.info(
                "Mined resource id %s -> %s after %d candidates",
                resource_id.hex()[:12], address.hex()[:12], iterations,
            )
            return MiningResult(resource_id=resource_id, address=address, iterations=iterations)

    raise AssertionError("unreachable")  # candidate_resource_ids never ends


async def mine_resource_id_async(
    consensus_topic: bytes,
    target: bytes | str,
    depth: int,
    *,
    start: bytes | None = None,
) -> MiningResult:
    """Run mine_resource_id() on a worker thread.

    Cancelling the awaiting task stops the worker at its next cancel check.
    """
    cancel = threading.Event()
    try:
        return await asyncio.to_thread(
            mine_resource_id, consensus_topic, target, depth, start=start, cancel=cancel,
        )
    except asyncio.CancelledError:
        cancel.set()
        raise
