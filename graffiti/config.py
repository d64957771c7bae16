"""
Channel configuration — consensus id, default postage, and record validation.

Environment variables (used by from_env / the CLI):
    BEE_API_URL            — Bee node API, default http://localhost:1633
    GRAFFITI_CONSENSUS_ID  — consensus id, default SimpleGraffiti:v1
    GRAFFITI_POSTAGE       — postage batch id or stamp in hex
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, Callable

from graffiti import DEFAULT_BEE_URL, DEFAULT_CONSENSUS_ID, DEFAULT_POSTAGE_BATCH_ID
from graffiti.errors import InvalidPayloadError

# A validator raises InvalidPayloadError (or ValueError/TypeError) to reject
# a record. A non-None return value replaces the record.
Validator = Callable[[Any], Any]


def assert_information_signal_record(value: Any) -> None:
    """Default record shape: a plain string."""
    if not isinstance(value, str):
        raise InvalidPayloadError("Value is not a valid graffiti feed record")


@dataclass(frozen=True)
class SignalOptions:
    """Options for an InformationSignal channel.

    Attributes:
        consensus_id: Human-readable topic agreement, hashed into the SOC identifier.
        postage: Default postage batch id (64 hex) or stamp (226 hex) for writes.
        validator: Record validator applied on write and on every received message.
        verify_reads: Verify the chunk signature on read().
    """

    consensus_id: str = DEFAULT_CONSENSUS_ID
    postage: str = DEFAULT_POSTAGE_BATCH_ID
    validator: Validator = field(default=assert_information_signal_record)
    verify_reads: bool = False

    @classmethod
    def from_env(cls, **overrides: Any) -> SignalOptions:
        """Build options from GRAFFITI_* environment variables."""
        options = cls()
        consensus_id = os.environ.get("GRAFFITI_CONSENSUS_ID", "")
        if consensus_id:
            options = replace(options, consensus_id=consensus_id)
        postage = os.environ.get("GRAFFITI_POSTAGE", "")
        if postage:
            options = replace(options, postage=postage)
        return replace(options, **overrides) if overrides else options


def bee_url_from_env() -> str:
    return os.environ.get("BEE_API_URL", "") or DEFAULT_BEE_URL
