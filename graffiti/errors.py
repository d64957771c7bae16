"""
Error taxonomy shared by the codec, the miner, and the signal channel.

Construction and verification errors are raised to the caller immediately.
Subscription errors are never raised; they are delivered to the handler's
``on_error`` callback.
"""

from __future__ import annotations


class GraffitiError(Exception):
    """Base class for all graffiti errors."""


class InvalidArgumentError(GraffitiError, ValueError):
    """Malformed fixed-length input or out-of-range argument."""


class InvalidIdentifierError(InvalidArgumentError):
    """SOC identifier is not exactly 32 bytes."""


class InvalidEndpointError(InvalidArgumentError):
    """Bee API URL is not a well-formed http(s) URL."""


class InvalidPayloadError(GraffitiError, ValueError):
    """Payload rejected by the configured record validator."""


class PayloadSizeError(GraffitiError, ValueError):
    """Payload length outside the accepted window."""


class VerificationError(GraffitiError):
    """A single-owner chunk failed structural or cryptographic checks."""


class MalformedSocError(VerificationError):
    """Chunk bytes do not have the SOC layout."""


class SignatureMismatchError(VerificationError):
    """Signature does not recover to the expected owner."""


class TransportError(GraffitiError):
    """Upload, download, or subscription failure reported by the Bee node.

    Attributes:
        status: HTTP status code when the node answered, otherwise None.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class MiningCancelledError(GraffitiError):
    """Resource id search was stopped through its cancel event."""
