"""
Signers — secp256k1 keys, Ethereum addresses, and recoverable signatures.

Requires secp256k1 (C bindings) for signing and public key recovery. Will
raise ImportError if the library is unavailable.

Signing follows Ethereum ``personal_sign``: the 32-byte digest is prefixed
with ``"\\x19Ethereum Signed Message:\\n32"``, hashed with keccak256 and signed
with a deterministic (RFC 6979) recoverable ECDSA signature. The result is
65 bytes: r (32) + s (32) + v (1), where v = recovery id + 27.

Owner address = last 20 bytes of keccak256(uncompressed public key without
its 0x04 prefix).
"""

from __future__ import annotations

import inspect
import re
from typing import Any

from Crypto.Hash import keccak

from graffiti import OWNER_SIZE, SIGNATURE_SIZE
from graffiti.errors import InvalidArgumentError, SignatureMismatchError


_ETH_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n32"
_PRIVATE_KEY_SIZE = 32
_RECOVERY_OFFSET = 27

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def keccak256(*parts: bytes) -> bytes:
    """Keccak-256 (pre-NIST SHA-3) over the concatenation of ``parts``."""
    h = keccak.new(digest_bits=256)
    for part in parts:
        h.update(part)
    return h.digest()


def hash_with_ethereum_prefix(digest: bytes) -> bytes:
    """Hash a 32-byte digest the way ``personal_sign`` does before signing."""
    return keccak256(_ETH_MESSAGE_PREFIX, digest)


def to_bytes(value: bytes | str, field: str = "value") -> bytes:
    """Accept raw bytes or a hex string (optional 0x prefix)."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        text = value[2:] if value[:2] in ("0x", "0X") else value
        try:
            return bytes.fromhex(text)
        except ValueError:
            raise InvalidArgumentError(f"{field} is not a valid hex string: {value!r}")
    raise InvalidArgumentError(f"{field} must be bytes or a hex string, got {type(value).__name__}")


def is_hex_string(value: Any, length: int | None = None) -> bool:
    """True for an unprefixed hex string, optionally of an exact length."""
    if not isinstance(value, str) or not _HEX_RE.match(value):
        return False
    return length is None or len(value) == length


# ---------------------------------------------------------------------------
# secp256k1 keys and recovery
# ---------------------------------------------------------------------------

def _import_secp256k1():
    """Import secp256k1 C bindings. Raises ImportError if unavailable."""
    try:
        import secp256k1
        return secp256k1
    except ImportError:
        raise ImportError(
            "secp256k1 is required for SOC signing and verification. "
            "Install with: pip install secp256k1"
        )


def public_key_to_address(public_key: bytes) -> bytes:
    """Derive the 20-byte Ethereum address from a 65-byte uncompressed public key."""
    if len(public_key) != 65 or public_key[0] != 0x04:
        raise InvalidArgumentError("Public key must be 65 bytes uncompressed (0x04 prefix)")
    return keccak256(public_key[1:])[-OWNER_SIZE:]


def recover_public_key(signature: bytes, digest: bytes) -> bytes:
    """Recover the uncompressed public key that produced ``signature`` over ``digest``.

    ``digest`` is the unprefixed 32-byte value handed to ``Signer.sign``.
    Raises SignatureMismatchError if the signature cannot be recovered.
    """
    if len(signature) != SIGNATURE_SIZE:
        raise SignatureMismatchError(
            f"Signature must be {SIGNATURE_SIZE} bytes, got {len(signature)}"
        )
    recovery_id = signature[64] - _RECOVERY_OFFSET
    if not 0 <= recovery_id <= 3:
        raise SignatureMismatchError(f"Invalid recovery byte: {signature[64]}")

    lib = _import_secp256k1()
    pub = lib.PublicKey()
    try:
        recoverable = pub.ecdsa_recoverable_deserialize(signature[:64], recovery_id)
        raw = pub.ecdsa_recover(hash_with_ethereum_prefix(digest), recoverable, raw=True)
    except (AttributeError, TypeError):
        raise
    except Exception as e:
        # the bindings raise plain Exception for unparseable or unrecoverable signatures
        raise SignatureMismatchError(f"Cannot recover signer: {e}") from e
    return lib.PublicKey(raw).serialize(compressed=False)


def recover_address(signature: bytes, digest: bytes) -> bytes:
    """Recover the owner address that signed ``digest``."""
    return public_key_to_address(recover_public_key(signature, digest))


def verify_signature(signature: bytes, digest: bytes, owner: bytes) -> bool:
    """Check that ``signature`` over ``digest`` was made by ``owner``.

    Fail-closed: returns False on any recovery error.
    """
    try:
        return recover_address(signature, digest) == bytes(owner)
    except SignatureMismatchError:
        return False


# ---------------------------------------------------------------------------
# Signer capability
# ---------------------------------------------------------------------------

class Signer:
    """Signing capability: a fixed owner address and ``sign(digest)``.

    ``sign`` may return the 65-byte signature (bytes or hex string) directly
    or an awaitable resolving to it, e.g. when a wallet or remote device
    signs. Callers always go through ``resolve_signature``.

    Subclasses set ``address`` in their constructor.
    """

    address: bytes

    def sign(self, digest: bytes) -> Any:
        raise NotImplementedError


class PrivateKeySigner(Signer):
    """Signer backed by a raw secp256k1 private key.

    Usage:
        signer = make_signer(private_key)
        signature = await resolve_signature(signer, digest)
    """

    def __init__(self, private_key: bytes) -> None:
        if len(private_key) != _PRIVATE_KEY_SIZE:
            raise InvalidArgumentError(
                f"Private key must be {_PRIVATE_KEY_SIZE} bytes, got {len(private_key)}"
            )
        lib = _import_secp256k1()
        try:
            self._key = lib.PrivateKey(bytes(private_key), raw=True)
        except (AttributeError, TypeError):
            raise
        except Exception as e:
            raise InvalidArgumentError(f"Invalid secp256k1 private key: {e}") from e
        self.public_key = self._key.pubkey.serialize(compressed=False)
        self.address = public_key_to_address(self.public_key)

    def sign(self, digest: bytes) -> bytes:
        raw = self._key.ecdsa_sign_recoverable(hash_with_ethereum_prefix(digest), raw=True)
        compact, recovery_id = self._key.ecdsa_recoverable_serialize(raw)
        return compact + bytes([recovery_id + _RECOVERY_OFFSET])

    def __repr__(self) -> str:
        return f"PrivateKeySigner(address={self.address.hex()})"


def make_signer(private_key: bytes | str) -> PrivateKeySigner:
    """Build a signer from 32 private key bytes or their hex encoding."""
    return PrivateKeySigner(to_bytes(private_key, "private key"))


async def resolve_signature(signer: Signer, digest: bytes) -> bytes:
    """Sign ``digest`` with any signer, awaiting asynchronous implementations."""
    result = signer.sign(digest)
    if inspect.isawaitable(result):
        result = await result

    signature = to_bytes(result, "signature")
    if len(signature) != SIGNATURE_SIZE:
        raise SignatureMismatchError(
            f"Signer returned {len(signature)} bytes, expected {SIGNATURE_SIZE}"
        )
    return signature


def consensual_private_key(resource_id: bytes | str) -> bytes:
    """Map a graffiti resource id onto the private key every writer shares.

    - 32 raw bytes are the key itself (mined resource ids round-trip);
    - a 64-char hex string is decoded;
    - anything else is keccak256-hashed (strings as UTF-8).
    """
    if isinstance(resource_id, (bytes, bytearray, memoryview)):
        data = bytes(resource_id)
        if len(data) == _PRIVATE_KEY_SIZE:
            return data
        return keccak256(data)

    if isinstance(resource_id, str):
        text = resource_id[2:] if resource_id[:2] in ("0x", "0X") else resource_id
        if is_hex_string(text, _PRIVATE_KEY_SIZE * 2):
            return bytes.fromhex(text)
        return keccak256(resource_id.encode("utf-8"))

    raise InvalidArgumentError(
        f"Resource id must be bytes or str, got {type(resource_id).__name__}"
    )


def make_resource_signer(resource_id: bytes | str) -> PrivateKeySigner:
    """Signer for the shared key of a graffiti resource id."""
    return PrivateKeySigner(consensual_private_key(resource_id))
