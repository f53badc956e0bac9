"""Payload codec — the wire format sent to the verification service.

Layout:

    +----------------------+---------------------------+
    | digest (32 bytes)    | preimage (UTF-8, n bytes) |
    +----------------------+---------------------------+

The service recomputes the hash of the preimage and compares it with the
embedded digest. Tamper mode corrupts the embedded digest so the
comparison is guaranteed to fail.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass

from hashwatch.errors import MalformedPayloadError
from hashwatch.models.record import PayloadBreakdown

logger = logging.getLogger(__name__)

DIGEST_SIZE = 32


@dataclass(frozen=True)
class DecodedPayload:
    """A payload split into its two parts."""
    expected_hash: bytes
    preimage_bytes: bytes


@dataclass(frozen=True)
class BuiltPayload:
    """Digest and encoded payload produced for one submission."""
    digest: bytes
    payload: bytes

    @property
    def digest_hex(self) -> str:
        return to_hex(self.digest)

    @property
    def payload_hex(self) -> str:
        return to_hex(self.payload)


# ---------------------------------------------------------------------------
# Hex helpers
# ---------------------------------------------------------------------------

def to_hex(data: bytes) -> str:
    return data.hex()


def from_hex(text: str) -> bytes:
    """Parse a hex string, tolerating a leading ``0x``.

    Raises ValueError on non-hex input or odd length.
    """
    if text[:2] in ("0x", "0X"):
        text = text[2:]
    return bytes.fromhex(text)


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

def compute_digest(preimage: str) -> bytes:
    """Blake2s-256 of the UTF-8 preimage."""
    return hashlib.blake2s(preimage.encode("utf-8"), digest_size=DIGEST_SIZE).digest()


def tamper_digest(digest: bytes) -> bytes:
    """Return a copy of ``digest`` with every bit of the first byte flipped."""
    corrupted = bytearray(digest)
    corrupted[0] ^= 0xFF
    return bytes(corrupted)


# ---------------------------------------------------------------------------
# Encode / decode
# ---------------------------------------------------------------------------

def encode(digest: bytes, preimage: str) -> bytes:
    """Concatenate a 32-byte digest and the UTF-8 preimage."""
    if len(digest) != DIGEST_SIZE:
        raise ValueError(
            f"Digest must be {DIGEST_SIZE} bytes, got {len(digest)}"
        )
    return bytes(digest) + preimage.encode("utf-8")


def decode(payload: bytes) -> DecodedPayload:
    """Split a payload at the digest boundary.

    Raises MalformedPayloadError if the payload is shorter than the digest.
    """
    if len(payload) < DIGEST_SIZE:
        raise MalformedPayloadError(
            f"Payload is {len(payload)} bytes, shorter than the "
            f"{DIGEST_SIZE}-byte digest"
        )
    return DecodedPayload(
        expected_hash=bytes(payload[:DIGEST_SIZE]),
        preimage_bytes=bytes(payload[DIGEST_SIZE:]),
    )


def build_payload(preimage: str, tamper: bool = False) -> BuiltPayload:
    """Hash the preimage, optionally corrupt the digest, and encode."""
    digest = compute_digest(preimage)
    if tamper:
        digest = tamper_digest(digest)
    return BuiltPayload(digest=digest, payload=encode(digest, preimage))


def parse_payload(payload_hex: str) -> PayloadBreakdown:
    """Decode a hex payload into a display breakdown.

    Advisory only: undecodable input yields ``PayloadBreakdown.empty()``.
    """
    try:
        decoded = decode(from_hex(payload_hex))
    except ValueError as exc:
        logger.debug("Unparseable payload %r: %s", payload_hex[:80], exc)
        return PayloadBreakdown.empty()
    return PayloadBreakdown(
        expected_hash=to_hex(decoded.expected_hash),
        preimage_hex=to_hex(decoded.preimage_bytes),
        preimage_text=decoded.preimage_bytes.decode("utf-8", errors="replace"),
    )
