"""Codec layer — wire payload encoding and hashing."""

from hashwatch.codec.payload import (
    DIGEST_SIZE,
    BuiltPayload,
    DecodedPayload,
    build_payload,
    compute_digest,
    decode,
    encode,
    parse_payload,
    tamper_digest,
)

__all__ = [
    "DIGEST_SIZE",
    "BuiltPayload",
    "DecodedPayload",
    "build_payload",
    "compute_digest",
    "decode",
    "encode",
    "parse_payload",
    "tamper_digest",
]
