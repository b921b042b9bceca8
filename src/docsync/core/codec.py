"""StateCodec — CRDT update bytes <-> transport-safe base64 text."""

from __future__ import annotations

import base64
import binascii

from docsync.core.errors import DecodingError, EncodingError


def encode(update: bytes) -> str:
    """Encode an update blob as standard, padded base64 text."""
    if not isinstance(update, (bytes, bytearray, memoryview)):
        raise EncodingError(f"expected a bytes-like update, got {type(update).__name__}")
    return base64.b64encode(bytes(update)).decode("ascii")


def decode(text: str) -> bytes:
    """Decode base64 text produced by encode().

    Characters outside the alphabet and bad padding are rejected rather than
    silently skipped.
    """
    if not isinstance(text, str):
        raise DecodingError(f"expected encoded text, got {type(text).__name__}")
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodingError("invalid base64 state text") from exc
