"""Length-framed token: ``u16be(len) ++ payload ++ signature[64]``."""
from __future__ import annotations

import logging
import struct
from typing import Tuple

from .errors import InvalidSignatureLengthError, MalformedPayloadError, TokenTruncatedError
from .payload import PAYLOAD_LENGTH
from .signing import SIGNATURE_LENGTH

LOGGER = logging.getLogger("photoseal")

LENGTH_PREFIX = struct.Struct(">H")


def token_length(payload_length: int = PAYLOAD_LENGTH) -> int:
    return LENGTH_PREFIX.size + payload_length + SIGNATURE_LENGTH


def build_token(payload: bytes, signature: bytes) -> bytes:
    payload = bytes(payload)
    signature = bytes(signature)
    if len(payload) > 0xFFFF:
        raise MalformedPayloadError(f"Payload too large to frame: {len(payload)} bytes")
    if len(signature) != SIGNATURE_LENGTH:
        raise InvalidSignatureLengthError(
            f"Ed25519 signature must be {SIGNATURE_LENGTH} bytes, got {len(signature)}"
        )
    return LENGTH_PREFIX.pack(len(payload)) + payload + signature


def parse_token(token: bytes, expected_payload_length: int = PAYLOAD_LENGTH) -> Tuple[bytes, bytes]:
    """Split *token* into ``(payload, signature)``.

    The declared length is authoritative: it must equal
    *expected_payload_length* for the negotiated protocol version and the
    buffer must hold the full frame. Bytes past the frame are ignored.

    Raises:
        TokenTruncatedError: If the length field or buffer size is inconsistent.
    """
    token = bytes(token)
    if len(token) < LENGTH_PREFIX.size + SIGNATURE_LENGTH:
        raise TokenTruncatedError(f"Token too short: {len(token)} bytes")

    (declared,) = LENGTH_PREFIX.unpack_from(token)
    if declared != expected_payload_length:
        raise TokenTruncatedError(
            f"Token declares a {declared}-byte payload; protocol expects {expected_payload_length}"
        )
    needed = token_length(declared)
    if len(token) < needed:
        raise TokenTruncatedError(f"Token truncated: need {needed} bytes, have {len(token)}")
    if len(token) > needed:
        LOGGER.debug("Ignoring %s trailing byte(s) after token frame", len(token) - needed)

    start = LENGTH_PREFIX.size
    payload = token[start : start + declared]
    signature = token[start + declared : needed]
    return payload, signature


__all__ = ["build_token", "parse_token", "token_length"]
