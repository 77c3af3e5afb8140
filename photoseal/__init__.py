"""Signed credentials hidden in ID card photos.

An issuer binds a short, signed record of card claims into the pixels of the
cardholder photo. Any verifier holding the issuer's Ed25519 public key can
recover and check the claims from the photo alone.

Module Organization
-------------------

payload
    Fixed 39-byte credential record (issuer, card id, expiry, version, name hash).

signing
    Ed25519 signing and verification via PyNaCl, key files and tolerant base64.

framing
    Length-prefixed token ``u16be(len) ++ payload ++ signature``.

ecc
    Bit-level repetition code with majority decoding.

wavelet
    In-place multi-level 2D Haar transform and subband geometry.

watermark
    Keyed spread-spectrum embedding in the level-2 detail subbands.

marker
    Legacy public quantization marker for cards printed before signed credentials.

pipeline
    Issuance and verification orchestration with a structured result.

profiles
    Watermark profiles shared by issuer and verifier, plus canonical card geometry.

io_utils
    Pillow-backed image loading, photo region handling and atomic PNG writes.

cli
    ``photoseal`` command with keygen, issue, verify and marker subcommands.

Key Features
------------

- 39-byte payload, 105-byte signed token, 2520 watermark bits at triple repetition
- Deterministic embedding positions derived from a public seed and carrier size
- Signature failures reported with best-effort claims instead of exceptions
- JSON/YAML configuration and progress reporting for batch verification

Example Usage
-------------

    import numpy as np
    from photoseal import IssuanceRequest, generate_keypair, issue_credential, verify_credential

    signing_key, verify_key = generate_keypair()
    photo = np.full((512, 512, 3), 128, dtype=np.uint8)
    request = IssuanceRequest(
        issuer_id=7,
        card_id=bytes([0xAA]) * 16,
        expiration_date="2026-01-01",
        full_name="Juan Dela Cruz",
    )
    issued = issue_credential(request, signing_key, photo)
    result = verify_credential(issued.carrier, verify_key)
    assert result.verified
"""
from __future__ import annotations

import logging

from .ecc import RepetitionCode
from .errors import (
    InsufficientCapacityError,
    InvalidKeyMaterialError,
    InvalidSignatureLengthError,
    MalformedPayloadError,
    PhotosealError,
    TokenTruncatedError,
    UnsupportedGeometryError,
)
from .framing import build_token, parse_token, token_length
from .marker import MarkerReport, detect_marker_in_region, embed_marker_in_region
from .payload import (
    PAYLOAD_LENGTH,
    PAYLOAD_VERSION,
    Payload,
    decode_payload,
    encode_payload,
    name_hash,
)
from .pipeline import (
    IssuanceRequest,
    IssuanceResult,
    VerificationResult,
    VerificationStatus,
    issue_credential,
    verify_credential,
)
from .profiles import (
    DEFAULT_CARD_LAYOUT,
    DEFAULT_PROFILE_NAME,
    WATERMARK_PROFILES,
    CardLayout,
    WatermarkProfile,
)
from .signing import (
    decode_base64_lenient,
    generate_keypair,
    load_public_key,
    sign_payload,
    verify_signature,
)
from .watermark import WatermarkCodec, WatermarkScheme, embed_bits, extract_bits
from .wavelet import haar_forward, haar_inverse

LOGGER = logging.getLogger("photoseal")

__all__ = [
    "CardLayout",
    "DEFAULT_CARD_LAYOUT",
    "DEFAULT_PROFILE_NAME",
    "InsufficientCapacityError",
    "InvalidKeyMaterialError",
    "InvalidSignatureLengthError",
    "IssuanceRequest",
    "IssuanceResult",
    "LOGGER",
    "MalformedPayloadError",
    "MarkerReport",
    "PAYLOAD_LENGTH",
    "PAYLOAD_VERSION",
    "Payload",
    "PhotosealError",
    "RepetitionCode",
    "TokenTruncatedError",
    "UnsupportedGeometryError",
    "VerificationResult",
    "VerificationStatus",
    "WATERMARK_PROFILES",
    "WatermarkCodec",
    "WatermarkProfile",
    "WatermarkScheme",
    "build_token",
    "decode_base64_lenient",
    "decode_payload",
    "detect_marker_in_region",
    "embed_bits",
    "embed_marker_in_region",
    "encode_payload",
    "extract_bits",
    "generate_keypair",
    "haar_forward",
    "haar_inverse",
    "issue_credential",
    "load_public_key",
    "name_hash",
    "parse_token",
    "sign_payload",
    "token_length",
    "verify_credential",
    "verify_signature",
]
