"""Issuance and verification orchestration.

Issuance::

    claims -> encode_payload -> sign_payload -> build_token
           -> RepetitionCode.encode_bits -> WatermarkCodec.embed

Verification::

    carrier -> WatermarkCodec.extract -> RepetitionCode.decode_bits
            -> parse_token -> verify_signature -> VerificationResult

Stages run strictly in this order. Issuance either returns a fully marked
carrier or raises; verification turns undecodable data and bad signatures
into a :class:`VerificationResult` instead of raising.
"""
from __future__ import annotations

import dataclasses
import enum
import logging
from datetime import date
from typing import Any, Optional, Union

import numpy as np

from .errors import MalformedPayloadError, TokenTruncatedError
from .framing import LENGTH_PREFIX, build_token, parse_token
from .payload import PAYLOAD_VERSION, Payload, decode_payload, encode_payload, utc_today
from .profiles import DEFAULT_PROFILE_NAME, PROTOCOL_PAYLOAD_LENGTHS, WATERMARK_PROFILES, WatermarkProfile
from .signing import KeyInput, as_verify_key, sign_payload, verify_signature
from .watermark import WatermarkCodec, WatermarkScheme

LOGGER = logging.getLogger("photoseal")


def _ensure_profile(profile: WatermarkProfile | None) -> WatermarkProfile:
    if profile is None:
        return WATERMARK_PROFILES[DEFAULT_PROFILE_NAME]
    return profile


def _payload_length(version: int) -> int:
    if WatermarkScheme.for_version(version) is not WatermarkScheme.SPREAD_SPECTRUM:
        raise ValueError(f"Protocol version {version} does not carry a signed credential")
    try:
        return PROTOCOL_PAYLOAD_LENGTHS[version]
    except KeyError as exc:
        raise ValueError(f"Unsupported protocol version: {version}") from exc


@dataclasses.dataclass(frozen=True)
class IssuanceRequest:
    """Claims to bind into one card photo."""

    issuer_id: int
    card_id: bytes
    expiration_date: Union[date, str]
    full_name: str
    version: int = PAYLOAD_VERSION


@dataclasses.dataclass(frozen=True)
class IssuanceResult:
    carrier: np.ndarray
    payload: bytes
    signature: bytes
    token: bytes
    bit_count: int
    profile: WatermarkProfile

    def summary(self) -> dict[str, Any]:
        return {
            "payload_len": len(self.payload),
            "token_len": len(self.token),
            "rep_bits": self.bit_count,
            "rep_factor": self.profile.repetitions,
            "wm_samples_per_bit": self.profile.samples_per_bit,
            "wm_alpha": self.profile.alpha,
            "profile": self.profile.name,
        }


class VerificationStatus(str, enum.Enum):
    VERIFIED = "verified"
    SIGNATURE_INVALID = "signature_invalid"
    UNDECODABLE = "undecodable"


@dataclasses.dataclass(frozen=True)
class VerificationResult:
    """Outcome of reading a credential back out of a carrier.

    Attributes:
        status: Reason class of the outcome.
        reason: Human-readable explanation.
        claims: Best-effort decoded claims, present even when the signature fails.
        confidence: Fraction of ECC groups whose repeated bits agreed unanimously.
        bit_count: Number of raw watermark bits that were extracted.
    """

    status: VerificationStatus
    reason: str
    claims: Optional[Payload]
    confidence: float
    bit_count: int

    @property
    def verified(self) -> bool:
        return self.status is VerificationStatus.VERIFIED

    def is_expired(self, today: date | None = None) -> bool:
        if self.claims is None:
            return False
        return self.claims.expiration_date < (today or utc_today())

    def name_matches(self, full_name: str) -> bool:
        return self.claims is not None and self.claims.matches_name(full_name)

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "verified": self.verified,
            "reason": self.reason,
            "confidence": round(self.confidence, 4),
            "bit_count": self.bit_count,
            "claims": self.claims.as_dict() if self.claims is not None else None,
        }


def issue_credential(
    request: IssuanceRequest,
    signing_key: KeyInput,
    carrier: np.ndarray,
    profile: WatermarkProfile | None = None,
) -> IssuanceResult:
    """Sign the request's claims and embed them into *carrier*.

    Raises:
        PhotosealError: From any stage; no marked carrier is produced.
    """
    profile = _ensure_profile(profile)
    _payload_length(request.version)

    card_id = bytes(request.card_id)
    payload = encode_payload(
        request.issuer_id,
        card_id,
        request.expiration_date,
        request.version,
        request.full_name,
    )
    LOGGER.debug("Signing %s-byte payload", len(payload))
    signature = sign_payload(signing_key, payload)
    token = build_token(payload, signature)
    bits = profile.code.encode_bits(token)

    LOGGER.debug("Embedding %s watermark bit(s) with '%s' profile", bits.size, profile.name)
    marked = WatermarkCodec(profile).embed(carrier, bits)
    LOGGER.info(
        "Issued credential %s for issuer %s (%s bits)",
        card_id.hex(),
        request.issuer_id,
        bits.size,
    )
    return IssuanceResult(
        carrier=marked,
        payload=payload,
        signature=signature,
        token=token,
        bit_count=int(bits.size),
        profile=profile,
    )


def _best_effort_claims(token: bytes, payload_length: int) -> Optional[Payload]:
    start = LENGTH_PREFIX.size
    try:
        return decode_payload(token[start : start + payload_length])
    except MalformedPayloadError:
        return None


def verify_credential(
    carrier: np.ndarray,
    public_key: KeyInput,
    profile: WatermarkProfile | None = None,
    version: int = PAYLOAD_VERSION,
) -> VerificationResult:
    """Extract, decode and verify the credential hidden in *carrier*.

    The number of extracted bits is fixed by *version* and the profile's
    repetition factor; there is no in-band terminator.

    Raises:
        InvalidKeyMaterialError: If *public_key* is not a usable Ed25519 key.
        UnsupportedGeometryError: If the carrier cannot be decomposed.
        InsufficientCapacityError: If the carrier is too small for one token.
    """
    profile = _ensure_profile(profile)
    verify_key = as_verify_key(public_key)
    payload_length = _payload_length(version)
    bit_count = profile.expected_bit_count(version)

    bits = WatermarkCodec(profile).extract(carrier, bit_count)
    token, confidence = profile.code.decode_bits_with_agreement(bits)
    LOGGER.debug("Decoded %s token byte(s), ECC agreement %.3f", len(token), confidence)

    try:
        payload, signature = parse_token(token, payload_length)
    except TokenTruncatedError as exc:
        LOGGER.warning("Credential undecodable: %s", exc)
        return VerificationResult(
            status=VerificationStatus.UNDECODABLE,
            reason=str(exc),
            claims=_best_effort_claims(token, payload_length),
            confidence=confidence,
            bit_count=bit_count,
        )

    try:
        claims: Optional[Payload] = decode_payload(payload)
    except MalformedPayloadError as exc:
        LOGGER.debug("Payload fields not decodable: %s", exc)
        claims = None

    if not verify_signature(verify_key, payload, signature):
        LOGGER.warning("Signature verification failed (ECC agreement %.3f)", confidence)
        return VerificationResult(
            status=VerificationStatus.SIGNATURE_INVALID,
            reason="Signature does not match the issuer public key",
            claims=claims,
            confidence=confidence,
            bit_count=bit_count,
        )

    LOGGER.info("Credential verified for card %s", claims.card_id_hex if claims else "<unknown>")
    return VerificationResult(
        status=VerificationStatus.VERIFIED,
        reason="Signature valid",
        claims=claims,
        confidence=confidence,
        bit_count=bit_count,
    )


__all__ = [
    "IssuanceRequest",
    "IssuanceResult",
    "VerificationResult",
    "VerificationStatus",
    "issue_credential",
    "verify_credential",
]
