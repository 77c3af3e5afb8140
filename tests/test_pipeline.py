from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest

np = pytest.importorskip("numpy")
pytest.importorskip("nacl.signing")

from photoseal import pipeline as pipeline_module  # noqa: E402  # pylint: disable=wrong-import-position
from photoseal.errors import (  # noqa: E402  # pylint: disable=wrong-import-position
    InsufficientCapacityError,
    InvalidKeyMaterialError,
    MalformedPayloadError,
    UnsupportedGeometryError,
)
from photoseal.pipeline import (  # noqa: E402  # pylint: disable=wrong-import-position
    VerificationStatus,
    issue_credential,
    verify_credential,
)
from photoseal.profiles import WATERMARK_PROFILES  # noqa: E402  # pylint: disable=wrong-import-position
from photoseal.signing import generate_keypair  # noqa: E402  # pylint: disable=wrong-import-position

CARD_ID = bytes([0xAA]) * 16
FULL_NAME = "Juan Dela Cruz"


def test_issue_and_verify_reference_card(keypair, flat_carrier, request_claims):
    signing_key, verify_key = keypair

    issued = issue_credential(request_claims, signing_key, flat_carrier)

    assert len(issued.payload) == 39
    assert len(issued.signature) == 64
    assert len(issued.token) == 105
    assert issued.bit_count == 2520
    assert issued.summary()["rep_bits"] == 2520
    assert np.array_equal(issued.carrier[:, :, :2], flat_carrier[:, :, :2])

    result = verify_credential(issued.carrier, verify_key)

    assert result.status is VerificationStatus.VERIFIED
    assert result.verified
    assert result.bit_count == 2520
    assert result.confidence == pytest.approx(1.0)
    assert result.claims is not None
    assert result.claims.issuer_id == 7
    assert result.claims.card_id == CARD_ID
    assert result.claims.expiration_date == date(2026, 1, 1)
    assert result.claims.version == 1
    assert result.name_matches(FULL_NAME)
    assert not result.name_matches("Maria Clara")


def test_verification_report_is_serialisable(keypair, gradient_carrier, request_claims):
    signing_key, verify_key = keypair
    issued = issue_credential(request_claims, signing_key, gradient_carrier)

    report = verify_credential(issued.carrier, verify_key).as_dict()

    assert report["status"] == "verified"
    assert report["verified"] is True
    assert report["claims"]["card_id"] == CARD_ID.hex()
    assert report["claims"]["expiration_date"] == "2026-01-01"


def test_expiry_is_checked_against_supplied_date(keypair, flat_carrier, request_claims):
    signing_key, verify_key = keypair
    result = verify_credential(issue_credential(request_claims, signing_key, flat_carrier).carrier, verify_key)

    assert not result.is_expired(date(2025, 12, 31))
    assert not result.is_expired(date(2026, 1, 1))
    assert result.is_expired(date(2026, 1, 2))


def test_expiry_defaults_to_the_utc_calendar_day(keypair, flat_carrier, request_claims, monkeypatch):
    signing_key, verify_key = keypair
    result = verify_credential(issue_credential(request_claims, signing_key, flat_carrier).carrier, verify_key)

    monkeypatch.setattr(pipeline_module, "utc_today", lambda: date(2026, 1, 1))
    assert not result.is_expired()
    monkeypatch.setattr(pipeline_module, "utc_today", lambda: date(2026, 1, 2))
    assert result.is_expired()


def test_issuance_accepts_bytes_like_card_ids(keypair, flat_carrier, request_claims):
    signing_key, verify_key = keypair

    issued = issue_credential(replace(request_claims, card_id=list(CARD_ID)), signing_key, flat_carrier)

    assert issued.payload[2:18] == CARD_ID
    assert verify_credential(issued.carrier, verify_key).claims.card_id == CARD_ID


def test_wrong_issuer_key_reports_invalid_signature_with_claims(keypair, flat_carrier, request_claims):
    signing_key, _ = keypair
    _, other_verify_key = generate_keypair()
    issued = issue_credential(request_claims, signing_key, flat_carrier)

    result = verify_credential(issued.carrier, other_verify_key)

    assert result.status is VerificationStatus.SIGNATURE_INVALID
    assert not result.verified
    assert result.claims is not None
    assert result.claims.issuer_id == 7
    assert result.claims.card_id == CARD_ID


def test_unmarked_carrier_is_undecodable(keypair, flat_carrier):
    _, verify_key = keypair

    result = verify_credential(flat_carrier, verify_key)

    assert result.status is VerificationStatus.UNDECODABLE
    assert not result.verified
    assert result.claims is None
    assert not result.is_expired()


def test_tampered_pixels_are_rejected(keypair, flat_carrier, request_claims):
    signing_key, verify_key = keypair
    issued = issue_credential(request_claims, signing_key, flat_carrier)
    tampered = issued.carrier.copy()
    tampered[:, :, 2] = 255 - tampered[:, :, 2]

    result = verify_credential(tampered, verify_key)

    assert not result.verified
    assert result.status in (VerificationStatus.UNDECODABLE, VerificationStatus.SIGNATURE_INVALID)


def test_profiles_must_match_between_issuer_and_verifier(keypair, flat_carrier, request_claims):
    signing_key, verify_key = keypair
    robust = WATERMARK_PROFILES["robust"]
    issued = issue_credential(request_claims, signing_key, flat_carrier, robust)

    assert issued.bit_count == 105 * 8 * 5
    assert verify_credential(issued.carrier, verify_key, robust).verified
    assert not verify_credential(issued.carrier, verify_key, replace(robust, seed="OTHER-SEED")).verified


def test_issuance_rejects_bad_claims(keypair, flat_carrier, request_claims):
    signing_key, _ = keypair

    with pytest.raises(MalformedPayloadError):
        issue_credential(replace(request_claims, issuer_id=70000), signing_key, flat_carrier)
    with pytest.raises(MalformedPayloadError):
        issue_credential(replace(request_claims, card_id=bytes(8)), signing_key, flat_carrier)
    with pytest.raises(ValueError):
        issue_credential(replace(request_claims, version=0), signing_key, flat_carrier)


def test_structural_carrier_errors_propagate(keypair, request_claims):
    signing_key, verify_key = keypair
    small = np.full((64, 64, 3), 128, dtype=np.uint8)
    odd = np.full((510, 512, 3), 128, dtype=np.uint8)

    with pytest.raises(InsufficientCapacityError):
        issue_credential(request_claims, signing_key, small)
    with pytest.raises(InsufficientCapacityError):
        verify_credential(small, verify_key)
    with pytest.raises(UnsupportedGeometryError):
        verify_credential(odd, verify_key)


def test_unusable_public_key_raises(flat_carrier):
    with pytest.raises(InvalidKeyMaterialError):
        verify_credential(flat_carrier, bytes(12))
