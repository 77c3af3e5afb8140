from __future__ import annotations

from datetime import date

import numpy as np
import pytest

from photoseal.pipeline import IssuanceRequest
from photoseal.signing import generate_keypair

CARD_ID = bytes([0xAA]) * 16
FULL_NAME = "Juan Dela Cruz"


@pytest.fixture
def keypair():
    return generate_keypair()


@pytest.fixture
def flat_carrier() -> np.ndarray:
    """512x512 mid-gray photo; its detail subbands are exactly zero."""

    return np.full((512, 512, 3), 128, dtype=np.uint8)


@pytest.fixture
def gradient_carrier() -> np.ndarray:
    """512x512 photo with a gentle horizontal ramp in every channel."""

    x = np.arange(512, dtype=np.float64)
    ramp = np.rint(100 + 0.05 * x).astype(np.uint8)
    plane = np.broadcast_to(ramp, (512, 512))
    return np.stack([plane, plane + 10, plane + 20], axis=2).copy()


@pytest.fixture
def request_claims() -> IssuanceRequest:
    return IssuanceRequest(
        issuer_id=7,
        card_id=CARD_ID,
        expiration_date=date(2026, 1, 1),
        full_name=FULL_NAME,
    )
