"""Watermark profiles and canonical card geometry.

A profile bundles every parameter the issuer and verifier must agree on
bit-for-bit: the public seed string, wavelet depth, spreading factor,
embedding strength, subband selection, carrier channel and ECC repetitions.

- **reference**: the deployed configuration (LH2 + HL2, 7 samples per bit,
  strength 2.4, triple repetition)
- **robust**: stronger embedding and five-fold repetition for harsh
  print/scan paths; adds HH2 to the pool for the extra capacity
- **subtle**: lower strength for high-quality digital-only cards

Example Usage
-------------

    from photoseal import WATERMARK_PROFILES

    profile = WATERMARK_PROFILES["reference"]
    profile.required_samples(2520)  # 17640
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

from .ecc import RepetitionCode
from .framing import token_length
from .payload import PAYLOAD_LENGTH, PAYLOAD_VERSION

WATERMARK_SEED = "PWD-DWT-V1"

# Payload length negotiated for each protocol version.
PROTOCOL_PAYLOAD_LENGTHS: Dict[int, int] = {
    PAYLOAD_VERSION: PAYLOAD_LENGTH,
}


@dataclass(frozen=True)
class WatermarkProfile:
    """Parameters shared by the issuing and verifying side.

    Attributes:
        name: Profile identifier.
        seed: Public seed string mixed with the carrier size into the PRNG seed.
        levels: Haar decomposition depth.
        samples_per_bit: Coefficients spread across each embedded bit.
        alpha: Additive strength in coefficient units.
        include_hh2: Whether the HH2 subband joins the coefficient pool.
        channel: Color channel index carrying the watermark (2 = blue).
        repetitions: Repetition factor of the ECC layer.
    """

    name: str
    seed: str = WATERMARK_SEED
    levels: int = 2
    samples_per_bit: int = 7
    alpha: float = 2.4
    include_hh2: bool = False
    channel: int = 2
    repetitions: int = 3

    def __post_init__(self) -> None:
        if self.levels < 1:
            raise ValueError(f"levels must be at least 1, got {self.levels}")
        if self.samples_per_bit < 1:
            raise ValueError(f"samples_per_bit must be positive, got {self.samples_per_bit}")
        if self.alpha <= 0:
            raise ValueError(f"alpha must be positive, got {self.alpha}")
        if self.repetitions < 1:
            raise ValueError(f"repetitions must be positive, got {self.repetitions}")

    @property
    def code(self) -> RepetitionCode:
        return RepetitionCode(self.repetitions)

    def required_samples(self, bit_count: int) -> int:
        return bit_count * self.samples_per_bit

    def expected_bit_count(self, version: int = PAYLOAD_VERSION) -> int:
        """Number of watermark bits carrying one framed token for *version*."""

        try:
            payload_length = PROTOCOL_PAYLOAD_LENGTHS[version]
        except KeyError as exc:
            raise ValueError(f"Unsupported protocol version: {version}") from exc
        return self.code.encoded_length(token_length(payload_length))


@dataclass(frozen=True)
class CardLayout:
    """Canonical card geometry produced by the capture/rectification step."""

    card_width: int = 1016
    card_height: int = 638
    photo_x: int = 30
    photo_y: int = 116
    photo_width: int = 512
    photo_height: int = 512

    @property
    def photo_box(self) -> Tuple[int, int, int, int]:
        """Photo region as a Pillow ``(left, upper, right, lower)`` box."""

        return (
            self.photo_x,
            self.photo_y,
            self.photo_x + self.photo_width,
            self.photo_y + self.photo_height,
        )

    @property
    def photo_size(self) -> Tuple[int, int]:
        return self.photo_width, self.photo_height


DEFAULT_PROFILE_NAME = "reference"
DEFAULT_CARD_LAYOUT = CardLayout()

WATERMARK_PROFILES: Dict[str, WatermarkProfile] = {
    "reference": WatermarkProfile(name="reference"),
    "robust": WatermarkProfile(
        name="robust",
        alpha=3.2,
        include_hh2=True,
        repetitions=5,
    ),
    "subtle": WatermarkProfile(
        name="subtle",
        alpha=1.6,
        samples_per_bit=9,
    ),
}


__all__ = [
    "CardLayout",
    "DEFAULT_CARD_LAYOUT",
    "DEFAULT_PROFILE_NAME",
    "PROTOCOL_PAYLOAD_LENGTHS",
    "WATERMARK_PROFILES",
    "WATERMARK_SEED",
    "WatermarkProfile",
]
