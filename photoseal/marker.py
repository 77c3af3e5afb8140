"""Public quantization marker (legacy prototype scheme).

The marker proves only that a photo passed through a compatible issuer; it
carries no claims and no signature. It is kept for cards printed before the
signed spread-spectrum credential existed and is *not* interoperable with
:mod:`photoseal.watermark`.

Scheme: the photo region is resampled to 256x256, decomposed with a
one-level Haar transform, and marker bits are written into the LH and HL
subbands by parity quantization (``round(c / step)`` forced to the bit's
parity). Strength is chosen automatically from blue-channel detail, and
detection scans nearby strengths for the best bit match.
"""
from __future__ import annotations

import dataclasses
import functools
import hashlib
import logging
import math
import random
from typing import Iterator, Optional, Tuple

import numpy as np
from PIL import Image

from .wavelet import haar_forward, haar_inverse

LOGGER = logging.getLogger("photoseal").getChild("marker")

PUBLIC_MARKER = "PWD-DWT-V1"
MARKER_BITS = 256
MARKER_SIZE = 256
READS_PER_BIT = 7
ORDER_LIMIT = 6000
_BAND_OFFSETS = (0, 97)

EMBED_STEP_RANGE = (16, 26)
DETECT_STEP_RANGE = (12, 26)
SEARCH_RADIUS = 4
SEARCH_BOUNDS = (6, 30)
MATCH_THRESHOLD = 0.85


@dataclasses.dataclass(frozen=True)
class MarkerReport:
    """Outcome of a marker scan."""

    score: float
    step: int
    verified: bool

    @property
    def percent(self) -> int:
        return int(round(self.score * 100))


def marker_bits(bit_count: int = MARKER_BITS, marker: str = PUBLIC_MARKER) -> np.ndarray:
    """Expand *marker* into bits via a SHA-256 hash chain, MSB first."""

    block = hashlib.sha256(marker.encode("utf-8")).digest()
    chunks = []
    produced = 0
    while produced < bit_count:
        chunks.append(np.unpackbits(np.frombuffer(block, dtype=np.uint8)))
        produced += len(block) * 8
        block = hashlib.sha256(block).digest()
    return np.concatenate(chunks)[:bit_count]


def auto_strength(blue: np.ndarray, bounds: tuple[int, int] = EMBED_STEP_RANGE) -> int:
    """Pick a quantization step from blue-channel detail; flatter means stronger."""

    channel = np.asarray(blue, dtype=np.float64)
    height, width = channel.shape
    ys = np.arange(0, height - 1, 2)
    xs = np.arange(0, width - 1, 2)
    base = channel[np.ix_(ys, xs)]
    right = channel[np.ix_(ys, xs + 1)]
    down = channel[np.ix_(ys + 1, xs)]
    energy = float(np.abs(base - right).sum() + np.abs(base - down).sum())

    samples = ((width - 1) // 2 + 1) * ((height - 1) // 2 + 1)
    norm = energy / (samples * 2 * 255)
    step = math.floor(26 - norm * 14 + 0.5)
    low, high = bounds
    return max(low, min(high, step))


@functools.lru_cache(maxsize=8)
def slot_order(half: int, marker: str = PUBLIC_MARKER) -> Tuple[int, ...]:
    """Marker-keyed ordering of subband slots; independent of image content."""

    seed = int.from_bytes(hashlib.sha256(f"{marker}|order".encode("utf-8")).digest(), "big")
    order = list(range(half * half))
    random.Random(seed).shuffle(order)
    return tuple(order[:ORDER_LIMIT])


def _quantize(coeff: float, bit: int, step: int) -> float:
    q = math.floor(coeff / step + 0.5)
    if (q & 1) != (bit & 1):
        q += 1
    return float(q * step)


def _parity(coeff: float, step: int) -> int:
    return math.floor(coeff / step + 0.5) & 1


def _subbands(coeffs: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    half = coeffs.shape[0] // 2
    lh = coeffs[:half, half:]
    hl = coeffs[half:, :half]
    return lh, hl


def _bit_slots(bit_count: int, half: int) -> Iterator[Tuple[int, int, int, int]]:
    """Yield ``(band, bit_index, y, x)`` for every read; the first half of the bits live in LH."""

    order = slot_order(half)
    n_lh = bit_count // 2
    for i in range(bit_count):
        band = 0 if i < n_lh else 1
        local = i if band == 0 else i - n_lh
        for r in range(READS_PER_BIT):
            slot = order[(local * READS_PER_BIT + r + _BAND_OFFSETS[band]) % len(order)]
            y, x = divmod(slot, half)
            yield band, i, y, x


def embed_marker(blue: np.ndarray, bits: np.ndarray, step: int) -> np.ndarray:
    """Quantize *bits* into a square single-channel array; returns uint8."""

    channel = np.asarray(blue)
    if channel.ndim != 2 or channel.shape[0] != channel.shape[1]:
        raise ValueError("Marker carrier must be a square single-channel array")

    coeffs = haar_forward(channel, levels=1)
    bands = _subbands(coeffs)
    for band, i, y, x in _bit_slots(len(bits), channel.shape[0] // 2):
        bands[band][y, x] = _quantize(float(bands[band][y, x]), int(bits[i]), step)

    restored = haar_inverse(coeffs, levels=1)
    return np.clip(np.rint(restored), 0, 255).astype(np.uint8)


def extract_marker(blue: np.ndarray, bit_count: int, step: int) -> np.ndarray:
    channel = np.asarray(blue)
    coeffs = haar_forward(channel, levels=1)
    bands = _subbands(coeffs)
    ones = np.zeros(bit_count, dtype=np.int64)
    for band, i, y, x in _bit_slots(bit_count, channel.shape[0] // 2):
        ones[i] += _parity(float(bands[band][y, x]), step)
    return (ones >= (READS_PER_BIT + 1) // 2).astype(np.uint8)


def bit_match_score(expected: np.ndarray, observed: np.ndarray) -> float:
    n = min(len(expected), len(observed))
    if n == 0:
        return 0.0
    return float(np.count_nonzero(np.asarray(expected[:n]) == np.asarray(observed[:n]))) / n


def detect_marker(blue: np.ndarray, base_step: Optional[int] = None) -> MarkerReport:
    """Scan strengths around *base_step* and report the best marker match."""

    expected = marker_bits()
    if base_step is None:
        base_step = auto_strength(blue, DETECT_STEP_RANGE)
    low, high = SEARCH_BOUNDS
    steps = sorted(
        {s for s in range(base_step - SEARCH_RADIUS, base_step + SEARCH_RADIUS + 1) if low <= s <= high}
    )
    best = MarkerReport(score=0.0, step=base_step, verified=False)
    for step in steps:
        score = bit_match_score(expected, extract_marker(blue, len(expected), step))
        if score > best.score:
            best = MarkerReport(score=score, step=step, verified=score >= MATCH_THRESHOLD)
    LOGGER.info("Marker best match %s%% at strength %s", best.percent, best.step)
    return best


def _resample_blue(region: np.ndarray, size: int) -> np.ndarray:
    image = Image.fromarray(np.ascontiguousarray(region[:, :, 2]))
    return np.asarray(image.resize((size, size), Image.Resampling.BILINEAR))


def embed_marker_in_region(region: np.ndarray) -> tuple[np.ndarray, int]:
    """Mark the blue channel of an RGB photo region; returns ``(region, step)``."""

    region = np.asarray(region)
    if region.ndim != 3 or region.shape[2] < 3:
        raise ValueError("Marker regions must be RGB arrays")
    height, width = region.shape[:2]
    step = auto_strength(region[:, :, 2], EMBED_STEP_RANGE)
    square = _resample_blue(region, MARKER_SIZE)
    marked = embed_marker(square, marker_bits(), step)
    restored = np.asarray(Image.fromarray(marked).resize((width, height), Image.Resampling.BILINEAR))
    out = region.copy()
    out[:, :, 2] = restored
    LOGGER.debug("Embedded public marker at strength %s", step)
    return out, step


def detect_marker_in_region(region: np.ndarray) -> MarkerReport:
    region = np.asarray(region)
    if region.ndim != 3 or region.shape[2] < 3:
        raise ValueError("Marker regions must be RGB arrays")
    base_step = auto_strength(region[:, :, 2], DETECT_STEP_RANGE)
    return detect_marker(_resample_blue(region, MARKER_SIZE), base_step)


__all__ = [
    "MATCH_THRESHOLD",
    "MarkerReport",
    "PUBLIC_MARKER",
    "auto_strength",
    "bit_match_score",
    "detect_marker",
    "detect_marker_in_region",
    "embed_marker",
    "embed_marker_in_region",
    "extract_marker",
    "marker_bits",
]
