"""Spread-spectrum watermark in the level-2 Haar detail subbands.

Every embedded bit is spread over ``samples_per_bit`` coefficients drawn
without replacement from the LH2/HL2 (optionally HH2) pool. Each selected
coefficient receives ``alpha * polarity * sign`` where ``polarity`` is ``+1``
for a one bit and ``sign`` is a pseudo-random ``+/-1``. Extraction replays the
same draws and correlates: ``score = sum(coeff[pos] * sign)``; ``score >= 0``
reads as a one.

Issuer and verifier derive an identical draw sequence from the public seed
string and the carrier size, so nothing besides the profile has to be shared.
"""
from __future__ import annotations

import enum
import hashlib
import logging
from typing import Iterator, List, Sequence, Tuple, Union

import numpy as np

from .errors import InsufficientCapacityError
from .profiles import DEFAULT_PROFILE_NAME, WATERMARK_PROFILES, WatermarkProfile
from .wavelet import check_geometry, detail_subbands, haar_forward, haar_inverse, region_indices

LOGGER = logging.getLogger("photoseal").getChild("watermark")

MASK32 = 0xFFFFFFFF
MAX_RANDOM_RETRIES = 50_000

BitsLike = Union[np.ndarray, Sequence[int]]


class WatermarkScheme(enum.IntEnum):
    """Embedding strategy, keyed by the payload version byte."""

    QUANTIZATION = 0
    SPREAD_SPECTRUM = 1

    @classmethod
    def for_version(cls, version: int) -> "WatermarkScheme":
        try:
            return cls(version)
        except ValueError as exc:
            raise ValueError(f"No watermark scheme registered for version {version}") from exc


def derive_seed(seed: str, width: int, height: int) -> int:
    """First four bytes (big-endian) of ``SHA-256(f"{seed}|{width}x{height}")``."""

    digest = hashlib.sha256(f"{seed}|{width}x{height}".encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big")


class XorShift32:
    """Marsaglia xorshift32 stream with explicit state."""

    __slots__ = ("state",)

    def __init__(self, seed: int) -> None:
        self.state = seed & MASK32

    def __call__(self) -> int:
        x = self.state
        x ^= (x << 13) & MASK32
        x ^= x >> 17
        x ^= (x << 5) & MASK32
        self.state = x
        return x

    def __iter__(self) -> Iterator[int]:
        while True:
            yield self()


class PositionSampler:
    """Draw pool slots without replacement from a shared :class:`XorShift32`.

    A draw landing on a used slot is retried up to ``max_retries`` times; after
    that the lowest unused slot is taken so the sequence stays deterministic.
    """

    def __init__(self, pool_size: int, rng: XorShift32, max_retries: int = MAX_RANDOM_RETRIES) -> None:
        self.pool_size = pool_size
        self.rng = rng
        self.max_retries = max_retries
        self._used = bytearray(pool_size)
        self._scan_from = 0

    def draw(self) -> int:
        used = self._used
        for _ in range(self.max_retries):
            slot = self.rng() % self.pool_size
            if not used[slot]:
                used[slot] = 1
                return slot
        slot = used.find(0, self._scan_from)
        if slot == -1:
            raise InsufficientCapacityError(self.pool_size + 1, self.pool_size)
        used[slot] = 1
        self._scan_from = slot + 1
        return slot


def coefficient_pool(width: int, height: int, levels: int = 2, include_hh2: bool = False) -> np.ndarray:
    """Flat coefficient indices eligible for carriage, LH then HL then HH."""

    bands = detail_subbands(width, height, levels)
    names = ["LH", "HL"] + (["HH"] if include_hh2 else [])
    return np.concatenate([region_indices(width, bands[name]) for name in names])


def spread_sequence(
    pool: np.ndarray, seed: int, bit_count: int, samples_per_bit: int
) -> Tuple[np.ndarray, np.ndarray]:
    """Replay the ``(position, sign)`` draws for *bit_count* bits.

    Returns two ``(bit_count, samples_per_bit)`` arrays: flat coefficient
    positions and ``+/-1`` signs. Draw order per sample is position first,
    then sign.
    """
    rng = XorShift32(seed)
    sampler = PositionSampler(len(pool), rng)
    total = bit_count * samples_per_bit
    slots = np.empty(total, dtype=np.int64)
    signs = np.empty(total, dtype=np.float32)
    for i in range(total):
        slots[i] = sampler.draw()
        signs[i] = 1.0 if rng() & 1 else -1.0
    positions = pool[slots]
    return positions.reshape(bit_count, samples_per_bit), signs.reshape(bit_count, samples_per_bit)


def _channel_limits(dtype: np.dtype) -> Tuple[int, int]:
    if not np.issubdtype(dtype, np.integer):
        raise ValueError(f"Watermark carriers must use an integer dtype, got {dtype}")
    info = np.iinfo(dtype)
    return int(info.min), int(info.max)


class WatermarkCodec:
    """Embed and extract bit streams in one channel of a carrier image.

    Carriers are 2D ``(h, w)`` arrays or ``(h, w, c)`` arrays, in which case
    ``profile.channel`` selects the channel. Inputs are never modified; the
    embedded carrier is returned as a new array of the same shape and dtype.
    """

    def __init__(self, profile: WatermarkProfile | None = None) -> None:
        self.profile = profile or WATERMARK_PROFILES[DEFAULT_PROFILE_NAME]

    def _select_channel(self, carrier: np.ndarray) -> np.ndarray:
        if carrier.ndim == 2:
            return carrier
        if carrier.ndim == 3:
            if not 0 <= self.profile.channel < carrier.shape[2]:
                raise ValueError(
                    f"Channel {self.profile.channel} not present in carrier with {carrier.shape[2]} channel(s)"
                )
            return carrier[:, :, self.profile.channel]
        raise ValueError("Unsupported array shape for watermark carrier")

    def _prepare(self, channel: np.ndarray, bit_count: int) -> Tuple[np.ndarray, np.ndarray]:
        height, width = channel.shape
        check_geometry(width, height, self.profile.levels)
        pool = coefficient_pool(width, height, self.profile.levels, self.profile.include_hh2)
        needed = self.profile.required_samples(bit_count)
        if needed > pool.size:
            raise InsufficientCapacityError(needed, int(pool.size))
        seed = derive_seed(self.profile.seed, width, height)
        LOGGER.debug(
            "Carrier %sx%s: pool %s, %s bit(s) x %s sample(s), seed %08x",
            width,
            height,
            pool.size,
            bit_count,
            self.profile.samples_per_bit,
            seed,
        )
        return spread_sequence(pool, seed, bit_count, self.profile.samples_per_bit)

    def capacity(self, width: int, height: int) -> int:
        """Maximum number of bits a ``width x height`` carrier can hold."""

        check_geometry(width, height, self.profile.levels)
        pool = coefficient_pool(width, height, self.profile.levels, self.profile.include_hh2)
        return int(pool.size) // self.profile.samples_per_bit

    def embed(self, carrier: np.ndarray, bits: BitsLike) -> np.ndarray:
        """Return a copy of *carrier* with *bits* spread into its channel.

        Raises:
            UnsupportedGeometryError: If the carrier is not divisible by ``2**levels``.
            InsufficientCapacityError: If the pool cannot hold every bit; raised
                before any coefficient is touched.
        """
        carrier = np.asarray(carrier)
        low, high = _channel_limits(carrier.dtype)
        channel = self._select_channel(carrier)
        bit_array = np.asarray(bits, dtype=np.int64).reshape(-1)
        positions, signs = self._prepare(channel, bit_array.size)

        coeffs = haar_forward(channel, self.profile.levels)
        polarity = np.where(bit_array != 0, 1.0, -1.0).astype(np.float32)
        flat = coeffs.reshape(-1)
        flat[positions] += np.float32(self.profile.alpha) * polarity[:, None] * signs
        restored = haar_inverse(coeffs, self.profile.levels)

        out = carrier.copy()
        marked = np.clip(np.rint(restored), low, high).astype(carrier.dtype)
        if carrier.ndim == 2:
            out[:, :] = marked
        else:
            out[:, :, self.profile.channel] = marked
        LOGGER.debug("Embedded %s bit(s) at strength %s", bit_array.size, self.profile.alpha)
        return out

    def extract_scores(self, carrier: np.ndarray, bit_count: int) -> np.ndarray:
        """Correlation score per bit; the sign carries the bit."""

        channel = self._select_channel(np.asarray(carrier))
        positions, signs = self._prepare(channel, bit_count)
        coeffs = haar_forward(channel, self.profile.levels).reshape(-1)
        return (coeffs[positions] * signs).sum(axis=1)

    def extract(self, carrier: np.ndarray, bit_count: int) -> np.ndarray:
        return (self.extract_scores(carrier, bit_count) >= 0).astype(np.uint8)


def embed_bits(carrier: np.ndarray, bits: BitsLike, profile: WatermarkProfile | None = None) -> np.ndarray:
    return WatermarkCodec(profile).embed(carrier, bits)


def extract_bits(carrier: np.ndarray, bit_count: int, profile: WatermarkProfile | None = None) -> List[int]:
    return WatermarkCodec(profile).extract(carrier, bit_count).tolist()


__all__ = [
    "PositionSampler",
    "WatermarkCodec",
    "WatermarkScheme",
    "XorShift32",
    "coefficient_pool",
    "derive_seed",
    "embed_bits",
    "extract_bits",
    "spread_sequence",
]
