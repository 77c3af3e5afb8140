"""Bit-level repetition code decoded by majority vote."""
from __future__ import annotations

import dataclasses
from typing import Sequence, Tuple, Union

import numpy as np

DEFAULT_REPETITIONS = 3

BitsLike = Union[np.ndarray, Sequence[int]]


@dataclasses.dataclass(frozen=True)
class RepetitionCode:
    """Repeat every bit ``rep`` times; decode each group by majority.

    With an odd ``rep`` a group survives ``(rep - 1) // 2`` flipped bits. Ties
    (only possible for even ``rep``) resolve to ``1``.
    """

    rep: int = DEFAULT_REPETITIONS

    def __post_init__(self) -> None:
        if self.rep < 1:
            raise ValueError(f"rep must be a positive integer, got {self.rep}")

    @property
    def correctable(self) -> int:
        return (self.rep - 1) // 2

    def encoded_length(self, byte_count: int) -> int:
        return byte_count * 8 * self.rep

    def encode_bits(self, data: bytes) -> np.ndarray:
        bits = np.unpackbits(np.frombuffer(bytes(data), dtype=np.uint8))
        return np.repeat(bits, self.rep)

    def _votes(self, rep_bits: BitsLike) -> np.ndarray:
        bits = (np.asarray(rep_bits, dtype=np.int64).reshape(-1) != 0).astype(np.int64)
        short = (-bits.size) % self.rep
        if short:
            # Missing members of a trailing partial group vote 0.
            bits = np.concatenate([bits, np.zeros(short, dtype=np.int64)])
        return bits.reshape(-1, self.rep).sum(axis=1)

    def decode_bits(self, rep_bits: BitsLike) -> bytes:
        decoded, _ = self.decode_bits_with_agreement(rep_bits)
        return decoded

    def decode_bits_with_agreement(self, rep_bits: BitsLike) -> Tuple[bytes, float]:
        """Decode *rep_bits* and report the fraction of unanimous groups.

        A partial trailing byte is packed MSB-first with zero low bits.
        """
        votes = self._votes(rep_bits)
        if votes.size == 0:
            return b"", 1.0
        threshold = (self.rep + 1) // 2
        bits = (votes >= threshold).astype(np.uint8)
        unanimous = np.count_nonzero((votes == 0) | (votes == self.rep))
        return np.packbits(bits).tobytes(), unanimous / votes.size


__all__ = ["DEFAULT_REPETITIONS", "RepetitionCode"]
