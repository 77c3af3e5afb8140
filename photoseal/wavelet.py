"""Separable 2D Haar wavelet transform with in-place subband layout.

Each level averages and differences neighbouring samples (scaled by 1/2),
first along rows and then along columns, and writes the four quadrants back
into the same footprint::

    +------+------+
    |  LL  |  LH  |      LH: high along rows, low along columns
    +------+------+      HL: low along rows, high along columns
    |  HL  |  HH  |
    +------+------+

Subsequent levels recurse on the LL quadrant only, so after two levels the
level-2 subbands occupy the top-left ``w/2 x h/2`` block.
"""
from __future__ import annotations

from typing import Dict, Tuple

import numpy as np

from .errors import UnsupportedGeometryError

DEFAULT_LEVELS = 2

Region = Tuple[slice, slice]


def check_geometry(width: int, height: int, levels: int = DEFAULT_LEVELS) -> None:
    if levels < 1:
        raise ValueError(f"levels must be at least 1, got {levels}")
    block = 1 << levels
    if width <= 0 or height <= 0 or width % block or height % block:
        raise UnsupportedGeometryError(
            f"Carrier of {width}x{height} must have both dimensions divisible by {block} "
            f"for a {levels}-level wavelet decomposition"
        )


def _analyse_rows(block: np.ndarray) -> None:
    even = block[:, 0::2].copy()
    odd = block[:, 1::2].copy()
    half = block.shape[1] // 2
    block[:, :half] = (even + odd) * 0.5
    block[:, half:] = (even - odd) * 0.5


def _synthesise_rows(block: np.ndarray) -> None:
    half = block.shape[1] // 2
    low = block[:, :half].copy()
    high = block[:, half:].copy()
    block[:, 0::2] = low + high
    block[:, 1::2] = low - high


def haar_forward(array: np.ndarray, levels: int = DEFAULT_LEVELS) -> np.ndarray:
    """Return the *levels*-deep Haar decomposition of a 2D array as float32."""

    coeffs = np.array(array, dtype=np.float32, copy=True)
    if coeffs.ndim != 2:
        raise ValueError("Haar transform expects a single-channel 2D array")
    height, width = coeffs.shape
    check_geometry(width, height, levels)

    cw, ch = width, height
    for _ in range(levels):
        region = coeffs[:ch, :cw]
        _analyse_rows(region)
        _analyse_rows(region.T)
        cw >>= 1
        ch >>= 1
    return coeffs


def haar_inverse(coeffs: np.ndarray, levels: int = DEFAULT_LEVELS) -> np.ndarray:
    """Invert :func:`haar_forward`, undoing the deepest level first."""

    out = np.array(coeffs, dtype=np.float32, copy=True)
    if out.ndim != 2:
        raise ValueError("Haar transform expects a single-channel 2D array")
    height, width = out.shape
    check_geometry(width, height, levels)

    cw = width >> (levels - 1)
    ch = height >> (levels - 1)
    for _ in range(levels):
        region = out[:ch, :cw]
        _synthesise_rows(region.T)
        _synthesise_rows(region)
        cw <<= 1
        ch <<= 1
    return out


def detail_subbands(width: int, height: int, level: int = DEFAULT_LEVELS) -> Dict[str, Region]:
    """Return ``(rows, cols)`` slices of the LH/HL/HH subbands at *level*."""

    size_x = width >> level
    size_y = height >> level
    return {
        "LH": (slice(0, size_y), slice(size_x, 2 * size_x)),
        "HL": (slice(size_y, 2 * size_y), slice(0, size_x)),
        "HH": (slice(size_y, 2 * size_y), slice(size_x, 2 * size_x)),
    }


def region_indices(width: int, region: Region) -> np.ndarray:
    """Flat row-major indices of *region*, in raster order."""

    rows, cols = region
    ys = np.arange(rows.start, rows.stop, dtype=np.int64)
    xs = np.arange(cols.start, cols.stop, dtype=np.int64)
    return (ys[:, None] * width + xs[None, :]).reshape(-1)


__all__ = [
    "DEFAULT_LEVELS",
    "check_geometry",
    "detail_subbands",
    "haar_forward",
    "haar_inverse",
    "region_indices",
]
