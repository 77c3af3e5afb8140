from __future__ import annotations

import pytest

np = pytest.importorskip("numpy")

from photoseal.errors import UnsupportedGeometryError  # noqa: E402  # pylint: disable=wrong-import-position
from photoseal.wavelet import (  # noqa: E402  # pylint: disable=wrong-import-position
    check_geometry,
    detail_subbands,
    haar_forward,
    haar_inverse,
    region_indices,
)


@pytest.mark.parametrize("levels", [1, 2, 3])
def test_inverse_restores_random_image(levels: int):
    rng = np.random.default_rng(1234)
    image = rng.integers(0, 256, size=(64, 96)).astype(np.float32)

    restored = haar_inverse(haar_forward(image, levels), levels)

    assert restored.dtype == np.float32
    assert np.max(np.abs(restored - image)) < 1e-3


def test_forward_does_not_modify_input():
    image = np.arange(16 * 16, dtype=np.uint8).reshape(16, 16)
    snapshot = image.copy()

    haar_forward(image, 2)

    assert np.array_equal(image, snapshot)


def test_flat_image_has_no_detail_energy():
    coeffs = haar_forward(np.full((32, 32), 77, dtype=np.uint8), 2)

    assert np.all(coeffs[:8, :8] == 77)
    coeffs[:8, :8] = 0
    assert not np.any(coeffs)


def test_horizontal_edge_lands_in_high_row_subband():
    image = np.zeros((4, 4), dtype=np.float32)
    image[:, 1::2] = 8.0

    coeffs = haar_forward(image, 1)

    assert np.allclose(coeffs[:2, :2], 4.0)
    assert np.allclose(coeffs[:2, 2:], -4.0)
    assert np.allclose(coeffs[2:, :], 0.0)


def test_detail_subbands_for_reference_carrier():
    bands = detail_subbands(512, 512, 2)

    assert bands["LH"] == (slice(0, 128), slice(128, 256))
    assert bands["HL"] == (slice(128, 256), slice(0, 128))
    assert bands["HH"] == (slice(128, 256), slice(128, 256))
    assert region_indices(512, bands["LH"]).size == 128 * 128


def test_region_indices_are_raster_ordered():
    indices = region_indices(8, (slice(0, 2), slice(4, 6)))

    assert indices.tolist() == [4, 5, 12, 13]


@pytest.mark.parametrize("shape", [(510, 512), (512, 514), (6, 8)])
def test_geometry_not_divisible_by_four_is_rejected(shape):
    with pytest.raises(UnsupportedGeometryError):
        haar_forward(np.zeros(shape, dtype=np.uint8), 2)


def test_check_geometry_requires_a_level():
    with pytest.raises(ValueError):
        check_geometry(8, 8, 0)
    check_geometry(8, 8, 3)
