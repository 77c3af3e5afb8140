from __future__ import annotations

import pytest

np = pytest.importorskip("numpy")
pytest.importorskip("PIL.Image")

from photoseal.marker import (  # noqa: E402  # pylint: disable=wrong-import-position
    MATCH_THRESHOLD,
    auto_strength,
    bit_match_score,
    detect_marker,
    detect_marker_in_region,
    embed_marker,
    embed_marker_in_region,
    extract_marker,
    marker_bits,
    slot_order,
)


def test_marker_bits_follow_hash_chain():
    bits = marker_bits()

    assert bits.size == 256
    assert set(np.unique(bits).tolist()) <= {0, 1}
    assert np.array_equal(marker_bits(300)[:256], bits)
    assert not np.array_equal(marker_bits(marker="OTHER"), bits)


def test_slot_order_is_stable_and_unique():
    order = slot_order(128)

    assert order == slot_order(128)
    assert len(order) == 6000
    assert len(set(order)) == 6000
    assert max(order) < 128 * 128


def test_auto_strength_prefers_stronger_steps_on_flat_images():
    flat = np.full((64, 64), 128, dtype=np.uint8)
    checker = (np.indices((64, 64)).sum(axis=0) % 2 * 255).astype(np.uint8)

    assert auto_strength(flat) == 26
    assert auto_strength(checker) == 16


def test_quantized_marker_round_trips_on_flat_square():
    blue = np.full((256, 256), 128, dtype=np.uint8)
    bits = marker_bits()

    marked = embed_marker(blue, bits, 26)

    assert marked.dtype == np.uint8
    assert np.array_equal(extract_marker(marked, bits.size, 26), bits)
    report = detect_marker(marked, 26)
    assert report.verified
    assert report.score == pytest.approx(1.0)
    assert report.percent == 100


def test_unmarked_square_is_not_verified():
    report = detect_marker(np.full((256, 256), 128, dtype=np.uint8))

    assert not report.verified
    assert report.score < MATCH_THRESHOLD


def test_region_helpers_mark_only_blue_channel():
    region = np.full((256, 256, 3), 128, dtype=np.uint8)

    marked, step = embed_marker_in_region(region)

    assert step == 26
    assert np.array_equal(marked[:, :, :2], region[:, :, :2])
    assert detect_marker_in_region(marked).verified
    assert not detect_marker_in_region(region).verified


def test_region_helpers_require_rgb():
    with pytest.raises(ValueError):
        embed_marker_in_region(np.zeros((256, 256), dtype=np.uint8))
    with pytest.raises(ValueError):
        embed_marker(np.zeros((256, 128), dtype=np.uint8), marker_bits(), 20)


def test_bit_match_score_compares_common_prefix():
    assert bit_match_score(np.array([1, 0, 1, 1]), np.array([1, 0, 0])) == pytest.approx(2 / 3)
    assert bit_match_score(np.array([]), np.array([1])) == 0.0
