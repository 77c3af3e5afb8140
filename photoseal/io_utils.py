"""Image I/O around the watermark core.

The core only sees in-memory arrays. This module converts between files and
those arrays: loading RGB images, fitting a portrait into the fixed carrier
size, cutting the photo region out of a canonical (already rectified) card
image and writing PNGs through a staged temporary file.

Key Components
--------------

ProcessingContext
    Context manager for atomic file writes with staged temporary files.

load_rgb_array / save_png
    Pillow-backed conversion between files and ``uint8`` RGB arrays.

cover_fit
    Scale-and-crop a portrait to fill the carrier exactly.

extract_photo_region / paste_photo_region
    Slice the watermark carrier out of (and back into) a canonical card.
"""
from __future__ import annotations

import contextlib
import dataclasses
import logging
import os
import uuid
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
from PIL import Image

from .profiles import DEFAULT_CARD_LAYOUT, CardLayout

LOGGER = logging.getLogger("photoseal")


@dataclasses.dataclass
class ProcessingContext:
    """Context manager for atomic file writes using staged temporary files.

    Writes go to a hidden temporary file beside the destination, which is
    moved into place only when the block exits cleanly. A failed block leaves
    no partial artifact behind.

    Attributes:
        destination: Final output file path.
        suffix: Temporary file suffix (default: ".tmp").
    """

    destination: Path
    suffix: str = ".tmp"

    def __post_init__(self) -> None:
        self._staged_path: Optional[Path] = None

    def _temp_path(self) -> Path:
        unique = uuid.uuid4().hex
        name = f".{self.destination.name}{self.suffix}-{unique}"
        return self.destination.parent / name

    def __enter__(self) -> Path:
        self.destination.parent.mkdir(parents=True, exist_ok=True)
        self._staged_path = self._temp_path()
        return self._staged_path

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._staged_path is None:
            return False

        staged = self._staged_path
        self._staged_path = None

        if exc_type is None:
            try:
                os.replace(staged, self.destination)
            except Exception:
                with contextlib.suppress(Exception):
                    staged.unlink()
                raise
        else:
            with contextlib.suppress(FileNotFoundError):
                staged.unlink()
        return False


def load_rgb_array(path: Path) -> np.ndarray:
    """Load *path* as an ``(h, w, 3)`` ``uint8`` array."""

    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")
    with Image.open(path) as image:
        return np.array(image.convert("RGB"), dtype=np.uint8)


def save_png(path: Path, array: np.ndarray) -> None:
    """Write an RGB array as a lossless PNG via a staged temporary file."""

    image = Image.fromarray(np.asarray(array, dtype=np.uint8))
    with ProcessingContext(path) as staged:
        image.save(staged, format="PNG")
    LOGGER.debug("Wrote %s", path)


def cover_fit(image: Image.Image, size: Tuple[int, int]) -> np.ndarray:
    """Scale *image* to cover *size* and crop the centre, like CSS ``object-fit: cover``."""

    target_w, target_h = size
    src_w, src_h = image.size
    if src_w <= 0 or src_h <= 0:
        raise ValueError("Cannot fit an empty image")
    scale = max(target_w / src_w, target_h / src_h)
    scaled_w = max(target_w, int(round(src_w * scale)))
    scaled_h = max(target_h, int(round(src_h * scale)))
    resized = image.convert("RGB").resize((scaled_w, scaled_h), Image.Resampling.LANCZOS)
    left = (scaled_w - target_w) // 2
    top = (scaled_h - target_h) // 2
    cropped = resized.crop((left, top, left + target_w, top + target_h))
    return np.array(cropped, dtype=np.uint8)


def load_portrait(path: Path, layout: CardLayout = DEFAULT_CARD_LAYOUT) -> np.ndarray:
    """Load a portrait and cover-fit it into the layout's photo carrier."""

    if not path.exists():
        raise FileNotFoundError(f"Portrait not found: {path}")
    with Image.open(path) as image:
        return cover_fit(image, layout.photo_size)


def _check_card(card: np.ndarray, layout: CardLayout) -> None:
    height, width = card.shape[:2]
    if (width, height) != (layout.card_width, layout.card_height):
        raise ValueError(
            f"Card image must be {layout.card_width}x{layout.card_height} after rectification, "
            f"got {width}x{height}"
        )


def extract_photo_region(card: np.ndarray, layout: CardLayout = DEFAULT_CARD_LAYOUT) -> np.ndarray:
    """Copy of the watermark carrier region of a canonical card image."""

    card = np.asarray(card)
    _check_card(card, layout)
    left, upper, right, lower = layout.photo_box
    return card[upper:lower, left:right].copy()


def paste_photo_region(
    card: np.ndarray, region: np.ndarray, layout: CardLayout = DEFAULT_CARD_LAYOUT
) -> np.ndarray:
    """Return a copy of *card* with *region* written into the photo box."""

    card = np.asarray(card)
    _check_card(card, layout)
    left, upper, right, lower = layout.photo_box
    if region.shape[:2] != (lower - upper, right - left):
        raise ValueError(f"Photo region must be {right - left}x{lower - upper}")
    out = card.copy()
    out[upper:lower, left:right] = region
    return out


def is_card_image(array: np.ndarray, layout: CardLayout = DEFAULT_CARD_LAYOUT) -> bool:
    height, width = np.asarray(array).shape[:2]
    return (width, height) == (layout.card_width, layout.card_height)


def carrier_from_image(array: np.ndarray, layout: CardLayout = DEFAULT_CARD_LAYOUT) -> np.ndarray:
    """Return the carrier from either a full canonical card or a bare photo region."""

    if is_card_image(array, layout):
        return extract_photo_region(array, layout)
    return np.asarray(array)


__all__ = [
    "ProcessingContext",
    "carrier_from_image",
    "cover_fit",
    "extract_photo_region",
    "is_card_image",
    "load_portrait",
    "load_rgb_array",
    "paste_photo_region",
    "save_png",
]
