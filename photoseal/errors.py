"""Exception taxonomy for the credential-in-pixels pipeline.

Structural errors (wrong lengths, bad geometry, missing capacity) are raised
by the codec layers and indicate a protocol or version mismatch. A signature
that simply does not verify is *not* an error; it is reported through
:class:`photoseal.pipeline.VerificationStatus`.
"""
from __future__ import annotations


class PhotosealError(ValueError):
    """Base class for every structural failure raised by :mod:`photoseal`."""


class MalformedPayloadError(PhotosealError):
    """Raised when payload bytes or payload fields have the wrong shape."""


class InvalidKeyMaterialError(PhotosealError):
    """Raised when Ed25519 key bytes cannot be used as a key."""


class InvalidSignatureLengthError(PhotosealError):
    """Raised when a signature is not exactly 64 bytes."""


class TokenTruncatedError(PhotosealError):
    """Raised when a token's length field disagrees with the buffer or protocol."""


class InsufficientCapacityError(PhotosealError):
    """Raised when a carrier cannot hold the requested number of bits."""

    def __init__(self, needed: int, available: int) -> None:
        super().__init__(
            f"Not enough wavelet capacity: need {needed} samples, have {available}. "
            "Use a larger carrier region or a smaller payload."
        )
        self.needed = needed
        self.available = available


class UnsupportedGeometryError(PhotosealError):
    """Raised when carrier dimensions do not allow the dyadic decomposition."""


__all__ = [
    "InsufficientCapacityError",
    "InvalidKeyMaterialError",
    "InvalidSignatureLengthError",
    "MalformedPayloadError",
    "PhotosealError",
    "TokenTruncatedError",
    "UnsupportedGeometryError",
]
