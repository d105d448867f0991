"""
Raster value type shared by the detector and the reconstruction pipeline.

A raster is a ``(height, width, 3)`` ``uint8`` grid of RGB triplets.  The
backing array is marked read-only so a captured frame cannot be mutated
while a removal run is reading it; every stage that needs to write works on
``to_array()`` copies instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple, Union

import numpy as np
from PIL import Image


class RasterError(ValueError):
    """Raised when pixel data does not describe an RGB raster."""


class InvalidDimensions(RasterError):
    """Raised when a raster has zero width or zero height."""

    def __init__(self, width: int, height: int):
        super().__init__(f"Raster dimensions must be non-zero, got {width}x{height}")
        self.width = width
        self.height = height


def luminance(pixels: np.ndarray) -> np.ndarray:
    """Integer Rec.601 luma for an ``(..., 3)`` pixel array."""
    rgb = pixels.astype(np.int32)
    return (rgb[..., 0] * 299 + rgb[..., 1] * 587 + rgb[..., 2] * 114 + 500) // 1000


@dataclass(frozen=True, eq=False)
class Raster:
    pixels: np.ndarray

    @classmethod
    def from_array(cls, array: np.ndarray) -> "Raster":
        """Copy an ``(H, W, 3)`` array into a new read-only raster."""
        array = np.asarray(array)
        if array.ndim != 3 or array.shape[2] != 3:
            if array.ndim == 3 and array.shape[2] == 4:
                array = array[:, :, :3]
            else:
                raise RasterError(f"Expected an (H, W, 3) pixel array, got shape {array.shape}")

        height, width = array.shape[:2]
        if width == 0 or height == 0:
            raise InvalidDimensions(width, height)

        if array.dtype != np.uint8:
            array = np.clip(array, 0, 255)
        pixels = np.array(array, dtype=np.uint8, copy=True, order="C")
        pixels.setflags(write=False)
        return cls(pixels)

    @classmethod
    def from_bytes(cls, width: int, height: int, data: bytes) -> "Raster":
        """Build a raster from a flat row-major buffer with 3 bytes per pixel."""
        if width == 0 or height == 0:
            raise InvalidDimensions(width, height)
        expected = width * height * 3
        if len(data) != expected:
            raise RasterError(
                f"Buffer holds {len(data)} bytes, expected {expected} for {width}x{height} RGB"
            )
        array = np.frombuffer(bytes(data), dtype=np.uint8).reshape(height, width, 3)
        return cls.from_array(array)

    @classmethod
    def from_image(cls, image: Image.Image) -> "Raster":
        if image.mode != "RGB":
            image = image.convert("RGB")
        return cls.from_array(np.array(image))

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def shape(self) -> Tuple[int, int]:
        """``(height, width)`` of the pixel grid."""
        return self.height, self.width

    def to_array(self) -> np.ndarray:
        """Return a writable copy of the pixels."""
        return self.pixels.copy()

    def to_bytes(self) -> bytes:
        return self.pixels.tobytes()

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.to_array())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Raster):
            return NotImplemented
        return self.pixels.shape == other.pixels.shape and bool(
            np.array_equal(self.pixels, other.pixels)
        )

    def __hash__(self) -> int:
        return hash((self.pixels.shape, self.pixels.tobytes()))


def coerce_raster(image: Union[Raster, np.ndarray]) -> Raster:
    """Accept either a Raster or a raw pixel array."""
    if isinstance(image, Raster):
        if image.width == 0 or image.height == 0:
            raise InvalidDimensions(image.width, image.height)
        return image
    return Raster.from_array(image)
