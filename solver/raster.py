"""
RGBA rasters and luminance-threshold binarization.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np
from PIL import Image

from .errors import InvalidImageData


FOREGROUND = 255
BACKGROUND = 0

# ITU-R BT.601 luma weights
LUMA_WEIGHTS = (0.299, 0.587, 0.114)


@dataclass(frozen=True)
class Raster:
    """An 8-bit RGBA image: row-major, top-left origin, 4 bytes per pixel."""
    width: int
    height: int
    data: bytes

    def __post_init__(self):
        if not isinstance(self.data, bytes):
            object.__setattr__(self, "data", bytes(self.data))
        if self.width <= 0 or self.height <= 0:
            raise InvalidImageData(f"Raster must have positive size, got {self.width}x{self.height}")
        if len(self.data) % 4 != 0:
            raise InvalidImageData(f"RGBA data length {len(self.data)} is not a multiple of 4")
        expected = self.width * self.height * 4
        if len(self.data) != expected:
            raise InvalidImageData(
                f"RGBA data length {len(self.data)} does not match {self.width}x{self.height} ({expected})"
            )

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    @classmethod
    def from_image(cls, image: Image.Image) -> "Raster":
        """Capture a PIL image (any mode) as an RGBA raster."""
        rgba = image if image.mode == "RGBA" else image.convert("RGBA")
        return cls(width=rgba.width, height=rgba.height, data=rgba.tobytes())

    @classmethod
    def from_array(cls, pixels: np.ndarray) -> "Raster":
        """Build a raster from an (height, width, 4) uint8 array."""
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise InvalidImageData(f"Expected an (H, W, 4) array, got shape {pixels.shape}")
        height, width = pixels.shape[:2]
        return cls(width=width, height=height, data=np.ascontiguousarray(pixels, dtype=np.uint8).tobytes())

    def to_array(self) -> np.ndarray:
        """Read-only (height, width, 4) view of the pixel bytes."""
        return np.frombuffer(self.data, dtype=np.uint8).reshape(self.height, self.width, 4)

    def to_image(self) -> Image.Image:
        return Image.frombytes("RGBA", self.size, self.data)


@dataclass(frozen=True, eq=False)
class Mask:
    """Binary image: each pixel is FOREGROUND (255) or BACKGROUND (0)."""
    width: int
    height: int
    pixels: np.ndarray  # (height, width) uint8, read-only

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    @classmethod
    def from_array(cls, values: np.ndarray) -> "Mask":
        """Wrap a 2-D array; any non-zero value counts as foreground."""
        if values.ndim != 2:
            raise InvalidImageData(f"Mask must be 2-D, got shape {values.shape}")
        pixels = np.where(values != 0, FOREGROUND, BACKGROUND).astype(np.uint8)
        pixels.flags.writeable = False
        return cls(width=pixels.shape[1], height=pixels.shape[0], pixels=pixels)

    def foreground(self) -> np.ndarray:
        """Boolean (height, width) array of foreground pixels."""
        return self.pixels == FOREGROUND

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.pixels)


def luminance(raster: Raster) -> np.ndarray:
    """Per-pixel luma, rounded half up, alpha ignored."""
    rgb = raster.to_array()[:, :, :3].astype(np.float64)
    r_w, g_w, b_w = LUMA_WEIGHTS
    luma = rgb[:, :, 0] * r_w + rgb[:, :, 1] * g_w + rgb[:, :, 2] * b_w
    return np.floor(luma + 0.5).astype(np.int32)


def binarize(raster: Raster, threshold: int) -> Mask:
    """
    Inverse threshold: dark pixels become foreground.

    Args:
        raster: Source image
        threshold: Pixels with luminance strictly below this are foreground (0-255)

    Returns:
        Mask with the same dimensions as the raster
    """
    if not 0 <= threshold <= 255:
        raise ValueError(f"threshold must be within 0-255, got {threshold}")
    pixels = np.where(luminance(raster) < threshold, FOREGROUND, BACKGROUND).astype(np.uint8)
    pixels.flags.writeable = False
    return Mask(width=raster.width, height=raster.height, pixels=pixels)
