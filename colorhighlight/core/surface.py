"""
Pixel buffers, textures and the renderable surfaces that carry them.

The renderer that actually draws surfaces lives outside this package; these
types only describe what the highlighter needs from it: a surface with a
swappable material, and materials that declare where their color texture is.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple
import itertools
import logging

import cv2
import numpy as np

logger = logging.getLogger(__name__)

_texture_ids = itertools.count(1)


class TextureExtractionError(ValueError):
    """Raised when a texture image cannot be rasterised into RGBA bytes."""


@dataclass
class PixelBuffer:
    """RGBA image, row-major, shape (height, width, 4), dtype uint8."""

    width: int
    height: int
    pixels: np.ndarray

    def __post_init__(self):
        if self.pixels.shape != (self.height, self.width, 4):
            raise ValueError(
                f"Pixel data shape {self.pixels.shape} does not match "
                f"{self.width}x{self.height} RGBA"
            )
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Pixel data must be uint8, got {self.pixels.dtype}")

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def rgb(self) -> np.ndarray:
        return self.pixels[..., :3]

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[..., 3]

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.width, self.height, self.pixels.copy())

    def with_rgb(self, rgb: np.ndarray) -> "PixelBuffer":
        """New buffer with replaced color channels and this buffer's alpha."""
        pixels = np.empty_like(self.pixels)
        pixels[..., :3] = rgb
        pixels[..., 3] = self.pixels[..., 3]
        return PixelBuffer(self.width, self.height, pixels)

    @classmethod
    def from_array(cls, image: np.ndarray) -> "PixelBuffer":
        """Build from an RGB(A) or grayscale uint8 array (copied)."""
        return cls._from_channels(image, bgr=False)

    @classmethod
    def from_bytes(cls, data: bytes) -> "PixelBuffer":
        """Decode PNG/JPEG/... bytes via OpenCV."""
        nparr = np.frombuffer(data, np.uint8)
        image = cv2.imdecode(nparr, cv2.IMREAD_UNCHANGED)
        if image is None:
            raise TextureExtractionError("Failed to decode image data")
        return cls._from_channels(image, bgr=True)

    @classmethod
    def from_file(cls, path: str) -> "PixelBuffer":
        image = cv2.imread(path, cv2.IMREAD_UNCHANGED)
        if image is None:
            raise TextureExtractionError(f"Could not load texture image: {path}")
        return cls._from_channels(image, bgr=True)

    @classmethod
    def _from_channels(cls, image: np.ndarray, bgr: bool) -> "PixelBuffer":
        if image.dtype != np.uint8:
            raise TextureExtractionError(f"Unsupported texture dtype: {image.dtype}")

        if image.ndim == 2:
            rgba = cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
        elif image.ndim == 3 and image.shape[2] == 3:
            rgba = cv2.cvtColor(image, cv2.COLOR_BGR2RGBA if bgr else cv2.COLOR_RGB2RGBA)
        elif image.ndim == 3 and image.shape[2] == 4:
            rgba = cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA) if bgr else image.copy()
        else:
            raise TextureExtractionError(f"Unsupported texture shape: {image.shape}")

        h, w = rgba.shape[:2]
        return cls(width=w, height=h, pixels=np.ascontiguousarray(rgba))


@dataclass(eq=False)
class Texture:
    """A decoded (or decodable) image attached to a material.

    ``image`` may be a numpy array, encoded image bytes or a file path.
    """

    image: Any
    name: str = ""
    id: int = field(default_factory=lambda: next(_texture_ids))
    needs_update: bool = True

    @property
    def size(self) -> Optional[Tuple[int, int]]:
        if isinstance(self.image, np.ndarray) and self.image.ndim >= 2:
            return self.image.shape[1], self.image.shape[0]
        return None

    def is_rasterizable(self) -> bool:
        if isinstance(self.image, np.ndarray):
            return self.image.dtype == np.uint8 and (
                self.image.ndim == 2 or (self.image.ndim == 3 and self.image.shape[2] in (3, 4))
            )
        if isinstance(self.image, (bytes, bytearray)):
            return len(self.image) > 0
        if isinstance(self.image, (str, os.PathLike)):
            return os.path.isfile(self.image)
        return False


def extract_pixels(texture: Texture) -> PixelBuffer:
    """Rasterise a texture image into a fresh RGBA PixelBuffer copy."""
    image = texture.image
    if isinstance(image, np.ndarray):
        return PixelBuffer.from_array(image)
    if isinstance(image, (bytes, bytearray)):
        return PixelBuffer.from_bytes(bytes(image))
    if isinstance(image, (str, os.PathLike)):
        return PixelBuffer.from_file(os.fspath(image))
    raise TextureExtractionError(f"Unsupported texture image type: {type(image).__name__}")


class Material:
    """Base class for anything a surface can render with.

    Materials usable by the highlighter must say where their primary color
    texture lives by setting ``texture_slot`` to the attribute holding it.
    """

    texture_slot: Optional[str] = None

    def primary_texture(self) -> Optional[Texture]:
        if not self.texture_slot:
            return None
        texture = getattr(self, self.texture_slot, None)
        return texture if isinstance(texture, Texture) else None


class StandardMaterial(Material):
    """Plain textured material with a ``map`` slot."""

    texture_slot = "map"

    def __init__(self, map: Optional[Texture] = None, color=(1.0, 1.0, 1.0),
                 roughness: float = 0.5, metalness: float = 0.0, name: str = ""):
        self.map = map
        self.color = color
        self.roughness = roughness
        self.metalness = metalness
        self.name = name

    def __repr__(self):
        return f"StandardMaterial(name={self.name!r}, map={self.map is not None})"


@dataclass(eq=False)
class Surface:
    """A renderable object (mesh + material) owned by the host scene."""

    name: str = ""
    material: Optional[Material] = None
