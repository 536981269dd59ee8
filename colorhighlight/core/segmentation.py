"""
Color Segmentation

HSV tolerance matching of a texture against a target color, producing a
per-pixel match mask plus aggregate statistics, and palette extraction for
picking target colors.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple
import logging

import numpy as np

from .colorspace import HSVColor, hue_distance_array, rgb_to_hsv, rgb_to_hsv_array
from .surface import PixelBuffer

logger = logging.getLogger(__name__)

# Pixels with alpha below this are treated as transparent and never match
ALPHA_THRESHOLD = 128
# Mask entries at or above this count as matched
MATCH_THRESHOLD = 128
MATCH_VALUE = 255


@dataclass(frozen=True)
class ToleranceWindow:
    """Maximum allowed |delta| per HSV component (hue in degrees, circular)."""

    h: float = 15.0
    s: float = 20.0
    v: float = 30.0

    def __post_init__(self):
        for name in ("h", "s", "v"):
            if getattr(self, name) < 0:
                raise ValueError(f"Tolerance '{name}' must be >= 0")

    def to_dict(self) -> Dict[str, float]:
        return {"h": self.h, "s": self.s, "v": self.v}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToleranceWindow":
        return cls(**{k: float(v) for k, v in data.items() if k in ("h", "s", "v")})


@dataclass(frozen=True)
class BoundingBox:
    """Normalized UV corners spanning every matched texel."""

    min: Tuple[float, float] = (0.0, 0.0)
    max: Tuple[float, float] = (0.0, 0.0)

    @property
    def is_empty(self) -> bool:
        return self.min == self.max

    def to_dict(self) -> Dict[str, List[float]]:
        return {"min": list(self.min), "max": list(self.max)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoundingBox":
        return cls(min=tuple(data["min"]), max=tuple(data["max"]))


@dataclass(frozen=True)
class HighlightStats:
    """Aggregate match statistics for one analysis."""

    matching_pixels: int = 0
    coverage: float = 0.0
    bounding_box: BoundingBox = BoundingBox()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matching_pixels": self.matching_pixels,
            "coverage": self.coverage,
            "bounding_box": self.bounding_box.to_dict(),
        }


@dataclass
class ColorEntry:
    """A palette swatch and how often it was sampled."""

    rgb: Tuple[int, int, int]
    count: int
    percentage: float
    hsv: HSVColor

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rgb": list(self.rgb),
            "hex": "#{:02x}{:02x}{:02x}".format(*self.rgb),
            "count": self.count,
            "percentage": round(self.percentage, 2),
            "hsv": self.hsv.to_dict(),
        }


def compute_stats(mask: np.ndarray, width: int, height: int) -> HighlightStats:
    """
    Count matched mask entries and find their UV bounding box.

    Args:
        mask: Flat uint8 mask of length width * height
        width: Image width
        height: Image height

    Returns:
        HighlightStats for the mask
    """
    if mask.size != width * height:
        raise ValueError(f"Mask length {mask.size} does not match {width}x{height}")

    matched = mask.reshape(height, width) >= MATCH_THRESHOLD
    matching_pixels = int(np.count_nonzero(matched))
    total = width * height
    coverage = matching_pixels / total if total > 0 else 0.0

    if matching_pixels == 0:
        return HighlightStats(matching_pixels=0, coverage=0.0, bounding_box=BoundingBox())

    rows = np.flatnonzero(matched.any(axis=1))
    cols = np.flatnonzero(matched.any(axis=0))
    box = BoundingBox(
        min=(cols[0] / width, rows[0] / height),
        max=((cols[-1] + 1) / width, (rows[-1] + 1) / height),
    )
    return HighlightStats(matching_pixels=matching_pixels, coverage=coverage, bounding_box=box)


def match_mask(buffer: PixelBuffer, target: HSVColor, tolerance: ToleranceWindow) -> np.ndarray:
    """Flat uint8 mask, MATCH_VALUE where an opaque pixel is within tolerance."""
    hsv = rgb_to_hsv_array(buffer.rgb)
    opaque = buffer.alpha >= ALPHA_THRESHOLD

    matched = (
        opaque
        & (hue_distance_array(hsv[..., 0], target.h) <= tolerance.h)
        & (np.abs(hsv[..., 1] - target.s) <= tolerance.s)
        & (np.abs(hsv[..., 2] - target.v) <= tolerance.v)
    )
    return (matched.astype(np.uint8) * MATCH_VALUE).ravel()


def analyze(buffer: PixelBuffer, target: HSVColor,
            tolerance: ToleranceWindow) -> Tuple[np.ndarray, HighlightStats]:
    """
    Segment a texture by HSV distance to a target color.

    Args:
        buffer: RGBA texture pixels
        target: Color to look for
        tolerance: Allowed HSV deltas

    Returns:
        (mask, stats) where mask is flat uint8 with one entry per pixel
    """
    mask = match_mask(buffer, target, tolerance)
    stats = compute_stats(mask, buffer.width, buffer.height)
    logger.debug(
        f"Matched {stats.matching_pixels}/{buffer.pixel_count} pixels "
        f"({stats.coverage * 100:.2f}%) for target {target}"
    )
    return mask, stats


def extract_palette(buffer: PixelBuffer, max_colors: int = 16, stride: int = 16,
                    quantization: int = 32) -> List[ColorEntry]:
    """
    Most frequent quantized colors of a texture.

    Samples every ``stride``-th pixel in row-major order, skips translucent
    pixels and snaps each channel to a multiple of ``quantization``.
    """
    if max_colors <= 0 or stride <= 0 or quantization <= 0:
        raise ValueError("max_colors, stride and quantization must be positive")

    samples = buffer.pixels.reshape(-1, 4)[::stride]
    samples = samples[samples[:, 3] >= ALPHA_THRESHOLD, :3].astype(np.float64)
    if len(samples) == 0:
        return []

    quantized = np.clip(np.rint(samples / quantization) * quantization, 0, 255).astype(np.int64)
    colors, counts = np.unique(quantized, axis=0, return_counts=True)
    total = counts.sum()

    # Stable sort keeps ties in color order
    order = np.argsort(-counts, kind="stable")[:max_colors]
    palette = []
    for idx in order:
        r, g, b = (int(c) for c in colors[idx])
        palette.append(ColorEntry(
            rgb=(r, g, b),
            count=int(counts[idx]),
            percentage=float(counts[idx]) / total * 100.0,
            hsv=rgb_to_hsv(r, g, b),
        ))
    return palette
