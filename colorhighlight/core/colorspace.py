"""
Color Space Conversions

RGB -> HSV for tolerance matching and RGB -> CIE L*a*b* for contrast
enhancement. Scalar functions operate on single byte triplets, the
``*_array`` variants on whole numpy images and produce identical values.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np

# D65 reference white
WHITE_X = 0.95047
WHITE_Y = 1.00000
WHITE_Z = 1.08883

LAB_EPSILON = 0.008856

SRGB_TO_XYZ = np.array([
    [0.4124, 0.3576, 0.1805],
    [0.2126, 0.7152, 0.0722],
    [0.0193, 0.1192, 0.9505],
])


@dataclass(frozen=True)
class HSVColor:
    """Hue in degrees [0, 360), saturation and value in percent [0, 100]."""

    h: float
    s: float
    v: float

    def to_dict(self):
        return {"h": self.h, "s": self.s, "v": self.v}

    @classmethod
    def from_dict(cls, data) -> "HSVColor":
        return cls(h=float(data["h"]) % 360.0, s=float(data["s"]), v=float(data["v"]))


def rgb_to_hsv(r: int, g: int, b: int) -> HSVColor:
    """Convert an 8-bit RGB triplet to HSV."""
    r, g, b = r / 255.0, g / 255.0, b / 255.0
    high = max(r, g, b)
    low = min(r, g, b)
    delta = high - low

    h = 0.0
    if delta != 0:
        if high == r:
            h = ((g - b) / delta) % 6
        elif high == g:
            h = (b - r) / delta + 2
        else:
            h = (r - g) / delta + 4
        h *= 60.0
    if h >= 360.0:
        h -= 360.0

    s = 0.0 if high == 0 else delta / high
    return HSVColor(h=h, s=s * 100.0, v=high * 100.0)


def hsv_to_rgb(color: HSVColor) -> Tuple[int, int, int]:
    """Convert HSV back to an 8-bit RGB triplet (rounded)."""
    s = color.s / 100.0
    v = color.v / 100.0
    c = v * s
    hp = (color.h % 360.0) / 60.0
    x = c * (1 - abs(hp % 2 - 1))
    sector = int(hp)
    r, g, b = [
        (c, x, 0), (x, c, 0), (0, c, x),
        (0, x, c), (x, 0, c), (c, 0, x),
    ][sector % 6]
    m = v - c
    return tuple(int(round((channel + m) * 255)) for channel in (r, g, b))


def hue_distance(h1: float, h2: float) -> float:
    """Circular distance between two hues in degrees."""
    diff = abs(h1 - h2) % 360.0
    return min(diff, 360.0 - diff)


def _srgb_decode(channel):
    return np.where(channel > 0.04045, ((channel + 0.055) / 1.055) ** 2.4, channel / 12.92)


def _lab_f(t):
    return np.where(t > LAB_EPSILON, np.cbrt(t), 7.787 * t + 16.0 / 116.0)


def rgb_to_lab(r: int, g: int, b: int) -> Tuple[float, float, float]:
    """Convert an 8-bit RGB triplet to CIE L*a*b* (D65)."""
    lab = rgb_to_lab_array(np.array([[r, g, b]], dtype=np.uint8))[0]
    return float(lab[0]), float(lab[1]), float(lab[2])


def rgb_to_lab_array(rgb: np.ndarray) -> np.ndarray:
    """Convert an (..., 3) uint8 RGB array to float64 L*a*b*."""
    linear = _srgb_decode(rgb[..., :3].astype(np.float64) / 255.0)
    xyz = linear @ SRGB_TO_XYZ.T
    fx = _lab_f(xyz[..., 0] / WHITE_X)
    fy = _lab_f(xyz[..., 1] / WHITE_Y)
    fz = _lab_f(xyz[..., 2] / WHITE_Z)
    return np.stack([116.0 * fy - 16.0, 500.0 * (fx - fy), 200.0 * (fy - fz)], axis=-1)


def rgb_to_hsv_array(rgb: np.ndarray) -> np.ndarray:
    """Convert an (..., 3) uint8 RGB array to float64 HSV (degrees, percent, percent)."""
    values = rgb[..., :3].astype(np.float64) / 255.0
    r, g, b = values[..., 0], values[..., 1], values[..., 2]
    high = values.max(axis=-1)
    low = values.min(axis=-1)
    delta = high - low
    safe_delta = np.where(delta == 0, 1.0, delta)

    hue = np.where(
        high == r,
        np.mod((g - b) / safe_delta, 6.0),
        np.where(high == g, (b - r) / safe_delta + 2.0, (r - g) / safe_delta + 4.0),
    )
    hue = np.where(delta == 0, 0.0, hue * 60.0)
    hue = np.where(hue >= 360.0, hue - 360.0, hue)

    sat = np.where(high == 0, 0.0, delta / np.where(high == 0, 1.0, high))
    return np.stack([hue, sat * 100.0, high * 100.0], axis=-1)


def hue_distance_array(hue: np.ndarray, target: float) -> np.ndarray:
    diff = np.mod(np.abs(hue - target), 360.0)
    return np.minimum(diff, 360.0 - diff)
