"""
Image Enhancement

Noise removal, contrast enhancement and morphology over RGBA pixel buffers.
Every function returns a new buffer and leaves its input untouched; the
alpha channel is always passed through unchanged.
"""

import logging

import cv2
import numpy as np

from .colorspace import rgb_to_lab_array
from .surface import PixelBuffer

logger = logging.getLogger(__name__)

HISTOGRAM_BINS = 256


def _require_positive(name: str, value) -> None:
    if value is None or value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")


def _to_bytes(values: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


def bilateral_filter(buffer: PixelBuffer, diameter: int = 5,
                     sigma_color: float = 75.0, sigma_space: float = 75.0) -> PixelBuffer:
    """
    Edge-preserving smoothing.

    Each output pixel is the average of its ``diameter``-wide neighbourhood,
    weighted by a Gaussian of the RGB distance to the centre pixel times a
    Gaussian of the pixel distance. Neighbours outside the image are skipped.

    Args:
        buffer: Source image
        diameter: Neighbourhood width (radius is ``diameter // 2``)
        sigma_color: Gaussian sigma in RGB distance
        sigma_space: Gaussian sigma in pixels

    Returns:
        Filtered PixelBuffer
    """
    _require_positive("diameter", diameter)
    _require_positive("sigma_color", sigma_color)
    _require_positive("sigma_space", sigma_space)

    radius = diameter // 2
    h, w = buffer.height, buffer.width
    src = buffer.rgb.astype(np.float64)

    padded = np.pad(src, ((radius, radius), (radius, radius), (0, 0)), mode="edge")
    inside = np.pad(np.ones((h, w)), radius, mode="constant")

    color_factor = -0.5 / (sigma_color * sigma_color)
    space_factor = -0.5 / (sigma_space * sigma_space)

    accum = np.zeros_like(src)
    weights = np.zeros((h, w))

    for dy in range(-radius, radius + 1):
        for dx in range(-radius, radius + 1):
            rows = slice(radius + dy, radius + dy + h)
            cols = slice(radius + dx, radius + dx + w)
            neighbor = padded[rows, cols]

            color_dist = np.sum((src - neighbor) ** 2, axis=-1)
            weight = np.exp(color_factor * color_dist + space_factor * (dx * dx + dy * dy))
            weight *= inside[rows, cols]

            accum += neighbor * weight[..., None]
            weights += weight

    # The centre pixel always contributes weight 1, so weights > 0
    return buffer.with_rgb(_to_bytes(accum / weights[..., None]))


def apply_clahe(buffer: PixelBuffer, tile_size: int = 8, clip_limit: float = 2.0) -> PixelBuffer:
    """
    Contrast-limited histogram equalisation of the L* channel, per tile.

    Tiles are equalised independently; there is no interpolation across
    tile boundaries, so strongly varying tiles can show blocking.

    Args:
        buffer: Source image
        tile_size: Tile edge in pixels
        clip_limit: Bin cap as a multiple of the uniform bin height

    Returns:
        Enhanced PixelBuffer
    """
    _require_positive("tile_size", tile_size)
    _require_positive("clip_limit", clip_limit)

    h, w = buffer.height, buffer.width
    lightness = rgb_to_lab_array(buffer.rgb)[..., 0]
    bins = np.clip(np.rint(lightness), 0, HISTOGRAM_BINS - 1).astype(np.intp)
    factor = np.ones((h, w))

    for y0 in range(0, h, tile_size):
        for x0 in range(0, w, tile_size):
            tile = (slice(y0, min(y0 + tile_size, h)), slice(x0, min(x0 + tile_size, w)))
            tile_bins = bins[tile]
            pixel_count = tile_bins.size

            histogram = np.bincount(tile_bins.ravel(), minlength=HISTOGRAM_BINS).astype(np.float64)

            max_allowed = pixel_count * clip_limit / HISTOGRAM_BINS
            excess = np.clip(histogram - max_allowed, 0, None).sum()
            histogram = np.minimum(histogram, max_allowed) + excess / HISTOGRAM_BINS

            cdf = np.cumsum(histogram)
            new_lightness = cdf[tile_bins] * (255.0 / pixel_count)
            factor[tile] = new_lightness / np.maximum(1.0, lightness[tile])

    enhanced = buffer.rgb.astype(np.float64) * factor[..., None]
    return buffer.with_rgb(_to_bytes(np.minimum(255.0, enhanced)))


def _structuring_element(kernel_size: int) -> np.ndarray:
    _require_positive("kernel_size", kernel_size)
    size = 2 * (kernel_size // 2) + 1
    return cv2.getStructuringElement(cv2.MORPH_RECT, (size, size))


def erosion(buffer: PixelBuffer, kernel_size: int) -> PixelBuffer:
    """Per-channel minimum over a square window, edges replicated."""
    kernel = _structuring_element(kernel_size)
    rgb = cv2.erode(np.ascontiguousarray(buffer.rgb), kernel, borderType=cv2.BORDER_REPLICATE)
    return buffer.with_rgb(rgb)


def dilation(buffer: PixelBuffer, kernel_size: int) -> PixelBuffer:
    """Per-channel maximum over a square window, edges replicated."""
    kernel = _structuring_element(kernel_size)
    rgb = cv2.dilate(np.ascontiguousarray(buffer.rgb), kernel, borderType=cv2.BORDER_REPLICATE)
    return buffer.with_rgb(rgb)


def morphological_opening(buffer: PixelBuffer, kernel_size: int = 3) -> PixelBuffer:
    """Erosion followed by dilation: drops specks smaller than the kernel."""
    return dilation(erosion(buffer, kernel_size), kernel_size)


def open_mask(mask: np.ndarray, width: int, height: int, kernel_size: int = 3) -> np.ndarray:
    """Morphological opening of a flat single-channel match mask."""
    kernel = _structuring_element(kernel_size)
    image = np.ascontiguousarray(mask.reshape(height, width))
    eroded = cv2.erode(image, kernel, borderType=cv2.BORDER_REPLICATE)
    opened = cv2.dilate(eroded, kernel, borderType=cv2.BORDER_REPLICATE)
    return opened.ravel()
