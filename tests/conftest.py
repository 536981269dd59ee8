"""Shared fixtures: synthetic textures."""

import cv2
import numpy as np
import pytest

from colorhighlight.core import PixelBuffer

RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)
BLUE = (0, 0, 255, 255)
YELLOW = (255, 255, 0, 255)


def quadrant_image(size: int = 256) -> np.ndarray:
    """RGBA image: red top-left, green top-right, blue bottom-left, yellow bottom-right."""
    img = np.zeros((size, size, 4), dtype=np.uint8)
    half = size // 2
    cv2.rectangle(img, (0, 0), (half - 1, half - 1), RED, -1)
    cv2.rectangle(img, (half, 0), (size - 1, half - 1), GREEN, -1)
    cv2.rectangle(img, (0, half), (half - 1, size - 1), BLUE, -1)
    cv2.rectangle(img, (half, half), (size - 1, size - 1), YELLOW, -1)
    return img


@pytest.fixture
def make_quadrants():
    """Factory for quadrant PixelBuffers of a given size."""
    def _make(size: int = 256) -> PixelBuffer:
        return PixelBuffer.from_array(quadrant_image(size))
    return _make


@pytest.fixture
def quadrants(make_quadrants):
    return make_quadrants(256)


@pytest.fixture
def noisy_image():
    """Random RGBA texture, fully opaque."""
    rng = np.random.default_rng(1234)
    img = rng.integers(0, 256, size=(64, 64, 4), dtype=np.uint8)
    img[..., 3] = 255
    return PixelBuffer.from_array(img)
