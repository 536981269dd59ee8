"""
Unit tests for image enhancement functions.
"""

import cv2
import numpy as np
import pytest

from colorhighlight.core import PixelBuffer
from colorhighlight.core.enhance import (
    apply_clahe,
    bilateral_filter,
    dilation,
    erosion,
    morphological_opening,
    open_mask,
)


def solid(width, height, rgb, alpha=255):
    img = np.zeros((height, width, 4), dtype=np.uint8)
    img[..., :3] = rgb
    img[..., 3] = alpha
    return PixelBuffer.from_array(img)


@pytest.fixture
def speck_image():
    """Black 20x20 image with one white pixel in the middle."""
    buffer = solid(20, 20, (0, 0, 0))
    buffer.pixels[10, 10, :3] = 255
    return buffer


@pytest.fixture
def block_image():
    """Black image with a 10x10 white block and a 1-pixel speck."""
    buffer = solid(40, 40, (0, 0, 0))
    cv2.rectangle(buffer.pixels, (5, 5), (14, 14), (255, 255, 255, 255), -1)
    buffer.pixels[30, 30, :3] = 255
    return buffer


class TestBilateralFilter:
    """Tests for the edge-preserving bilateral filter."""

    def test_uniform_image_unchanged(self):
        buffer = solid(16, 16, (120, 60, 30))
        result = bilateral_filter(buffer)
        assert np.array_equal(result.pixels, buffer.pixels)

    def test_input_not_modified(self, noisy_image):
        before = noisy_image.pixels.copy()
        bilateral_filter(noisy_image)
        assert np.array_equal(noisy_image.pixels, before)

    def test_alpha_passes_through(self, noisy_image):
        noisy_image.pixels[..., 3] = np.arange(64, dtype=np.uint8)[None, :]
        result = bilateral_filter(noisy_image)
        assert np.array_equal(result.alpha, noisy_image.alpha)

    def test_preserves_sharp_edge(self):
        """A black/white edge stays sharp: the color term kills cross-edge weight."""
        buffer = solid(20, 20, (0, 0, 0))
        buffer.pixels[:, 10:, :3] = 255
        result = bilateral_filter(buffer, diameter=5, sigma_color=20, sigma_space=5)
        assert np.all(result.rgb[:, :10] == 0)
        assert np.all(result.rgb[:, 10:] == 255)

    def test_smooths_noise(self, noisy_image):
        """Large sigma_color approaches a box blur and reduces variance."""
        result = bilateral_filter(noisy_image, diameter=5, sigma_color=1000, sigma_space=1000)
        assert result.rgb.astype(float).std() < noisy_image.rgb.astype(float).std()

    @pytest.mark.parametrize("kwargs", [
        {"diameter": 0},
        {"diameter": -3},
        {"sigma_color": 0},
        {"sigma_space": -1},
    ])
    def test_rejects_invalid_parameters(self, noisy_image, kwargs):
        with pytest.raises(ValueError):
            bilateral_filter(noisy_image, **kwargs)


class TestCLAHE:
    """Tests for tile-local contrast-limited histogram equalisation."""

    def test_output_shape_and_alpha(self, noisy_image):
        noisy_image.pixels[..., 3] = 200
        result = apply_clahe(noisy_image, tile_size=8, clip_limit=2.0)
        assert result.pixels.shape == noisy_image.pixels.shape
        assert result.pixels.dtype == np.uint8
        assert np.all(result.alpha == 200)

    def test_input_not_modified(self, noisy_image):
        before = noisy_image.pixels.copy()
        apply_clahe(noisy_image)
        assert np.array_equal(noisy_image.pixels, before)

    def test_uniform_tile_stays_uniform(self):
        """Every pixel of a uniform tile gets the same scale factor."""
        buffer = solid(16, 16, (90, 90, 90))
        result = apply_clahe(buffer, tile_size=8)
        assert len(np.unique(result.rgb.reshape(-1, 3), axis=0)) == 1

    def test_small_tiles_do_not_black_out(self):
        """Clipped mass is redistributed, so the image keeps its brightness."""
        buffer = solid(16, 16, (200, 150, 100))
        result = apply_clahe(buffer, tile_size=8, clip_limit=2.0)
        assert result.rgb.mean() > 0.5 * buffer.rgb.mean()

    def test_tiles_are_independent(self):
        """Tile-local equalisation: a change in one tile never affects another."""
        base = solid(16, 8, (90, 90, 90))
        changed = base.copy()
        changed.pixels[:, 8:, :3] = 200
        left_a = apply_clahe(base, tile_size=8).rgb[:, :8]
        left_b = apply_clahe(changed, tile_size=8).rgb[:, :8]
        assert np.array_equal(left_a, left_b)

    def test_rejects_invalid_parameters(self, noisy_image):
        with pytest.raises(ValueError):
            apply_clahe(noisy_image, tile_size=0)
        with pytest.raises(ValueError):
            apply_clahe(noisy_image, clip_limit=0)


class TestMorphology:
    """Tests for erosion, dilation and opening."""

    def test_opening_removes_isolated_speck(self, speck_image):
        result = morphological_opening(speck_image, 3)
        assert np.count_nonzero(result.rgb) == 0

    def test_opening_keeps_large_block(self, block_image):
        result = morphological_opening(block_image, 3)
        assert np.all(result.rgb[5:15, 5:15] == 255)
        assert np.count_nonzero(result.rgb[..., 0]) == 100

    def test_dilation_grows_speck(self, speck_image):
        result = dilation(speck_image, 3)
        assert np.count_nonzero(result.rgb[..., 0]) == 9
        assert np.all(result.rgb[9:12, 9:12] == 255)

    def test_erosion_replicates_border(self):
        """A region touching the border is not eaten from outside the image."""
        buffer = solid(10, 10, (0, 0, 0))
        buffer.pixels[:, :4, :3] = 255
        result = erosion(buffer, 3)
        assert np.all(result.rgb[:, :3] == 255)
        assert np.all(result.rgb[:, 3:] == 0)

    def test_alpha_untouched(self, speck_image):
        speck_image.pixels[..., 3] = 17
        assert np.all(erosion(speck_image, 3).alpha == 17)
        assert np.all(dilation(speck_image, 3).alpha == 17)

    def test_input_not_modified(self, block_image):
        before = block_image.pixels.copy()
        morphological_opening(block_image, 3)
        assert np.array_equal(block_image.pixels, before)

    @pytest.mark.parametrize("kernel_size", [0, -1])
    def test_rejects_invalid_kernel(self, speck_image, kernel_size):
        with pytest.raises(ValueError):
            erosion(speck_image, kernel_size)
        with pytest.raises(ValueError):
            dilation(speck_image, kernel_size)

    def test_open_mask(self):
        mask = np.zeros((12, 12), dtype=np.uint8)
        mask[2:8, 2:8] = 255
        mask[10, 10] = 255
        opened = open_mask(mask.ravel(), 12, 12, 3)
        assert opened.shape == (144,)
        assert opened.reshape(12, 12)[10, 10] == 0
        assert np.count_nonzero(opened) == 36


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
