"""Color Highlighting Core Module."""

from .colorspace import HSVColor, hue_distance, rgb_to_hsv, rgb_to_lab
from .controller import HighlightConfig, HighlightController, SurfaceHandle
from .segmentation import BoundingBox, HighlightStats, ToleranceWindow, analyze, extract_palette
from .surface import PixelBuffer, StandardMaterial, Surface, Texture, TextureExtractionError
from .worker import AnalysisOptions, AnalysisWorker, handle_request

__all__ = [
    "HSVColor", "hue_distance", "rgb_to_hsv", "rgb_to_lab",
    "HighlightConfig", "HighlightController", "SurfaceHandle",
    "BoundingBox", "HighlightStats", "ToleranceWindow", "analyze", "extract_palette",
    "PixelBuffer", "StandardMaterial", "Surface", "Texture", "TextureExtractionError",
    "AnalysisOptions", "AnalysisWorker", "handle_request",
]
