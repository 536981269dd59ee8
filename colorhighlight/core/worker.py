"""
Analysis Worker

Runs the enhancement + segmentation pipeline on a dedicated background
thread behind a message-based request/response contract. Every request
yields exactly one response; failures become ``AnalysisError`` responses
instead of exceptions crossing the thread boundary.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union
import base64
import logging
import threading
import time

import numpy as np

from .colorspace import HSVColor
from .enhance import apply_clahe, bilateral_filter, open_mask
from .segmentation import BoundingBox, ToleranceWindow, compute_stats, match_mask
from .surface import PixelBuffer

logger = logging.getLogger(__name__)


@dataclass
class AnalysisOptions:
    """Preprocessing and mask-cleaning parameters for the analysis pipeline."""

    # Bilateral filter
    bilateral_enabled: bool = True
    bilateral_diameter: int = 5
    bilateral_sigma_color: float = 75.0
    bilateral_sigma_space: float = 75.0

    # CLAHE (tile-local)
    clahe_enabled: bool = False
    clahe_tile_size: int = 8
    clahe_clip_limit: float = 2.0

    # Mask cleaning
    opening_enabled: bool = True
    opening_kernel_size: int = 3

    def __post_init__(self):
        for name in ("bilateral_enabled", "clahe_enabled", "opening_enabled"):
            if not isinstance(getattr(self, name), bool):
                raise ValueError(f"Option '{name}' must be a boolean, got {getattr(self, name)!r}")

        for name in ("bilateral_diameter", "clahe_tile_size", "opening_kernel_size"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"Option '{name}' must be a positive integer, got {value!r}")

        for name in ("bilateral_sigma_color", "bilateral_sigma_space", "clahe_clip_limit"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ValueError(f"Option '{name}' must be a positive number, got {value!r}")
            setattr(self, name, float(value))

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisOptions":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def _encode_bytes(data: np.ndarray) -> str:
    return base64.b64encode(np.ascontiguousarray(data, dtype=np.uint8).tobytes()).decode("ascii")


def _decode_bytes(data: str) -> np.ndarray:
    return np.frombuffer(base64.b64decode(data), dtype=np.uint8).copy()


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

@dataclass
class AnalyzeRequest:
    image_data: PixelBuffer
    target_color: HSVColor
    tolerance: ToleranceWindow
    options: AnalysisOptions = field(default_factory=AnalysisOptions)
    generation: int = 0

    type = "analyze"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "imageData": {
                "width": self.image_data.width,
                "height": self.image_data.height,
                "pixels": _encode_bytes(self.image_data.pixels),
            },
            "targetColor": self.target_color.to_dict(),
            "tolerance": self.tolerance.to_dict(),
            "options": self.options.to_dict(),
            "generation": self.generation,
        }


@dataclass
class ClearRequest:
    generation: int = 0

    type = "clear"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "generation": self.generation}


Request = Union[AnalyzeRequest, ClearRequest]


def request_from_dict(data: Dict[str, Any]) -> Request:
    """Parse the JSON-shaped form of a request. Raises ValueError/KeyError on bad input."""
    kind = data.get("type")
    generation = int(data.get("generation", 0))

    if kind == ClearRequest.type:
        return ClearRequest(generation=generation)

    if kind == AnalyzeRequest.type:
        image = data.get("imageData")
        if not image or "targetColor" not in data:
            raise ValueError("Missing required parameters for analysis")
        width, height = int(image["width"]), int(image["height"])
        pixels = _decode_bytes(image["pixels"])
        if pixels.size != width * height * 4:
            raise ValueError(
                f"Pixel payload has {pixels.size} bytes, expected {width * height * 4}"
            )
        return AnalyzeRequest(
            image_data=PixelBuffer(width, height, pixels.reshape(height, width, 4)),
            target_color=HSVColor.from_dict(data["targetColor"]),
            tolerance=ToleranceWindow.from_dict(data.get("tolerance", {})),
            options=AnalysisOptions.from_dict(data.get("options", {})),
            generation=generation,
        )

    raise ValueError(f"Unknown request type: {kind}")


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

@dataclass
class AnalysisComplete:
    highlight_mask: np.ndarray
    matching_pixels: int
    coverage: float
    bounding_box: BoundingBox
    width: int
    height: int
    generation: int = 0
    processing_time: float = 0.0

    type = "analysis-complete"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "highlightMask": _encode_bytes(self.highlight_mask),
            "matchingPixels": self.matching_pixels,
            "coverage": self.coverage,
            "boundingBox": self.bounding_box.to_dict(),
            "width": self.width,
            "height": self.height,
            "generation": self.generation,
            "processingTime": round(self.processing_time, 4),
        }


@dataclass
class HighlightReady:
    generation: int = 0

    type = "highlight-ready"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "generation": self.generation}


@dataclass
class AnalysisError:
    error: str
    generation: int = 0

    type = "error"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "error": self.error, "generation": self.generation}


Response = Union[AnalysisComplete, HighlightReady, AnalysisError]


def response_from_dict(data: Dict[str, Any]) -> Response:
    kind = data.get("type")
    generation = int(data.get("generation", 0))

    if kind == AnalysisComplete.type:
        return AnalysisComplete(
            highlight_mask=_decode_bytes(data["highlightMask"]),
            matching_pixels=int(data["matchingPixels"]),
            coverage=float(data["coverage"]),
            bounding_box=BoundingBox.from_dict(data["boundingBox"]),
            width=int(data["width"]),
            height=int(data["height"]),
            generation=generation,
            processing_time=float(data.get("processingTime", 0.0)),
        )
    if kind == HighlightReady.type:
        return HighlightReady(generation=generation)
    if kind == AnalysisError.type:
        return AnalysisError(error=str(data.get("error", "Unknown error")), generation=generation)

    raise ValueError(f"Unknown response type: {kind}")


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def run_analysis(request: AnalyzeRequest) -> AnalysisComplete:
    """Preprocess, segment and clean; stats are computed from the final mask."""
    start = time.perf_counter()
    options = request.options
    image = request.image_data

    if options.bilateral_enabled:
        image = bilateral_filter(
            image,
            options.bilateral_diameter,
            options.bilateral_sigma_color,
            options.bilateral_sigma_space,
        )

    if options.clahe_enabled:
        image = apply_clahe(image, options.clahe_tile_size, options.clahe_clip_limit)

    mask = match_mask(image, request.target_color, request.tolerance)

    if options.opening_enabled:
        mask = open_mask(mask, image.width, image.height, options.opening_kernel_size)

    stats = compute_stats(mask, image.width, image.height)
    elapsed = time.perf_counter() - start

    logger.info(
        f"Analysis {request.generation}: {stats.matching_pixels} matching pixels "
        f"({stats.coverage * 100:.2f}%) in {elapsed * 1000:.1f}ms"
    )

    return AnalysisComplete(
        highlight_mask=mask,
        matching_pixels=stats.matching_pixels,
        coverage=stats.coverage,
        bounding_box=stats.bounding_box,
        width=image.width,
        height=image.height,
        generation=request.generation,
        processing_time=elapsed,
    )


def handle_request(request: Any) -> Response:
    """Answer one request. Never raises; failures become AnalysisError."""
    if isinstance(request, dict):
        generation = request.get("generation", 0)
        if not isinstance(generation, int):
            generation = 0
    else:
        generation = getattr(request, "generation", 0)

    try:
        if isinstance(request, dict):
            request = request_from_dict(request)
            generation = request.generation

        if isinstance(request, AnalyzeRequest):
            return run_analysis(request)
        if isinstance(request, ClearRequest):
            return HighlightReady(generation=request.generation)

        raise ValueError(f"Unknown request type: {type(request).__name__}")
    except Exception as e:
        logger.warning(f"Analysis request {generation} failed: {e}")
        return AnalysisError(error=str(e) or type(e).__name__, generation=generation)


class AnalysisWorker:
    """
    Single background thread processing requests one at a time, in order.

    Usage:
        worker = AnalysisWorker()
        future = worker.post(request)
        response = future.result()
        worker.terminate()
    """

    def __init__(self, name: str = "analysis_worker"):
        self._executor: Optional[ThreadPoolExecutor] = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=name
        )
        self._busy = 0
        self._lock = threading.Lock()

    @property
    def is_busy(self) -> bool:
        return self._busy > 0

    @property
    def is_terminated(self) -> bool:
        return self._executor is None

    def post(self, request: Request) -> "Future[Response]":
        if self._executor is None:
            raise RuntimeError("Analysis worker has been terminated")
        with self._lock:
            self._busy += 1
        return self._executor.submit(self._run, request)

    def _run(self, request: Request) -> Response:
        try:
            return handle_request(request)
        finally:
            with self._lock:
                self._busy -= 1

    def terminate(self, wait: bool = False) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=True)
            self._executor = None
            logger.info("Analysis worker terminated")
