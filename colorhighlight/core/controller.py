"""
Highlight Controller

Owns the surface bindings (original material <-> highlight program), sends
analysis requests to the background worker and applies the returned masks.

Every request carries a generation number. Only the response to the most
recently issued request is applied, so new requests are never refused and a
slow earlier analysis can never overwrite a fresher one.
"""

from concurrent.futures import Future
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple
import itertools
import logging
import math
import threading

from .colorspace import HSVColor
from .segmentation import HighlightStats, ToleranceWindow
from .shader import DEFAULT_HIGHLIGHT_COLOR, ShaderProgram
from .shader import clear as clear_program
from .shader import create_highlight_program, update_mask, update_properties
from .surface import Material, Surface, Texture, extract_pixels
from .worker import (
    AnalysisComplete,
    AnalysisError,
    AnalysisOptions,
    AnalysisWorker,
    AnalyzeRequest,
    Response,
)

logger = logging.getLogger(__name__)

StatsCallback = Callable[[Optional[HighlightStats]], None]


def parse_color(value) -> Tuple[float, float, float]:
    """Accept '#rrggbb', 0xRRGGBB or an (r, g, b) float sequence in [0, 1]."""
    if isinstance(value, str):
        text = value.lstrip("#")
        if len(text) != 6:
            raise ValueError(f"Invalid hex color: {value}")
        value = int(text, 16)
    if isinstance(value, int):
        return ((value >> 16) & 0xFF) / 255.0, ((value >> 8) & 0xFF) / 255.0, (value & 0xFF) / 255.0

    color = tuple(float(c) for c in value)
    if len(color) != 3 or any(c < 0.0 or c > 1.0 for c in color):
        raise ValueError(f"Color must be three floats in [0, 1], got {value}")
    return color


@dataclass
class HighlightConfig:
    """Appearance and matching parameters applied to every bound surface."""

    color: Tuple[float, float, float] = DEFAULT_HIGHLIGHT_COLOR
    opacity: float = 0.8
    intensity: float = 2.0
    tolerance: ToleranceWindow = field(default_factory=ToleranceWindow)

    def __post_init__(self):
        self.color = parse_color(self.color)
        if isinstance(self.tolerance, dict):
            self.tolerance = ToleranceWindow.from_dict(self.tolerance)
        if not 0.0 <= self.opacity <= 1.0:
            raise ValueError(f"Opacity must be in [0, 1], got {self.opacity}")
        if self.intensity < 0:
            raise ValueError(f"Intensity must be >= 0, got {self.intensity}")

    @property
    def hex_color(self) -> str:
        return "#" + "".join(f"{int(round(c * 255)):02x}" for c in self.color)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "color": self.hex_color,
            "opacity": self.opacity,
            "intensity": self.intensity,
            "tolerance": self.tolerance.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HighlightConfig":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class SurfaceHandle:
    """Opaque token identifying one surface binding."""

    id: int


@dataclass
class SurfaceBinding:
    surface: Surface
    original_material: Material
    program: ShaderProgram


class HighlightController:
    """
    Interactive color highlighting for textured surfaces.

    Usage:
        controller = HighlightController(on_stats=print)
        handle = controller.setup(surface)
        future = controller.highlight_color(HSVColor(0, 100, 100))
        ...
        controller.dispose()
    """

    def __init__(self, config: HighlightConfig = None, on_stats: StatsCallback = None,
                 options: AnalysisOptions = None,
                 dispatch: Callable[[Callable[[], None]], None] = None,
                 worker_factory: Callable[[], AnalysisWorker] = AnalysisWorker):
        self._config = config or HighlightConfig()
        self._options = options or AnalysisOptions()
        self._on_stats = on_stats
        self._dispatch = dispatch

        self._bindings: Dict[SurfaceHandle, SurfaceBinding] = {}
        self._handle_ids = itertools.count(1)

        self._lock = threading.Lock()
        self._generation = 0
        self._pending_generation: Optional[int] = None
        self._disposed = False

        self._worker = self._start_worker(worker_factory)

    def _start_worker(self, worker_factory) -> Optional[AnalysisWorker]:
        try:
            worker = worker_factory()
            logger.info("Color highlight worker initialized")
            return worker
        except Exception as e:
            logger.error(f"Failed to initialize analysis worker, highlighting disabled: {e}")
            return None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> HighlightConfig:
        return replace(self._config)

    @property
    def options(self) -> AnalysisOptions:
        return replace(self._options)

    @property
    def is_highlighting(self) -> bool:
        with self._lock:
            return len(self._bindings) > 0

    @property
    def is_processing(self) -> bool:
        return self._pending_generation is not None

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def has_worker(self) -> bool:
        return self._worker is not None

    @property
    def bound_handles(self) -> List[SurfaceHandle]:
        with self._lock:
            return list(self._bindings)

    def get_program(self, handle: SurfaceHandle) -> Optional[ShaderProgram]:
        with self._lock:
            binding = self._bindings.get(handle)
        return binding.program if binding else None

    # ------------------------------------------------------------------
    # Surface lifecycle
    # ------------------------------------------------------------------

    def setup(self, surface: Surface) -> Optional[SurfaceHandle]:
        """
        Bind a surface for highlighting.

        Returns:
            A handle for the binding, or None when the surface has no
            material, no primary texture, or a texture that cannot be read.
        """
        if self._disposed:
            logger.warning("Controller has been disposed, cannot setup highlighting")
            return None

        existing = self._find_handle(surface)
        if existing is not None:
            logger.info(f"Surface '{surface.name}' is already bound")
            return existing

        material = surface.material
        if material is None:
            logger.warning(f"Surface '{surface.name}' has no material, cannot setup highlighting")
            return None

        texture = material.primary_texture() if isinstance(material, Material) else None
        if texture is None:
            logger.warning(f"Surface '{surface.name}' has no texture, cannot setup highlighting")
            return None

        if not texture.is_rasterizable():
            logger.warning(
                f"Texture of surface '{surface.name}' has an unsupported image "
                f"({type(texture.image).__name__}), cannot setup highlighting"
            )
            return None

        program = create_highlight_program(
            texture,
            highlight_color=self._config.color,
            highlight_opacity=self._config.opacity,
            highlight_intensity=self._config.intensity,
        )

        with self._lock:
            handle = SurfaceHandle(next(self._handle_ids))
            self._bindings[handle] = SurfaceBinding(surface, material, program)
        surface.material = program

        logger.info(f"Highlighting set up for surface '{surface.name}' (handle {handle.id})")
        return handle

    def restore_original_materials(self) -> None:
        """Swap every bound surface back to its original material and unbind it."""
        self.clear_highlights()

        with self._lock:
            bindings = list(self._bindings.values())
            self._bindings.clear()

        for binding in bindings:
            binding.surface.material = binding.original_material

        if bindings:
            logger.info(f"Restored {len(bindings)} original material(s)")

    def _find_handle(self, surface: Surface) -> Optional[SurfaceHandle]:
        with self._lock:
            for handle, binding in self._bindings.items():
                if binding.surface is surface:
                    return handle
        return None

    def _snapshot(self, texture: Texture = None) -> List[SurfaceBinding]:
        """Current bindings, optionally only those showing ``texture``."""
        with self._lock:
            bindings = list(self._bindings.values())
        if texture is None:
            return bindings
        return [b for b in bindings if b.program.primary_texture() is texture]

    def dispose(self) -> None:
        """Restore materials and stop the worker. The controller is unusable afterwards."""
        self.restore_original_materials()

        if self._worker is not None:
            self._worker.terminate()
            self._worker = None

        self._disposed = True

    # ------------------------------------------------------------------
    # Highlighting
    # ------------------------------------------------------------------

    def highlight_color(self, target: HSVColor,
                        handle: SurfaceHandle = None) -> Optional["Future[Response]"]:
        """
        Start an analysis for ``target`` on a bound surface's texture.

        The resulting mask is applied to every bound surface showing that
        same texture, and to no other.

        Args:
            target: Color to highlight
            handle: Binding whose texture is analysed (default: first bound)

        Returns:
            Future resolving to the worker response once it has been handled,
            or None if no analysis could be started.
        """
        if self._disposed or self._worker is None:
            logger.warning("Analysis worker not available, ignoring highlight request")
            return None

        with self._lock:
            if handle is None:
                binding = next(iter(self._bindings.values()), None)
            else:
                binding = self._bindings.get(handle)

            if binding is not None:
                self._generation += 1
                generation = self._generation
                self._pending_generation = generation

        if binding is None:
            logger.warning("No textured surface available for highlighting")
            return None

        texture = binding.program.primary_texture()
        result: "Future[Response]" = Future()

        try:
            request = AnalyzeRequest(
                image_data=extract_pixels(texture),
                target_color=target,
                tolerance=self._config.tolerance,
                options=self._options,
                generation=generation,
            )
            worker_future = self._worker.post(request)
        except Exception as e:
            logger.error(f"Failed to start analysis: {e}")
            self._deliver(AnalysisError(error=str(e), generation=generation), texture, result)
            return result

        logger.debug(f"Posted analysis {generation} for target {target}")
        worker_future.add_done_callback(
            lambda f: self._on_worker_done(f, generation, texture, result)
        )
        return result

    def clear_highlights(self) -> None:
        """Disable highlighting on every bound surface and drop in-flight results."""
        with self._lock:
            self._generation += 1
            self._pending_generation = None

        for binding in self._snapshot():
            clear_program(binding.program)

        self._emit_stats(None)

    def update_config(self, **changes) -> HighlightConfig:
        """Merge changes into the config and push appearance to every bound program."""
        self._config = replace(self._config, **changes)

        for binding in self._snapshot():
            update_properties(
                binding.program,
                color=self._config.color,
                opacity=self._config.opacity,
                intensity=self._config.intensity,
            )
        return self.config

    def update_options(self, **changes) -> AnalysisOptions:
        self._options = replace(self._options, **changes)
        return self.options

    # ------------------------------------------------------------------
    # Response handling
    # ------------------------------------------------------------------

    def _on_worker_done(self, future: Future, generation: int, texture: Texture,
                        result: Future) -> None:
        if future.cancelled():
            response = AnalysisError(error="Analysis cancelled", generation=generation)
        else:
            response = future.result()
        self._deliver(response, texture, result)

    def _deliver(self, response: Response, texture: Texture, result: Future) -> None:
        if self._dispatch is not None:
            self._dispatch(lambda: self._handle_response(response, texture, result))
        else:
            self._handle_response(response, texture, result)

    def _handle_response(self, response: Response, texture: Texture, result: Future) -> None:
        try:
            with self._lock:
                is_current = response.generation == self._generation
                if is_current:
                    self._pending_generation = None

            if not is_current or self._disposed:
                logger.debug(f"Dropping stale response for analysis {response.generation}")
                return

            targets = self._snapshot(texture)

            if isinstance(response, AnalysisComplete):
                if self._apply_mask(response, targets):
                    self._emit_stats(HighlightStats(
                        matching_pixels=response.matching_pixels,
                        coverage=response.coverage,
                        bounding_box=response.bounding_box,
                    ))
            elif isinstance(response, AnalysisError):
                logger.error(f"Color analysis failed: {response.error}")
                self._clear_targets(targets)
        except Exception:
            logger.exception(f"Failed to apply analysis {response.generation}")
            self._clear_targets(self._snapshot(texture))
        finally:
            result.set_result(response)

    def _clear_targets(self, targets: List[SurfaceBinding]) -> None:
        for binding in targets:
            clear_program(binding.program)
        self._emit_stats(None)

    def _apply_mask(self, response: AnalysisComplete, targets: List[SurfaceBinding]) -> bool:
        mask = response.highlight_mask
        size = math.isqrt(mask.size)
        if size == 0 or size * size != mask.size:
            logger.error(f"Invalid mask data: {mask.size} entries is not a square")
            return False

        for binding in targets:
            update_mask(binding.program, mask, size, size)
            update_properties(
                binding.program,
                color=self._config.color,
                opacity=self._config.opacity,
                intensity=self._config.intensity,
            )

        logger.info(
            f"Applied highlight mask {size}x{size} with {response.matching_pixels} "
            f"matching pixels to {len(targets)} surface(s)"
        )
        return True

    def _emit_stats(self, stats: Optional[HighlightStats]) -> None:
        if self._on_stats is None:
            return
        try:
            self._on_stats(stats)
        except Exception:
            logger.exception("Stats callback raised")
