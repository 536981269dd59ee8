"""
Flask API for Color Highlighting

Provides REST endpoints for uploading a texture, configuring the highlight,
running color analysis and fetching the resulting mask and preview.
"""

import base64
import logging
from concurrent.futures import TimeoutError as FutureTimeoutError

import cv2
import numpy as np
from flask import Blueprint, current_app, jsonify, request

from ..core import (
    AnalysisOptions,
    HighlightConfig,
    HighlightController,
    HSVColor,
    PixelBuffer,
    StandardMaterial,
    Surface,
    Texture,
    extract_palette,
    handle_request,
    rgb_to_hsv,
)
from ..core.shader import render_preview
from ..core.worker import AnalysisComplete, AnalysisError

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)

ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'bmp', 'tiff', 'tif'}
EXTENSION_KEY = 'colorhighlight'


class HighlightSession:
    """The controller and the single texture surface served by one app."""

    def __init__(self):
        self.last_stats = None
        self.controller = HighlightController(on_stats=self._record_stats)
        self.surface = None
        self.handle = None
        self.palette = []

    def _record_stats(self, stats):
        self.last_stats = stats

    def bind_texture(self, pixels: PixelBuffer):
        if self.surface is not None:
            self.controller.restore_original_materials()

        texture = Texture(pixels.pixels, name="uploaded")
        self.surface = Surface(name="texture", material=StandardMaterial(map=texture))
        self.handle = self.controller.setup(self.surface)
        self.palette = extract_palette(pixels)
        return self.handle


def init_session(app):
    app.extensions[EXTENSION_KEY] = HighlightSession()


def get_session() -> HighlightSession:
    return current_app.extensions[EXTENSION_KEY]


def allowed_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


def encode_image_base64(image: np.ndarray, format: str = '.png') -> str:
    """Encode numpy image to base64 string."""
    _, buffer = cv2.imencode(format, image)
    return base64.b64encode(buffer).decode('utf-8')


def read_uploaded_image() -> bytes:
    """Raw image bytes from a multipart 'file' or a JSON base64 'image'."""
    if 'file' in request.files:
        file = request.files['file']
        if file.filename == '':
            raise ValueError("No file selected")
        if not allowed_file(file.filename):
            raise ValueError("Invalid file type")
        return file.read()

    data = request.get_json(silent=True)
    if data and 'image' in data:
        try:
            return base64.b64decode(data['image'])
        except (ValueError, TypeError) as e:
            raise ValueError(f"Failed to decode image: {str(e)}")

    raise ValueError("No image provided")


def parse_target(data) -> HSVColor:
    """Target color from {"h","s","v"}, {"rgb": [r, g, b]} or {"hex": "#rrggbb"}."""
    if 'rgb' in data:
        r, g, b = (int(c) for c in data['rgb'])
        return rgb_to_hsv(r, g, b)
    if 'hex' in data:
        value = int(str(data['hex']).lstrip('#'), 16)
        return rgb_to_hsv((value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF)
    return HSVColor.from_dict(data)


@api.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    session = get_session()
    return jsonify({
        "status": "healthy",
        "version": "1.0.0",
        "worker": session.controller.has_worker,
    })


@api.route('/config', methods=['GET'])
def get_config():
    """Get current highlight configuration."""
    return jsonify(get_session().controller.config.to_dict())


@api.route('/config', methods=['POST'])
def set_config():
    """Update highlight configuration (partial updates allowed)."""
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "No JSON data provided"}), 400

    controller = get_session().controller
    try:
        merged = HighlightConfig.from_dict({**controller.config.to_dict(), **data})
    except (ValueError, TypeError, KeyError) as e:
        return jsonify({"error": str(e)}), 400

    config = controller.update_config(
        color=merged.color,
        opacity=merged.opacity,
        intensity=merged.intensity,
        tolerance=merged.tolerance,
    )
    return jsonify({"status": "success", "config": config.to_dict()})


@api.route('/config/reset', methods=['POST'])
def reset_config():
    """Reset highlight configuration to defaults."""
    defaults = HighlightConfig()
    config = get_session().controller.update_config(
        color=defaults.color,
        opacity=defaults.opacity,
        intensity=defaults.intensity,
        tolerance=defaults.tolerance,
    )
    return jsonify({"status": "success", "config": config.to_dict()})


@api.route('/options', methods=['GET'])
def get_options():
    """Get current analysis pipeline options."""
    return jsonify(get_session().controller.options.to_dict())


@api.route('/options', methods=['POST'])
def set_options():
    """Update analysis pipeline options."""
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "No JSON data provided"}), 400

    controller = get_session().controller
    try:
        merged = AnalysisOptions.from_dict({**controller.options.to_dict(), **data})
    except (ValueError, TypeError) as e:
        return jsonify({"error": str(e)}), 400

    options = controller.update_options(**merged.to_dict())
    return jsonify({"status": "success", "options": options.to_dict()})


@api.route('/options/reset', methods=['POST'])
def reset_options():
    """Reset analysis pipeline options to defaults."""
    options = get_session().controller.update_options(**AnalysisOptions().to_dict())
    return jsonify({"status": "success", "options": options.to_dict()})


@api.route('/texture', methods=['POST'])
def upload_texture():
    """Upload the texture to highlight and bind it to the session."""
    session = get_session()

    try:
        pixels = PixelBuffer.from_bytes(read_uploaded_image())
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    handle = session.bind_texture(pixels)
    if handle is None:
        return jsonify({"error": "Texture cannot be highlighted"}), 400

    return jsonify({
        "status": "success",
        "info": {
            "width": pixels.width,
            "height": pixels.height,
            "square": pixels.width == pixels.height,
        },
        "palette": [entry.to_dict() for entry in session.palette],
    })


@api.route('/palette', methods=['GET'])
def get_palette():
    """Get the dominant colors of the current texture."""
    session = get_session()
    if session.handle is None:
        return jsonify({"error": "No texture set"}), 400
    return jsonify({"palette": [entry.to_dict() for entry in session.palette]})


@api.route('/highlight', methods=['POST'])
def highlight():
    """Highlight regions of the current texture matching a target color."""
    session = get_session()
    if session.handle is None:
        return jsonify({"error": "No texture set. Upload a texture first."}), 400

    data = request.get_json(silent=True)
    if not data or 'target' not in data:
        return jsonify({"error": "No target color provided"}), 400

    try:
        target = parse_target(data['target'])
    except (ValueError, TypeError, KeyError) as e:
        return jsonify({"error": f"Invalid target color: {str(e)}"}), 400

    session.last_stats = None
    future = session.controller.highlight_color(target, session.handle)
    if future is None:
        return jsonify({"error": "Highlighting is not available"}), 503

    try:
        response = future.result(timeout=current_app.config['HIGHLIGHT_TIMEOUT'])
    except FutureTimeoutError:
        return jsonify({"error": "Analysis timed out"}), 504

    if isinstance(response, AnalysisError):
        return jsonify({"error": response.error}), 500
    if not isinstance(response, AnalysisComplete) or session.last_stats is None:
        return jsonify({"error": "Highlight could not be applied"}), 500

    program = session.controller.get_program(session.handle)
    mask = response.highlight_mask.reshape(response.height, response.width)
    preview = cv2.cvtColor(render_preview(program, lit=False), cv2.COLOR_RGBA2BGRA)

    return jsonify({
        "status": "success",
        "target": target.to_dict(),
        "stats": session.last_stats.to_dict(),
        "processing_time": round(response.processing_time, 4),
        "images": {
            "mask": encode_image_base64(mask),
            "preview": encode_image_base64(preview),
        },
    })


@api.route('/clear', methods=['POST'])
def clear():
    """Turn off highlighting, keeping the texture bound."""
    get_session().controller.clear_highlights()
    return jsonify({"status": "success"})


@api.route('/analyze', methods=['POST'])
def analyze_message():
    """Stateless worker contract: analyze/clear request in, response out."""
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "No JSON data provided"}), 400

    response = handle_request(data)
    status = 400 if isinstance(response, AnalysisError) else 200
    return jsonify(response.to_dict()), status
