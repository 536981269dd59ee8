"""
Highlight Shader

GLSL program and uniform set that blend a match mask over the original
texture without touching the source material. The host renderer compiles
``vertex_shader``/``fragment_shader`` and binds ``uniforms`` each frame; this
module owns the uniform values and their updates.

``render_preview`` evaluates the fragment stage on the CPU over texture space
so results can be inspected without a GPU.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
import logging

import cv2
import numpy as np

from .surface import Material, Texture, extract_pixels

logger = logging.getLogger(__name__)

Color = Tuple[float, float, float]

DEFAULT_HIGHLIGHT_COLOR: Color = (1.0, 0x6B / 255.0, 0x6B / 255.0)  # #ff6b6b
EMPTY_MASK_SIZE = 256
MASK_THRESHOLD = 0.5
GLOW_STRENGTH = 0.1
SPECULAR_EXPONENT = 32.0
LIGHT_DIRECTION = (1.0, 1.0, 1.0)


HIGHLIGHT_VERTEX_SHADER = """
varying vec2 vUv;
varying vec3 vWorldPosition;
varying vec3 vNormal;

void main() {
  vUv = uv;
  vNormal = normalize(normalMatrix * normal);

  vec4 worldPosition = modelMatrix * vec4(position, 1.0);
  vWorldPosition = worldPosition.xyz;

  gl_Position = projectionMatrix * modelViewMatrix * vec4(position, 1.0);
}
"""

HIGHLIGHT_FRAGMENT_SHADER = """
uniform sampler2D originalTexture;
uniform sampler2D highlightMask;
uniform vec3 highlightColor;
uniform float highlightOpacity;
uniform float highlightIntensity;
uniform bool enableHighlight;
uniform vec3 baseColor;
uniform float roughness;
uniform float metalness;

varying vec2 vUv;
varying vec3 vWorldPosition;
varying vec3 vNormal;

vec3 calculateLighting(vec3 albedo, vec3 normal, vec3 lightDir, vec3 viewDir) {
  vec3 halfVector = normalize(lightDir + viewDir);
  float NdotL = max(dot(normal, lightDir), 0.0);
  float NdotH = max(dot(normal, halfVector), 0.0);

  vec3 diffuse = albedo * NdotL;
  float specular = pow(NdotH, 32.0) * (1.0 - roughness);

  return diffuse + vec3(specular);
}

void main() {
  vec4 originalColor = texture2D(originalTexture, vUv);
  vec3 finalColor = originalColor.rgb * baseColor;

  if (enableHighlight) {
    float maskValue = texture2D(highlightMask, vUv).r;

    if (maskValue > 0.5) {
      vec3 highlight = highlightColor * highlightIntensity;
      finalColor = mix(finalColor, highlight, highlightOpacity * maskValue);
      // glow keeps low-opacity highlights visible
      finalColor += highlightColor * 0.1 * maskValue;
    }
  }

  vec3 normal = normalize(vNormal);
  vec3 lightDir = normalize(vec3(1.0, 1.0, 1.0));
  vec3 viewDir = normalize(cameraPosition - vWorldPosition);

  finalColor = calculateLighting(finalColor, normal, lightDir, viewDir);

  gl_FragColor = vec4(finalColor, originalColor.a);
}
"""


@dataclass
class Uniform:
    value: Any


class ShaderProgram(Material):
    """A highlight material: shader sources plus their uniform values."""

    texture_slot = "originalTexture"

    def __init__(self, uniforms: Dict[str, Uniform], name: str = "highlight"):
        self.vertex_shader = HIGHLIGHT_VERTEX_SHADER
        self.fragment_shader = HIGHLIGHT_FRAGMENT_SHADER
        self.uniforms = uniforms
        self.name = name
        self.transparent = True
        self.double_sided = True
        self.needs_update = True
        self.disposed = False

    def primary_texture(self) -> Optional[Texture]:
        uniform = self.uniforms.get(self.texture_slot)
        return uniform.value if uniform and isinstance(uniform.value, Texture) else None

    def dispose(self) -> None:
        self.disposed = True

    def __repr__(self):
        enabled = self.uniforms["enableHighlight"].value
        return f"ShaderProgram(name={self.name!r}, enableHighlight={enabled})"


def _empty_mask_texture() -> Texture:
    return Texture(np.zeros((EMPTY_MASK_SIZE, EMPTY_MASK_SIZE), dtype=np.uint8), name="highlightMask")


def create_highlight_program(original_texture: Texture,
                             highlight_color: Color = DEFAULT_HIGHLIGHT_COLOR,
                             highlight_opacity: float = 0.7,
                             highlight_intensity: float = 1.5,
                             base_color: Color = (1.0, 1.0, 1.0),
                             roughness: float = 0.5,
                             metalness: float = 0.0) -> ShaderProgram:
    """
    Build a highlight program around an existing texture.

    Highlighting starts disabled with an all-zero mask, so the surface looks
    exactly as before until a mask is uploaded.
    """
    uniforms = {
        "originalTexture": Uniform(original_texture),
        "highlightMask": Uniform(_empty_mask_texture()),
        "highlightColor": Uniform(tuple(highlight_color)),
        "highlightOpacity": Uniform(float(highlight_opacity)),
        "highlightIntensity": Uniform(float(highlight_intensity)),
        "enableHighlight": Uniform(False),
        "baseColor": Uniform(tuple(base_color)),
        "roughness": Uniform(float(roughness)),
        "metalness": Uniform(float(metalness)),
    }
    return ShaderProgram(uniforms)


def update_mask(program: ShaderProgram, mask: np.ndarray, width: int, height: int) -> None:
    """Upload a new square mask texture and enable highlighting."""
    if width != height:
        raise ValueError(f"Highlight mask must be square, got {width}x{height}")
    if mask.size != width * height:
        raise ValueError(f"Mask length {mask.size} does not match {width}x{height}")

    image = np.ascontiguousarray(mask, dtype=np.uint8).reshape(height, width).copy()
    program.uniforms["highlightMask"].value = Texture(image, name="highlightMask")
    program.uniforms["enableHighlight"].value = True
    program.needs_update = True


def clear(program: ShaderProgram) -> None:
    """Disable highlighting; the mask stays uploaded for cheap re-enabling."""
    program.uniforms["enableHighlight"].value = False
    program.needs_update = True


def update_properties(program: ShaderProgram, color: Optional[Color] = None,
                      opacity: Optional[float] = None,
                      intensity: Optional[float] = None) -> None:
    if color is not None:
        program.uniforms["highlightColor"].value = tuple(color)
    if opacity is not None:
        program.uniforms["highlightOpacity"].value = float(opacity)
    if intensity is not None:
        program.uniforms["highlightIntensity"].value = float(intensity)
    program.needs_update = True


def _normalize(vector) -> np.ndarray:
    v = np.asarray(vector, dtype=np.float64)
    return v / np.linalg.norm(v)


def render_preview(program: ShaderProgram, lit: bool = True,
                   normal=(0.0, 0.0, 1.0), view_dir=(0.0, 0.0, 1.0)) -> np.ndarray:
    """
    Evaluate the fragment stage for every texel of the original texture.

    Args:
        program: Highlight program to evaluate
        lit: Apply the Lambert + specular term
        normal: Surface normal used for every texel
        view_dir: Direction towards the camera

    Returns:
        RGBA uint8 image the size of the original texture
    """
    u = program.uniforms
    source = extract_pixels(u["originalTexture"].value)
    original = source.pixels.astype(np.float64) / 255.0

    final = original[..., :3] * np.asarray(u["baseColor"].value)

    if u["enableHighlight"].value:
        mask_image = u["highlightMask"].value.image
        if mask_image.shape != (source.height, source.width):
            # nearest texel lookup at the same UV
            mask_image = cv2.resize(mask_image, (source.width, source.height),
                                    interpolation=cv2.INTER_NEAREST)
        mask = mask_image.astype(np.float64)[..., None] / 255.0

        color = np.asarray(u["highlightColor"].value)
        highlight = color * u["highlightIntensity"].value
        blend = u["highlightOpacity"].value * mask
        blended = final * (1.0 - blend) + highlight * blend + color * GLOW_STRENGTH * mask
        final = np.where(mask > MASK_THRESHOLD, blended, final)

    if lit:
        n = _normalize(normal)
        light = _normalize(LIGHT_DIRECTION)
        half = _normalize(light + _normalize(view_dir))
        n_dot_l = max(float(n @ light), 0.0)
        n_dot_h = max(float(n @ half), 0.0)
        specular = n_dot_h ** SPECULAR_EXPONENT * (1.0 - u["roughness"].value)
        final = final * n_dot_l + specular

    rgba = np.empty_like(source.pixels)
    rgba[..., :3] = np.clip(np.rint(final * 255.0), 0, 255).astype(np.uint8)
    rgba[..., 3] = source.pixels[..., 3]
    return rgba
