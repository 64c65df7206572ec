"""
Heatmap compositor.

Builds the false-color heatmap as a pure function of the source image and the
ranked findings. Every drawing step is an explicit operation carrying its own
blend mode, applied in order to a float RGB canvas.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple

import numpy as np
from PIL import Image

from mediscan.errors import RenderError
from mediscan.schemas import Finding, Severity

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]

BACKGROUND: RGB = (10, 25, 60)
SOURCE_OPACITY = 0.85
TINT: RGB = (50, 80, 150)
SCAN_CAST: RGB = (0, 40, 80)
SCAN_CAST_OPACITY = 0.15
BASE_SIZE_RATIO = 0.08
SIZE_MULTIPLIERS = {Severity.HIGH: 2.0, Severity.MODERATE: 1.5, Severity.LOW: 1.0}


class BlendMode(str, Enum):
    NORMAL = "source-over"
    MULTIPLY = "multiply"
    LIGHTER = "lighter"


@dataclass(frozen=True)
class GradientStop:
    offset: float
    color: RGB
    alpha: float


@dataclass(frozen=True)
class RadialOverlay:
    cx: float
    cy: float
    radius: float
    stops: Tuple[GradientStop, ...]
    mode: BlendMode = BlendMode.LIGHTER


def _stops(*stops) -> Tuple[GradientStop, ...]:
    return tuple(GradientStop(offset, (r, g, b), a) for offset, (r, g, b, a) in stops)


# (offset, rgba)
HIGH_GRADIENT = _stops(
    (0.0, (255, 255, 255, 1.0)),
    (0.05, (255, 255, 200, 0.98)),
    (0.15, (255, 200, 50, 0.95)),
    (0.35, (255, 100, 0, 0.9)),
    (0.6, (255, 0, 0, 0.8)),
    (0.8, (180, 0, 0, 0.5)),
    (1.0, (80, 0, 0, 0.1)),
)
HIGH_CORE_GRADIENT = _stops(
    (0.0, (255, 255, 255, 1.0)),
    (0.7, (255, 220, 100, 0.8)),
    (1.0, (255, 150, 0, 0.4)),
)
MODERATE_GRADIENT = _stops(
    (0.0, (255, 255, 150, 0.95)),
    (0.2, (255, 220, 0, 0.9)),
    (0.5, (255, 150, 0, 0.8)),
    (0.8, (220, 100, 0, 0.5)),
    (1.0, (150, 50, 0, 0.1)),
)
LOW_GRADIENT = _stops(
    (0.0, (255, 255, 100, 0.7)),
    (0.4, (255, 200, 50, 0.6)),
    (0.8, (200, 150, 0, 0.4)),
    (1.0, (150, 100, 0, 0.1)),
)


def blend(canvas: np.ndarray, color: np.ndarray, alpha: np.ndarray, mode: BlendMode) -> np.ndarray:
    """
    Composite `color` with coverage `alpha` onto an opaque canvas.

    `color` broadcasts against the (h, w, 3) canvas, `alpha` against (h, w, 1).
    Returns a new array.
    """
    if mode is BlendMode.NORMAL:
        out = color * alpha + canvas * (1 - alpha)
    elif mode is BlendMode.MULTIPLY:
        out = canvas * (1 - alpha) + (color * canvas / 255.0) * alpha
    elif mode is BlendMode.LIGHTER:
        out = canvas + color * alpha
    else:
        raise RenderError(f"Unsupported blend mode: {mode}")
    return np.clip(out, 0, 255)


def fill(canvas: np.ndarray, color: RGB, alpha: float = 1.0, mode: BlendMode = BlendMode.NORMAL) -> np.ndarray:
    return blend(canvas, np.asarray(color, dtype=np.float64), np.float64(alpha), mode)


def draw_radial(canvas: np.ndarray, overlay: RadialOverlay) -> np.ndarray:
    """Fill the disc of `overlay` with its radial gradient, sampled at pixel centers."""
    if overlay.radius <= 0:
        return canvas
    h, w = canvas.shape[:2]
    # only the disc's bounding window can change
    x0 = max(int(np.floor(overlay.cx - overlay.radius)), 0)
    x1 = min(int(np.ceil(overlay.cx + overlay.radius)) + 1, w)
    y0 = max(int(np.floor(overlay.cy - overlay.radius)), 0)
    y1 = min(int(np.ceil(overlay.cy + overlay.radius)) + 1, h)
    if x0 >= x1 or y0 >= y1:
        return canvas

    ys, xs = np.mgrid[y0:y1, x0:x1]
    dist = np.hypot(xs + 0.5 - overlay.cx, ys + 0.5 - overlay.cy)
    inside = dist <= overlay.radius
    t = dist / overlay.radius

    offsets = [s.offset for s in overlay.stops]
    color = np.stack(
        [np.interp(t, offsets, [s.color[channel] for s in overlay.stops]) for channel in range(3)],
        axis=-1,
    )
    alpha = np.interp(t, offsets, [s.alpha for s in overlay.stops]) * inside

    out = canvas.copy()
    out[y0:y1, x0:x1] = blend(canvas[y0:y1, x0:x1], color, alpha[..., None], overlay.mode)
    return out


def overlays_for(finding: Finding, base_size: float, cell_size: int) -> List[RadialOverlay]:
    """Heat gradients for one finding, sized and colored by its severity."""
    size = base_size * SIZE_MULTIPLIERS[finding.severity]
    cx = finding.x + cell_size / 2
    cy = finding.y + cell_size / 2

    if finding.severity is Severity.HIGH:
        return [
            RadialOverlay(cx, cy, size * 1.8, HIGH_GRADIENT),
            RadialOverlay(cx, cy, size * 0.3, HIGH_CORE_GRADIENT),
        ]
    if finding.severity is Severity.MODERATE:
        return [RadialOverlay(cx, cy, size * 1.3, MODERATE_GRADIENT)]
    return [RadialOverlay(cx, cy, size, LOW_GRADIENT)]


def source_layer(image: Image.Image) -> Tuple[np.ndarray, np.ndarray]:
    """RGB values and per-pixel coverage of the source image."""
    rgba = np.asarray(image.convert("RGBA"), dtype=np.float64)
    return rgba[..., :3], rgba[..., 3:] / 255.0


def render_heatmap(image: Image.Image, findings: Sequence[Finding], cell_size: int = 15) -> Image.Image:
    """
    Render the heatmap for `findings` over `image`.

    The result is 8-bit with the size of `image`. It is RGBA when the source
    has an alpha band, RGB otherwise.
    """
    width, height = image.size
    if width <= 0 or height <= 0:
        raise RenderError(f"Cannot render a {width}x{height} canvas")

    try:
        canvas = np.empty((height, width, 3), dtype=np.float64)
        canvas[...] = BACKGROUND

        # medical base layer
        color, coverage = source_layer(image)
        canvas = blend(canvas, color, coverage * SOURCE_OPACITY, BlendMode.NORMAL)
        canvas = fill(canvas, TINT, SOURCE_OPACITY, BlendMode.MULTIPLY)

        base_size = min(width, height) * BASE_SIZE_RATIO
        for finding in findings:
            for overlay in overlays_for(finding, base_size, cell_size):
                canvas = draw_radial(canvas, overlay)

        canvas = fill(canvas, SCAN_CAST, SCAN_CAST_OPACITY, BlendMode.NORMAL)
        pixels = np.round(canvas).astype(np.uint8)
    except (ValueError, TypeError, MemoryError) as e:
        raise RenderError(f"Heatmap compositing failed: {e}") from e

    heatmap = Image.fromarray(pixels)
    if "A" in image.getbands():
        heatmap.putalpha(255)
    logger.debug("Rendered %d findings on %dx%d canvas", len(findings), width, height)
    return heatmap
