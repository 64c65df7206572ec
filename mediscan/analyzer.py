"""
Local heuristic analysis: region scanner followed by the heatmap compositor.
"""
import logging
import random
from typing import Optional, Tuple

from PIL import Image

from mediscan.compositor import render_heatmap
from mediscan.config import CELL_SIZE, DEFAULT_CONFIG, ScanConfig
from mediscan.errors import ImageDecodeError
from mediscan.scanner import scan
from mediscan.schemas import AnalysisReport
from mediscan.utils import load_image, to_8bit

logger = logging.getLogger(__name__)


def analyze(
    image: Image.Image,
    roi_cell_size_px: int = CELL_SIZE,
    rng: Optional[random.Random] = None,
    config: Optional[ScanConfig] = None,
) -> Tuple[Image.Image, AnalysisReport]:
    """
    Scan `image` for abnormal regions and render the heatmap.

    Args:
        image: decoded PIL image, width and height > 0
        roi_cell_size_px: side of the square scan cells, in pixels
        rng: random source for phrase selection, confidence and risk noise.
             Pass random.Random(seed) for reproducible output.
        config: scanner thresholds, DEFAULT_CONFIG when omitted

    Returns:
        (heatmap image, report). Both are built from the same findings list.
        The heatmap is 8-bit: high bit-depth input is rescaled before scanning.
    """
    if image is None or image.width <= 0 or image.height <= 0:
        size = "missing" if image is None else f"{image.width}x{image.height}"
        raise ImageDecodeError(f"Cannot analyze image with zero dimension ({size})")
    if roi_cell_size_px <= 0:
        raise ValueError(f"roi_cell_size_px must be positive, got {roi_cell_size_px}")

    rng = rng or random.Random()
    config = config or DEFAULT_CONFIG

    logger.info("Analyzing %dx%d %s image", image.width, image.height, image.mode)
    image = to_8bit(image)
    report = scan(image, roi_cell_size_px, rng, config)
    heatmap = render_heatmap(image, report.detected_anomalies, roi_cell_size_px)
    logger.info("Analysis complete: %d findings, risk score %d",
                len(report.detected_anomalies), report.overall_risk_score)
    return heatmap, report


def analyze_bytes(image_bytes: bytes, **kwargs) -> Tuple[Image.Image, AnalysisReport]:
    """Decode raw image bytes and run analyze() on them."""
    return analyze(load_image(image_bytes), **kwargs)
