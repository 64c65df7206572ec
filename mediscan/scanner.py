"""
Region scanner.

Partitions the circular organ area of an image into square cells, computes
per-cell brightness/contrast, flags abnormal cells, labels them with an
anatomical region and a severity, and turns the most significant ones into
findings plus a risk score and recommendations.
"""
import logging
import math
import random
from dataclasses import dataclass, replace
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, TypeVar

import numpy as np
from PIL import Image

from mediscan.config import BODY_REGION, DEFAULT_CONFIG, IMAGE_TYPE, ScanConfig
from mediscan.schemas import AnalysisReport, Finding, Severity

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ----- Report vocabulary -----
ANOMALY_TYPES = {
    Severity.HIGH: ["Hyperintense lesion", "Possible hemorrhage", "Mass-like abnormality"],
    Severity.MODERATE: ["Signal intensity abnormality", "Tissue irregularity", "Possible small vessel disease"],
    Severity.LOW: ["Minor signal variation", "Structural asymmetry", "Benign finding"],
}

DESCRIPTIONS = {
    Severity.HIGH: "Area of abnormal signal intensity requiring urgent evaluation and possible intervention",
    Severity.MODERATE: "Abnormal finding that should be monitored and may require follow-up imaging",
    Severity.LOW: "Minor finding likely within normal variation but worth noting",
}

URGENT_RECOMMENDATIONS = [
    "URGENT: Immediate radiologist review required",
    "Consider emergency neurology consultation",
    "Recommend contrast-enhanced MRI",
    "Clinical correlation with symptoms essential",
]
FOLLOW_UP_RECOMMENDATIONS = [
    "Radiologist review recommended within 24-48 hours",
    "Consider follow-up imaging in 3-6 months",
    "Monitor for neurological symptoms",
]
ROUTINE_RECOMMENDATIONS = [
    "Routine radiologist review",
    "Annual follow-up imaging recommended",
    "Findings likely within normal limits",
]

CENTRAL_REGION = "Central/Deep structures"


@dataclass(frozen=True)
class Roi:
    """Circular region of interest treated as the organ boundary."""

    cx: float
    cy: float
    radius: float

    @classmethod
    def for_size(cls, width: int, height: int, ratio: float) -> "Roi":
        return cls(width / 2, height / 2, min(width, height) * ratio)


@dataclass(frozen=True)
class ScanCell:
    x: float
    y: float
    size: int
    brightness: float
    contrast: float
    distance: float
    region: str = ""
    severity: Optional[Severity] = None

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.size / 2, self.y + self.size / 2


def brightness_map(image: Image.Image) -> np.ndarray:
    """Per-pixel mean of the R, G and B channels as a float (h, w) array."""
    rgb = np.asarray(image.convert("RGB"), dtype=np.float64)
    return rgb.mean(axis=2)


def cell_statistics(bmap: np.ndarray, x: int, y: int, size: int) -> Optional[Tuple[float, float]]:
    """
    Mean brightness and mean diagonal contrast of one cell.

    Contrast accumulates |b(x, y) - b(x-1, y-1)| over the pixels that have a
    diagonal predecessor inside the cell, and is divided by the full pixel
    count. Returns None when the cell has no pixel inside the image.
    """
    x1, y1 = x + size, y + size
    if x1 <= 0 or y1 <= 0:
        return None
    block = bmap[max(y, 0):y1, max(x, 0):x1]
    if block.size == 0:
        return None
    brightness = float(block.mean())
    contrast = float(np.abs(block[1:, 1:] - block[:-1, :-1]).sum()) / block.size
    return brightness, contrast


def iter_cells(bmap: np.ndarray, roi: Roi, cell_size: int, config: ScanConfig = DEFAULT_CONFIG) -> Iterator[ScanCell]:
    """Yield a ScanCell for every grid cell whose center lies inside the organ boundary."""
    boundary = roi.radius * config.organ_boundary_ratio
    start_x = math.floor(roi.cx - roi.radius)
    start_y = math.floor(roi.cy - roi.radius)

    for y in range(start_y, math.ceil(roi.cy + roi.radius), cell_size):
        for x in range(start_x, math.ceil(roi.cx + roi.radius), cell_size):
            center_x, center_y = x + cell_size / 2, y + cell_size / 2
            distance = math.hypot(center_x - roi.cx, center_y - roi.cy)
            if distance > boundary:
                continue
            stats = cell_statistics(bmap, x, y, cell_size)
            if stats is None:
                continue
            brightness, contrast = stats
            yield ScanCell(x, y, cell_size, brightness, contrast, distance)


def is_abnormal(cell: ScanCell, roi: Roi, config: ScanConfig = DEFAULT_CONFIG) -> bool:
    bright_lesion = (cell.brightness > config.bright_lesion_brightness
                     and cell.contrast > config.bright_lesion_contrast)
    dark_tissue = (cell.brightness < config.dark_tissue_brightness
                   and cell.distance < roi.radius * config.dark_region_ratio)
    return bright_lesion or dark_tissue or cell.contrast > config.high_contrast


def severity_for(cell: ScanCell, config: ScanConfig = DEFAULT_CONFIG) -> Severity:
    if cell.contrast > config.high_severity_contrast:
        return Severity.HIGH
    if cell.brightness > config.moderate_severity_brightness:
        return Severity.MODERATE
    return Severity.LOW


def region_for(cell: ScanCell, roi: Roi, config: ScanConfig = DEFAULT_CONFIG) -> str:
    if cell.distance < roi.radius * config.central_region_ratio:
        return CENTRAL_REGION
    x, y = cell.center
    side = "Left" if x < roi.cx else "Right"
    lobe = "frontal lobe" if y < roi.cy else "parietal/temporal"
    return f"{side} {lobe}"


def find_abnormal_cells(image: Image.Image, roi: Roi, cell_size: int,
                        config: ScanConfig = DEFAULT_CONFIG) -> List[ScanCell]:
    """Scan the organ area and return the abnormal cells, labelled, in grid order."""
    bmap = brightness_map(image)
    abnormal = []
    scanned = 0
    for cell in iter_cells(bmap, roi, cell_size, config):
        scanned += 1
        if is_abnormal(cell, roi, config):
            abnormal.append(replace(cell,
                                    region=region_for(cell, roi, config),
                                    severity=severity_for(cell, config)))
    logger.debug("Scanned %d cells, %d abnormal", scanned, len(abnormal))
    return abnormal


def rank_by_severity(items: Sequence[T], severity_of: Callable[[T], Severity], limit: int) -> List[T]:
    """Stable sort, most severe first, truncated to `limit` items."""
    return sorted(items, key=lambda item: -severity_of(item).weight)[:limit]


def fallback_cells(roi: Roi, cell_size: int) -> List[ScanCell]:
    """The two placeholder regions reported when nothing abnormal was detected."""
    def at(x, y, brightness, region, severity):
        distance = math.hypot(x + cell_size / 2 - roi.cx, y + cell_size / 2 - roi.cy)
        return ScanCell(x, y, cell_size, brightness, 0.0, distance, region, severity)

    return [
        at(roi.cx + roi.radius * 0.4, roi.cy - roi.radius * 0.2, 180, "Right frontal lobe", Severity.MODERATE),
        at(roi.cx - roi.radius * 0.3, roi.cy + roi.radius * 0.3, 160, "Left temporal lobe", Severity.LOW),
    ]


def confidence_range(severity: Severity, config: ScanConfig = DEFAULT_CONFIG) -> Tuple[float, float]:
    return {
        Severity.HIGH: config.high_confidence,
        Severity.MODERATE: config.moderate_confidence,
        Severity.LOW: config.low_confidence,
    }[severity]


def build_finding(cell: ScanCell, rng: random.Random, config: ScanConfig = DEFAULT_CONFIG) -> Finding:
    low, high = confidence_range(cell.severity, config)
    return Finding(
        type=rng.choice(ANOMALY_TYPES[cell.severity]),
        location=cell.region,
        severity=cell.severity,
        confidence=round(low + rng.random() * (high - low)),
        description=DESCRIPTIONS[cell.severity],
        x=cell.x,
        y=cell.y,
    )


def risk_score(findings: Sequence[Finding], rng: random.Random, config: ScanConfig = DEFAULT_CONFIG) -> int:
    severities = {f.severity for f in findings}
    if Severity.HIGH in severities:
        base = config.high_risk_base
    elif Severity.MODERATE in severities:
        base = config.moderate_risk_base
    else:
        base = config.low_risk_base
    score = base + len(findings) * config.risk_per_finding + rng.random() * config.risk_noise
    return int(min(max(round(score), 0), config.max_risk_score))


def recommendations_for(has_high: bool, has_moderate: bool) -> List[str]:
    if has_high:
        return list(URGENT_RECOMMENDATIONS)
    if has_moderate:
        return list(FOLLOW_UP_RECOMMENDATIONS)
    return list(ROUTINE_RECOMMENDATIONS)


def build_report(findings: List[Finding], scored: Sequence[Finding], rng: random.Random,
                 config: ScanConfig = DEFAULT_CONFIG) -> AnalysisReport:
    """
    Assemble the report for `findings`.

    `scored` are the findings that drive the risk score and the
    recommendations. It is empty when `findings` are the fallback
    placeholders, so an image with nothing detected is scored as routine.
    """
    score = risk_score(scored, rng, config)
    severities = {f.severity for f in scored}
    return AnalysisReport(
        detected_anomalies=findings,
        overall_risk_score=score,
        recommendations=recommendations_for(Severity.HIGH in severities, Severity.MODERATE in severities),
        image_type=IMAGE_TYPE,
        body_region=BODY_REGION,
        critical_alert=score > config.critical_alert_threshold,
    )


def scan(image: Image.Image, cell_size: int, rng: random.Random,
         config: ScanConfig = DEFAULT_CONFIG) -> AnalysisReport:
    """Run the full scanner on a decoded image and return its report."""
    roi = Roi.for_size(image.width, image.height, config.roi_radius_ratio)
    abnormal = find_abnormal_cells(image, roi, cell_size, config)

    if abnormal:
        selected = rank_by_severity(abnormal, lambda c: c.severity, config.max_findings)
    else:
        logger.info("No abnormal cells detected, reporting fallback regions")
        selected = fallback_cells(roi, cell_size)

    findings = [build_finding(cell, rng, config) for cell in selected]
    # fallback placeholders are not scored, so their moderate entry never lifts the risk to 65
    return build_report(findings, findings if abnormal else [], rng, config)
