"""
MediScan analyzer: heuristic anomaly scan and heatmap rendering for medical images.
"""

from .analyzer import analyze, analyze_bytes
from .errors import (
    ImageDecodeError,
    MediScanError,
    RemoteAnalysisError,
    RemoteNotFoundError,
    RemoteRetryableError,
    RenderError,
)
from .schemas import AnalysisReport, Finding, Severity

__all__ = [
    "analyze",
    "analyze_bytes",
    "AnalysisReport",
    "Finding",
    "Severity",
    "MediScanError",
    "ImageDecodeError",
    "RenderError",
    "RemoteAnalysisError",
    "RemoteRetryableError",
    "RemoteNotFoundError",
]
