# mediscan/config.py
import os
from typing import Tuple

from pydantic import BaseModel, ConfigDict

# ----- Remote (Gemini Vision) settings -----
GEMINI_API_URL = os.getenv(
    "MEDISCAN_GEMINI_API_URL",
    "https://generativelanguage.googleapis.com/v1beta/models/gemini-1.5-flash:generateContent",
)
GEMINI_API_KEY = os.getenv("MEDISCAN_GEMINI_API_KEY", "")
REMOTE_MAX_ATTEMPTS = int(os.getenv("MEDISCAN_REMOTE_MAX_ATTEMPTS", "3"))
REMOTE_BASE_DELAY = float(os.getenv("MEDISCAN_REMOTE_BASE_DELAY", "1.0"))
REMOTE_TIMEOUT = float(os.getenv("MEDISCAN_REMOTE_TIMEOUT", "60"))

# ----- Local analysis settings -----
CELL_SIZE = int(os.getenv("MEDISCAN_CELL_SIZE", "15"))
LOG_LEVEL = os.getenv("MEDISCAN_LOG_LEVEL", "INFO")

IMAGE_TYPE = "MRI Brain (Axial T2/FLAIR)"
BODY_REGION = "Central Nervous System - Brain"


class ScanConfig(BaseModel):
    """
    Empirical thresholds used by the region scanner and the report builder.

    None of these values carry clinical validation; they reproduce the
    reference heuristic and can be tuned per deployment.
    """
    model_config = ConfigDict(frozen=True)

    # region of interest
    roi_radius_ratio: float = 0.4
    organ_boundary_ratio: float = 0.9
    dark_region_ratio: float = 0.7
    central_region_ratio: float = 0.3

    # abnormality rules
    bright_lesion_brightness: float = 160
    bright_lesion_contrast: float = 20
    dark_tissue_brightness: float = 60
    high_contrast: float = 35

    # severity rules
    high_severity_contrast: float = 30
    moderate_severity_brightness: float = 150

    max_findings: int = 4

    # confidence ranges (percent) per severity
    high_confidence: Tuple[float, float] = (85, 95)
    moderate_confidence: Tuple[float, float] = (75, 90)
    low_confidence: Tuple[float, float] = (60, 80)

    # risk score
    high_risk_base: float = 85
    moderate_risk_base: float = 65
    low_risk_base: float = 35
    risk_per_finding: float = 8
    risk_noise: float = 15
    max_risk_score: int = 95
    critical_alert_threshold: int = 90


DEFAULT_CONFIG = ScanConfig()
