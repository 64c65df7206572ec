from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"

    @property
    def weight(self) -> int:
        return SEVERITY_WEIGHTS[self]


SEVERITY_WEIGHTS = {Severity.HIGH: 3, Severity.MODERATE: 2, Severity.LOW: 1}


class Finding(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    location: str
    severity: Severity
    confidence: int = Field(ge=0, le=100)
    description: str
    x: float  # top-left of the scan cell the finding comes from
    y: float


class AnalysisReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    detected_anomalies: List[Finding]
    overall_risk_score: int = Field(ge=0, le=100)
    recommendations: List[str]
    image_type: str
    body_region: str
    critical_alert: bool = False


class HeatmapResponse(BaseModel):
    heatmap_data_uri: str
    analysis: AnalysisReport
    engine: str
    width: int
    height: int
    generation_explanation: str
