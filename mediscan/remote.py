"""
Remote analysis through the Gemini Vision API.

analyze_remote() returns the same (heatmap, report) shape as
mediscan.analyzer.analyze(), so the two are interchangeable for callers. The
model returns findings with normalized centers; the heatmap itself is
rendered locally by the compositor.
"""
import base64
import io
import json
import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

import requests
from PIL import Image
from pydantic import BaseModel, Field, ValidationError

from mediscan import config
from mediscan.compositor import render_heatmap
from mediscan.errors import (
    RemoteAnalysisError,
    RemoteNotFoundError,
    RemoteRetryableError,
)
from mediscan.scanner import Roi, build_finding, fallback_cells, rank_by_severity
from mediscan.schemas import AnalysisReport, Finding, Severity
from mediscan.utils import to_8bit

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROMPT = (
    "You are an expert radiologist AI that performs comprehensive medical image analysis. "
    "Identify the type of scan, the body region examined and any visible abnormalities, "
    "lesions or pathological findings in THIS image. Do not generate generic or random "
    "findings; if the image appears normal, return an empty list of anomalies.\n"
    "Return strictly a JSON object with keys: "
    "detected_anomalies (list of objects with keys type, location, "
    "severity (low/moderate/high), confidence (0-100), description, "
    "center_x and center_y (anomaly center as a fraction 0-1 of image width/height)), "
    "overall_risk_score (0-100), recommendations (list of short strings), "
    "image_type, body_region.\n"
    "Description: {description}"
)


class RemoteFinding(BaseModel):
    type: str
    location: str
    severity: Severity
    confidence: float = Field(ge=0, le=100)
    description: str
    center_x: float = Field(0.5, ge=0, le=1)
    center_y: float = Field(0.5, ge=0, le=1)


class RemoteAnalysis(BaseModel):
    detected_anomalies: List[RemoteFinding] = []
    overall_risk_score: float = Field(ge=0, le=100)
    recommendations: List[str] = []
    image_type: str = "Unknown"
    body_region: str = "Unknown"


def error_for_response(status_code: int, body: str) -> RemoteAnalysisError:
    """Map an HTTP failure to the remote error type that decides retrying."""
    message = f"Remote analysis failed with HTTP {status_code}: {body[:200]}"
    lowered = body.lower()
    if status_code == 404 or "not found" in lowered:
        return RemoteNotFoundError(message, status_code)
    if status_code in (429, 503) or "overloaded" in lowered or "rate limit" in lowered:
        return RemoteRetryableError(message, status_code)
    return RemoteAnalysisError(message, status_code)


def retry_with_backoff(
    fn: Callable[[], T],
    max_attempts: int = config.REMOTE_MAX_ATTEMPTS,
    base_delay: float = config.REMOTE_BASE_DELAY,
    sleep: Callable[[float], None] = time.sleep,
    rng: Optional[random.Random] = None,
) -> T:
    """
    Call `fn`, retrying RemoteRetryableError with exponential backoff and jitter.

    Delay before attempt n+1 is base_delay * 2**(n-1) plus up to one second of
    jitter. Any other error, or the last failed attempt, propagates.
    """
    rng = rng or random.Random()
    for attempt in range(1, max_attempts + 1):
        try:
            return fn()
        except RemoteRetryableError as e:
            if attempt == max_attempts:
                raise
            delay = base_delay * 2 ** (attempt - 1) + rng.random()
            logger.warning("Attempt %d failed (%s), retrying in %.1fs", attempt, e, delay)
            sleep(delay)
    raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")


def extract_json(text: str) -> Dict[str, Any]:
    """Parse the first {...} object embedded in a model reply."""
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        raise RemoteAnalysisError(f"No JSON object in model reply: {text[:200]}")
    try:
        return json.loads(text[start:end])
    except json.JSONDecodeError as e:
        raise RemoteAnalysisError(f"Failed to parse model reply: {e}") from e


def call_gemini(
    image: Image.Image,
    description: str,
    api_key: str,
    session: Optional[requests.Session] = None,
    timeout: float = config.REMOTE_TIMEOUT,
) -> Dict[str, Any]:
    """Call Gemini Vision API once and return the structured JSON it produced."""
    buffered = io.BytesIO()
    to_8bit(image).convert("RGB").save(buffered, format="PNG")
    img_base64 = base64.b64encode(buffered.getvalue()).decode("utf-8")

    payload = {
        "contents": [
            {
                "parts": [
                    {"text": PROMPT.format(description=description or "No description provided")},
                    {"inline_data": {"mime_type": "image/png", "data": img_base64}},
                ]
            }
        ]
    }

    http = session or requests.Session()
    try:
        response = http.post(
            config.GEMINI_API_URL,
            params={"key": api_key},
            json=payload,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )
    except requests.RequestException as e:
        raise RemoteAnalysisError(f"Remote analysis request failed: {e}") from e

    if not response.ok:
        raise error_for_response(response.status_code, response.text)

    try:
        result = response.json()
        text = result["candidates"][0]["content"]["parts"][0]["text"]
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise RemoteAnalysisError(f"Unexpected Gemini response: {response.text[:200]}") from e
    return extract_json(text)


def to_report(analysis: RemoteAnalysis, width: int, height: int, cell_size: int,
              rng: Optional[random.Random] = None) -> AnalysisReport:
    """
    Convert the model's answer into a ranked AnalysisReport placed on the image grid.

    A reply without anomalies gets the scanner's two fallback regions, so the
    heatmap always has something to show. The model's risk score and
    recommendations are kept as returned.
    """
    findings = [
        Finding(
            type=f.type,
            location=f.location,
            severity=f.severity,
            confidence=round(f.confidence),
            description=f.description,
            x=f.center_x * width - cell_size / 2,
            y=f.center_y * height - cell_size / 2,
        )
        for f in analysis.detected_anomalies
    ]
    if not findings:
        logger.info("Model reported no anomalies, using fallback regions")
        roi = Roi.for_size(width, height, config.DEFAULT_CONFIG.roi_radius_ratio)
        rng = rng or random.Random()
        findings = [build_finding(cell, rng) for cell in fallback_cells(roi, cell_size)]
    findings = rank_by_severity(findings, lambda f: f.severity, config.DEFAULT_CONFIG.max_findings)
    score = round(analysis.overall_risk_score)
    return AnalysisReport(
        detected_anomalies=findings,
        overall_risk_score=score,
        recommendations=analysis.recommendations,
        image_type=analysis.image_type,
        body_region=analysis.body_region,
        critical_alert=score > config.DEFAULT_CONFIG.critical_alert_threshold,
    )


def analyze_remote(
    image: Image.Image,
    description: str,
    api_key: Optional[str] = None,
    session: Optional[requests.Session] = None,
    cell_size: int = config.CELL_SIZE,
    max_attempts: int = config.REMOTE_MAX_ATTEMPTS,
    base_delay: float = config.REMOTE_BASE_DELAY,
    sleep: Callable[[float], None] = time.sleep,
    rng: Optional[random.Random] = None,
) -> Tuple[Image.Image, AnalysisReport]:
    """Remote counterpart of analyze(): (heatmap image, report) for `image`."""
    api_key = api_key or config.GEMINI_API_KEY
    if not api_key:
        raise RemoteAnalysisError("No Gemini API key configured (MEDISCAN_GEMINI_API_KEY)")

    logger.info("Using Gemini Vision API for analysis.")
    raw = retry_with_backoff(
        lambda: call_gemini(image, description, api_key, session=session),
        max_attempts=max_attempts,
        base_delay=base_delay,
        sleep=sleep,
    )
    try:
        analysis = RemoteAnalysis.model_validate(raw)
    except ValidationError as e:
        raise RemoteAnalysisError(f"Model reply does not match the report schema: {e}") from e

    report = to_report(analysis, image.width, image.height, cell_size, rng)
    heatmap = render_heatmap(to_8bit(image), report.detected_anomalies, cell_size)
    return heatmap, report
