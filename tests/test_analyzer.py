import io
import threading
import time

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from mediscan import main
from mediscan.errors import RemoteNotFoundError
from mediscan.main import app

client = TestClient(app)


def image_bytes(fmt="PNG", mode="RGB", size=(120, 100), color=128):
    img = Image.new(mode, size, color if mode == "L" else (color,) * len(mode))
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def test_health_check():
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_analyze_endpoint():
    response = client.post(
        "/analyze",
        files={"file": ("scan.png", image_bytes(), "image/png")},
        data={"seed": "4"},
    )
    assert response.status_code == 200
    data = response.json()
    # Check required fields
    assert data["engine"] == "heuristic"
    assert data["width"] == 120
    assert data["height"] == 100
    assert data["heatmap_data_uri"].startswith("data:image/png;base64,")
    analysis = data["analysis"]
    assert 1 <= len(analysis["detected_anomalies"]) <= 4
    assert 0 <= analysis["overall_risk_score"] <= 95
    assert analysis["recommendations"]
    assert analysis["image_type"]
    assert analysis["body_region"]
    for finding in analysis["detected_anomalies"]:
        assert finding["severity"] in ("low", "moderate", "high")
        assert 0 <= finding["confidence"] <= 100


def test_analyze_endpoint_is_reproducible_with_seed():
    payload = image_bytes()
    first = client.post("/analyze", files={"file": ("a.png", payload, "image/png")}, data={"seed": "11"})
    second = client.post("/analyze", files={"file": ("a.png", payload, "image/png")}, data={"seed": "11"})
    assert first.json() == second.json()


def test_analyze_endpoint_keeps_jpeg_container():
    response = client.post("/analyze", files={"file": ("scan.jpg", image_bytes("JPEG"), "image/jpeg")})
    assert response.status_code == 200
    assert response.json()["heatmap_data_uri"].startswith("data:image/jpeg;base64,")


def test_analyze_endpoint_rejects_corrupt_upload():
    response = client.post("/analyze", files={"file": ("scan.png", b"not an image", "image/png")})
    assert response.status_code == 400
    assert "decode" in response.json()["detail"].lower()


def test_analyze_endpoint_rejects_non_positive_cell_size():
    response = client.post(
        "/analyze",
        files={"file": ("scan.png", image_bytes(), "image/png")},
        data={"cell_size": "0"},
    )
    assert response.status_code == 422


def test_remote_endpoint_falls_back_to_heuristic(monkeypatch):
    def failing_remote(image, description):
        raise RemoteNotFoundError("model not found", 404)

    monkeypatch.setattr(main, "analyze_remote", failing_remote)
    response = client.post(
        "/analyze/remote",
        files={"file": ("scan.png", image_bytes(), "image/png")},
        data={"description": "axial brain MRI"},
    )
    assert response.status_code == 200
    assert response.json()["engine"] == "heuristic"


def test_remote_endpoint_without_fallback_reports_bad_gateway(monkeypatch):
    def failing_remote(image, description):
        raise RemoteNotFoundError("model not found", 404)

    monkeypatch.setattr(main, "analyze_remote", failing_remote)
    response = client.post(
        "/analyze/remote",
        files={"file": ("scan.png", image_bytes(), "image/png")},
        data={"description": "axial brain MRI", "fallback": "false"},
    )
    assert response.status_code == 502
    assert response.json()["detail"] == "model not found"


@pytest.mark.parametrize("mode", ["RGB", "RGBA", "L"])
def test_analyze_endpoint_preserves_dimensions(mode):
    response = client.post(
        "/analyze",
        files={"file": ("scan.png", image_bytes(mode=mode, size=(64, 48)), "image/png")},
    )
    assert response.status_code == 200
    data = response.json()
    assert (data["width"], data["height"]) == (64, 48)


def test_slow_remote_analysis_does_not_stall_other_requests(monkeypatch):
    started = threading.Event()
    release = threading.Event()

    def slow_remote(image, description):
        started.set()
        release.wait(timeout=5)
        raise RemoteNotFoundError("model not found", 404)

    monkeypatch.setattr(main, "analyze_remote", slow_remote)

    with TestClient(app) as concurrent_client:
        def post_remote():
            concurrent_client.post(
                "/analyze/remote",
                files={"file": ("scan.png", image_bytes(), "image/png")},
                data={"fallback": "false"},
            )

        worker = threading.Thread(target=post_remote)
        worker.start()
        try:
            assert started.wait(timeout=5)
            begin = time.monotonic()
            response = concurrent_client.get("/")
            elapsed = time.monotonic() - begin
        finally:
            release.set()
            worker.join(timeout=10)

    assert response.status_code == 200
    assert elapsed < 2.0
