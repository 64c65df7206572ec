import numpy as np
import pytest
from PIL import Image

from mediscan.compositor import (
    BACKGROUND,
    SCAN_CAST,
    SCAN_CAST_OPACITY,
    SOURCE_OPACITY,
    TINT,
    BlendMode,
    blend,
    fill,
    overlays_for,
    render_heatmap,
)
from mediscan.errors import RenderError
from mediscan.schemas import Finding, Severity


def gray(size=(100, 100), value=128, mode="RGB"):
    return Image.new(mode, size, (value,) * len(mode))


def finding_at(severity, x=42.5, y=42.5):
    # cell size 15: the overlay is centered on (x + 7.5, y + 7.5)
    return Finding(type="t", location="l", severity=severity, confidence=80, description="d", x=x, y=y)


def expected_base_pixel(value):
    """Channel values of a plain (no findings) render of a uniform gray image."""
    out = []
    for bg, tint, cast in zip(BACKGROUND, TINT, SCAN_CAST):
        c = value * SOURCE_OPACITY + bg * (1 - SOURCE_OPACITY)
        c = c * (1 - SOURCE_OPACITY) + c * tint / 255.0 * SOURCE_OPACITY
        c = c * (1 - SCAN_CAST_OPACITY) + cast * SCAN_CAST_OPACITY
        out.append(round(c))
    return out


def test_render_without_findings_is_tinted_base():
    heatmap = render_heatmap(gray(), [])
    pixels = np.asarray(heatmap)
    assert heatmap.mode == "RGB"
    assert pixels[0, 0].tolist() == expected_base_pixel(128)
    assert np.all(pixels == pixels[0, 0])


def test_render_keeps_size_and_alpha_band():
    heatmap = render_heatmap(gray((64, 32), mode="RGBA"), [finding_at(Severity.LOW, 10, 10)])
    assert heatmap.size == (64, 32)
    assert heatmap.mode == "RGBA"
    assert np.all(np.asarray(heatmap)[..., 3] == 255)


def test_high_finding_brightens_its_center_only():
    base = np.asarray(render_heatmap(gray(), [])).astype(int)
    heat = np.asarray(render_heatmap(gray(), [finding_at(Severity.HIGH)])).astype(int)

    assert heat[50, 50].sum() > base[50, 50].sum() + 300
    # high radius is 0.08 * 100 * 2.0 * 1.8 = 28.8 px
    assert heat[0, 0].tolist() == base[0, 0].tolist()
    assert heat[99, 99].tolist() == base[99, 99].tolist()


def test_overlapping_findings_add_up():
    single = np.asarray(render_heatmap(gray(), [finding_at(Severity.LOW)])).astype(int)
    double = np.asarray(render_heatmap(gray(), [finding_at(Severity.LOW)] * 2)).astype(int)

    point = double[50, 55]
    assert np.all(point >= single[50, 55])
    assert point.sum() > single[50, 55].sum()


def test_render_does_not_return_input():
    source = gray()
    heatmap = render_heatmap(source, [])
    assert heatmap is not source
    assert not np.array_equal(np.asarray(heatmap), np.asarray(source))


def test_zero_size_canvas_raises_render_error():
    with pytest.raises(RenderError):
        render_heatmap(Image.new("RGB", (0, 10)), [])


@pytest.mark.parametrize("severity,radii", [
    (Severity.HIGH, [28.8, 4.8]),
    (Severity.MODERATE, [15.6]),
    (Severity.LOW, [8.0]),
])
def test_overlay_sizes_follow_severity(severity, radii):
    overlays = overlays_for(finding_at(severity, 10, 20), base_size=8.0, cell_size=15)
    assert [o.radius for o in overlays] == pytest.approx(radii)
    for overlay in overlays:
        assert (overlay.cx, overlay.cy) == (17.5, 27.5)
        assert overlay.mode is BlendMode.LIGHTER
        assert overlay.stops[0].offset == 0.0
        assert overlay.stops[-1].offset == 1.0


def test_blend_modes():
    canvas = np.full((2, 2, 3), 100.0)

    assert np.all(fill(canvas, (255, 255, 255), 1.0, BlendMode.MULTIPLY) == 100)
    assert np.all(fill(canvas, (0, 0, 0), 1.0, BlendMode.NORMAL) == 0)
    assert np.all(fill(canvas, (200, 200, 200), 1.0, BlendMode.LIGHTER) == 255)
    assert np.all(fill(canvas, (50, 50, 50), 0.5, BlendMode.LIGHTER) == 125)


def test_blend_returns_new_array():
    canvas = np.full((2, 2, 3), 10.0)
    out = blend(canvas, np.array([100.0, 100.0, 100.0]), np.float64(0.5), BlendMode.NORMAL)
    assert np.all(canvas == 10)
    assert np.all(out == 55)
