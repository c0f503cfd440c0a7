"""Tests for global skew estimation, its fallbacks and clamps."""

import cv2
import numpy as np
import pytest

from skewalign.services.debug_export import DebugImageSink
from skewalign.services.deskew import estimator as estimator_module
from skewalign.services.deskew.binarize import binarize
from skewalign.services.deskew.config import DeskewConfig
from skewalign.services.deskew.estimator import (
    SkewEstimator,
    clamp_deskew,
    downscale_for_estimation,
    geometry_fallback_angle,
)
from skewalign.services.deskew.projection import ProjectionResult, estimate_projection_angle
from skewalign.services.deskew.types import AngleEstimate, Band, Deadline

# ── Helpers ──────────────────────────────────────────────────────────


class _Expired(Deadline):
    def __init__(self):
        super().__init__(None)

    def expired(self) -> bool:
        return True


def _make_ruled_page(angle: float = 3.0) -> np.ndarray:
    """Tilted text rows above a block of full-width horizontal rules.

    The rules dominate the whole-page projection at 0°, while every band
    holding text still sees the tilt. Each text row stays inside its band.
    """
    page = np.full((800, 1000), 255, dtype=np.uint8)
    slope = np.tan(np.radians(angle))
    for band in range(6):
        for offset in (30, 70):
            yc = band * 100 + offset
            for x0 in range(250, 750, 55):
                x1 = x0 + 40
                y0, y1 = yc - (x0 - 500) * slope, yc - (x1 - 500) * slope
                quad = np.array(
                    [[x0, y0 - 6], [x1, y1 - 6], [x1, y1 + 6], [x0, y0 + 6]]
                )
                cv2.fillPoly(page, [np.round(quad).astype(np.int32)], 0)
    for y in range(600, 796, 12):
        page[y : y + 6, 50:950] = 0
    return page


def _fake_projection(angle: float, score: float):
    def fake(mask, config, padding=None, deadline=None):
        return ProjectionResult(angle=angle, score=score, trials=1)

    return fake


def _fake_bands(angles: list[float]):
    def fake(mask, config, deadline=None):
        return [Band(i, 0, 1, 1000.0, a, empty=False) for i, a in enumerate(angles)]

    return fake


class TestSkewEstimator:
    """Tests for SkewEstimator.estimate."""

    def test_recovers_synthetic_skew(self, make_text_page):
        page = make_text_page(-4.0)
        estimate = SkewEstimator().estimate(page.image)
        assert estimate.is_estimated
        assert estimate.source == "projection"
        assert estimate.angle == pytest.approx(-4.0, abs=0.2)
        assert estimate.correction == pytest.approx(estimate.angle)

    def test_straight_page_needs_no_correction(self, make_text_page):
        estimate = SkewEstimator().estimate(make_text_page(0.0).image)
        assert estimate.correction == 0.0

    def test_blank_page_is_indeterminate(self, blank_page):
        estimate = SkewEstimator().estimate(blank_page)
        assert not estimate.is_estimated
        assert estimate.correction == 0.0
        assert "ink" in estimate.reason

    def test_accepts_raw_arrays(self, make_text_page):
        page = make_text_page(2.0)
        estimate = SkewEstimator().estimate(page.image.pixels)
        assert estimate.angle == pytest.approx(2.0, abs=0.2)

    def test_expired_deadline_times_out(self, make_text_page):
        estimate = SkewEstimator().estimate(make_text_page(3.0).image, deadline=_Expired())
        assert not estimate.is_estimated
        assert estimate.source == "timeout"
        assert estimate.correction == 0.0

    def test_debug_sink_receives_mask(self, make_text_page):
        class _MaskSink(DebugImageSink):
            def __init__(self):
                self.shapes = []

            def save_mask(self, page_index, mask):
                self.shapes.append(mask.shape)

        sink = _MaskSink()
        SkewEstimator(debug_sink=sink).estimate(make_text_page(1.0).image, page_index=1)
        assert sink.shapes == [(800, 1000)]

    def test_log_sink_receives_threshold_line(self, make_text_page):
        lines = []
        SkewEstimator(log=lines.append).estimate(make_text_page(1.0).image)
        assert any("threshold=" in line for line in lines)

    def test_band_median_recovers_skew_hidden_from_projection(self):
        page = _make_ruled_page(3.0)
        config = DeskewConfig()
        mask, _ = binarize(page)
        projection = estimate_projection_angle(mask, config)
        assert abs(projection.angle) <= config.near_zero_degrees

        estimate = SkewEstimator(config).estimate(page)

        assert estimate.source == "band_median"
        assert estimate.correction == pytest.approx(3.0, abs=0.4)

    def test_band_median_overrides_near_zero(self, make_text_page, monkeypatch):
        monkeypatch.setattr(estimator_module, "estimate_projection_angle", _fake_projection(0.05, 10.0))
        monkeypatch.setattr(estimator_module, "sample_band_angles", _fake_bands([1.0] * 8))
        estimate = SkewEstimator().estimate(make_text_page().image)
        assert estimate.source == "band_median"
        assert estimate.correction == pytest.approx(1.0)

    def test_insignificant_band_median_keeps_projection(self, make_text_page, monkeypatch):
        monkeypatch.setattr(estimator_module, "estimate_projection_angle", _fake_projection(0.05, 10.0))
        monkeypatch.setattr(estimator_module, "sample_band_angles", _fake_bands([0.2] * 8))
        estimate = SkewEstimator().estimate(make_text_page().image)
        assert estimate.source == "projection"
        # 0.05° is below the minimum deskew.
        assert estimate.correction == 0.0

    def test_band_median_disabled(self, make_text_page, monkeypatch):
        monkeypatch.setattr(estimator_module, "estimate_projection_angle", _fake_projection(0.05, 10.0))

        def fail(*args, **kwargs):
            raise AssertionError("bands must not be sampled")

        monkeypatch.setattr(estimator_module, "sample_band_angles", fail)
        config = DeskewConfig(enable_band_median=False)
        assert SkewEstimator(config).estimate(make_text_page().image).source == "projection"

    def test_geometry_fallback_when_projection_flat(self, make_text_page, monkeypatch):
        monkeypatch.setattr(estimator_module, "estimate_projection_angle", _fake_projection(0.0, 0.0))
        estimate = SkewEstimator().estimate(make_text_page().image, geometry_angles=[2.0, 2.1, 1.9])
        assert estimate.source == "geometry"
        assert estimate.correction == pytest.approx(2.0)

    def test_implausible_angle_rejected(self, make_text_page, monkeypatch):
        monkeypatch.setattr(estimator_module, "estimate_projection_angle", _fake_projection(7.5, 3.0))
        config = DeskewConfig(max_deskew_degrees=5.0)
        estimate = SkewEstimator(config).estimate(make_text_page().image)
        assert estimate.angle == 7.5
        assert estimate.correction == 0.0
        assert "rejected" in estimate.reason


class TestGeometryFallback:
    """Tests for geometry_fallback_angle."""

    def test_median(self):
        estimate = geometry_fallback_angle([1.0, 3.0, 2.0, 2.5], 3, 0.01)
        assert estimate.angle == pytest.approx(2.25)

    def test_too_few(self):
        assert not geometry_fallback_angle([1.0, 2.0], 3, 0.01).is_estimated

    def test_flat_angles_rejected(self):
        assert not geometry_fallback_angle([0.0, 0.0, 0.0], 3, 0.01).is_estimated

    def test_none(self):
        assert not geometry_fallback_angle(None, 3, 0.01).is_estimated


class TestClampDeskew:
    """Tests for clamp_deskew."""

    def test_small_angle_not_corrected(self):
        result = clamp_deskew(AngleEstimate.estimated(0.05, "projection"), 0.1, 10.0)
        assert result.angle == 0.05
        assert result.correction == 0.0

    def test_large_angle_rejected(self):
        result = clamp_deskew(AngleEstimate.estimated(-12.0, "projection"), 0.1, 10.0)
        assert result.correction == 0.0

    def test_in_range_kept(self):
        result = clamp_deskew(AngleEstimate.estimated(-3.0, "projection"), 0.1, 10.0)
        assert result.correction == -3.0

    def test_boundaries_inclusive(self):
        assert clamp_deskew(AngleEstimate.estimated(0.1, "p"), 0.1, 10.0).correction == 0.1
        assert clamp_deskew(AngleEstimate.estimated(10.0, "p"), 0.1, 10.0).correction == 10.0

    def test_indeterminate_passthrough(self):
        result = clamp_deskew(AngleEstimate.indeterminate("no ink"), 0.1, 10.0)
        assert not result.is_estimated
        assert result.correction == 0.0


class TestDownscale:
    """Tests for downscale_for_estimation."""

    def test_large_image_shrinks(self):
        out = downscale_for_estimation(np.zeros((1000, 4000), dtype=np.uint8), 1600)
        assert out.shape == (400, 1600)

    def test_small_image_untouched(self):
        gray = np.zeros((100, 200), dtype=np.uint8)
        assert downscale_for_estimation(gray, 1600) is gray

    def test_disabled(self):
        gray = np.zeros((3000, 3000), dtype=np.uint8)
        assert downscale_for_estimation(gray, 0) is gray
