"""Tests for the per-page pipeline (recognition retries, timeout, placements)."""

import math
import time

import numpy as np
import pytest

from skewalign.services.debug_export import DebugImageSink, PngDebugSink
from skewalign.services.deskew.config import DeskewConfig
from skewalign.services.deskew.line_angle import quad_baseline_angle
from skewalign.services.deskew.types import (
    AngleEstimate,
    Deadline,
    PageImage,
    RecognizedLine,
)
from skewalign.services.geometry_detector import (
    ConnectedComponentDetector,
    TextGeometryDetector,
)
from skewalign.services.page_pipeline import PageProcessor, downscale_image
from skewalign.services.recognizer import TextRecognizer
from skewalign.utils.exceptions import RecognitionError

# ── Helpers ──────────────────────────────────────────────────────────


class _Expired(Deadline):
    def __init__(self):
        super().__init__(None)

    def expired(self) -> bool:
        return True


class _FakeRecognizer(TextRecognizer):
    """Returns fixed lines, optionally failing the first ``failures`` calls."""

    def __init__(self, lines, failures: int = 0):
        self.lines = lines
        self.failures = failures
        self.sizes = []

    def recognize(self, image, page_index=0):
        self.sizes.append((image.width, image.height))
        if len(self.sizes) <= self.failures:
            raise RecognitionError(page_index, reason="engine crashed")
        return list(self.lines)


class _SlowRecognizer(_FakeRecognizer):
    def __init__(self, lines, delay: float):
        super().__init__(lines)
        self.delay = delay

    def recognize(self, image, page_index=0):
        time.sleep(self.delay)
        return super().recognize(image, page_index)


class _DeadlineRecorder:
    """Stands in for SkewEstimator and records the time left at the call."""

    def __init__(self):
        self.remaining = []

    def estimate(self, image, geometry_angles=None, deadline=None, page_index=0):
        self.remaining.append(deadline.remaining())
        return AngleEstimate.indeterminate("recorded")


class _BrokenDetector(TextGeometryDetector):
    def detect(self, image, page_index=0):
        raise RuntimeError("detector exploded")


class _RecordingSink(DebugImageSink):
    def __init__(self):
        self.calls = []

    def save_mask(self, page_index, mask):
        self.calls.append("mask")

    def save_placements(self, page_index, image, placements):
        self.calls.append(("placements", len(placements)))


def _box(x0, y0, x1, y1):
    return ((x0, y0), (x1, y0), (x1, y1), (x0, y1))


class TestRecognitionRetry:
    """Tests for PageProcessor.recognize."""

    def test_retry_on_smaller_image(self, make_text_page):
        page = make_text_page(0.0)
        recognizer = _FakeRecognizer(page.recognized_lines(), failures=1)
        processor = PageProcessor(DeskewConfig(), recognizer)
        lines = processor.recognize(page.image)
        assert len(lines) == 12
        assert recognizer.sizes == [(1000, 800), (700, 560)]

    def test_gives_up_after_all_attempts(self, make_text_page):
        recognizer = _FakeRecognizer([], failures=10)
        processor = PageProcessor(DeskewConfig(recognition_retries=2), recognizer)
        with pytest.raises(RecognitionError) as exc_info:
            processor.recognize(make_text_page().image, page_index=4)
        assert exc_info.value.attempts == 3
        assert exc_info.value.page_index == 4
        assert len(recognizer.sizes) == 3

    def test_no_retries(self, make_text_page):
        recognizer = _FakeRecognizer([], failures=1)
        processor = PageProcessor(DeskewConfig(recognition_retries=0), recognizer)
        with pytest.raises(RecognitionError):
            processor.recognize(make_text_page().image)
        assert len(recognizer.sizes) == 1


class TestProcess:
    """Tests for PageProcessor.process."""

    def test_skewed_page_end_to_end(self, make_text_page):
        page = make_text_page(-4.0)
        config = DeskewConfig()
        processor = PageProcessor(
            config,
            _FakeRecognizer(page.recognized_lines()),
            detector=ConnectedComponentDetector(config),
        )
        result = processor.process(page.image, page_index=2)

        assert result.page_index == 2
        assert result.skew.correction == pytest.approx(-4.0, abs=0.2)
        assert len(result.placements) == 12
        assert result.matched >= 11
        assert result.matched + result.unmatched == 12
        for placement in result.placements:
            assert math.degrees(placement.angle) == pytest.approx(-4.0, abs=0.5)
            baseline = quad_baseline_angle(placement.quad, page.image.width, page.image.height)
            assert math.degrees(baseline) == pytest.approx(-4.0, abs=0.5)

    def test_without_detector_uses_global_angle(self, make_text_page):
        page = make_text_page(-3.0)
        processor = PageProcessor(DeskewConfig(), _FakeRecognizer(page.recognized_lines()))
        result = processor.process(page.image)
        assert result.matched == 0
        assert {p.source for p in result.placements} == {"global"}
        for placement in result.placements:
            assert placement.angle == pytest.approx(math.radians(result.skew.correction))

    def test_measured_lines_feed_local_model(self, make_text_page):
        page = make_text_page(-3.0)
        lines = page.recognized_lines(axis_aligned=False)
        processor = PageProcessor(DeskewConfig(), _FakeRecognizer(lines))
        result = processor.process(page.image)
        assert {p.source for p in result.placements} == {"local"}
        for placement in result.placements:
            assert math.degrees(placement.angle) == pytest.approx(-3.0, abs=0.3)

    def test_timeout_still_reconciles_with_geometry(self, make_text_page):
        page = make_text_page(-4.0)
        config = DeskewConfig()
        processor = PageProcessor(
            config,
            _FakeRecognizer(page.recognized_lines()),
            detector=ConnectedComponentDetector(config),
        )
        result = processor.process(page.image, deadline=_Expired())

        assert result.timed_out
        assert result.skew.source == "timeout"
        assert result.skew.correction == 0.0
        assert result.matched >= 11
        assert "geometry" in {p.source for p in result.placements}
        for placement in result.placements:
            if placement.source == "geometry":
                assert math.degrees(placement.angle) == pytest.approx(-4.0, abs=0.5)

    def test_timeout_keeps_local_model(self, make_text_page):
        page = make_text_page(-3.0)
        lines = page.recognized_lines(axis_aligned=False)
        processor = PageProcessor(DeskewConfig(), _FakeRecognizer(lines))
        result = processor.process(page.image, deadline=_Expired())
        assert result.timed_out
        assert {p.source for p in result.placements} == {"local"}
        for placement in result.placements:
            assert math.degrees(placement.angle) == pytest.approx(-3.0, abs=0.3)

    def test_timeout_clock_starts_after_recognition(self, make_text_page):
        page = make_text_page(0.0)
        processor = PageProcessor(
            DeskewConfig(), _SlowRecognizer(page.recognized_lines(), delay=0.3)
        )
        estimator = _DeadlineRecorder()
        processor.estimator = estimator
        result = processor.process(page.image, timeout=0.2)
        assert not result.timed_out
        (remaining,) = estimator.remaining
        assert remaining > 0.1

    def test_detector_failure_degrades(self, make_text_page):
        page = make_text_page(-2.0)
        processor = PageProcessor(
            DeskewConfig(), _FakeRecognizer(page.recognized_lines()), detector=_BrokenDetector()
        )
        result = processor.process(page.image)
        assert result.matched == 0
        assert len(result.placements) == 12

    def test_no_text(self, blank_page):
        result = PageProcessor(DeskewConfig(), _FakeRecognizer([])).process(blank_page)
        assert result.placements == []
        assert not result.skew.is_estimated

    def test_blank_lines_skipped(self, blank_page):
        lines = [
            RecognizedLine("", _box(0.1, 0.5, 0.4, 0.55)),
            RecognizedLine("kept", _box(0.1, 0.3, 0.4, 0.35)),
        ]
        result = PageProcessor(DeskewConfig(), _FakeRecognizer(lines)).process(blank_page)
        assert [p.text for p in result.placements] == ["kept"]

    def test_log_and_debug_sinks(self, make_text_page):
        page = make_text_page(1.0)
        messages = []
        sink = _RecordingSink()
        processor = PageProcessor(
            DeskewConfig(),
            _FakeRecognizer(page.recognized_lines()),
            log=messages.append,
            debug_sink=sink,
        )
        processor.process(page.image)
        assert any("matched" in m for m in messages)
        assert sink.calls == ["mask", ("placements", 12)]


class TestDownscaleImage:
    """Tests for downscale_image."""

    def test_scale(self):
        image = PageImage.from_array(np.zeros((100, 200), dtype=np.uint8))
        small = downscale_image(image, 0.5)
        assert (small.width, small.height) == (100, 50)
        assert small.pixels.shape == (50, 100)

    def test_never_empty(self):
        image = PageImage.from_array(np.zeros((2, 2), dtype=np.uint8))
        small = downscale_image(image, 0.01)
        assert (small.width, small.height) == (1, 1)


class TestPngDebugSink:
    """Tests for PngDebugSink."""

    def test_writes_debug_images(self, tmp_path, make_text_page):
        page = make_text_page(-2.0)
        config = DeskewConfig()
        processor = PageProcessor(
            config,
            _FakeRecognizer(page.recognized_lines()),
            detector=ConnectedComponentDetector(config),
            debug_sink=PngDebugSink(tmp_path / "debug"),
        )
        processor.process(page.image)
        names = sorted(p.name for p in (tmp_path / "debug").iterdir())
        assert names == ["page_0001_mask.png", "page_0001_placements.png"]
