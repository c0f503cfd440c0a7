"""
Per-page processing: recognized text in, overlay placements out.

Stages, logged as they complete:
Rasterized → Binarized → SkewEstimated → GeometryReconciled → Placed.

Only recognition failures (after retries) are fatal for a page. Every
other stage degrades to angle 0 and unmatched lines.
"""

import logging
import math
from collections.abc import Callable

import cv2

from skewalign.services.debug_export import DebugImageSink
from skewalign.services.deskew.config import DeskewConfig
from skewalign.services.deskew.estimator import SkewEstimator
from skewalign.services.deskew.line_angle import build_candidates, quad_baseline_angle
from skewalign.services.deskew.local_model import LocalAngleModel
from skewalign.services.deskew.quad import rotate_quad
from skewalign.services.deskew.reconcile import reconcile
from skewalign.services.deskew.types import (
    AngleSample,
    Deadline,
    GeometryBlock,
    PageImage,
    PageResult,
    PageStage,
    Placement,
    RecognizedLine,
    TextCandidate,
)
from skewalign.services.geometry_detector import TextGeometryDetector
from skewalign.services.recognizer import TextRecognizer
from skewalign.utils.exceptions import RecognitionError

logger = logging.getLogger(__name__)


def downscale_image(image: PageImage, scale: float) -> PageImage:
    """Uniformly shrink a page image (at least 1×1)."""
    w = max(1, int(round(image.width * scale)))
    h = max(1, int(round(image.height * scale)))
    pixels = cv2.resize(image.pixels, (w, h), interpolation=cv2.INTER_AREA)
    return PageImage(width=w, height=h, pixels=pixels)


class PageProcessor:
    """Runs the full skew/reconcile pipeline on one page at a time.

    Holds no per-page state, so one instance can serve several worker
    threads as long as the recognizer and detector can too.
    """

    def __init__(
        self,
        config: DeskewConfig,
        recognizer: TextRecognizer,
        detector: TextGeometryDetector | None = None,
        log: Callable[[str], None] | None = None,
        debug_sink: DebugImageSink | None = None,
    ) -> None:
        self.config = config
        self.recognizer = recognizer
        self.detector = detector
        self._log = log
        self._debug_sink = debug_sink
        self.estimator = SkewEstimator(config, log=log, debug_sink=debug_sink)

    def _note(self, message: str) -> None:
        logger.info(message)
        if self._log is not None:
            self._log(message)

    def _stage(self, page_index: int, stage: PageStage) -> None:
        logger.debug(f"Page {page_index + 1}: {stage.value}")

    def recognize(self, image: PageImage, page_index: int = 0) -> list[RecognizedLine]:
        """Recognize text, retrying on progressively smaller images.

        Quads are normalized, so lines from a downscaled attempt need no
        rescaling.

        Raises:
            RecognitionError: When every attempt failed
        """
        attempts = self.config.recognition_retries + 1
        candidate = image
        last_error: RecognitionError | None = None

        for attempt in range(1, attempts + 1):
            try:
                return self.recognizer.recognize(candidate, page_index)
            except RecognitionError as e:
                last_error = e
                logger.warning(
                    f"Page {page_index + 1}: recognition attempt {attempt}/{attempts} "
                    f"failed at {candidate.width}x{candidate.height}: {e.reason or e}"
                )
                if attempt < attempts:
                    candidate = downscale_image(candidate, self.config.recognition_retry_scale)

        raise RecognitionError(
            page_index,
            reason=last_error.reason if last_error else None,
            attempts=attempts,
        ) from last_error

    def detect(self, image: PageImage, page_index: int = 0) -> list[GeometryBlock]:
        """Detect geometry rows; a failing detector just means no rows."""
        if self.detector is None:
            return []
        try:
            return self.detector.detect(image, page_index)
        except Exception as e:
            logger.warning(f"Page {page_index + 1}: geometry detection failed: {e}")
            return []

    def process(
        self,
        image: PageImage,
        page_index: int = 0,
        deadline: Deadline | None = None,
        timeout: float | None = None,
    ) -> PageResult:
        """Process one rasterized page.

        Args:
            image: Rasterized page
            page_index: 0-based page index
            deadline: Optional page deadline for the angle search
            timeout: Seconds allowed for the angle search when no
                ``deadline`` is given; the clock starts after recognition

        Returns:
            PageResult with one placement per recognized line
        """
        cfg = self.config
        w, h = image.width, image.height
        self._stage(page_index, PageStage.RASTERIZED)

        lines = self.recognize(image, page_index)
        candidates = build_candidates(lines, w, h, cfg)
        blocks = self.detect(image, page_index)
        self._stage(page_index, PageStage.BINARIZED)

        geometry_angles = [math.degrees(b.angle) for b in blocks]
        geometry_angles += [
            math.degrees(c.measured_angle) for c in candidates if c.measured_angle is not None
        ]
        if deadline is None:
            deadline = Deadline(timeout)
        skew = self.estimator.estimate(image, geometry_angles, deadline, page_index)
        self._stage(page_index, PageStage.SKEW_ESTIMATED)

        result = PageResult(page_index=page_index, width=w, height=h, skew=skew)
        # A cut-short search has correction 0; per-line reconciliation still runs.
        result.timed_out = skew.source == "timeout"
        global_angle = math.radians(skew.correction)
        samples = [
            AngleSample(c.center_y, c.measured_angle)
            for c in candidates
            if c.measured_angle is not None
        ]
        model = LocalAngleModel.build(samples, cfg.band_count, default=global_angle)
        reconciled = reconcile(candidates, blocks, model, cfg, global_angle=global_angle)
        self._stage(page_index, PageStage.GEOMETRY_RECONCILED)

        result.placements = [
            self._place(c, target, source, w, h)
            for c, target, source in zip(
                candidates, reconciled.target_angles, reconciled.sources, strict=True
            )
        ]
        result.matched = reconciled.matched
        result.unmatched = reconciled.unmatched

        local = reconciled.sources.count("local")
        self._note(
            f"Page {page_index + 1}: {len(candidates)} lines, {len(blocks)} geometry rows, "
            f"{result.matched} matched, {result.unmatched} fallback "
            f"({local} local, {result.unmatched - local} global)"
        )
        self._finish(result, image)
        return result

    def _place(
        self, candidate: TextCandidate, target: float, source: str, width: int, height: int
    ) -> Placement:
        current = quad_baseline_angle(candidate.quad, width, height)
        quad = rotate_quad(
            candidate.quad,
            target,
            current,
            width,
            height,
            self.config.min_rotation_delta_degrees,
        )
        return Placement(candidate.text, quad, target, source)

    def _finish(self, result: PageResult, image: PageImage) -> None:
        if self._debug_sink is not None:
            self._debug_sink.save_placements(result.page_index, image, result.placements)
        self._stage(result.page_index, PageStage.PLACED)
