"""
Per-line angle measurement for recognized text.

A recognizer's quad is often axis-aligned even when the text is tilted,
so the angle of a line is measured from the centers of its characters
(or sub-ranges) when those are available. The estimate is a weighted
median of pairwise slopes, which tolerates a few misplaced characters
far better than a least-squares fit.
"""

import logging
import math
from collections.abc import Sequence

import numpy as np

from skewalign.constants import MIN_ROBUST_POINTS
from skewalign.services.deskew.config import DeskewConfig
from skewalign.services.deskew.types import (
    Point,
    Quad,
    Rect,
    RecognizedLine,
    TextCandidate,
    as_quad,
    bounded_angle,
)

logger = logging.getLogger(__name__)


def weighted_median(values: np.ndarray, weights: np.ndarray) -> float:
    """Lower weighted median: first value whose cumulative weight reaches half."""
    order = np.argsort(values, kind="stable")
    cumulative = np.cumsum(weights[order])
    index = int(np.searchsorted(cumulative, cumulative[-1] / 2.0))
    return float(values[order][min(index, len(order) - 1)])


def _least_squares_angle(xs: np.ndarray, ys: np.ndarray) -> float | None:
    if len(xs) < 2 or float(np.ptp(xs)) <= 1e-9:
        return None
    slope, _ = np.polyfit(xs, ys, 1)
    return bounded_angle(math.atan(float(slope)))


def robust_slope_angle(
    points: Sequence[Point],
    min_dx: float,
    max_pair_weight: float,
    min_points: int = MIN_ROBUST_POINTS,
) -> float | None:
    """Robust line angle through a set of points.

    Every pair of points more than ``min_dx`` apart horizontally
    contributes its slope, weighted by ``min(|dx|, max_pair_weight)`` so
    that the widest pairs cannot dominate. With fewer than ``min_points``
    points, or no usable pair, an ordinary least-squares fit is used.

    Args:
        points: (x, y) points in an isotropic, y-up frame
        min_dx: Minimum horizontal separation of a pair
        max_pair_weight: Weight cap of a single pair
        min_points: Points needed for pairwise sampling

    Returns:
        Angle in radians bounded to ±45°, or None when no slope is defined
    """
    if len(points) < 2:
        return None
    arr = np.asarray(points, dtype=np.float64)
    xs, ys = arr[:, 0], arr[:, 1]

    if len(arr) < min_points:
        return _least_squares_angle(xs, ys)

    i, j = np.triu_indices(len(arr), k=1)
    dx = xs[j] - xs[i]
    dy = ys[j] - ys[i]
    usable = np.abs(dx) > min_dx
    if not np.any(usable):
        return _least_squares_angle(xs, ys)

    slopes = dy[usable] / dx[usable]
    weights = np.minimum(np.abs(dx[usable]), max_pair_weight)
    return bounded_angle(math.atan(weighted_median(slopes, weights)))


def _to_pixels(point: Point, width: int, height: int) -> Point:
    return point[0] * width, point[1] * height


def quad_baseline_angle(quad: Quad, width: int, height: int) -> float:
    """Angle (radians, y-up) of the bottom-left to bottom-right edge.

    Measured in pixel units so that non-square pages do not distort it.
    """
    (x0, y0), (x1, y1) = _to_pixels(quad[0], width, height), _to_pixels(quad[1], width, height)
    return math.atan2(y1 - y0, x1 - x0)


def quad_top_angle(quad: Quad, width: int, height: int) -> float:
    (x0, y0), (x1, y1) = _to_pixels(quad[3], width, height), _to_pixels(quad[2], width, height)
    return math.atan2(y1 - y0, x1 - x0)


def is_axis_aligned(quad: Quad, width: int, height: int, tolerance_deg: float) -> bool:
    """True when both horizontal edges of a quad are level within tolerance."""
    limit = math.radians(tolerance_deg)
    return (
        abs(quad_baseline_angle(quad, width, height)) <= limit
        and abs(quad_top_angle(quad, width, height)) <= limit
    )


def quad_center(quad: Quad) -> Point:
    return (
        sum(p[0] for p in quad) / 4.0,
        sum(p[1] for p in quad) / 4.0,
    )


def measure_line_angle(
    line: RecognizedLine, width: int, height: int, config: DeskewConfig
) -> tuple[float | None, bool]:
    """Measure one recognized line.

    Returns:
        (angle in radians or None, axis_aligned flag of the line quad)
    """
    quad = line.quad
    aligned = is_axis_aligned(quad, width, height, config.axis_aligned_tolerance_degrees)

    if len(line.char_quads) >= 2:
        centers = [_to_pixels(quad_center(q), width, height) for q in line.char_quads]
        angle = robust_slope_angle(
            centers,
            min_dx=config.pair_min_dx * width,
            max_pair_weight=config.pair_max_weight * width,
        )
        if angle is not None:
            return angle, aligned

    if aligned:
        return None, True
    return bounded_angle(quad_baseline_angle(quad, width, height)), False


def build_candidates(
    lines: Sequence[RecognizedLine],
    width: int,
    height: int,
    config: DeskewConfig,
) -> list[TextCandidate]:
    """Turn recognized lines into reconciliation candidates.

    Lines with blank text are dropped. Candidate indices follow the
    order of the kept lines.
    """
    candidates: list[TextCandidate] = []
    for line in lines:
        text = line.text.strip()
        if not text:
            continue
        quad = as_quad(line.quad)
        angle, aligned = measure_line_angle(
            RecognizedLine(text, quad, line.confidence, line.char_quads), width, height, config
        )
        bounds = Rect.from_quad(quad)
        candidates.append(
            TextCandidate(
                index=len(candidates),
                text=text,
                quad=quad,
                bounds=bounds,
                center_y=bounds.center[1],
                measured_angle=angle,
                axis_aligned=aligned,
                confidence=line.confidence,
            )
        )

    measured = sum(1 for c in candidates if c.measured_angle is not None)
    logger.debug(f"Built {len(candidates)} candidates, {measured} with a measured angle")
    return candidates
