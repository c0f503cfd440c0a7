"""
Projection-profile angle search.

A Radon-like estimator: the ink mask is de-rotated by each candidate
angle and scored by the peakiness of its horizontal projection
(``variance(row_counts) / mean(row_counts)``). Text lines that are
exactly horizontal concentrate ink into few rows, which maximizes the
row-to-row variance.

The search always runs coarse-to-fine. A single fine pass over the whole
range costs roughly eight times as many rotations and is never used.
"""

import logging
from dataclasses import dataclass

import cv2
import numpy as np

from skewalign.constants import BACKGROUND_VALUE, INK_VALUE, MIDPOINT_THRESHOLD
from skewalign.services.deskew.config import DeskewConfig
from skewalign.services.deskew.types import Deadline

logger = logging.getLogger(__name__)


@dataclass
class ProjectionResult:
    """Outcome of an angle search.

    Attributes:
        angle: Best angle in degrees (counter-clockwise positive)
        score: Projection score at that angle (0 when nothing scored)
        trials: Number of rotations evaluated
        aborted: True when the deadline stopped the search early
    """

    angle: float = 0.0
    score: float = 0.0
    trials: int = 0
    aborted: bool = False


def projection_score(mask: np.ndarray) -> float:
    """Variance of per-row ink counts divided by their mean (0 if no ink)."""
    if mask.size == 0:
        return 0.0
    rows = np.count_nonzero(mask, axis=1).astype(np.float64)
    mean = float(rows.mean())
    if mean <= 0:
        return 0.0
    return float(rows.var()) / mean


def pad_mask(mask: np.ndarray, fraction: float) -> tuple[np.ndarray, int, int]:
    """Pad a mask with background on every side.

    Returns:
        (padded, pad_y, pad_x)
    """
    h, w = mask.shape[:2]
    pad_y = int(round(h * fraction))
    pad_x = int(round(w * fraction))
    if pad_y == 0 and pad_x == 0:
        return mask, 0, 0
    padded = cv2.copyMakeBorder(
        mask, pad_y, pad_y, pad_x, pad_x, cv2.BORDER_CONSTANT, value=BACKGROUND_VALUE
    )
    return padded, pad_y, pad_x


def rotate_mask(
    padded: np.ndarray,
    angle: float,
    pad_y: int,
    pad_x: int,
    out_shape: tuple[int, int],
) -> np.ndarray:
    """Rotate a padded mask, crop back to ``out_shape`` and re-binarize.

    Uses BORDER_CONSTANT with background so that no ink wraps around or
    gets replicated into the corners that rotation uncovers.

    Args:
        padded: Padded binary mask
        angle: Rotation in degrees, counter-clockwise positive
        pad_y: Rows of padding above the original content
        pad_x: Columns of padding left of the original content
        out_shape: (h, w) of the unpadded mask

    Returns:
        Binary mask of shape ``out_shape``
    """
    ph, pw = padded.shape[:2]
    h, w = out_shape
    if angle == 0:
        rotated = padded
    else:
        center = ((pw - 1) / 2.0, (ph - 1) / 2.0)
        matrix = cv2.getRotationMatrix2D(center, angle, 1.0)
        rotated = cv2.warpAffine(
            padded,
            matrix,
            (pw, ph),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=BACKGROUND_VALUE,
        )
    cropped = rotated[pad_y : pad_y + h, pad_x : pad_x + w]
    # Interpolation introduces gray levels; restore a strict binary mask.
    _, binary = cv2.threshold(cropped, MIDPOINT_THRESHOLD - 1, INK_VALUE, cv2.THRESH_BINARY)
    return binary


def score_angle(
    padded: np.ndarray,
    angle: float,
    pad_y: int,
    pad_x: int,
    out_shape: tuple[int, int],
) -> float:
    """Score the hypothesis that the content is tilted by ``angle`` degrees."""
    return projection_score(rotate_mask(padded, -angle, pad_y, pad_x, out_shape))


def _angle_grid(min_deg: float, max_deg: float, step: float) -> np.ndarray:
    if max_deg < min_deg:
        min_deg, max_deg = max_deg, min_deg
    count = int(np.floor((max_deg - min_deg) / step + 1e-9)) + 1
    grid = min_deg + step * np.arange(count)
    return np.round(np.clip(grid, min_deg, max_deg), 6)


def search_angles(
    mask: np.ndarray,
    min_deg: float,
    max_deg: float,
    step: float,
    padding: float,
    deadline: Deadline | None = None,
) -> ProjectionResult:
    """Exhaustive projection search over an inclusive angle grid.

    Ties keep the first maximum encountered (lowest angle).
    """
    h, w = mask.shape[:2]
    if h == 0 or w == 0:
        return ProjectionResult()

    padded, pad_y, pad_x = pad_mask(mask, padding)
    result = ProjectionResult(angle=0.0, score=-1.0)
    for angle in _angle_grid(min_deg, max_deg, step):
        if deadline is not None and deadline.expired():
            result.aborted = True
            break
        score = score_angle(padded, float(angle), pad_y, pad_x, (h, w))
        result.trials += 1
        if score > result.score:
            result.angle = float(angle)
            result.score = score

    if result.score <= 0:
        result.score = 0.0
        result.angle = 0.0
    return result


def estimate_projection_angle(
    mask: np.ndarray,
    config: DeskewConfig,
    padding: float | None = None,
    deadline: Deadline | None = None,
) -> ProjectionResult:
    """Coarse-to-fine projection angle estimate.

    The coarse pass covers ``±angle_range_degrees`` at
    ``coarse_step_degrees``; the fine pass covers the coarse optimum
    ``±fine_span_degrees`` at ``fine_step_degrees``, clamped to the
    coarse range.

    Args:
        mask: Binary ink mask
        config: Search parameters
        padding: Padding fraction override (bands use their own)
        deadline: Optional page deadline; expiry aborts the search

    Returns:
        ProjectionResult with the best angle in degrees
    """
    if padding is None:
        padding = config.padding_fraction
    limit = abs(config.angle_range_degrees)

    coarse = search_angles(mask, -limit, limit, config.coarse_step_degrees, padding, deadline)
    if coarse.aborted:
        return coarse

    lo = max(-limit, coarse.angle - config.fine_span_degrees)
    hi = min(limit, coarse.angle + config.fine_span_degrees)
    fine = search_angles(mask, lo, hi, config.fine_step_degrees, padding, deadline)
    fine.trials += coarse.trials
    if fine.aborted:
        return fine

    if fine.score < coarse.score:
        fine.angle, fine.score = coarse.angle, coarse.score

    logger.debug(
        f"Projection search: coarse={coarse.angle:+.2f}° fine={fine.angle:+.2f}° "
        f"score={fine.score:.2f} trials={fine.trials}"
    )
    return fine
